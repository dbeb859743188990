"""
Event Parameter Parsing

Tolerant numeric parsing shared by the counter deltas and the rollup reducers.
A parameter that is missing or not a finite, non-negative number raises
MalformedParameter from the strict parsers; the `*_param` helpers log it and
fall back to zero so one bad event never aborts an update or a recompute.
"""

import math
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping, Optional

import structlog

from game_analytics.core.exceptions import MalformedParameter

logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")
ZERO_MONEY = Decimal("0.00")

# Largest single value accepted; cumulative sums of these stay within BIGINT
MAX_NUMBER = Decimal(10) ** 12
# Largest single purchase price; lifetime revenue stays within NUMERIC(12, 2)
MAX_PRICE_USD = Decimal(10000)

_TRUE_VALUES = {"true", "1", "yes", "y", "t"}


def parse_number(field: str, value: Any, maximum: Decimal = MAX_NUMBER) -> Decimal:
    """
    Parse a finite, non-negative number no larger than `maximum`.

    Raises:
        MalformedParameter: For booleans, NaN/inf, negatives, out-of-range and
            non-numeric values
    """
    if value is None:
        raise MalformedParameter(field, value, "missing")
    if isinstance(value, bool):
        raise MalformedParameter(field, value, "boolean is not a number")

    if isinstance(value, int):
        number = Decimal(value)
    elif isinstance(value, float):
        if not math.isfinite(value):
            raise MalformedParameter(field, value, "not finite")
        number = Decimal(str(value))
    elif isinstance(value, Decimal):
        number = value
    elif isinstance(value, str):
        try:
            number = Decimal(value.strip())
        except InvalidOperation as e:
            raise MalformedParameter(field, value, "not numeric") from e
    else:
        raise MalformedParameter(field, value, f"unsupported type {type(value).__name__}")

    if not number.is_finite():
        raise MalformedParameter(field, value, "not finite")
    if number < 0:
        raise MalformedParameter(field, value, "negative")
    if number > maximum:
        raise MalformedParameter(field, value, "out of range")
    return number


def parse_count(field: str, value: Any) -> int:
    """Parse a non-negative number, truncated to an integer"""
    return int(parse_number(field, value))


def parse_money(field: str, value: Any) -> Decimal:
    """Parse a non-negative amount, quantized to cents"""
    return parse_number(field, value, MAX_PRICE_USD).quantize(CENTS, rounding=ROUND_HALF_UP)


def _log_malformed(error: MalformedParameter, event_id: Optional[int]) -> None:
    if error.reason == "missing":
        logger.debug("Event parameter missing", event_id=event_id, field=error.field)
    else:
        logger.warning(
            "Malformed event parameter",
            event_id=event_id,
            field=error.field,
            value=error.details["value"],
            reason=error.reason,
        )


def count_param(parameters: Mapping[str, Any], field: str, event_id: Optional[int] = None) -> int:
    """Integer parameter, 0 when missing or malformed"""
    try:
        return parse_count(field, parameters.get(field))
    except MalformedParameter as e:
        _log_malformed(e, event_id)
        return 0


def money_param(parameters: Mapping[str, Any], field: str, event_id: Optional[int] = None) -> Decimal:
    """Money parameter in cents precision, 0.00 when missing or malformed"""
    try:
        return parse_money(field, parameters.get(field))
    except MalformedParameter as e:
        _log_malformed(e, event_id)
        return ZERO_MONEY


def optional_count_param(
    parameters: Mapping[str, Any], field: str, event_id: Optional[int] = None
) -> Optional[int]:
    """Integer parameter, None when missing or malformed (excluded from averages)"""
    try:
        return parse_count(field, parameters.get(field))
    except MalformedParameter as e:
        _log_malformed(e, event_id)
        return None


def flag_param(parameters: Mapping[str, Any], field: str) -> bool:
    """Boolean parameter; accepts JSON booleans, 1/0 and common string spellings"""
    value = parameters.get(field)
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value == 1
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_VALUES
    return False


def text_param(parameters: Mapping[str, Any], field: str) -> Optional[str]:
    """Lower-cased string parameter, None when absent"""
    value = parameters.get(field)
    if value is None:
        return None
    return str(value).strip().lower()
