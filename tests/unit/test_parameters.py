"""
Unit Tests - Event Parameter Parsing
"""
from decimal import Decimal

import pytest

from game_analytics.aggregation.parameters import (
    count_param,
    flag_param,
    money_param,
    optional_count_param,
    parse_count,
    parse_money,
    text_param,
)
from game_analytics.core.exceptions import MalformedParameter


class TestStrictParsers:
    """Tests for the raising parsers"""

    @pytest.mark.parametrize(
        "value,expected",
        [
            (3, 3),
            ("42", 42),
            (" 7 ", 7),
            (12.9, 12),
            ("1e3", 1000),
            (Decimal("5"), 5),
        ],
    )
    def test_parse_count(self, value, expected):
        assert parse_count("amount", value) == expected

    @pytest.mark.parametrize(
        "value,reason",
        [
            (None, "missing"),
            ("abc", "not numeric"),
            (-1, "negative"),
            (float("nan"), "not finite"),
            (float("inf"), "not finite"),
            ("NaN", "not finite"),
            (True, "boolean is not a number"),
            ("1e30", "out of range"),
            (10 ** 13, "out of range"),
        ],
    )
    def test_parse_count_rejects(self, value, reason):
        with pytest.raises(MalformedParameter) as exc_info:
            parse_count("amount", value)

        assert exc_info.value.reason == reason
        assert exc_info.value.field == "amount"

    def test_unsupported_type(self):
        with pytest.raises(MalformedParameter) as exc_info:
            parse_count("amount", [1])
        assert exc_info.value.reason == "unsupported type list"

    def test_parse_money_rounds_half_up_to_cents(self):
        assert parse_money("price_usd", "4.995") == Decimal("5.00")
        assert parse_money("price_usd", 0.1) == Decimal("0.10")

    def test_parse_money_ceiling(self):
        assert parse_money("price_usd", "10000") == Decimal("10000.00")
        with pytest.raises(MalformedParameter) as exc_info:
            parse_money("price_usd", "10000.01")
        assert exc_info.value.reason == "out of range"


class TestTolerantHelpers:
    """Tests for the zero-fallback helpers used by deltas and reducers"""

    def test_count_param_falls_back_to_zero(self):
        assert count_param({"amount": "abc"}, "amount") == 0
        assert count_param({}, "amount") == 0
        assert count_param({"amount": "25"}, "amount") == 25
        assert count_param({"amount": "1e30"}, "amount") == 0

    def test_money_param_falls_back_to_zero(self):
        assert money_param({"price_usd": "abc"}, "price_usd") == Decimal("0.00")
        assert money_param({"price_usd": 1.99}, "price_usd") == Decimal("1.99")

    def test_optional_count_param_distinguishes_missing(self):
        assert optional_count_param({}, "score") is None
        assert optional_count_param({"score": "bad"}, "score") is None
        assert optional_count_param({"score": 0}, "score") == 0

    @pytest.mark.parametrize(
        "value,expected",
        [
            (True, True),
            (False, False),
            (1, True),
            (0, False),
            ("true", True),
            ("Yes", True),
            ("no", False),
            (None, False),
        ],
    )
    def test_flag_param(self, value, expected):
        assert flag_param({"fatal": value}, "fatal") is expected

    def test_text_param_lowercases(self):
        assert text_param({"currency_type": " Gems "}, "currency_type") == "gems"
        assert text_param({}, "currency_type") is None
