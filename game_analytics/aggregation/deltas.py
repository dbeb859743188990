"""
Counter Delta Table

Maps one event to one pure function over PlayerCounters. Parameters are
parsed once when the delta is built, so a retried upsert re-applies the same
values without logging the same malformed parameter again.

Handlers never touch storage or other players; the counter store may call the
resulting function any number of times.
"""

from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Mapping, Optional

from game_analytics.aggregation.counters import PlayerCounters
from game_analytics.aggregation.parameters import count_param, flag_param, money_param, text_param
from game_analytics.ingestion.events import Event, EventName

DeltaFn = Callable[[PlayerCounters], PlayerCounters]

RETENTION_DAYS = {1: "day1_retained", 7: "day7_retained", 30: "day30_retained"}


@dataclass(frozen=True)
class CounterDelta:
    """Field increments plus an optional best-score candidate"""
    increments: Mapping[str, Any] = field(default_factory=dict)
    best_score: Optional[int] = None


NO_CHANGE = CounterDelta()

Handler = Callable[[Event, int], CounterDelta]


def _count(*names: str) -> Handler:
    increments = {name: 1 for name in names}

    def handler(event: Event, threshold: int) -> CounterDelta:
        return CounterDelta(increments=increments)

    return handler


def _session_end(event: Event, threshold: int) -> CounterDelta:
    duration = count_param(event.parameters, "session_duration_seconds", event.id)
    increments = {"total_play_time_seconds": duration}
    if duration > threshold:
        increments["high_engagement_sessions"] = 1
    return CounterDelta(increments=increments)


def _game_end(event: Event, threshold: int) -> CounterDelta:
    score = count_param(event.parameters, "score", event.id)
    return CounterDelta(increments={"total_score": score}, best_score=score)


def _continue_used(event: Event, threshold: int) -> CounterDelta:
    increments = {"continues_used_total": 1}
    continue_type = text_param(event.parameters, "continue_type")
    if continue_type == "ad":
        increments["continues_via_ad"] = 1
    elif continue_type == "gems":
        increments["continues_via_gems"] = 1
    return CounterDelta(increments=increments)


def _currency(direction: str) -> Handler:
    def handler(event: Event, threshold: int) -> CounterDelta:
        currency_type = text_param(event.parameters, "currency_type")
        if currency_type not in ("coins", "gems"):
            return NO_CHANGE
        amount = count_param(event.parameters, "amount", event.id)
        return CounterDelta(increments={f"{currency_type}_{direction}_total": amount})

    return handler


def _iap_purchase(event: Event, threshold: int) -> CounterDelta:
    price = money_param(event.parameters, "price_usd", event.id)
    return CounterDelta(increments={"total_purchases": 1, "total_revenue_usd": price})


def _error_occurred(event: Event, threshold: int) -> CounterDelta:
    increments = {"total_errors": 1}
    if flag_param(event.parameters, "fatal"):
        increments["fatal_errors"] = 1
    return CounterDelta(increments=increments)


DELTA_TABLE: Dict[str, Handler] = {
    EventName.SESSION_START.value: _count("total_sessions"),
    EventName.SESSION_END.value: _session_end,
    EventName.GAME_START.value: _count("total_games_played"),
    EventName.GAME_END.value: _game_end,
    EventName.MISSION_COMPLETE.value: _count("missions_completed"),
    EventName.ACHIEVEMENT_UNLOCK.value: _count("achievements_unlocked"),
    EventName.CONTINUE_USED.value: _continue_used,
    EventName.AD_SHOWN.value: _count("ads_shown_total"),
    EventName.AD_COMPLETED.value: _count("ads_completed_total"),
    EventName.AD_ABANDONED.value: _count("ads_abandoned_total"),
    EventName.CURRENCY_EARNED.value: _currency("earned"),
    EventName.CURRENCY_SPENT.value: _currency("spent"),
    EventName.IAP_PURCHASE.value: _iap_purchase,
    EventName.ERROR_OCCURRED.value: _error_occurred,
}


def delta_for(event: Event, high_engagement_threshold: int) -> CounterDelta:
    """Counter changes for one event; unknown event names change nothing"""
    handler = DELTA_TABLE.get(event.event_name)
    if handler is None:
        return NO_CHANGE
    return handler(event, high_engagement_threshold)


def apply_delta(counters: PlayerCounters, delta: CounterDelta, event: Event) -> PlayerCounters:
    """
    Apply a delta plus the lifecycle updates every event carries.

    - last_seen_date moves forward to the event date, never back
    - dayN_retained is set when the event lands exactly N days after install
    - platform and app_version follow the latest event that reports them
    """
    updated = counters.incremented(**delta.increments) if delta.increments else counters

    changes: Dict[str, Any] = {}
    if delta.best_score is not None and delta.best_score > updated.best_score:
        changes["best_score"] = delta.best_score

    event_date = event.event_date
    if event_date > updated.last_seen_date:
        changes["last_seen_date"] = event_date

    flag = RETENTION_DAYS.get((event_date - updated.install_date).days)
    if flag is not None:
        changes[flag] = True

    if event.platform and event.platform != "unknown":
        changes["platform"] = event.platform
    if event.app_version:
        changes["app_version"] = event.app_version

    return replace(updated, **changes) if changes else updated


def build_delta(event: Event, high_engagement_threshold: int = 300) -> DeltaFn:
    """
    Pure counter-update function for one event.

    Example:
        delta_fn = build_delta(event, settings.high_engagement_threshold_seconds)
        await store.upsert(event.player_id, delta_fn, install_date=event.event_date)
    """
    delta = delta_for(event, high_engagement_threshold)

    def delta_fn(counters: PlayerCounters) -> PlayerCounters:
        return apply_delta(counters, delta, event)

    return delta_fn


def replay(events, high_engagement_threshold: int = 300) -> Optional[PlayerCounters]:
    """
    Fold one player's events from empty state without storage.

    Used to reconcile stored counters against the log.
    """
    counters: Optional[PlayerCounters] = None
    for event in events:
        if counters is None:
            counters = PlayerCounters.new(event.player_id, event.event_date)
        counters = build_delta(event, high_engagement_threshold)(counters)
    return counters
