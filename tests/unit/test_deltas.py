"""
Unit Tests - Counter Delta Table
"""
from datetime import date, timedelta
from decimal import Decimal

import pytest

from game_analytics.aggregation import PlayerCounters, build_delta, replay
from game_analytics.aggregation.counters import decreased_fields

INSTALL = date(2024, 3, 1)


@pytest.fixture
def fresh():
    return PlayerCounters.new("p1", INSTALL)


class TestDeltaTable:
    """Tests for per-event counter changes"""

    @pytest.mark.parametrize(
        "event_name,field",
        [
            ("session_start", "total_sessions"),
            ("game_start", "total_games_played"),
            ("mission_complete", "missions_completed"),
            ("achievement_unlock", "achievements_unlocked"),
            ("ad_shown", "ads_shown_total"),
            ("ad_completed", "ads_completed_total"),
            ("ad_abandoned", "ads_abandoned_total"),
        ],
    )
    def test_counting_events(self, fresh, make_event, event_name, field):
        updated = build_delta(make_event(event_name, on=INSTALL))(fresh)
        assert getattr(updated, field) == 1

    def test_session_end_adds_play_time(self, fresh, make_event):
        event = make_event("session_end", on=INSTALL, parameters={"session_duration_seconds": 120})
        updated = build_delta(event)(fresh)

        assert updated.total_play_time_seconds == 120
        assert updated.high_engagement_sessions == 0

    def test_long_session_counts_as_high_engagement(self, fresh, make_event):
        event = make_event("session_end", on=INSTALL, parameters={"session_duration_seconds": 301})
        assert build_delta(event, high_engagement_threshold=300)(fresh).high_engagement_sessions == 1

    @pytest.mark.parametrize("duration", [None, "abc", -5, float("nan")])
    def test_session_end_malformed_duration_counts_zero(self, fresh, make_event, duration):
        event = make_event("session_end", on=INSTALL, parameters={"session_duration_seconds": duration})
        assert build_delta(event)(fresh).total_play_time_seconds == 0

    def test_game_end_tracks_best_score(self, fresh, make_event):
        first = build_delta(make_event("game_end", on=INSTALL, parameters={"score": 500}))(fresh)
        second = build_delta(make_event("game_end", on=INSTALL, parameters={"score": 200}))(first)

        assert second.best_score == 500
        assert second.total_score == 700

    @pytest.mark.parametrize(
        "continue_type,via_ad,via_gems",
        [("ad", 1, 0), ("gems", 0, 1), ("coins", 0, 0), (None, 0, 0)],
    )
    def test_continue_used(self, fresh, make_event, continue_type, via_ad, via_gems):
        event = make_event("continue_used", on=INSTALL, parameters={"continue_type": continue_type})
        updated = build_delta(event)(fresh)

        assert updated.continues_used_total == 1
        assert updated.continues_via_ad == via_ad
        assert updated.continues_via_gems == via_gems

    def test_currency_selected_by_type(self, fresh, make_event):
        earned = make_event("currency_earned", on=INSTALL, parameters={"currency_type": "gems", "amount": 15})
        spent = make_event("currency_spent", on=INSTALL, parameters={"currency_type": "coins", "amount": "40"})

        updated = build_delta(spent)(build_delta(earned)(fresh))

        assert updated.gems_earned_total == 15
        assert updated.coins_spent_total == 40
        assert updated.coins_earned_total == 0

    def test_unknown_currency_type_is_noop(self, fresh, make_event):
        event = make_event("currency_earned", on=INSTALL, parameters={"currency_type": "stars", "amount": 15})
        updated = build_delta(event)(fresh)

        ledgers = ("coins_earned_total", "gems_earned_total", "coins_spent_total", "gems_spent_total")
        assert all(getattr(updated, name) == 0 for name in ledgers)

    def test_iap_purchase(self, fresh, make_event):
        event = make_event("iap_purchase", on=INSTALL, parameters={"price_usd": 4.99})
        updated = build_delta(event)(fresh)

        assert updated.total_purchases == 1
        assert updated.total_revenue_usd == Decimal("4.99")

    def test_iap_purchase_malformed_price(self, fresh, make_event):
        event = make_event("iap_purchase", on=INSTALL, parameters={"price_usd": "abc"})
        updated = build_delta(event)(fresh)

        assert updated.total_purchases == 1
        assert updated.total_revenue_usd == Decimal("0.00")

    def test_error_occurred(self, fresh, make_event):
        event = make_event("error_occurred", on=INSTALL, parameters={"fatal": True})
        updated = build_delta(event)(fresh)

        assert updated.total_errors == 1
        assert updated.fatal_errors == 1

    def test_unknown_event_only_touches_lifecycle(self, fresh, make_event):
        event = make_event("tutorial_step", on=INSTALL + timedelta(days=3), platform="ios")
        updated = build_delta(event)(fresh)

        assert updated.last_seen_date == INSTALL + timedelta(days=3)
        assert updated.platform == "ios"
        assert updated.total_sessions == 0


class TestLifecycle:
    """Tests for updates every event carries"""

    def test_last_seen_never_moves_back(self, fresh, make_event):
        later = build_delta(make_event("app_launch", on=INSTALL + timedelta(days=5)))(fresh)
        earlier = build_delta(make_event("app_launch", on=INSTALL + timedelta(days=2)))(later)

        assert earlier.last_seen_date == INSTALL + timedelta(days=5)

    @pytest.mark.parametrize(
        "days,flag",
        [(1, "day1_retained"), (7, "day7_retained"), (30, "day30_retained")],
    )
    def test_retention_flags(self, fresh, make_event, days, flag):
        updated = build_delta(make_event("app_launch", on=INSTALL + timedelta(days=days)))(fresh)
        assert getattr(updated, flag) is True

    def test_no_retention_flag_on_other_days(self, fresh, make_event):
        updated = build_delta(make_event("app_launch", on=INSTALL + timedelta(days=2)))(fresh)
        assert not (updated.day1_retained or updated.day7_retained or updated.day30_retained)

    def test_unknown_platform_does_not_overwrite(self, make_event):
        counters = PlayerCounters.new("p1", INSTALL)
        ios = build_delta(make_event("app_launch", on=INSTALL, platform="ios"))(counters)
        unknown = build_delta(make_event("app_launch", on=INSTALL, platform="unknown"))(ios)

        assert unknown.platform == "ios"

    def test_delta_is_pure(self, fresh, make_event):
        delta_fn = build_delta(make_event("iap_purchase", on=INSTALL, parameters={"price_usd": "1.50"}))

        assert delta_fn(fresh) == delta_fn(fresh)
        assert fresh.total_purchases == 0


class TestReplay:
    """Tests for folding a player's history without storage"""

    def test_replay_sets_install_date_from_first_event(self, make_event):
        events = [
            make_event("session_start", on=INSTALL),
            make_event("game_start", on=INSTALL),
            make_event("session_start", on=INSTALL + timedelta(days=1)),
        ]

        counters = replay(events)

        assert counters.install_date == INSTALL
        assert counters.total_sessions == 2
        assert counters.total_games_played == 1
        assert counters.day1_retained is True

    def test_replay_of_nothing(self):
        assert replay([]) is None


class TestDecreasedFields:
    """Tests for the monotonicity check"""

    def test_decreased_fields_detects_regressions(self, fresh):
        regressed = fresh.incremented(total_sessions=2)
        assert decreased_fields(regressed, fresh) == ["total_sessions"]
        assert decreased_fields(fresh, regressed) == []
