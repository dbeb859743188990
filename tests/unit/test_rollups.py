"""
Unit Tests - Daily Rollup Families
"""
from datetime import date, datetime, timedelta
from decimal import Decimal

import pytest

from game_analytics.rollups import DAILY_FAMILIES, build_event_frame, build_summary_row, compute_snapshot
from game_analytics.rollups.families import DauRow, FunnelRow, RevenueRow
from game_analytics.rollups.ratios import average, percentage, ratio
from game_analytics.rollups.snapshot import FAMILY_NAMES

DAY = date(2024, 1, 1)
NOW = datetime(2024, 1, 3, 0, 5)


def reduce(family, events, **kwargs):
    return DAILY_FAMILIES[family](build_event_frame(events), **kwargs)


class TestRatios:
    """Tests for rounding and zero guards"""

    def test_zero_denominator(self):
        assert ratio(10, 0) == 0.0
        assert percentage(3, 0) == 0.0
        assert average(0, 0) == 0.0

    def test_half_up_rounding(self):
        assert ratio(1, 8) == 0.13
        assert percentage(1, 3) == 33.33
        assert ratio(Decimal("10.00"), 3, places=4) == 3.3333


class TestDau:
    """Tests for the daily active users family"""

    def test_distinct_players_and_sub_splits(self, make_event):
        events = [
            make_event("game_start", player_id="p1", on=DAY),
            make_event("game_start", player_id="p1", on=DAY),
            make_event("session_start", player_id="p2", on=DAY),
        ]

        [row] = reduce("dau", events)

        assert row.date == DAY
        assert row.dau == 2
        assert row.gaming_users == 1
        assert row.session_users == 1

    def test_platform_splits(self, make_event):
        events = [
            make_event("app_launch", player_id="p1", on=DAY, platform="android"),
            make_event("app_launch", player_id="p2", on=DAY, platform="ios"),
            make_event("app_launch", player_id="p3", on=DAY, platform="web"),
        ]

        [row] = reduce("dau", events)

        assert (row.dau, row.android_users, row.ios_users) == (3, 1, 1)

    def test_one_row_per_date_in_order(self, make_event):
        events = [
            make_event("app_launch", on=DAY + timedelta(days=2)),
            make_event("app_launch", on=DAY),
        ]

        rows = reduce("dau", events)

        assert [r.date for r in rows] == [DAY, DAY + timedelta(days=2)]

    def test_no_events(self):
        assert reduce("dau", []) == []

    def test_mau_counts_trailing_thirty_days(self, make_event):
        events = [
            make_event("app_launch", player_id="p1", on=DAY),
            make_event("app_launch", player_id="p2", on=DAY + timedelta(days=10)),
            make_event("app_launch", player_id="p3", on=DAY + timedelta(days=29)),
            make_event("app_launch", player_id="p1", on=DAY + timedelta(days=40)),
            make_event("app_launch", player_id="p4", on=DAY + timedelta(days=40)),
        ]

        rows = reduce("dau", events)

        assert [(r.dau, r.mau) for r in rows] == [(1, 1), (1, 2), (1, 3), (2, 3)]

    def test_mau_never_below_dau(self, make_event):
        events = [make_event("app_launch", player_id=f"p{i}", on=DAY) for i in range(4)]

        [row] = reduce("dau", events)

        assert row.mau == row.dau == 4


class TestWeekly:
    """Tests for the ISO-week family"""

    def test_rows_keyed_by_monday(self, make_event):
        wednesday = DAY + timedelta(days=2)
        events = [
            make_event("app_launch", on=wednesday),
            make_event("app_launch", on=DAY + timedelta(days=9)),
        ]

        rows = reduce("weekly", events)

        assert [r.date for r in rows] == [DAY, DAY + timedelta(days=7)]
        assert all(r.date.isoweekday() == 1 for r in rows)

    def test_weekly_metrics(self, make_event):
        events = [
            make_event("game_start", player_id="p1", on=DAY, platform="android"),
            make_event("game_start", player_id="p1", on=DAY + timedelta(days=3), platform="android"),
            make_event("iap_purchase", player_id="p2", on=DAY + timedelta(days=6), platform="ios",
                       parameters={"price_usd": "2.50"}),
            make_event("app_launch", player_id="p1", on=DAY + timedelta(days=7)),
        ]

        first, second = reduce("weekly", events)

        assert (first.wau, first.android_users, first.ios_users) == (2, 1, 1)
        assert (first.total_events, first.unique_event_types, first.games_started) == (3, 2, 2)
        assert (first.paying_users, first.purchase_count) == (1, 1)
        assert first.total_revenue_usd == Decimal("2.50")
        assert (second.wau, second.total_events, second.purchase_count) == (1, 1, 0)


class TestRevenue:
    """Tests for the revenue family"""

    def test_malformed_price_counts_zero_without_losing_events(self, make_event):
        events = [
            make_event("iap_purchase", player_id="p1", on=DAY, parameters={"price_usd": "abc", "product_type": "gems"}),
            make_event("iap_purchase", player_id="p2", on=DAY, parameters={"price_usd": "4.99", "product_type": "jet"}),
            make_event("iap_purchase", player_id="p2", on=DAY, parameters={"price_usd": 0.99, "product_type": "hearts"}),
        ]

        [row] = reduce("revenue", events)

        assert row.total_revenue_usd == Decimal("5.98")
        assert row.total_purchases == 3
        assert row.paying_users == 2
        assert (row.gem_purchases, row.jet_purchases, row.heart_purchases) == (1, 1, 1)

    def test_missing_price(self, make_event):
        [row] = reduce("revenue", [make_event("iap_purchase", on=DAY)])

        assert row.total_revenue_usd == Decimal("0.00")
        assert row.total_purchases == 1


class TestEngagement:
    """Tests for the engagement family"""

    def test_averages_exclude_malformed_durations(self, make_event):
        events = [
            make_event("session_end", on=DAY, session_id="s1", parameters={"session_duration_seconds": 100}),
            make_event("session_end", on=DAY, session_id="s2", parameters={"session_duration_seconds": 400}),
            make_event("session_end", on=DAY, session_id="s3", parameters={"session_duration_seconds": "bad"}),
            make_event("game_start", on=DAY, session_id="s1", parameters={"games_in_session": 1}),
            make_event("game_start", on=DAY, session_id="s1", parameters={"games_in_session": 2}),
        ]

        [row] = reduce("engagement", events, high_engagement_threshold=300)

        assert row.total_sessions == 3
        assert row.total_games == 2
        assert row.avg_session_duration == 250.0
        assert row.avg_games_per_session == 1.5
        assert row.high_engagement_sessions == 1


class TestMissions:
    """Tests for the missions and achievements family"""

    def test_counts_and_distinct_users(self, make_event):
        events = [
            make_event("mission_complete", player_id="p1", on=DAY),
            make_event("mission_complete", player_id="p1", on=DAY),
            make_event("mission_complete", player_id="p2", on=DAY),
            make_event("daily_mission_cycle_complete", player_id="p1", on=DAY,
                       parameters={"all_missions_completed": True}),
            make_event("daily_mission_cycle_complete", player_id="p1", on=DAY,
                       parameters={"all_missions_completed": True}),
            make_event("daily_mission_cycle_complete", player_id="p2", on=DAY,
                       parameters={"all_missions_completed": False}),
            make_event("achievement_unlock", player_id="p2", on=DAY, parameters={"achievements_count": 4}),
        ]

        [row] = reduce("missions", events)

        assert row.missions_completed == 3
        assert row.users_completed_missions == 2
        assert row.users_all_missions == 1
        assert row.achievements_unlocked == 1
        assert row.avg_achievements_per_user == 4.0


class TestFunnelAndCurrency:
    """Tests for the ad funnel and currency families"""

    def test_ad_completion_rate(self, make_event):
        events = [make_event("ad_shown", on=DAY) for _ in range(3)]
        events += [make_event("ad_completed", on=DAY) for _ in range(2)]
        events += [
            make_event("continue_used", on=DAY, parameters={"continue_type": "ad"}),
            make_event("continue_used", on=DAY, parameters={"continue_type": "gems"}),
        ]

        [row] = reduce("funnel", events)

        assert row.ad_completion_rate == 66.67
        assert (row.continues_used, row.continues_via_ad, row.continues_via_gems) == (2, 1, 1)

    def test_completion_rate_without_ads_shown(self, make_event):
        [row] = reduce("funnel", [make_event("ad_completed", on=DAY)])
        assert row.ad_completion_rate == 0.0

    def test_currency_ledgers(self, make_event):
        events = [
            make_event("currency_earned", on=DAY, parameters={"currency_type": "coins", "amount": 100}),
            make_event("currency_earned", on=DAY, parameters={"currency_type": "gems", "amount": "5"}),
            make_event("currency_spent", on=DAY, parameters={"currency_type": "coins", "amount": 30}),
            make_event("currency_spent", on=DAY, parameters={"currency_type": "stars", "amount": 30}),
            make_event("currency_spent", on=DAY, parameters={"currency_type": "gems", "amount": "abc"}),
        ]

        [row] = reduce("currency", events)

        assert (row.coins_earned, row.gems_earned, row.coins_spent, row.gems_spent) == (100, 5, 30, 0)


class TestSummary:
    """Tests for the joined summary row"""

    def test_arpu_is_zero_without_dau(self):
        row = build_summary_row(DauRow(date=DAY), RevenueRow(date=DAY, total_revenue_usd=Decimal("10.00")))

        assert row.arpu == 0.0
        assert row.arppu == 0.0

    def test_derived_ratios(self):
        row = build_summary_row(
            DauRow(date=DAY, dau=3),
            RevenueRow(date=DAY, total_revenue_usd=Decimal("10.00"), paying_users=2),
            funnel=FunnelRow(date=DAY, continues_used=4),
        )

        assert row.arpu == 3.3333
        assert row.arppu == 5.0
        assert row.avg_continues_per_user == 1.33
        assert row.total_revenue_usd == Decimal("10.00")
        assert row.mission_completion_rate == 0.0


class TestSnapshot:
    """Tests for a full recompute"""

    @pytest.fixture
    def events(self, make_event):
        return [
            make_event("session_start", player_id="p1", on=DAY, session_id="s1"),
            make_event("game_start", player_id="p1", on=DAY, session_id="s1"),
            make_event("iap_purchase", player_id="p1", on=DAY, parameters={"price_usd": 1.99}),
            make_event("session_start", player_id="p2", on=DAY + timedelta(days=1), session_id="s2"),
        ]

    def test_every_family_present(self, events):
        snapshot = compute_snapshot(events, DAY, DAY + timedelta(days=1), computed_at=NOW)

        assert set(snapshot.daily) == set(FAMILY_NAMES)
        assert [r.date for r in snapshot.daily["summary"]] == [DAY, DAY + timedelta(days=1)]
        assert snapshot.event_count == 4
        assert snapshot.max_event_id == max(e.id for e in events)

    def test_recompute_is_identical(self, events):
        first = compute_snapshot(events, DAY, DAY, computed_at=NOW)
        second = compute_snapshot(list(reversed(events)), DAY, DAY, computed_at=NOW)

        for family in FAMILY_NAMES:
            assert [r.model_dump_json() for r in first.daily[family]] == [
                r.model_dump_json() for r in second.daily[family]
            ]

    def test_oversized_parameter_does_not_fail_recompute(self, make_event):
        events = [
            make_event("currency_earned", player_id="p1", on=DAY,
                       parameters={"currency_type": "coins", "amount": "1e30"}),
            make_event("iap_purchase", player_id="p1", on=DAY, parameters={"price_usd": "1e30"}),
            make_event("game_start", player_id="p2", on=DAY),
        ]

        snapshot = compute_snapshot(events, DAY, DAY, computed_at=NOW)

        [dau] = snapshot.daily["dau"]
        [currency] = snapshot.daily["currency"]
        [revenue] = snapshot.daily["revenue"]
        assert dau.dau == 2
        assert currency.coins_earned == 0
        assert revenue.total_purchases == 1
        assert revenue.total_revenue_usd == Decimal("0.00")
