"""
Unit Tests - Synthetic Event Generators
"""
from datetime import date

import pytest

from game_analytics.data import GameEventGenerator
from game_analytics.ingestion import EventName, validate_event

END = date(2024, 3, 14)


@pytest.fixture
def events():
    return GameEventGenerator(seed=7).generate(n_players=20, days=7, end_date=END)


class TestGameEventGenerator:
    """Tests for seeded synthetic histories"""

    def test_same_seed_same_history(self, events):
        again = GameEventGenerator(seed=7).generate(n_players=20, days=7, end_date=END)
        assert again == events

    def test_every_payload_validates(self, events):
        known = {name.value for name in EventName}

        for payload in events:
            event = validate_event(payload)
            assert event.event_name in known
            assert event.created_at.date() <= END

    def test_sorted_by_time(self, events):
        timestamps = [e["created_at"] for e in events]
        assert timestamps == sorted(timestamps)

    def test_every_player_launches_on_install(self, events):
        players = {e["player_id"] for e in events}
        launched = {e["player_id"] for e in events if e["event_name"] == "app_launch"}

        assert len(players) == 20
        assert launched == players

    def test_malformed_values_still_validate(self):
        events = GameEventGenerator(seed=3, malformed_rate=1.0).generate(n_players=3, days=2, end_date=END)
        game_ends = [e for e in events if e["event_name"] == "game_end"]

        assert game_ends
        assert all(e["parameters"]["score"] in ("abc", -1, None, "NaN") for e in game_ends)
        for payload in events:
            validate_event(payload)

    def test_save_writes_parquet(self, events, tmp_path):
        path = GameEventGenerator().save(events, str(tmp_path))

        assert path.exists()
        assert path.suffix == ".parquet"
