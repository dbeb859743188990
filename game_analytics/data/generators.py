"""
Synthetic Game Event Generator

Generates realistic player activity for testing, demos and load runs.
Includes:
- Players with install dates, platforms and spending profiles
- Sessions containing games, missions, continues and ads
- Currency flows and in-app purchases
- Occasional client errors and malformed parameters

Output is a list of event payloads accepted by the event log, so it can be
posted to the API or appended directly.
"""

import random
import uuid
from datetime import date, datetime, time, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

import polars as pl
from faker import Faker

from game_analytics.ingestion.events import EventName


# =============================================================================
# CONFIGURATION
# =============================================================================

PLATFORMS = [("android", 0.55), ("ios", 0.40), ("web", 0.05)]
APP_VERSIONS = ["1.8.2", "1.9.0", "1.9.1", "2.0.0"]

SEGMENTS = {
    "casual": 0.55,
    "regular": 0.30,
    "whale": 0.05,
    "churner": 0.10,
}

IAP_PRODUCTS = [
    ("gems_small", "gems", 0.99),
    ("gems_large", "gems", 19.99),
    ("hearts_refill", "hearts", 1.99),
    ("jet_upgrade", "jet", 4.99),
    ("remove_ads", "remove_ads", 2.99),
]

ERROR_CODES = ["E_NETWORK", "E_TIMEOUT", "E_ASSET_LOAD", "E_SAVE_FAILED"]


# =============================================================================
# GENERATORS
# =============================================================================

class PlayerGenerator:
    """Generate players with install dates and behaviour profiles"""

    def __init__(self, rng: random.Random, fake: Faker):
        self.rng = rng
        self.fake = fake

    def generate(self, n: int, start_date: date, end_date: date) -> List[Dict[str, Any]]:
        """Generate n players installing between start_date and end_date"""
        span_days = max((end_date - start_date).days, 0)
        players = []

        for _ in range(n):
            platform = self.rng.choices(
                [p[0] for p in PLATFORMS],
                weights=[p[1] for p in PLATFORMS],
            )[0]
            segment = self.rng.choices(
                list(SEGMENTS.keys()),
                weights=list(SEGMENTS.values()),
            )[0]

            players.append({
                "player_id": f"player_{uuid.UUID(int=self.rng.getrandbits(128)).hex[:12]}",
                "username": self.fake.user_name(),
                "platform": platform,
                "app_version": self.rng.choice(APP_VERSIONS),
                "segment": segment,
                "install_date": start_date + timedelta(days=self.rng.randint(0, span_days)),
            })

        return players


class SessionGenerator:
    """Generate the event sequence of one play session"""

    def __init__(self, rng: random.Random, malformed_rate: float = 0.0):
        self.rng = rng
        self.malformed_rate = malformed_rate

    def _event(
        self,
        player: Dict[str, Any],
        name: EventName,
        at: datetime,
        session_id: Optional[str],
        **parameters: Any,
    ) -> Dict[str, Any]:
        return {
            "player_id": player["player_id"],
            "event_name": name.value,
            "parameters": parameters,
            "session_id": session_id,
            "platform": player["platform"],
            "app_version": player["app_version"],
            "created_at": at,
        }

    def _maybe_corrupt(self, value: Any) -> Any:
        if self.malformed_rate and self.rng.random() < self.malformed_rate:
            return self.rng.choice(["abc", -1, None, "NaN"])
        return value

    def generate(self, player: Dict[str, Any], start: datetime) -> List[Dict[str, Any]]:
        """Events for one session beginning at start"""
        rng = self.rng
        session_id = str(uuid.UUID(int=rng.getrandbits(128)))
        events = []
        now = start

        def advance(low: int, high: int) -> datetime:
            nonlocal now
            now = now + timedelta(seconds=rng.randint(low, high))
            return now

        events.append(self._event(player, EventName.APP_LAUNCH, now, None))
        events.append(self._event(player, EventName.SESSION_START, advance(1, 5), session_id))

        n_games = rng.choices([1, 2, 3, 4, 5], weights=[0.30, 0.30, 0.20, 0.12, 0.08])[0]
        for game_index in range(1, n_games + 1):
            events.append(self._event(
                player, EventName.GAME_START, advance(5, 30), session_id,
                games_in_session=game_index,
            ))

            if rng.random() < 0.25:
                continue_type = "ad" if rng.random() < 0.7 else "gems"
                events.append(self._event(
                    player, EventName.CONTINUE_USED, advance(20, 90), session_id,
                    continue_type=continue_type,
                ))
                if continue_type == "ad":
                    events.extend(self._ad(player, session_id, advance(1, 3), "rewarded"))

            score = rng.randint(50, 5000)
            events.append(self._event(
                player, EventName.GAME_END, advance(30, 240), session_id,
                score=self._maybe_corrupt(score),
            ))
            events.append(self._event(
                player, EventName.CURRENCY_EARNED, advance(0, 2), session_id,
                currency_type="coins", amount=score // 10,
            ))

            if rng.random() < 0.35:
                events.append(self._event(
                    player, EventName.MISSION_COMPLETE, advance(0, 2), session_id,
                    mission_id=f"mission_{rng.randint(1, 30)}",
                ))
            if rng.random() < 0.05:
                events.append(self._event(
                    player, EventName.ACHIEVEMENT_UNLOCK, advance(0, 2), session_id,
                    achievement_id=f"ach_{rng.randint(1, 50)}",
                    achievements_count=rng.randint(1, 50),
                ))
            if rng.random() < 0.15:
                events.extend(self._ad(player, session_id, advance(1, 5), "interstitial"))

        if rng.random() < 0.10:
            events.append(self._event(
                player, EventName.DAILY_MISSION_CYCLE_COMPLETE, advance(1, 10), session_id,
                all_missions_completed=rng.random() < 0.6,
            ))

        if rng.random() < 0.30:
            events.append(self._event(
                player, EventName.CURRENCY_SPENT, advance(5, 30), session_id,
                currency_type=rng.choice(["coins", "gems"]), amount=rng.randint(10, 500),
            ))

        purchase_rate = {"whale": 0.40, "regular": 0.04}.get(player["segment"], 0.005)
        if rng.random() < purchase_rate:
            product_id, product_type, price = rng.choice(IAP_PRODUCTS)
            events.append(self._event(
                player, EventName.IAP_PURCHASE, advance(5, 60), session_id,
                product_id=product_id,
                product_type=product_type,
                price_usd=self._maybe_corrupt(price),
            ))

        if rng.random() < 0.02:
            events.append(self._event(
                player, EventName.ERROR_OCCURRED, advance(1, 30), session_id,
                error_code=rng.choice(ERROR_CODES),
                fatal=rng.random() < 0.2,
            ))

        duration = int((advance(5, 20) - start).total_seconds())
        events.append(self._event(
            player, EventName.SESSION_END, now, session_id,
            session_duration_seconds=self._maybe_corrupt(duration),
        ))
        return events

    def _ad(self, player: Dict[str, Any], session_id: str, at: datetime, ad_type: str) -> List[Dict[str, Any]]:
        shown = self._event(player, EventName.AD_SHOWN, at, session_id, ad_type=ad_type)
        outcome = EventName.AD_COMPLETED if self.rng.random() < 0.8 else EventName.AD_ABANDONED
        closed_at = at + timedelta(seconds=self.rng.randint(5, 30))
        return [shown, self._event(player, outcome, closed_at, session_id, ad_type=ad_type)]


# =============================================================================
# MAIN GENERATOR
# =============================================================================

class GameEventGenerator:
    """
    Seeded generator for a whole event history.

    Example:
        generator = GameEventGenerator(seed=7)
        events = generator.generate(n_players=200, days=30)
    """

    # Chance a player returns on a given day after install
    RETURN_RATES = {"casual": 0.25, "regular": 0.60, "whale": 0.75, "churner": 0.05}

    def __init__(self, seed: int = 42, malformed_rate: float = 0.0):
        self.rng = random.Random(seed)
        self.fake = Faker()
        self.fake.seed_instance(seed)
        self.players = PlayerGenerator(self.rng, self.fake)
        self.sessions = SessionGenerator(self.rng, malformed_rate)

    def generate(
        self,
        n_players: int = 100,
        days: int = 30,
        end_date: Optional[date] = None,
    ) -> List[Dict[str, Any]]:
        """Events for n_players over the trailing `days` days, sorted by time"""
        end_date = end_date or date.today()
        start_date = end_date - timedelta(days=days - 1)
        players = self.players.generate(n_players, start_date, end_date)

        events: List[Dict[str, Any]] = []
        for player in players:
            day = player["install_date"]
            while day <= end_date:
                if day == player["install_date"] or self.rng.random() < self.RETURN_RATES[player["segment"]]:
                    n_sessions = self.rng.choices([1, 2, 3], weights=[0.6, 0.3, 0.1])[0]
                    for _ in range(n_sessions):
                        start = datetime.combine(day, time()) + timedelta(seconds=self.rng.randint(0, 80000))
                        events.extend(self.sessions.generate(player, start))
                day += timedelta(days=1)

        events.sort(key=lambda e: e["created_at"])
        return events

    def to_frame(self, events: List[Dict[str, Any]]) -> pl.DataFrame:
        """Flatten generated events for inspection or export"""
        return pl.DataFrame({
            "player_id": [e["player_id"] for e in events],
            "event_name": [e["event_name"] for e in events],
            "session_id": [e["session_id"] for e in events],
            "platform": [e["platform"] for e in events],
            "app_version": [e["app_version"] for e in events],
            "created_at": [e["created_at"] for e in events],
            "parameters": [str(e["parameters"]) for e in events],
        })

    def save(self, events: List[Dict[str, Any]], output_dir: str = "data/generated") -> Path:
        """Write events as Parquet for offline analysis"""
        path = Path(output_dir)
        path.mkdir(parents=True, exist_ok=True)
        parquet_path = path / "game_events.parquet"
        self.to_frame(events).write_parquet(parquet_path)
        return parquet_path
