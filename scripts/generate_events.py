"""
Game Event Dataset Loader
Generates synthetic player activity and appends it to the event log.

Usage:
    python scripts/generate_events.py --players 500 --days 30
    python scripts/generate_events.py --players 50 --days 7 --parquet-only
"""

import argparse
import asyncio
import time

from game_analytics.config import get_settings
from game_analytics.config.logging import configure_logging
from game_analytics.data import GameEventGenerator
from game_analytics.database.connection import close_database, get_session_factory, init_database
from game_analytics.pipeline import AnalyticsPipeline

CHUNK_SIZE = 1000


async def load(events, refresh: bool) -> None:
    await init_database()
    try:
        pipeline = AnalyticsPipeline(get_session_factory(), get_settings())

        accepted = rejected = 0
        for offset in range(0, len(events), CHUNK_SIZE):
            result = await pipeline.ingest_batch(events[offset:offset + CHUNK_SIZE])
            accepted += result.accepted_count
            rejected += result.rejected_count
            print(f"   ... {offset + CHUNK_SIZE:,} / {len(events):,}")

        print(f"   ✅ accepted {accepted:,} events, rejected {rejected:,}")

        if refresh:
            # Counters first so the rollup window sees everything just loaded
            while True:
                poll = await pipeline.consumer.run_once()
                if poll.events_read == 0:
                    break
            run = await pipeline.refresh_rollups()
            if run is not None:
                print(f"   ✅ rollup version {run.version_id}: {run.row_count} rows")
    finally:
        await close_database()


def main():
    parser = argparse.ArgumentParser(description="Generate synthetic game events")
    parser.add_argument("--players", type=int, default=200)
    parser.add_argument("--days", type=int, default=30)
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--malformed-rate", type=float, default=0.01)
    parser.add_argument("--parquet-only", action="store_true", help="Write Parquet, skip the database")
    parser.add_argument("--refresh", action="store_true", help="Apply counters and publish rollups after loading")
    args = parser.parse_args()

    configure_logging(role="generator")

    print("=" * 60)
    print("🎮 Game Event Generator")
    print("=" * 60 + "\n")

    started = time.perf_counter()
    generator = GameEventGenerator(seed=args.seed, malformed_rate=args.malformed_rate)
    events = generator.generate(n_players=args.players, days=args.days)
    print(f"📊 Generated {len(events):,} events for {args.players:,} players over {args.days} days")

    if args.parquet_only:
        path = generator.save(events)
        print(f"   📄 {path}")
    else:
        asyncio.run(load(events, args.refresh))

    print(f"\n⏱  Done in {time.perf_counter() - started:.1f}s")


if __name__ == "__main__":
    main()
