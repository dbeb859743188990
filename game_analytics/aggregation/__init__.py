"""
Aggregation Module

Per-player counters maintained incrementally from the event log.
"""
from .aggregator import BatchApplyResult, IncrementalAggregator
from .counter_store import CounterStore
from .counters import PlayerCounters
from .deltas import DELTA_TABLE, build_delta, replay
from .stream_consumer import ConsumerConfig, EventStreamConsumer, PollResult

__all__ = [
    "BatchApplyResult",
    "ConsumerConfig",
    "CounterStore",
    "DELTA_TABLE",
    "EventStreamConsumer",
    "IncrementalAggregator",
    "PlayerCounters",
    "PollResult",
    "build_delta",
    "replay",
]
