# Reading Indexer Aggregator
"""
Aggregator module for reducing raw readings into interval records.

Components:
- IntervalAggregator: Work-range derivation, interval reduction, output writes
- AggregatorConfig: Immutable aggregator configuration
- AggregationResult: Outcome of one run
"""

from .interval_aggregator import AggregationResult, AggregatorConfig, IntervalAggregator

__all__ = [
    "AggregationResult",
    "AggregatorConfig",
    "IntervalAggregator",
]
