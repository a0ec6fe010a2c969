# Reading Indexer Core Modules
"""
Core building blocks shared by the store, the aggregator and the consumers.

Modules:
- types: Canonical type definitions (Pydantic models, dataclasses)
- constants: Layout and default values
- errors: Exception hierarchy
- paths: Timestamp <-> record path encoding
- clock: Injectable time sources
- expression: Field formula parser/evaluator
- field_stats: Per-interval accumulation and reducers
"""

from .types import (
    ArchiveCursor,
    ConsumerResult,
    DataRange,
    DataStats,
    FieldDefinition,
    FieldKind,
    OverwriteRule,
    Record,
    Reducer,
    RunStatus,
    Scalar,
    TimestampSource,
    ValueType,
)

from .errors import (
    ConfigurationError,
    ExpressionError,
    SinkError,
)

from .paths import (
    align_timestamp,
    file_timestamp,
    path_for_timestamp,
    prune_empty_dirs,
    timestamp_from_path,
)

from .clock import (
    Clock,
    FixedClock,
    SystemClock,
)

from .expression import (
    Expression,
    parse_expression,
)

from .field_stats import (
    FieldStat,
    REDUCERS,
    coerce_number,
    reduce_stat,
)

__all__ = [
    # Types
    "ArchiveCursor",
    "ConsumerResult",
    "DataRange",
    "DataStats",
    "FieldDefinition",
    "FieldKind",
    "OverwriteRule",
    "Record",
    "Reducer",
    "RunStatus",
    "TimestampSource",
    "Scalar",
    "ValueType",
    # Errors
    "ConfigurationError",
    "ExpressionError",
    "SinkError",
    # Paths
    "align_timestamp",
    "file_timestamp",
    "path_for_timestamp",
    "prune_empty_dirs",
    "timestamp_from_path",
    # Clock
    "Clock",
    "FixedClock",
    "SystemClock",
    # Expressions
    "Expression",
    "parse_expression",
    # Field Stats
    "FieldStat",
    "REDUCERS",
    "coerce_number",
    "reduce_stat",
]
