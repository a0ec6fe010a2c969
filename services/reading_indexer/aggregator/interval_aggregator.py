"""
Interval Aggregator

Folds raw readings from a source store into fixed-period aggregate records
written to the aggregator's own output store.

Responsibilities:
- Derive the work range from the output store (its last record is the cursor)
- Collect per-field statistics for every interval in the range
- Reduce statistics with the configured reducer and round floats
- Write one aggregate record per interval that produced any value

Interval semantics:
- Interval `s` covers raw records with timestamp in (s, s + period]
- An aggregate record is stamped with `s`
- Re-aggregating an interval overwrites its record
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..core.clock import Clock, SystemClock
from ..core.constants import (
    AGGREGATOR_DATA_DIR,
    CONSTANT_AGGREGATION_PERIOD,
    CONSTANT_AGGREGATOR_ID,
    DEFAULT_AGGREGATION_PERIOD,
    DEFAULT_AGGREGATOR_WORKERS,
)
from ..core.errors import ConfigurationError, ExpressionError
from ..core.expression import Expression, parse_expression
from ..core.field_stats import FieldStat, coerce_number, reduce_stat
from ..core.metrics import record_aggregation, record_expression_error
from ..core.paths import align_timestamp
from ..core.types import DataRange, FieldDefinition, FieldKind, Record, Reducer, Scalar
from ..store.time_indexed_store import TimeIndexedStore


logger = logging.getLogger(__name__)

# Reducers that only make sense over numeric values
NUMERIC_REDUCERS = frozenset({Reducer.SUM, Reducer.MIN, Reducer.MAX, Reducer.AVERAGE})


class AggregatorConfig(BaseModel):
    """Configuration of one interval aggregator."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1, description="Unique aggregator name")
    source_path: Path = Field(..., description="Root of the raw record tree")
    output_path: Path = Field(..., description="Aggregator root; records go to <output_path>/data")
    period: int = Field(default=DEFAULT_AGGREGATION_PERIOD, gt=0, description="Interval length (seconds)")
    max_intervals_per_run: int = Field(default=0, ge=0, description="0 = unlimited")
    fill_data_gaps: bool = Field(default=False, description="Reserved, currently has no effect")
    fields: list[FieldDefinition] = Field(..., min_length=1)
    workers: int = Field(default=DEFAULT_AGGREGATOR_WORKERS, ge=1)

    @model_validator(mode="after")
    def _unique_field_names(self) -> "AggregatorConfig":
        names = [f.name for f in self.fields]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"duplicate field names: {', '.join(duplicates)}")
        return self

    @property
    def data_path(self) -> Path:
        return self.output_path / AGGREGATOR_DATA_DIR


@dataclass
class AggregationResult:
    """Result of an aggregation run."""

    name: str
    start: int = 0
    end: int = 0
    intervals_processed: int = 0
    records_written: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.errors


class IntervalAggregator:
    """
    Reduces a raw record store into per-interval aggregate records.

    Usage:
        aggregator = IntervalAggregator(config)
        result = aggregator.aggregate()

    Expressions are parsed at construction, so an invalid formula raises
    ConfigurationError before any data is touched.
    """

    def __init__(
        self,
        config: AggregatorConfig,
        source: Optional[TimeIndexedStore] = None,
        output: Optional[TimeIndexedStore] = None,
        clock: Optional[Clock] = None,
    ):
        self.config = config
        self.source = source or TimeIndexedStore(config.source_path)
        self.output = output or TimeIndexedStore(config.data_path)
        self.clock = clock or SystemClock()

        self._expressions: dict[str, Expression] = {}
        for definition in config.fields:
            if definition.kind != FieldKind.EXPRESSION:
                continue
            try:
                self._expressions[definition.name] = parse_expression(definition.expression)
            except ExpressionError as e:
                raise ConfigurationError(
                    f"aggregator '{config.name}' field '{definition.name}': {e}"
                ) from e

        if config.fill_data_gaps:
            logger.info(f"[{config.name}] fill_data_gaps is set but gap filling is not supported; ignoring")

    @property
    def name(self) -> str:
        return self.config.name

    # =========================================================================
    # Run
    # =========================================================================

    def get_aggregation_range(self) -> DataRange:
        """
        Interval starts to process this run, as [start, end).

        start resumes at the end of the last written interval (or at the
        first source record when that is later). end is bounded by the clock,
        the last source record and the per-run interval limit. Both are
        aligned down to the period.
        """
        period = self.config.period
        output_range = self.output.get_range()
        start = 0 if output_range.is_empty else output_range.end + period

        now = self.clock.now()
        source_stats = self.source.get_stats(start, now, refresh=True)
        if source_stats.range.is_empty:
            return DataRange()

        start = align_timestamp(max(start, source_stats.range.start), period)
        end = min(now, source_stats.range.end)
        if self.config.max_intervals_per_run > 0:
            end = min(end, start + self.config.max_intervals_per_run * period)
        end = align_timestamp(end, period)
        return DataRange(start=start, end=end)

    def aggregate(self) -> AggregationResult:
        """
        Aggregate every pending interval.

        Intervals are reduced on a bounded thread pool, then written in
        ascending order. A failed write stops the run before any later
        interval is written, so the output store's last record stays a valid
        resume point and the next run retries from the failed interval.
        """
        started = time.monotonic()
        self.output.build_index(refresh=True)
        work = self.get_aggregation_range()
        result = AggregationResult(name=self.name, start=work.start, end=work.end)

        starts = list(range(work.start, work.end, self.config.period))
        if not starts:
            result.duration_seconds = time.monotonic() - started
            return result

        logger.info(f"[{self.name}] Aggregating {len(starts)} intervals from {work.start} to {work.end}")

        reduced: dict[int, Optional[Record]] = {}
        with ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix=f"agg-{self.name}") as pool:
            futures = {pool.submit(self.reduce_interval, s): s for s in starts}
            for future in as_completed(futures):
                reduced[futures[future]] = future.result()
                result.intervals_processed += 1

        for interval_start in starts:
            record = reduced[interval_start]
            if record is None:
                continue
            try:
                self.output.write_record(record)
            except OSError as e:
                logger.error(
                    f"[{self.name}] Failed to write interval {interval_start}: {e}; "
                    f"later intervals are left for the next run"
                )
                result.errors.append(f"{interval_start}: {e}")
                break
            result.records_written += 1

        record_aggregation(self.name, result.intervals_processed, result.records_written)
        result.duration_seconds = time.monotonic() - started
        logger.info(
            f"[{self.name}] Aggregation complete: {result.records_written}/{result.intervals_processed} "
            f"intervals written, {len(result.errors)} errors ({result.duration_seconds:.2f}s)"
        )
        return result

    # =========================================================================
    # Single Interval
    # =========================================================================

    def aggregate_interval(self, start: int) -> Optional[Record]:
        """
        Reduce the interval starting at `start` and write its record.

        Returns:
            The written record, or None if every field reduced to null
        """
        record = self.reduce_interval(start)
        if record is not None:
            self.output.write_record(record)
        return record

    def reduce_interval(self, start: int) -> Optional[Record]:
        """Aggregate record of the interval starting at `start`, without writing it."""
        records = self.source.get_records(start + 1, start + self.config.period)
        stats = self.collect_stats(records)

        values: dict[str, Scalar] = {}
        for definition in self.config.fields:
            stat = stats.get(definition.name)
            if stat is None:
                continue
            value = reduce_stat(stat, definition.reducer, definition.precision)
            if value is not None:
                values[definition.name] = value

        if not values:
            return None
        return Record(timestamp=start, fields=values)

    def collect_stats(self, records: dict[int, dict[str, Scalar]]) -> dict[str, FieldStat]:
        """Fold raw records into one FieldStat per output field."""
        stats: dict[str, FieldStat] = {}
        for timestamp, fields in records.items():
            if not fields:
                continue
            for definition in self.config.fields:
                value = self.field_value(definition, fields)
                if value is None:
                    continue
                stat = stats.setdefault(definition.name, FieldStat())
                if not stat.add(value) and definition.reducer in NUMERIC_REDUCERS:
                    logger.warning(
                        f"[{self.name}] Non-numeric value {value!r} for field '{definition.name}' "
                        f"at {timestamp}; excluded from {definition.reducer.value}"
                    )
        return stats

    def field_value(self, definition: FieldDefinition, fields: dict[str, Scalar]) -> Scalar:
        """Per-record value of an output field, or None if it has none."""
        kind = definition.kind

        if kind == FieldKind.EXPRESSION:
            expression = self._expressions[definition.name]
            variables = {}
            for key, raw in fields.items():
                number = coerce_number(raw)
                if number is not None:
                    variables[key] = number
            try:
                return expression.evaluate(variables)
            except ExpressionError as e:
                logger.warning(f"[{self.name}] Field '{definition.name}': {e}")
                record_expression_error(self.name, definition.name)
                return None

        if kind == FieldKind.FIELD:
            return fields.get(definition.field)

        return self.resolve_constant(definition.constant)

    def resolve_constant(self, constant: Scalar) -> Scalar:
        if constant == CONSTANT_AGGREGATOR_ID:
            return self.name
        if constant == CONSTANT_AGGREGATION_PERIOD:
            return self.config.period
        return constant
