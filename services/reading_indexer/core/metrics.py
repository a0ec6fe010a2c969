"""
Prometheus Metrics for Reading Indexer

Exposes operational metrics for monitoring and alerting.

Metrics:
- Store index/load counters
- Aggregation interval and output counters
- Consumer run, delivery and cursor metrics
- Database write counters and latency
"""

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry

# Create a custom registry to avoid conflicts with default registry
REGISTRY = CollectorRegistry()


# =============================================================================
# Store Metrics
# =============================================================================

# Entries found by full tree walks
RECORDS_INDEXED = Gauge(
    "reading_indexer_records_indexed",
    "Number of records in the most recent index of a tree",
    ["root"],
    registry=REGISTRY,
)

# Files skipped during walks or loads
RECORDS_SKIPPED_TOTAL = Counter(
    "reading_indexer_records_skipped_total",
    "Total record files skipped (malformed path or corrupt content)",
    ["reason"],  # reason: path, corrupt
    registry=REGISTRY,
)


# =============================================================================
# Aggregation Metrics
# =============================================================================

INTERVALS_AGGREGATED_TOTAL = Counter(
    "reading_indexer_intervals_aggregated_total",
    "Total intervals reduced by an aggregator",
    ["aggregator"],
    registry=REGISTRY,
)

AGGREGATES_WRITTEN_TOTAL = Counter(
    "reading_indexer_aggregates_written_total",
    "Total aggregate records written",
    ["aggregator"],
    registry=REGISTRY,
)

EXPRESSION_ERRORS_TOTAL = Counter(
    "reading_indexer_expression_errors_total",
    "Total per-record expression evaluation failures",
    ["aggregator", "field"],
    registry=REGISTRY,
)


# =============================================================================
# Consumer Metrics
# =============================================================================

CONSUMER_RUNS_TOTAL = Counter(
    "reading_indexer_consumer_runs_total",
    "Total consumer runs",
    ["consumer", "status"],  # status: success, idle, failed
    registry=REGISTRY,
)

ITEMS_DELIVERED_TOTAL = Counter(
    "reading_indexer_items_delivered_total",
    "Total items handed to a sink and confirmed",
    ["consumer"],
    registry=REGISTRY,
)

# Cursor position (unix seconds)
CURSOR_TIMESTAMP = Gauge(
    "reading_indexer_cursor_timestamp",
    "Timestamp of the last item confirmed by a consumer",
    ["consumer"],
    registry=REGISTRY,
)


# =============================================================================
# Database Metrics
# =============================================================================

# Database write success counter
DB_WRITES_TOTAL = Counter(
    "reading_indexer_db_writes_total",
    "Total database write operations",
    ["table", "status"],  # status: success, error
    registry=REGISTRY,
)

# Database write latency
DB_WRITE_LATENCY = Histogram(
    "reading_indexer_db_write_latency_seconds",
    "Database write latency in seconds",
    ["table"],
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
    registry=REGISTRY,
)


# =============================================================================
# Service Info Metrics
# =============================================================================

SERVICE_INFO = Gauge(
    "reading_indexer_service_info",
    "Service information",
    ["version", "environment"],
    registry=REGISTRY,
)


# =============================================================================
# Helper Functions
# =============================================================================

def set_records_indexed(root: str, count: int) -> None:
    """Set the size of the latest index of a tree."""
    RECORDS_INDEXED.labels(root=root).set(count)


def record_skipped(reason: str) -> None:
    """Count a record file skipped during a walk or load."""
    RECORDS_SKIPPED_TOTAL.labels(reason=reason).inc()


def record_aggregation(aggregator: str, intervals: int, written: int) -> None:
    """Record the outcome of an aggregation run."""
    INTERVALS_AGGREGATED_TOTAL.labels(aggregator=aggregator).inc(intervals)
    AGGREGATES_WRITTEN_TOTAL.labels(aggregator=aggregator).inc(written)


def record_expression_error(aggregator: str, field: str) -> None:
    """Count a failed per-record expression evaluation."""
    EXPRESSION_ERRORS_TOTAL.labels(aggregator=aggregator, field=field).inc()


def record_consumer_run(consumer: str, status: str, delivered: int, cursor_timestamp: int | None) -> None:
    """Record the outcome of a consumer run."""
    CONSUMER_RUNS_TOTAL.labels(consumer=consumer, status=status).inc()
    if delivered:
        ITEMS_DELIVERED_TOTAL.labels(consumer=consumer).inc(delivered)
    if cursor_timestamp is not None:
        CURSOR_TIMESTAMP.labels(consumer=consumer).set(cursor_timestamp)


def record_db_write(table: str, success: bool, latency_seconds: float) -> None:
    """Record database write metrics."""
    status = "success" if success else "error"
    DB_WRITES_TOTAL.labels(table=table, status=status).inc()
    if success:
        DB_WRITE_LATENCY.labels(table=table).observe(latency_seconds)


def set_service_info(version: str, environment: str) -> None:
    """Set service info gauge."""
    SERVICE_INFO.labels(version=version, environment=environment).set(1)
