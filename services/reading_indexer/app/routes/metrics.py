"""
Prometheus Metrics Endpoint

Exposes /metrics endpoint in Prometheus text format.
"""

import logging
from fastapi import APIRouter, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from ...core.metrics import REGISTRY, set_service_info
from ..config import settings


logger = logging.getLogger(__name__)
router = APIRouter()


@router.get("/metrics")
async def prometheus_metrics() -> Response:
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text exposition format.

    Metrics exposed:
    - reading_indexer_records_indexed{root}
    - reading_indexer_records_skipped_total{reason}
    - reading_indexer_intervals_aggregated_total{aggregator}
    - reading_indexer_aggregates_written_total{aggregator}
    - reading_indexer_expression_errors_total{aggregator, field}
    - reading_indexer_consumer_runs_total{consumer, status}
    - reading_indexer_items_delivered_total{consumer}
    - reading_indexer_cursor_timestamp{consumer}
    - reading_indexer_db_writes_total{table, status}
    - reading_indexer_db_write_latency_seconds{table}
    - reading_indexer_service_info{version, environment}
    """
    # Set service info on each scrape (idempotent)
    set_service_info(settings.service_version, settings.environment)

    metrics_output = generate_latest(REGISTRY)

    return Response(
        content=metrics_output,
        media_type=CONTENT_TYPE_LATEST,
    )
