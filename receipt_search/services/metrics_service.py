"""
Embedding metrics service (embedding_metrics).

One append-only row per processing attempt. Metrics are observational:
a failure to record one is logged and never fails the task it describes.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from supabase import Client

from receipt_search.db.paging import fetch_all_rows
from receipt_search.schemas.queue import EmbeddingMetric, EmbeddingMetricsSummary
from receipt_search.utils.constants import METRICS_TABLE

logger = logging.getLogger(__name__)


async def record_embedding_metric(supabase_client: Client, metric: EmbeddingMetric) -> bool:
    """
    Append one metrics row.

    Returns:
        True if the row was written, False if the insert failed.
    """
    try:
        supabase_client.table(METRICS_TABLE).insert(metric.model_dump()).execute()
        return True
    except Exception as e:
        logger.error(
            f"Failed to record embedding metric for source_type={metric.source_type}, "
            f"source_id={metric.source_id}: {e}"
        )
        return False


def summarize_metrics(rows: List[Dict[str, Any]]) -> EmbeddingMetricsSummary:
    """Aggregate metrics rows into success rate, latency and error breakdown."""
    total = len(rows)
    successful = sum(1 for row in rows if row.get("success"))
    durations = [int(row.get("processing_time_ms") or 0) for row in rows]

    error_breakdown: Dict[str, int] = {}
    for row in rows:
        if row.get("success"):
            continue
        error_type = row.get("error_type") or "unknown"
        error_breakdown[error_type] = error_breakdown.get(error_type, 0) + 1

    return EmbeddingMetricsSummary(
        total_attempts=total,
        successful_attempts=successful,
        failed_attempts=total - successful,
        success_rate=round(successful * 100 / total, 2) if total else None,
        avg_processing_time_ms=round(sum(durations) / total, 2) if total else None,
        total_tokens_used=sum(int(row.get("tokens_used") or 0) for row in rows),
        error_breakdown=error_breakdown,
    )


async def get_embedding_metrics_summary(
    supabase_client: Client,
    hours: int = 24,
    source_type: Optional[str] = None,
) -> EmbeddingMetricsSummary:
    """Summarize the attempts recorded in the last `hours` hours."""
    since = (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()

    def make_query():
        query = (
            supabase_client.table(METRICS_TABLE)
            .select("success, processing_time_ms, tokens_used, error_type")
            .gte("created_at", since)
        )
        if source_type:
            query = query.eq("source_type", source_type)
        return query.order("created_at", desc=False)

    return summarize_metrics(fetch_all_rows(make_query))
