"""
Maintenance API endpoints (admin only).

Provides endpoints for:
- Embedding content health and coverage
- Repair of empty or malformed content_text
- Missing embedding discovery
- Queue operations: statistics, dead tasks, requeue, lease reclaim, cleanup
  and embedding metrics

Every endpoint requires a Bearer token of a user with the admin role.
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from receipt_search.auth.dependencies import require_admin
from receipt_search.db.client import get_service_role_client
from receipt_search.schemas.maintenance import (
    ContentHealthResponse,
    EmbeddingCoverageStats,
    MissingEmbeddingsResponse,
    RepairReport,
)
from receipt_search.schemas.queue import (
    EmbeddingMetricsSummary,
    QueueMaintenanceResponse,
    QueueStatistics,
    QueueTaskListResponse,
)
from receipt_search.services import maintenance_service, metrics_service, queue_service
from receipt_search.utils.errors import SearchCoreError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/maintenance",
    tags=["maintenance"],
    dependencies=[Depends(require_admin)],
)


def _internal_error(error: str, e: Exception) -> HTTPException:
    logger.error(f"Maintenance operation {error} failed: {e}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail={"error": error, "details": str(e)}
    )


@router.get(
    "/content-health",
    response_model=ContentHealthResponse,
    summary="Content health per source and content type",
)
async def content_health() -> ContentHealthResponse:
    try:
        rows = await maintenance_service.analyze_content_health(get_service_role_client())
        return ContentHealthResponse(rows=rows, count=len(rows))
    except SearchCoreError:
        raise
    except Exception as e:
        raise _internal_error("content_health_failed", e)


@router.post(
    "/repair",
    response_model=RepairReport,
    summary="Repair empty content_text",
    description="""
    Rewrite empty content_text from the source tables. Returns one outcome
    per record (fixed / skipped / error); a failing record never stops
    the run. Fixed records are queued for re-embedding.
    """
)
async def repair_content(
    source_type: Annotated[Optional[str], Query()] = None,
    limit: Annotated[Optional[int], Query(ge=1, le=10000)] = None,
) -> RepairReport:
    try:
        return await maintenance_service.repair_malformed_content(
            get_service_role_client(), source_type=source_type, limit=limit
        )
    except SearchCoreError:
        raise
    except Exception as e:
        raise _internal_error("repair_failed", e)


@router.post(
    "/repair/line-items",
    response_model=RepairReport,
    summary="Repair line item content",
    description="Replace line item text that is empty or equals the parent merchant name.",
)
async def repair_line_items(
    limit: Annotated[Optional[int], Query(ge=1, le=10000)] = None,
) -> RepairReport:
    try:
        return await maintenance_service.repair_line_item_content(get_service_role_client(), limit=limit)
    except SearchCoreError:
        raise
    except Exception as e:
        raise _internal_error("line_item_repair_failed", e)


@router.get(
    "/missing",
    response_model=MissingEmbeddingsResponse,
    summary="Receipts missing embeddings",
)
async def missing_embeddings(
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> MissingEmbeddingsResponse:
    try:
        receipts = await maintenance_service.find_missing_embeddings(get_service_role_client(), limit=limit)
        return MissingEmbeddingsResponse(receipts=receipts, count=len(receipts))
    except SearchCoreError:
        raise
    except Exception as e:
        raise _internal_error("missing_embeddings_failed", e)


@router.get(
    "/coverage",
    response_model=EmbeddingCoverageStats,
    summary="Receipt embedding coverage",
)
async def coverage() -> EmbeddingCoverageStats:
    try:
        return await maintenance_service.get_embedding_coverage_stats(get_service_role_client())
    except SearchCoreError:
        raise
    except Exception as e:
        raise _internal_error("coverage_failed", e)


# =========================================================
# Queue operations
# =========================================================

@router.get(
    "/queue/stats",
    response_model=QueueStatistics,
    summary="Queue statistics",
)
async def queue_stats() -> QueueStatistics:
    try:
        return await queue_service.get_queue_statistics(get_service_role_client())
    except SearchCoreError:
        raise
    except Exception as e:
        raise _internal_error("queue_stats_failed", e)


@router.get(
    "/queue/dead",
    response_model=QueueTaskListResponse,
    summary="Dead tasks",
    description="Failed tasks with no retries left. They are never dispatched again unless requeued.",
)
async def dead_tasks(
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
) -> QueueTaskListResponse:
    try:
        tasks = await queue_service.get_dead_queue_items(get_service_role_client(), limit=limit)
        return QueueTaskListResponse(tasks=tasks, count=len(tasks))
    except SearchCoreError:
        raise
    except Exception as e:
        raise _internal_error("dead_tasks_failed", e)


@router.post(
    "/queue/requeue",
    response_model=QueueMaintenanceResponse,
    summary="Requeue failed tasks",
    description="Reset the most recently failed tasks to pending with a fresh retry budget.",
)
async def requeue_failed(
    max_items: Annotated[int, Query(ge=1, le=1000)] = 100,
) -> QueueMaintenanceResponse:
    try:
        affected = await queue_service.requeue_failed_items(get_service_role_client(), max_items=max_items)
        return QueueMaintenanceResponse(operation="requeue_failed", affected=affected)
    except SearchCoreError:
        raise
    except Exception as e:
        raise _internal_error("requeue_failed", e)


@router.post(
    "/queue/reclaim",
    response_model=QueueMaintenanceResponse,
    summary="Reclaim expired leases",
)
async def reclaim_leases() -> QueueMaintenanceResponse:
    try:
        affected = await queue_service.reclaim_expired_leases(get_service_role_client())
        return QueueMaintenanceResponse(operation="reclaim_expired_leases", affected=affected)
    except SearchCoreError:
        raise
    except Exception as e:
        raise _internal_error("reclaim_failed", e)


@router.post(
    "/queue/cleanup",
    response_model=QueueMaintenanceResponse,
    summary="Delete old terminal tasks",
)
async def cleanup_queue(
    older_than_hours: Annotated[Optional[int], Query(ge=0, le=24 * 365)] = None,
) -> QueueMaintenanceResponse:
    try:
        affected = await queue_service.cleanup_old_queue_items(
            get_service_role_client(), older_than_hours=older_than_hours
        )
        return QueueMaintenanceResponse(operation="cleanup", affected=affected)
    except SearchCoreError:
        raise
    except Exception as e:
        raise _internal_error("cleanup_failed", e)


@router.post(
    "/queue/cancel",
    response_model=QueueMaintenanceResponse,
    summary="Cancel pending tasks of a source",
)
async def cancel_source_tasks(
    source_type: Annotated[str, Query()],
    source_id: Annotated[str, Query()],
) -> QueueMaintenanceResponse:
    try:
        affected = await queue_service.cancel_queue_items_by_source(
            get_service_role_client(), source_type, source_id
        )
        return QueueMaintenanceResponse(operation="cancel", affected=affected)
    except SearchCoreError:
        raise
    except Exception as e:
        raise _internal_error("cancel_failed", e)


@router.get(
    "/metrics",
    response_model=EmbeddingMetricsSummary,
    summary="Embedding metrics summary",
)
async def embedding_metrics(
    hours: Annotated[int, Query(ge=1, le=24 * 90)] = 24,
    source_type: Annotated[Optional[str], Query()] = None,
) -> EmbeddingMetricsSummary:
    try:
        return await metrics_service.get_embedding_metrics_summary(
            get_service_role_client(), hours=hours, source_type=source_type
        )
    except SearchCoreError:
        raise
    except Exception as e:
        raise _internal_error("metrics_failed", e)
