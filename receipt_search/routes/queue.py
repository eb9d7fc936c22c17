"""
Embedding queue API endpoints.

Provides endpoints for:
- POST /queue/webhook: Supabase Database Webhook for watched source tables
  (X-Webhook-Secret)
- Worker operations: claim, list pending, status transitions
  (X-Worker-Token)
"""

import logging
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from receipt_search.auth.dependencies import verify_webhook_secret, verify_worker_token
from receipt_search.db.client import get_service_role_client
from receipt_search.schemas.queue import (
    DatabaseWebhookPayload,
    QueueClaimRequest,
    QueuePriority,
    QueueStatusUpdateRequest,
    QueueTask,
    QueueTaskListResponse,
    WebhookAckResponse,
)
from receipt_search.services.queue_service import (
    claim_queue_items,
    enqueue_source_change,
    fetch_pending_queue_items,
    update_queue_item_status,
)
from receipt_search.utils.errors import SearchCoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/queue", tags=["queue"])


@router.post(
    "/webhook",
    response_model=WebhookAckResponse,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[Depends(verify_webhook_secret)],
    summary="Source table change webhook",
    description="""
    Receives INSERT / UPDATE / DELETE events of watched source tables and
    enqueues one embedding task per event.

    Always answers 202: a queue failure is logged and reported as
    queued=false, it never makes the database retry or fail the write.
    """
)
async def source_change_webhook(payload: DatabaseWebhookPayload) -> WebhookAckResponse:
    row = payload.record if payload.type != "DELETE" else payload.old_record
    record_id = (row or {}).get("id")

    try:
        supabase_client = get_service_role_client()
    except Exception as e:
        logger.error(f"No database client for {payload.table} change webhook: {e}", exc_info=True)
        return WebhookAckResponse(queued=False, task_id=None)

    task = await enqueue_source_change(
        supabase_client,
        table=payload.table,
        operation=payload.type,
        record_id=str(record_id) if record_id is not None else None,
        provenance={"schema": payload.schema_name},
    )

    return WebhookAckResponse(queued=task is not None, task_id=task.id if task else None)


@router.get(
    "/pending",
    response_model=QueueTaskListResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(verify_worker_token)],
    summary="List dispatchable pending tasks",
    description="""
    Pending tasks in admission order: high before medium before low,
    oldest first within a priority. Tasks out of retries are never listed.
    """
)
async def list_pending_tasks(
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
    priority: Annotated[Optional[QueuePriority], Query()] = None,
) -> QueueTaskListResponse:
    try:
        tasks = await fetch_pending_queue_items(get_service_role_client(), limit=limit, priority_filter=priority)
        return QueueTaskListResponse(tasks=tasks, count=len(tasks))

    except SearchCoreError:
        raise
    except Exception as e:
        logger.error(f"Fetching pending tasks failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "queue_fetch_failed", "details": str(e)}
        )


@router.post(
    "/claim",
    response_model=QueueTaskListResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(verify_worker_token)],
    summary="Claim pending tasks",
    description="""
    Move up to `limit` pending tasks to processing for `worker_id`, with a
    lease. A task is owned by one worker until it is completed, failed or
    its lease expires.
    """
)
async def claim_tasks(request: QueueClaimRequest) -> QueueTaskListResponse:
    try:
        tasks = await claim_queue_items(
            get_service_role_client(),
            worker_id=request.worker_id,
            limit=request.limit,
            lease_seconds=request.lease_seconds,
        )
        return QueueTaskListResponse(tasks=tasks, count=len(tasks))

    except SearchCoreError:
        raise
    except Exception as e:
        logger.error(f"Claiming tasks failed for worker_id={request.worker_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "queue_claim_failed", "details": str(e)}
        )


@router.patch(
    "/{task_id}/status",
    response_model=QueueTask,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(verify_worker_token)],
    summary="Update task status",
    description="""
    Transition a task. `failed` increments retry_count; `completed` and
    `failed` stamp processed_at. Repeating a terminal status only updates
    error_message.
    """
)
async def update_task_status(task_id: str, request: QueueStatusUpdateRequest) -> QueueTask:
    try:
        return await update_queue_item_status(
            get_service_role_client(),
            task_id,
            request.status,
            error_message=request.error_message,
        )

    except SearchCoreError:
        raise
    except Exception as e:
        logger.error(f"Status update failed for task {task_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "queue_update_failed", "details": str(e)}
        )
