"""
Embedding generation queue service (embedding_queue).

Producer side:
- enqueue_source_change(): called for every insert/update/delete on a
  watched source table. Never raises, so a queue problem can never fail the
  source write that triggered it.

Consumer side:
- fetch_pending_queue_items(): strict priority bands (high, medium, low),
  FIFO by created_at inside a band, dead tasks excluded
- claim_queue_items(): conditional pending -> processing update per task,
  so exactly one worker owns a task until its lease expires
- update_queue_item_status(): status transitions with retry bookkeeping
- reclaim_expired_leases(): reaper for tasks whose worker disappeared

A task with status=failed and retry_count >= max_retries is dead: it is
never dispatched again and is listed by get_dead_queue_items().
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional, cast

from supabase import Client

from receipt_search.config import settings
from receipt_search.db.paging import fetch_all_rows, iter_row_pages, utc_now_iso
from receipt_search.schemas.queue import QueueStatistics, QueueTask
from receipt_search.utils.constants import (
    OPERATION_PRIORITY,
    PRIORITY_ORDER,
    QUEUE_OPERATIONS,
    QUEUE_TABLE,
    STATUS_CANCELLED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_PROCESSING,
    TERMINAL_STATUSES,
    WATCHED_TABLES,
)
from receipt_search.utils.errors import NotFoundError, TransientWorkerError, ValidationError

logger = logging.getLogger(__name__)

# Candidate rows read per priority band while skipping dead tasks
_FETCH_PAGE_SIZE = 100


def _parse_timestamp(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))


def _is_dispatchable(row: Dict[str, Any]) -> bool:
    retry_count = int(row.get("retry_count") or 0)
    max_retries = row.get("max_retries")
    if max_retries is None:
        max_retries = settings.QUEUE_MAX_RETRIES
    return retry_count < int(max_retries)


# =========================================================
# Producer
# =========================================================

async def enqueue_task(
    supabase_client: Client,
    source_type: str,
    source_id: str,
    operation: str,
    metadata: Optional[Dict[str, Any]] = None,
    priority: Optional[str] = None,
) -> QueueTask:
    """
    Insert one pending task.

    Priority defaults from the operation: insert -> high, update -> medium,
    delete -> low. No deduplication: duplicate tasks for one source are
    absorbed by the idempotent embedding upsert.

    Raises:
        ValidationError: Unknown operation or priority.
    """
    if operation not in QUEUE_OPERATIONS:
        raise ValidationError(f"Unknown queue operation '{operation}'")

    priority = priority or OPERATION_PRIORITY[operation]
    if priority not in PRIORITY_ORDER:
        raise ValidationError(f"Unknown queue priority '{priority}'")

    task_data = {
        "source_type": source_type,
        "source_id": source_id,
        "operation": operation,
        "priority": priority,
        "status": STATUS_PENDING,
        "retry_count": 0,
        "max_retries": settings.QUEUE_MAX_RETRIES,
        "metadata": metadata or {},
    }

    result = supabase_client.table(QUEUE_TABLE).insert(task_data).execute()

    if not result.data:
        raise Exception("Failed to enqueue embedding task: no data returned")

    task = QueueTask.from_row(cast(Dict[str, Any], result.data[0]))

    logger.info(
        f"Enqueued task id={task.id}: source_type={source_type}, source_id={source_id}, "
        f"operation={operation}, priority={priority}"
    )

    return task


async def enqueue_source_change(
    supabase_client: Client,
    table: str,
    operation: str,
    record_id: Optional[str],
    provenance: Optional[Dict[str, Any]] = None,
) -> Optional[QueueTask]:
    """
    Record a change on a watched source table as one queue task.

    This is the queue trigger. It must never raise: the change event comes
    from the source table's own write path, and a queue failure must not
    undo or block that write. Failures are logged at error level and
    reported as None.

    Args:
        supabase_client: Service role Supabase client
        table: Name of the changed table (receipts, claims, line_items, ...)
        operation: insert / update / delete (case-insensitive)
        record_id: Primary key of the changed row
        provenance: Extra trigger metadata stored on the task

    Returns:
        The created task, or None if nothing was enqueued.
    """
    try:
        source_type = WATCHED_TABLES.get(table)
        if source_type is None:
            logger.warning(f"Ignoring change on unwatched table '{table}'")
            return None

        normalized_operation = (operation or "").lower()
        if normalized_operation not in QUEUE_OPERATIONS or not record_id:
            logger.warning(
                f"Ignoring malformed change event: table={table}, "
                f"operation={operation}, record_id={record_id}"
            )
            return None

        metadata = {
            "table": table,
            "trigger_operation": normalized_operation,
            "received_at": utc_now_iso(),
            **(provenance or {}),
        }

        return await enqueue_task(
            supabase_client=supabase_client,
            source_type=source_type,
            source_id=str(record_id),
            operation=normalized_operation,
            metadata=metadata,
        )

    except Exception as e:
        logger.error(
            f"Failed to enqueue change for table={table}, record_id={record_id}: {e}",
            exc_info=True,
        )
        return None


# =========================================================
# Consumer
# =========================================================

async def fetch_pending_queue_items(
    supabase_client: Client,
    limit: int = 10,
    priority_filter: Optional[str] = None,
) -> List[QueueTask]:
    """
    Return up to `limit` dispatchable pending tasks in admission order.

    Admission order is the only ordering contract of the queue: every
    high-priority task precedes every medium one, medium precedes low, and
    inside a band earlier created_at comes first. Tasks that exhausted their
    retries are skipped.

    Args:
        supabase_client: Service role Supabase client
        limit: Maximum number of tasks
        priority_filter: Restrict to one priority band

    Raises:
        ValidationError: Unknown priority_filter.
    """
    if priority_filter is not None and priority_filter not in PRIORITY_ORDER:
        raise ValidationError(f"Unknown queue priority '{priority_filter}'")

    if limit <= 0:
        return []

    bands = [priority_filter] if priority_filter else list(PRIORITY_ORDER)
    tasks: List[QueueTask] = []

    for band in bands:
        def make_query(band: str = band):
            return (
                supabase_client.table(QUEUE_TABLE)
                .select("*")
                .eq("status", STATUS_PENDING)
                .eq("priority", band)
                .order("created_at", desc=False)
                .order("id", desc=False)
            )

        for page in iter_row_pages(make_query, page_size=_FETCH_PAGE_SIZE):
            for row in page:
                if _is_dispatchable(row):
                    tasks.append(QueueTask.from_row(row))
                    if len(tasks) >= limit:
                        return tasks

    logger.debug(f"Fetched {len(tasks)} pending tasks (limit={limit}, priority={priority_filter})")
    return tasks


async def claim_queue_items(
    supabase_client: Client,
    worker_id: str,
    limit: int = 5,
    lease_seconds: Optional[int] = None,
) -> List[QueueTask]:
    """
    Atomically take ownership of up to `limit` pending tasks.

    Candidates come from fetch_pending_queue_items(); each is then moved to
    processing with an UPDATE conditioned on status=pending. A task another
    worker claimed in between matches zero rows and is skipped, so a task is
    owned by at most one worker at a time.

    Returns:
        The tasks this worker now owns, in admission order.
    """
    lease_seconds = lease_seconds or settings.QUEUE_LEASE_SECONDS
    candidates = await fetch_pending_queue_items(supabase_client, limit=limit)

    claimed: List[QueueTask] = []
    for candidate in candidates:
        now = datetime.now(timezone.utc)
        result = (
            supabase_client.table(QUEUE_TABLE)
            .update({
                "status": STATUS_PROCESSING,
                "worker_id": worker_id,
                "processing_started_at": now.isoformat(),
                "lease_expires_at": (now + timedelta(seconds=lease_seconds)).isoformat(),
                "updated_at": now.isoformat(),
            })
            .eq("id", candidate.id)
            .eq("status", STATUS_PENDING)
            .execute()
        )
        if result.data:
            claimed.append(QueueTask.from_row(cast(Dict[str, Any], result.data[0])))
        else:
            logger.debug(f"Task {candidate.id} was claimed by another worker")

    logger.info(f"Worker {worker_id} claimed {len(claimed)} of {len(candidates)} candidate tasks")
    return claimed


async def get_queue_item(supabase_client: Client, task_id: str) -> QueueTask:
    """
    Fetch one task by id.

    Raises:
        NotFoundError: If the task does not exist.
    """
    result = supabase_client.table(QUEUE_TABLE).select("*").eq("id", task_id).execute()
    if not result.data:
        raise NotFoundError(f"Queue task {task_id} not found")
    return QueueTask.from_row(cast(Dict[str, Any], result.data[0]))


async def update_queue_item_status(
    supabase_client: Client,
    task_id: str,
    status: str,
    error_message: Optional[str] = None,
) -> QueueTask:
    """
    Transition a task to a new status.

    - failed: retry_count is incremented and error_message recorded
    - completed / failed: processed_at is stamped
    - leaving processing clears the worker lease

    Re-marking a task that is already in the requested terminal state only
    overwrites error_message; the retry counter and processed_at are not
    touched again.

    Raises:
        ValidationError: Unknown status.
        NotFoundError: Unknown task.
        TransientWorkerError: The task changed concurrently; retry the call.
    """
    if status not in (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED):
        raise ValidationError(f"Unknown queue status '{status}'")

    current = await get_queue_item(supabase_client, task_id)
    now = utc_now_iso()
    changes: Dict[str, Any] = {"status": status, "updated_at": now}

    if error_message is not None or status == STATUS_FAILED:
        changes["error_message"] = error_message

    repeated_terminal = current.status == status and status in TERMINAL_STATUSES

    if not repeated_terminal:
        if status == STATUS_FAILED:
            changes["retry_count"] = current.retry_count + 1
        if status in TERMINAL_STATUSES:
            changes["processed_at"] = now
        if status != STATUS_PROCESSING:
            changes["worker_id"] = None
            changes["lease_expires_at"] = None

    # Compare-and-set on the status we read
    result = (
        supabase_client.table(QUEUE_TABLE)
        .update(changes)
        .eq("id", task_id)
        .eq("status", current.status)
        .execute()
    )

    if not result.data:
        raise TransientWorkerError(f"Queue task {task_id} changed concurrently")

    task = QueueTask.from_row(cast(Dict[str, Any], result.data[0]))

    if task.is_dead and not repeated_terminal:
        logger.warning(
            f"Queue task {task.id} is dead after {task.retry_count} attempts "
            f"(source_type={task.source_type}, source_id={task.source_id}): {task.error_message}"
        )
    else:
        logger.info(f"Queue task {task.id} -> {status} (retry_count={task.retry_count})")

    return task


async def requeue_retryable_failures(supabase_client: Client, limit: int = 100) -> int:
    """
    Reset failed tasks that still have retries left back to pending.

    Dead tasks (retry_count >= max_retries) are left alone.

    Returns:
        Number of tasks requeued.
    """
    rows = fetch_all_rows(
        lambda: (
            supabase_client.table(QUEUE_TABLE)
            .select("id, retry_count, max_retries")
            .eq("status", STATUS_FAILED)
            .order("updated_at", desc=False)
        )
    )
    retryable = [row for row in rows if _is_dispatchable(row)][:limit]

    requeued = 0
    for row in retryable:
        result = (
            supabase_client.table(QUEUE_TABLE)
            .update({"status": STATUS_PENDING, "processed_at": None, "updated_at": utc_now_iso()})
            .eq("id", row["id"])
            .eq("status", STATUS_FAILED)
            .execute()
        )
        requeued += len(result.data or [])

    if requeued:
        logger.info(f"Requeued {requeued} failed tasks with retries left")
    return requeued


async def reclaim_expired_leases(
    supabase_client: Client,
    now: Optional[datetime] = None,
) -> int:
    """
    Return processing tasks whose lease expired to pending.

    A worker that crashed mid-task never completes it; once its lease runs
    out the task becomes claimable again.

    Returns:
        Number of tasks reclaimed.
    """
    cutoff = (now or datetime.now(timezone.utc)).isoformat()
    result = (
        supabase_client.table(QUEUE_TABLE)
        .update({
            "status": STATUS_PENDING,
            "worker_id": None,
            "lease_expires_at": None,
            "processing_started_at": None,
            "updated_at": utc_now_iso(),
        })
        .eq("status", STATUS_PROCESSING)
        .lt("lease_expires_at", cutoff)
        .execute()
    )
    reclaimed = len(result.data or [])
    if reclaimed:
        logger.warning(f"Reclaimed {reclaimed} tasks with expired leases")
    return reclaimed


async def requeue_failed_items(supabase_client: Client, max_items: int = 100) -> int:
    """
    Operator action: give the most recently failed tasks a fresh retry budget.

    Unlike requeue_retryable_failures() this also revives dead tasks, so it
    is only exposed on the admin surface.

    Returns:
        Number of tasks requeued.
    """
    result = (
        supabase_client.table(QUEUE_TABLE)
        .select("id")
        .eq("status", STATUS_FAILED)
        .order("updated_at", desc=True)
        .limit(max_items)
        .execute()
    )
    ids = [row["id"] for row in cast(List[Dict[str, Any]], result.data or [])]
    if not ids:
        return 0

    updated = (
        supabase_client.table(QUEUE_TABLE)
        .update({
            "status": STATUS_PENDING,
            "retry_count": 0,
            "error_message": None,
            "worker_id": None,
            "lease_expires_at": None,
            "processed_at": None,
            "updated_at": utc_now_iso(),
        })
        .in_("id", ids)
        .eq("status", STATUS_FAILED)
        .execute()
    )
    count = len(updated.data or [])
    logger.info(f"Operator requeued {count} failed tasks")
    return count


async def cancel_queue_items_by_source(
    supabase_client: Client,
    source_type: str,
    source_id: str,
) -> int:
    """Cancel pending tasks of a source (e.g. superseded by a delete)."""
    now = utc_now_iso()
    result = (
        supabase_client.table(QUEUE_TABLE)
        .update({"status": STATUS_CANCELLED, "processed_at": now, "updated_at": now})
        .eq("source_type", source_type)
        .eq("source_id", source_id)
        .eq("status", STATUS_PENDING)
        .execute()
    )
    return len(result.data or [])


async def cleanup_old_queue_items(
    supabase_client: Client,
    older_than_hours: Optional[int] = None,
) -> int:
    """
    Delete terminal tasks processed before the retention window.

    Dead tasks are kept until an operator requeues them or they age out
    like any other terminal row.

    Returns:
        Number of rows deleted.
    """
    hours = older_than_hours if older_than_hours is not None else settings.QUEUE_CLEANUP_HOURS
    cutoff = (datetime.now(timezone.utc) - timedelta(hours=hours)).isoformat()
    result = (
        supabase_client.table(QUEUE_TABLE)
        .delete()
        .in_("status", sorted(TERMINAL_STATUSES))
        .lt("processed_at", cutoff)
        .execute()
    )
    deleted = len(result.data or [])
    logger.info(f"Cleaned up {deleted} queue rows older than {hours}h")
    return deleted


async def get_dead_queue_items(supabase_client: Client, limit: int = 50) -> List[QueueTask]:
    """List permanently failed tasks for operator follow-up, newest first."""
    rows = fetch_all_rows(
        lambda: (
            supabase_client.table(QUEUE_TABLE)
            .select("*")
            .eq("status", STATUS_FAILED)
            .order("updated_at", desc=True)
        )
    )
    dead = [QueueTask.from_row(row) for row in rows if not _is_dispatchable(row)]
    return dead[:limit]


def summarize_queue(rows: List[Dict[str, Any]], now: Optional[datetime] = None) -> QueueStatistics:
    """Aggregate queue rows into QueueStatistics."""
    now = now or datetime.now(timezone.utc)
    counts = {status: 0 for status in (STATUS_PENDING, STATUS_PROCESSING, STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED)}
    dead = 0
    durations: List[float] = []
    oldest_pending: Optional[datetime] = None

    for row in rows:
        status = row.get("status")
        if status in counts:
            counts[status] += 1
        if status == STATUS_FAILED and not _is_dispatchable(row):
            dead += 1

        started = _parse_timestamp(row.get("processing_started_at"))
        finished = _parse_timestamp(row.get("processed_at"))
        if status == STATUS_COMPLETED and started and finished:
            durations.append((finished - started).total_seconds() * 1000)

        if status == STATUS_PENDING:
            created = _parse_timestamp(row.get("created_at"))
            if created and (oldest_pending is None or created < oldest_pending):
                oldest_pending = created

    return QueueStatistics(
        total_pending=counts[STATUS_PENDING],
        total_processing=counts[STATUS_PROCESSING],
        total_completed=counts[STATUS_COMPLETED],
        total_failed=counts[STATUS_FAILED],
        total_cancelled=counts[STATUS_CANCELLED],
        total_dead=dead,
        avg_processing_time_ms=round(sum(durations) / len(durations), 2) if durations else None,
        oldest_pending_age_hours=(
            round((now - oldest_pending).total_seconds() / 3600, 2) if oldest_pending else None
        ),
    )


async def get_queue_statistics(supabase_client: Client) -> QueueStatistics:
    """Counts per status, dead tasks, average processing time and backlog age."""
    rows = fetch_all_rows(
        lambda: (
            supabase_client.table(QUEUE_TABLE)
            .select("status, retry_count, max_retries, created_at, processing_started_at, processed_at")
            .order("created_at", desc=False)
        )
    )
    return summarize_queue(rows)
