"""
Embedding queue worker.

One run:
1. Return tasks with expired leases to pending
2. Return failed tasks that still have retries left to pending
3. Claim up to `batch_size` tasks in admission order
4. Process each task on its own: a failing task is marked failed and the
   batch continues

A task is marked completed only after every embedding of its source was
written. Every attempt appends one embedding_metrics row.
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol, Tuple

import httpx
from google.genai import errors as genai_errors
from supabase import Client

from receipt_search.config import settings
from receipt_search.schemas.queue import EmbeddingMetric, QueueTask
from receipt_search.services import embedding_store, metrics_service, queue_service
from receipt_search.services.content_extractors import load_source_contents
from receipt_search.services.embedding_client import estimate_tokens
from receipt_search.utils.constants import STATUS_COMPLETED, STATUS_FAILED
from receipt_search.utils.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


class Embedder(Protocol):
    model: str

    async def embed(self, text: str, task_type: str = ...) -> List[float]:
        ...


def classify_error(error: BaseException) -> str:
    """Map an exception to an embedding_metrics.error_type."""
    if isinstance(error, genai_errors.APIError) and error.code == 429:
        return "api_limit"
    if isinstance(error, ValidationError):
        return "validation"
    if isinstance(error, NotFoundError):
        return "not_found"
    if isinstance(error, (httpx.TransportError, ConnectionError, TimeoutError)):
        return "network"
    return "processing_error"


@dataclass
class TaskOutcome:
    task_id: str
    success: bool
    embeddings_written: int = 0
    error_type: Optional[str] = None
    error_message: Optional[str] = None


@dataclass
class WorkerRunSummary:
    """Counters of one worker run."""
    worker_id: str
    reclaimed: int = 0
    requeued: int = 0
    claimed: int = 0
    completed: int = 0
    failed: int = 0
    outcomes: List[TaskOutcome] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "worker_id": self.worker_id,
            "reclaimed": self.reclaimed,
            "requeued": self.requeued,
            "claimed": self.claimed,
            "completed": self.completed,
            "failed": self.failed,
        }


class EmbeddingQueueWorker:
    """Drains embedding_queue into unified_embeddings."""

    def __init__(
        self,
        supabase_client: Client,
        embedder: Embedder,
        worker_id: Optional[str] = None,
        batch_size: Optional[int] = None,
        lease_seconds: Optional[int] = None,
    ):
        self.supabase_client = supabase_client
        self.embedder = embedder
        self.worker_id = worker_id or settings.WORKER_ID or f"worker-{uuid.uuid4().hex[:8]}"
        self.batch_size = batch_size or settings.WORKER_BATCH_SIZE
        self.lease_seconds = lease_seconds or settings.QUEUE_LEASE_SECONDS

    async def run_once(self) -> WorkerRunSummary:
        """Reclaim, requeue, claim and process one batch."""
        summary = WorkerRunSummary(worker_id=self.worker_id)

        summary.reclaimed = await queue_service.reclaim_expired_leases(self.supabase_client)
        summary.requeued = await queue_service.requeue_retryable_failures(self.supabase_client)

        tasks = await queue_service.claim_queue_items(
            self.supabase_client,
            worker_id=self.worker_id,
            limit=self.batch_size,
            lease_seconds=self.lease_seconds,
        )
        summary.claimed = len(tasks)

        for task in tasks:
            outcome = await self.process_task(task)
            summary.outcomes.append(outcome)
            if outcome.success:
                summary.completed += 1
            else:
                summary.failed += 1

        logger.info(
            f"Worker {self.worker_id} run finished: claimed={summary.claimed}, "
            f"completed={summary.completed}, failed={summary.failed}, "
            f"reclaimed={summary.reclaimed}, requeued={summary.requeued}"
        )
        return summary

    async def process_task(self, task: QueueTask) -> TaskOutcome:
        """Process one claimed task and record its status and metric."""
        started = time.monotonic()
        tokens_used = 0

        try:
            if task.operation == "delete":
                await embedding_store.delete_embeddings_for_source(
                    self.supabase_client, task.source_type, task.source_id
                )
                written = 0
            else:
                written, tokens_used = await self._embed_source(task)

            await queue_service.update_queue_item_status(
                self.supabase_client, task.id, STATUS_COMPLETED
            )
            outcome = TaskOutcome(task_id=task.id, success=True, embeddings_written=written)

        except Exception as e:
            error_type = classify_error(e)
            message = str(e) or e.__class__.__name__
            logger.error(
                f"Task {task.id} failed ({error_type}) for source_type={task.source_type}, "
                f"source_id={task.source_id}: {message}"
            )
            outcome = TaskOutcome(
                task_id=task.id,
                success=False,
                error_type=error_type,
                error_message=message,
            )
            try:
                await queue_service.update_queue_item_status(
                    self.supabase_client, task.id, STATUS_FAILED, error_message=message
                )
            except Exception as status_error:
                # The lease expires and the reaper hands the task out again
                logger.error(f"Could not mark task {task.id} as failed: {status_error}")

        await metrics_service.record_embedding_metric(
            self.supabase_client,
            EmbeddingMetric(
                queue_id=task.id,
                source_type=task.source_type,
                source_id=task.source_id,
                operation=task.operation,
                success=outcome.success,
                processing_time_ms=int((time.monotonic() - started) * 1000),
                tokens_used=tokens_used,
                error_type=outcome.error_type,
                error_message=outcome.error_message,
                api_model=getattr(self.embedder, "model", None),
            ),
        )
        return outcome

    async def _embed_source(self, task: QueueTask) -> Tuple[int, int]:
        contents = await load_source_contents(self.supabase_client, task.source_type, task.source_id)

        if not contents:
            logger.warning(
                f"No embeddable content for source_type={task.source_type}, source_id={task.source_id}"
            )

        tokens_used = 0
        for content in contents:
            vector = await self.embedder.embed(content.content_text)
            tokens_used += estimate_tokens(content.content_text)
            content.metadata.embedding_model = getattr(self.embedder, "model", None)
            await embedding_store.upsert_embedding(
                self.supabase_client,
                source_type=task.source_type,
                source_id=task.source_id,
                content_type=content.content_type,
                content_text=content.content_text,
                embedding=vector,
                metadata=content.metadata,
                user_id=content.user_id,
                team_id=content.team_id,
                language=content.language,
            )

        # Content types the source no longer has (e.g. cleared notes)
        current_types = {content.content_type for content in contents}
        existing = await embedding_store.get_embeddings_for_source(
            self.supabase_client, task.source_type, task.source_id
        )
        for record in existing:
            if record.content_type not in current_types:
                await embedding_store.delete_embedding(self.supabase_client, record.id)
                logger.info(f"Removed stale {record.content_type} embedding {record.id}")

        return len(contents), tokens_used
