"""
Pydantic schemas for the embedding generation queue and its metrics.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

QueueOperation = Literal["insert", "update", "delete"]
QueuePriority = Literal["high", "medium", "low"]
QueueStatus = Literal["pending", "processing", "completed", "failed", "cancelled"]


class QueueTask(BaseModel):
    """One row of embedding_queue."""

    id: str
    source_type: str
    source_id: str
    operation: QueueOperation
    priority: QueuePriority
    status: QueueStatus
    retry_count: int = 0
    max_retries: int = 3
    error_message: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    worker_id: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    processing_started_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None

    @property
    def is_dead(self) -> bool:
        """Failed and out of retries: must be surfaced to an operator."""
        return self.status == "failed" and self.retry_count >= self.max_retries

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "QueueTask":
        """Build a task from a PostgREST row."""
        data = dict(row)
        data["id"] = str(data["id"])
        data["source_id"] = str(data["source_id"])
        data["metadata"] = data.get("metadata") or {}
        for counter in ("retry_count", "max_retries"):
            if data.get(counter) is None:
                data.pop(counter, None)
        return cls(**{key: value for key, value in data.items() if key in cls.model_fields})


class QueueTaskListResponse(BaseModel):
    """List of queue tasks (pending, claimed or dead)."""

    tasks: List[QueueTask]
    count: int


class QueueStatusUpdateRequest(BaseModel):
    """Request body for PATCH /queue/{task_id}/status."""

    status: Literal["pending", "processing", "completed", "failed"] = Field(
        ..., description="New status for the task"
    )
    error_message: Optional[str] = Field(
        None, description="Failure reason (recorded on failed)", max_length=2000
    )


class QueueClaimRequest(BaseModel):
    """Request body for POST /queue/claim."""

    worker_id: str = Field(..., min_length=1, max_length=200)
    limit: int = Field(5, ge=1, le=100)
    lease_seconds: Optional[int] = Field(
        None, ge=10, le=3600, description="Lease duration; defaults to QUEUE_LEASE_SECONDS"
    )


class QueueStatistics(BaseModel):
    """Aggregate view of the queue for operators."""

    total_pending: int = 0
    total_processing: int = 0
    total_completed: int = 0
    total_failed: int = 0
    total_cancelled: int = 0
    total_dead: int = Field(0, description="Failed tasks with no retries left")
    avg_processing_time_ms: Optional[float] = None
    oldest_pending_age_hours: Optional[float] = None


class QueueMaintenanceResponse(BaseModel):
    """Row count affected by a queue maintenance operation."""

    operation: str
    affected: int


class DatabaseWebhookPayload(BaseModel):
    """
    Payload of a Supabase Database Webhook.

    Sent for INSERT / UPDATE / DELETE on watched source tables.
    """

    type: Literal["INSERT", "UPDATE", "DELETE"]
    table: str
    schema_name: str = Field("public", alias="schema")
    record: Optional[Dict[str, Any]] = None
    old_record: Optional[Dict[str, Any]] = None

    model_config = {"populate_by_name": True}


class WebhookAckResponse(BaseModel):
    """
    Response to a database webhook.

    Always returned with 202 so the database never retries or blocks the
    source write because of the queue; `queued` tells whether a task exists.
    """

    queued: bool
    task_id: Optional[str] = None


class EmbeddingMetric(BaseModel):
    """One append-only row of embedding_metrics (one per processing attempt)."""

    queue_id: Optional[str] = None
    source_type: str
    source_id: str
    operation: QueueOperation
    success: bool
    processing_time_ms: int = 0
    tokens_used: int = 0
    error_type: Optional[str] = None
    error_message: Optional[str] = None
    api_model: Optional[str] = None


class EmbeddingMetricsSummary(BaseModel):
    """Success rate and latency over a window of metrics rows."""

    total_attempts: int
    successful_attempts: int
    failed_attempts: int
    success_rate: Optional[float] = Field(None, description="Percentage, 2 decimals")
    avg_processing_time_ms: Optional[float] = None
    total_tokens_used: int = 0
    error_breakdown: Dict[str, int] = Field(default_factory=dict)
