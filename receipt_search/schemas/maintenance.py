"""
Pydantic schemas for the maintenance / repair surface.
"""

from datetime import date as date_type
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

RepairStatus = Literal["fixed", "skipped", "error"]


class ContentHealthRow(BaseModel):
    """Coverage of non-empty content_text for one (source_type, content_type)."""

    source_type: str
    content_type: str
    total_embeddings: int
    empty_content: int
    has_content: int
    content_health_percentage: float = Field(..., description="Populated share, 2 decimals")


class ContentHealthResponse(BaseModel):
    rows: List[ContentHealthRow]
    count: int


class RepairOutcome(BaseModel):
    """Result of repairing a single embedding record."""

    embedding_id: str
    source_type: str
    source_id: str
    content_type: str
    status: RepairStatus
    message: str


class RepairReport(BaseModel):
    """
    Result of a batch repair run.

    One entry per examined record; a single failing record is reported as
    status="error" and never aborts the run.
    """

    outcomes: List[RepairOutcome] = Field(default_factory=list)
    fixed_count: int = 0
    skipped_count: int = 0
    error_count: int = 0

    def add(self, outcome: RepairOutcome) -> None:
        self.outcomes.append(outcome)
        if outcome.status == "fixed":
            self.fixed_count += 1
        elif outcome.status == "skipped":
            self.skipped_count += 1
        else:
            self.error_count += 1


class MissingEmbedding(BaseModel):
    """A receipt with embeddable text but no embedding for some content types."""

    receipt_id: str
    merchant: Optional[str] = None
    date: Optional[date_type] = None
    user_id: Optional[str] = None
    missing_content_types: List[str]


class MissingEmbeddingsResponse(BaseModel):
    receipts: List[MissingEmbedding]
    count: int


class EmbeddingCoverageStats(BaseModel):
    """Receipt-level embedding coverage."""

    total_receipts: int
    receipts_with_embeddings: int
    receipts_missing_embeddings: int
