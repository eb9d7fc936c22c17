"""
Pydantic schemas for the unified embedding store.

EmbeddingMetadata replaces the free-form JSONB metadata map with named,
typed fields. Anything that is not a known field is kept in `extra`, and the
whole object is flattened back into a single JSON object for storage, so
existing rows and new rows share one layout.
"""

import json
from datetime import date as date_type
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from receipt_search.utils.constants import DEFAULT_LANGUAGE

# Legacy metadata keys that carry the same meaning as a typed field.
# First non-null key wins.
_AMOUNT_KEYS = ("amount", "total", "receipt_total")
_DATE_KEYS = ("date", "receipt_date")
_PLAIN_KEYS = (
    "currency",
    "receipt_id",
    "line_item_id",
    "merchant",
    "migrated_from",
    "migration_date",
    "embedding_model",
)


def parse_vector(raw: Any) -> Optional[List[float]]:
    """
    Parse a pgvector column value.

    PostgREST serializes VECTOR columns as text ("[0.1,0.2,...]"), while
    tests and RPC results may already hand over a list.
    """
    if raw is None:
        return None
    if isinstance(raw, str):
        raw = json.loads(raw)
    return [float(value) for value in raw]


def _parse_date(raw: Any) -> Optional[date_type]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date_type):
        return raw
    return date_type.fromisoformat(str(raw)[:10])


class EmbeddingMetadata(BaseModel):
    """Typed view over unified_embeddings.metadata."""

    amount: Optional[float] = Field(None, description="Receipt total, claim amount or line item amount")
    currency: Optional[str] = Field(None, description="ISO currency code of `amount`")
    date: Optional[date_type] = Field(None, description="Receipt date / claim date used by date filters")
    receipt_id: Optional[str] = Field(None, description="Parent receipt for line item embeddings")
    line_item_id: Optional[str] = Field(None, description="Line item the embedding was built from")
    merchant: Optional[str] = Field(None, description="Parent merchant name (line items, full text)")
    migrated_from: Optional[str] = Field(None, description="Provenance for migrated rows")
    migration_date: Optional[str] = Field(None, description="When the row was migrated")
    embedding_model: Optional[str] = Field(None, description="Model that produced the vector")
    extra: Dict[str, Any] = Field(default_factory=dict, description="Residual untyped keys")

    @classmethod
    def from_json(cls, raw: Optional[Dict[str, Any]]) -> "EmbeddingMetadata":
        """Build typed metadata from a stored JSON object, tolerating legacy keys."""
        remaining = {key: value for key, value in (raw or {}).items() if value is not None}
        values: Dict[str, Any] = {}

        for key in _AMOUNT_KEYS:
            candidate = remaining.get(key)
            if candidate is None or "amount" in values:
                continue
            try:
                values["amount"] = float(candidate)
            except (TypeError, ValueError):
                continue
            remaining.pop(key)

        for key in _DATE_KEYS:
            candidate = remaining.get(key)
            if candidate is None or "date" in values:
                continue
            try:
                values["date"] = _parse_date(candidate)
            except ValueError:
                continue
            remaining.pop(key)

        for key in _PLAIN_KEYS:
            if remaining.get(key) is not None:
                values[key] = str(remaining.pop(key))

        return cls(**values, extra=remaining)

    def to_json(self) -> Dict[str, Any]:
        """Flatten into the JSON object stored in the metadata column."""
        out: Dict[str, Any] = dict(self.extra)
        for name in ("amount", *_PLAIN_KEYS):
            value = getattr(self, name)
            if value is not None:
                out[name] = value
        if self.date is not None:
            out["date"] = self.date.isoformat()
        return out


class EmbeddingRecord(BaseModel):
    """One row of unified_embeddings."""

    id: str
    source_type: str
    source_id: str
    content_type: str
    content_text: Optional[str] = None
    embedding: Optional[List[float]] = Field(None, exclude=True)
    metadata: EmbeddingMetadata = Field(default_factory=EmbeddingMetadata)
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    language: str = DEFAULT_LANGUAGE
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "EmbeddingRecord":
        """Build a record from a PostgREST row."""
        return cls(
            id=str(row["id"]),
            source_type=row["source_type"],
            source_id=str(row["source_id"]),
            content_type=row["content_type"],
            content_text=row.get("content_text"),
            embedding=parse_vector(row.get("embedding")),
            metadata=EmbeddingMetadata.from_json(row.get("metadata")),
            user_id=row.get("user_id"),
            team_id=row.get("team_id"),
            language=row.get("language") or DEFAULT_LANGUAGE,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
        )


class UpsertEmbeddingRequest(BaseModel):
    """
    Request body for POST /embeddings.

    Emptiness of content_text and presence of the vector are checked by the
    embedding writer, not here, so that the write path has exactly one
    validation point and always logs the rejection.
    """

    source_type: str = Field(..., description="receipt, claim, line_item, ...")
    source_id: str = Field(..., description="UUID of the originating entity")
    content_type: str = Field(..., description="merchant, full_text, notes, line_item, ...")
    content_text: Optional[str] = Field(None, description="Literal text the vector represents")
    embedding: Optional[List[float]] = Field(None, description="1536-dimension vector")
    metadata: EmbeddingMetadata = Field(default_factory=EmbeddingMetadata)
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    language: str = DEFAULT_LANGUAGE

    @field_validator("metadata", mode="before")
    @classmethod
    def parse_metadata(cls, value: Any) -> Any:
        """Read the flat stored layout, legacy keys included, like rows read back from the table."""
        if value is None:
            return EmbeddingMetadata()
        if not isinstance(value, dict):
            return value
        flat = dict(value)
        nested = flat.pop("extra", None)
        if isinstance(nested, dict):
            flat = {**nested, **flat}
        elif nested is not None:
            flat["extra"] = nested
        return EmbeddingMetadata.from_json(flat)

    class Config:
        """Pydantic model configuration."""
        json_schema_extra = {
            "example": {
                "source_type": "receipt",
                "source_id": "0b6a3c1e-4d5f-4a8e-9a57-1d2f3e4a5b6c",
                "content_type": "merchant",
                "content_text": "Acme Store",
                "embedding": [0.01, -0.02, 0.03],
                "metadata": {"amount": 42.5, "currency": "MYR", "date": "2025-06-01"},
                "user_id": "5f1c2d3e-1111-2222-3333-444455556666",
                "team_id": None,
                "language": "en"
            }
        }


class UpsertEmbeddingResponse(BaseModel):
    """Response for POST /embeddings."""

    id: str = Field(..., description="UUID of the created or updated embedding row")
    source_type: str
    source_id: str
    content_type: str
    content_length: int = Field(..., description="Length of the stored content_text")


class SourceEmbeddingsResponse(BaseModel):
    """Response for GET /embeddings/{source_type}/{source_id}."""

    embeddings: List[EmbeddingRecord]
    count: int
