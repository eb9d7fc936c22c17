"""
Embedding store service (unified_embeddings).

CRITICAL RULES:
1. content_text is NEVER empty and embedding is NEVER null for a stored row
2. (source_type, source_id, content_type) is the natural key: a second write
   for the same triple updates the row in place
3. A rejected write persists nothing
4. content_text must be the actual underlying field; a line_item row only
   carries the parent receipt's merchant name when that is its description
"""

import logging
import math
from typing import Any, Dict, List, Optional, Sequence, cast

from supabase import Client

from receipt_search.db.paging import utc_now_iso
from receipt_search.schemas.embeddings import EmbeddingMetadata, EmbeddingRecord
from receipt_search.utils.constants import (
    DEFAULT_LANGUAGE,
    EMBEDDING_DIMENSIONS,
    EMBEDDINGS_TABLE,
    SOURCE_TYPES,
)
from receipt_search.utils.errors import SearchCoreError, ValidationError

logger = logging.getLogger(__name__)

NATURAL_KEY = "source_type,source_id,content_type"


def is_blank(text: Optional[str]) -> bool:
    """True for None, empty or whitespace-only text."""
    return text is None or not text.strip()


def validate_embedding_write(
    source_type: str,
    source_id: str,
    content_type: str,
    content_text: Optional[str],
    embedding: Optional[Sequence[float]],
    metadata: EmbeddingMetadata,
) -> None:
    """
    Check a write against the store invariants.

    Raises:
        ValidationError: If the write would violate an invariant.
    """
    identity = f"source_type={source_type}, source_id={source_id}, content_type={content_type}"

    if source_type not in SOURCE_TYPES:
        raise ValidationError(f"Unknown source_type '{source_type}'")

    if is_blank(content_text):
        logger.warning(f"Rejected embedding write with empty content_text: {identity}")
        raise ValidationError(
            "content_text must not be empty",
            details={"source_type": source_type, "source_id": source_id, "content_type": content_type},
        )

    if embedding is None:
        raise ValidationError(f"embedding is required ({identity})")

    if len(embedding) != EMBEDDING_DIMENSIONS:
        raise ValidationError(
            f"embedding must have {EMBEDDING_DIMENSIONS} dimensions, got {len(embedding)}"
        )

    if not all(math.isfinite(value) for value in embedding):
        raise ValidationError(f"embedding contains non-finite values ({identity})")

    if content_type == "line_item" and metadata.merchant:
        text = content_text.strip().casefold()
        description = str(metadata.extra.get("description") or "").strip().casefold()
        if text == metadata.merchant.strip().casefold() and text != description:
            logger.warning(f"Rejected line_item embedding carrying the merchant name: {identity}")
            raise ValidationError(
                "line_item content_text must be the item description, not the merchant name"
            )


async def upsert_embedding(
    supabase_client: Client,
    source_type: str,
    source_id: str,
    content_type: str,
    content_text: Optional[str],
    embedding: Optional[Sequence[float]],
    metadata: Optional[EmbeddingMetadata] = None,
    user_id: Optional[str] = None,
    team_id: Optional[str] = None,
    language: str = DEFAULT_LANGUAGE,
) -> str:
    """
    Validate and upsert one embedding record.

    Args:
        supabase_client: Service role Supabase client
        source_type: receipt, claim, line_item, ...
        source_id: UUID of the originating entity
        content_type: Semantic subcategory (merchant, full_text, ...)
        content_text: The literal text the vector represents
        embedding: 1536-dimension vector
        metadata: Typed metadata (amount, date, provenance, ...)
        user_id: Owner of the record (None for public directory rows)
        team_id: Team the record belongs to (None = personal)
        language: ISO language code

    Returns:
        The id of the created or updated row.

    Raises:
        ValidationError: Empty content, missing/wrong-size vector, unknown
            source type, or a line item carrying the merchant name.
        SearchCoreError: If the database returned no row.
    """
    metadata = metadata or EmbeddingMetadata()
    validate_embedding_write(source_type, source_id, content_type, content_text, embedding, metadata)

    text = cast(str, content_text).strip()
    row = {
        "source_type": source_type,
        "source_id": source_id,
        "content_type": content_type,
        "content_text": text,
        "embedding": [float(value) for value in cast(Sequence[float], embedding)],
        "metadata": metadata.to_json(),
        "user_id": user_id,
        "team_id": team_id,
        "language": language or DEFAULT_LANGUAGE,
        "updated_at": utc_now_iso(),
    }

    result = (
        supabase_client.table(EMBEDDINGS_TABLE)
        .upsert(row, on_conflict=NATURAL_KEY)
        .execute()
    )

    if not result.data:
        raise SearchCoreError("Failed to upsert embedding: no data returned")

    embedding_id = str(cast(Dict[str, Any], result.data[0])["id"])

    logger.info(
        f"Upserted embedding id={embedding_id}: source_type={source_type}, "
        f"source_id={source_id}, content_type={content_type}, content_length={len(text)}"
    )

    return embedding_id


async def get_embeddings_for_source(
    supabase_client: Client,
    source_type: str,
    source_id: str,
) -> List[EmbeddingRecord]:
    """Fetch every embedding row of one source entity."""
    result = (
        supabase_client.table(EMBEDDINGS_TABLE)
        .select("*")
        .eq("source_type", source_type)
        .eq("source_id", source_id)
        .execute()
    )
    rows = cast(List[Dict[str, Any]], result.data or [])
    return [EmbeddingRecord.from_row(row) for row in rows]


async def delete_embeddings_for_source(
    supabase_client: Client,
    source_type: str,
    source_id: str,
) -> int:
    """
    Remove every embedding of a deleted source entity.

    Returns:
        Number of rows deleted.
    """
    result = (
        supabase_client.table(EMBEDDINGS_TABLE)
        .delete()
        .eq("source_type", source_type)
        .eq("source_id", source_id)
        .execute()
    )
    deleted = len(result.data or [])
    logger.info(f"Deleted {deleted} embeddings for source_type={source_type}, source_id={source_id}")
    return deleted


async def update_embedding_content(
    supabase_client: Client,
    embedding_id: str,
    content_text: str,
) -> None:
    """
    Rewrite content_text of an existing row (repair path).

    The vector is left as is; the row is requeued for re-embedding by the
    caller when the text changes meaningfully.

    Raises:
        ValidationError: If the new text is empty.
        SearchCoreError: If no row was updated.
    """
    if is_blank(content_text):
        raise ValidationError("Refusing to repair content_text with empty text")

    result = (
        supabase_client.table(EMBEDDINGS_TABLE)
        .update({"content_text": content_text.strip(), "updated_at": utc_now_iso()})
        .eq("id", embedding_id)
        .execute()
    )
    if not result.data:
        raise SearchCoreError(f"Embedding {embedding_id} was not updated")


async def delete_embedding(supabase_client: Client, embedding_id: str) -> None:
    """Remove a single embedding row."""
    supabase_client.table(EMBEDDINGS_TABLE).delete().eq("id", embedding_id).execute()
