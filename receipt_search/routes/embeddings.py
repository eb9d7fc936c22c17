"""
Embedding store API endpoints (worker-facing).

Provides endpoints for:
- Validated upsert of one embedding record
- Listing and deleting the embeddings of a source entity

All endpoints require the X-Worker-Token shared secret.
"""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Path, status

from receipt_search.auth.dependencies import verify_worker_token
from receipt_search.db.client import get_service_role_client
from receipt_search.schemas.embeddings import (
    SourceEmbeddingsResponse,
    UpsertEmbeddingRequest,
    UpsertEmbeddingResponse,
)
from receipt_search.services.embedding_store import (
    delete_embeddings_for_source,
    get_embeddings_for_source,
    upsert_embedding,
)
from receipt_search.utils.errors import SearchCoreError

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/embeddings",
    tags=["embeddings"],
    dependencies=[Depends(verify_worker_token)],
)


@router.post(
    "",
    response_model=UpsertEmbeddingResponse,
    status_code=status.HTTP_200_OK,
    summary="Upsert an embedding",
    description="""
    Insert or update the embedding identified by
    (source_type, source_id, content_type).

    This endpoint:
    - Rejects empty content_text, missing vectors and vectors that are not 1536-dimensional
    - Rejects line item rows whose text is the parent merchant name
    - Writes nothing when the request is rejected
    - Updates the existing row in place on a repeated natural key
    """
)
async def upsert_embedding_endpoint(request: UpsertEmbeddingRequest) -> UpsertEmbeddingResponse:
    """Validated, idempotent embedding write."""
    try:
        embedding_id = await upsert_embedding(
            get_service_role_client(),
            source_type=request.source_type,
            source_id=request.source_id,
            content_type=request.content_type,
            content_text=request.content_text,
            embedding=request.embedding,
            metadata=request.metadata,
            user_id=request.user_id,
            team_id=request.team_id,
            language=request.language,
        )

        return UpsertEmbeddingResponse(
            id=embedding_id,
            source_type=request.source_type,
            source_id=request.source_id,
            content_type=request.content_type,
            content_length=len((request.content_text or "").strip()),
        )

    except SearchCoreError:
        raise
    except Exception as e:
        logger.error(
            f"Embedding upsert failed for source_type={request.source_type}, "
            f"source_id={request.source_id}: {e}"
        )
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "upsert_failed", "details": str(e)}
        )


@router.get(
    "/{source_type}/{source_id}",
    response_model=SourceEmbeddingsResponse,
    status_code=status.HTTP_200_OK,
    summary="List embeddings of a source entity",
)
async def list_source_embeddings(
    source_type: Annotated[str, Path(description="receipt, claim, line_item, ...")],
    source_id: Annotated[str, Path(description="UUID of the source entity")],
) -> SourceEmbeddingsResponse:
    try:
        embeddings = await get_embeddings_for_source(get_service_role_client(), source_type, source_id)
        return SourceEmbeddingsResponse(embeddings=embeddings, count=len(embeddings))

    except Exception as e:
        logger.error(f"Listing embeddings failed for {source_type} {source_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "embedding_fetch_failed", "details": str(e)}
        )


@router.delete(
    "/{source_type}/{source_id}",
    status_code=status.HTTP_200_OK,
    summary="Delete embeddings of a source entity",
)
async def delete_source_embeddings(
    source_type: Annotated[str, Path()],
    source_id: Annotated[str, Path()],
) -> dict:
    try:
        deleted = await delete_embeddings_for_source(get_service_role_client(), source_type, source_id)
        return {"status": "DELETED", "deleted": deleted}

    except Exception as e:
        logger.error(f"Deleting embeddings failed for {source_type} {source_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "embedding_delete_failed", "details": str(e)}
        )
