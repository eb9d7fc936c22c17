"""
Search API endpoints.

Provides endpoints for:
- Hybrid (vector + text) search and the text-only variant
- "Did you mean" merchant suggestions
- Contextual snippets for result previews
- Search index statistics

Searches run with the service role client and are scoped to the caller
through SearchScope: own records, records of the caller's teams and the
public business directory.
"""

import logging
from typing import Annotated, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from receipt_search.auth.dependencies import AuthenticatedUser, get_authenticated_user
from receipt_search.db.client import get_service_role_client
from receipt_search.schemas.search import (
    HybridSearchRequest,
    MerchantSuggestionResponse,
    SearchResponse,
    SearchStats,
    SnippetRequest,
    SnippetResponse,
    TextSearchRequest,
)
from receipt_search.services.embedding_client import GeminiEmbedder
from receipt_search.services.search import (
    extract_contextual_snippets,
    fuzzy_merchant_search,
    get_enhanced_search_stats,
    resolve_scope,
    search,
    text_hybrid_search,
)
from receipt_search.utils.errors import SearchCoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/search", tags=["search"])


def get_embedder() -> GeminiEmbedder:
    """Query embedder dependency (overridden in tests)."""
    return GeminiEmbedder()


async def _query_vector(
    request: HybridSearchRequest,
    embedder: GeminiEmbedder,
) -> Optional[List[float]]:
    if request.query_embedding:
        return request.query_embedding
    if not request.embed_query or not request.query_text or not request.query_text.strip():
        return None
    try:
        return await embedder.embed_query(request.query_text)
    except Exception as e:
        # Text branches still answer the query
        logger.warning(f"Query embedding failed, searching without semantic branch: {e}")
        return None


@router.post(
    "",
    response_model=SearchResponse,
    status_code=status.HTTP_200_OK,
    summary="Hybrid search",
    description="""
    Rank the caller's embedding records against a query.

    This endpoint:
    - Scores semantic (query vector), trigram and keyword matches
    - Keeps a record when any single branch is a strong hit
    - Uses the text-only variant when no query vector is available
    - Applies source/content type, language, owner, team, date and amount filters

    Security:
    - Requires valid Authorization Bearer token
    - Results are limited to the caller's own, team and public records
    """
)
async def hybrid_search(
    request: HybridSearchRequest,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
    embedder: Annotated[GeminiEmbedder, Depends(get_embedder)],
) -> SearchResponse:
    """Hybrid search scoped to the authenticated user."""
    try:
        supabase_client = get_service_role_client()
        scope = await resolve_scope(supabase_client, auth_user.user_id)
        query_embedding = await _query_vector(request, embedder)

        return await search(
            supabase_client,
            scope,
            query_embedding=query_embedding,
            query_text=request.query_text,
            filters=request.filters,
            params=request.params,
        )

    except SearchCoreError:
        raise
    except Exception as e:
        logger.error(f"Search failed for user_id={auth_user.user_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "search_failed", "details": "Search could not be completed"}
        )


@router.post(
    "/text",
    response_model=SearchResponse,
    status_code=status.HTTP_200_OK,
    summary="Text-only hybrid search",
    description="""
    Trigram + keyword search for callers without a query vector.

    Whole-query substring matches score 1.0 and first/last word matches
    0.7 on the keyword component.

    Security:
    - Requires valid Authorization Bearer token
    - Results are limited to the caller's own, team and public records
    """
)
async def text_search(
    request: TextSearchRequest,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
) -> SearchResponse:
    """Text-only search scoped to the authenticated user."""
    try:
        supabase_client = get_service_role_client()
        scope = await resolve_scope(supabase_client, auth_user.user_id)

        return await text_hybrid_search(
            supabase_client,
            scope,
            query_text=request.query_text,
            filters=request.filters,
            params=request.params,
        )

    except SearchCoreError:
        raise
    except Exception as e:
        logger.error(f"Text search failed for user_id={auth_user.user_id}: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "search_failed", "details": "Search could not be completed"}
        )


@router.get(
    "/merchants",
    response_model=MerchantSuggestionResponse,
    status_code=status.HTTP_200_OK,
    summary="Fuzzy merchant suggestions",
)
async def merchant_suggestions(
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
    q: Annotated[str, Query(min_length=1, max_length=200, description="Merchant name as typed")],
    threshold: Annotated[float, Query(ge=0, le=1)] = 0.4,
    limit: Annotated[int, Query(ge=1, le=50)] = 10,
) -> MerchantSuggestionResponse:
    """Merchant names similar to `q`, with occurrence counts and totals."""
    try:
        supabase_client = get_service_role_client()
        scope = await resolve_scope(supabase_client, auth_user.user_id)

        suggestions = await fuzzy_merchant_search(
            supabase_client,
            scope,
            merchant_query=q,
            similarity_threshold=threshold,
            match_count=limit,
        )
        return MerchantSuggestionResponse(suggestions=suggestions, count=len(suggestions))

    except SearchCoreError:
        raise
    except Exception as e:
        logger.error(f"Merchant suggestions failed for user_id={auth_user.user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "merchant_search_failed", "details": str(e)}
        )


@router.post(
    "/snippets",
    response_model=SnippetResponse,
    status_code=status.HTTP_200_OK,
    summary="Contextual snippets",
)
async def snippets(
    request: SnippetRequest,
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
) -> SnippetResponse:
    """Windows of `content_text` around the words of `query_text`."""
    return SnippetResponse(
        snippets=extract_contextual_snippets(
            request.content_text,
            request.query_text,
            snippet_length=request.snippet_length,
            max_snippets=request.max_snippets,
        )
    )


@router.get(
    "/stats",
    response_model=SearchStats,
    status_code=status.HTTP_200_OK,
    summary="Search index statistics",
    description="""
    Coverage of the search index: semantic readiness, trigram readiness,
    content lengths and the most common content types.

    Security:
    - Requires valid Authorization Bearer token
    - Statistics for other users (or all users) require the admin role
    """
)
async def search_stats(
    auth_user: Annotated[AuthenticatedUser, Depends(get_authenticated_user)],
    user_filter: Annotated[Optional[str], Query(description="Restrict to one user")] = None,
) -> SearchStats:
    """Index statistics for the caller, or for everyone when admin."""
    try:
        return await get_enhanced_search_stats(
            get_service_role_client(),
            caller_id=auth_user.user_id,
            user_filter=user_filter,
        )

    except SearchCoreError:
        raise
    except Exception as e:
        logger.error(f"Search stats failed for user_id={auth_user.user_id}: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail={"error": "stats_failed", "details": str(e)}
        )
