"""
Scoped reads of unified_embeddings for the search engine.

Every query built here goes through SearchScope, both when the request is
narrowed on the database side and when the returned rows are checked.

- load_search_candidates(): bounded, index-backed candidates for ranking
- load_visible_rows(): full scans for operator statistics and maintenance
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Sequence, cast

from supabase import Client

from receipt_search.db.paging import fetch_all_rows
from receipt_search.schemas.embeddings import EmbeddingRecord
from receipt_search.schemas.search import SearchFilters
from receipt_search.services.embedding_store import is_blank
from receipt_search.services.search import scoring
from receipt_search.services.search.scope import SearchScope
from receipt_search.utils.constants import EMBEDDINGS_TABLE, PUBLIC_SOURCE_TYPES, SEARCH_CANDIDATES_RPC

logger = logging.getLogger(__name__)


def _apply_structural_filters(query: Any, filters: SearchFilters) -> Any:
    if filters.source_types is not None:
        query = query.in_("source_type", filters.source_types)
    if filters.content_types is not None:
        query = query.in_("content_type", filters.content_types)
    if filters.language:
        query = query.eq("language", filters.language)
    if filters.user_filter:
        query = query.eq("user_id", filters.user_filter)
    if filters.team_filter:
        query = query.eq("team_id", filters.team_filter)
    return query


def _ownership_queries(scope: SearchScope) -> List[Callable[[Any], Any]]:
    """
    One narrowing per ownership clause.

    The union of their results is exactly the rows the scope allows. A
    service scope needs no narrowing.
    """
    if scope.is_service:
        return [lambda query: query]

    narrowings: List[Callable[[Any], Any]] = []
    if scope.user_id:
        narrowings.append(lambda query: query.eq("user_id", scope.user_id))
    if scope.team_ids:
        team_ids = sorted(scope.team_ids)
        narrowings.append(lambda query: query.in_("team_id", team_ids))
    narrowings.append(lambda query: query.in_("source_type", sorted(PUBLIC_SOURCE_TYPES)))
    return narrowings


def load_visible_rows(
    supabase_client: Client,
    scope: SearchScope,
    filters: Optional[SearchFilters] = None,
    columns: str = "*",
    extra: Optional[Callable[[Any], Any]] = None,
) -> List[Dict[str, Any]]:
    """
    All embedding rows the scope may see that match the structural filters.

    Args:
        supabase_client: Service role Supabase client
        scope: Caller scope
        filters: source/content type, language, owner and team filters
        columns: Columns to select (must include id, source_type, user_id, team_id)
        extra: Additional narrowing applied to every request

    Returns:
        Deduplicated rows ordered by id.
    """
    filters = filters or SearchFilters()
    rows_by_id: Dict[str, Dict[str, Any]] = {}

    for narrow in _ownership_queries(scope):
        def make_query(narrow: Callable[[Any], Any] = narrow) -> Any:
            query = supabase_client.table(EMBEDDINGS_TABLE).select(columns)
            query = _apply_structural_filters(narrow(query), filters)
            if extra is not None:
                query = extra(query)
            return query.order("id", desc=False)

        for row in fetch_all_rows(make_query):
            rows_by_id[str(row["id"])] = row

    visible = scope.filter_rows(rows_by_id.values())
    return sorted(visible, key=lambda row: str(row["id"]))


@dataclass(frozen=True)
class SearchCandidate:
    """A record proposed by the database, with its cosine similarity when a vector was given."""
    record: EmbeddingRecord
    semantic_similarity: Optional[float] = None


def _boundary_words(query_text: Optional[str]) -> List[str]:
    query_words = scoring.words(query_text)
    if not query_words:
        return []
    return sorted({query_words[0], query_words[-1]})


def candidate_rpc_params(
    scope: SearchScope,
    filters: SearchFilters,
    query_text: Optional[str],
    query_embedding: Optional[Sequence[float]],
    trigram_threshold: float,
    candidate_count: int,
) -> Dict[str, Any]:
    """Arguments of the match_search_candidates function (see supabase/migrations)."""
    text = query_text.strip() if not is_blank(query_text) else None
    return {
        "query_embedding": list(query_embedding) if query_embedding is not None else None,
        "query_text": text,
        "boundary_words": _boundary_words(text),
        "scope_user_id": scope.user_id,
        "scope_team_ids": sorted(scope.team_ids),
        "scope_is_service": scope.is_service,
        "source_types": filters.source_types,
        "content_types": filters.content_types,
        "language_filter": filters.language,
        "user_filter": filters.user_filter,
        "team_filter": filters.team_filter,
        "trigram_threshold": trigram_threshold,
        "candidate_count": candidate_count,
    }


def load_search_candidates(
    supabase_client: Client,
    scope: SearchScope,
    filters: SearchFilters,
    query_text: Optional[str],
    query_embedding: Optional[Sequence[float]],
    trigram_threshold: float,
    candidate_count: int,
) -> List[SearchCandidate]:
    """
    Bounded candidate set for one search.

    The database applies scope and structural filters, then unions the
    nearest neighbours of the query vector (hnsw), the trigram matches
    (gin_trgm) and the full-text matches, each capped at candidate_count.
    Vectors are not transferred; the semantic similarity comes back as a
    column. Rows with empty content_text are never proposed.
    """
    params = candidate_rpc_params(
        scope, filters, query_text, query_embedding, trigram_threshold, candidate_count
    )
    response = supabase_client.rpc(SEARCH_CANDIDATES_RPC, params).execute()
    rows = scope.filter_rows(cast(List[Dict[str, Any]], response.data or []))

    candidates = []
    for row in rows:
        similarity = row.get("semantic_similarity")
        candidates.append(SearchCandidate(
            record=EmbeddingRecord.from_row(row),
            semantic_similarity=float(similarity) if similarity is not None else None,
        ))

    logger.debug(f"Loaded {len(candidates)} search candidates (cap {candidate_count} per branch)")
    return candidates
