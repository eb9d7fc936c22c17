"""
Hybrid search engine over unified_embeddings.

Candidates come from the match_search_candidates database function, which
applies the caller scope and structural filters and proposes a bounded set
of rows through the vector, trigram and full-text indexes. Date and amount
filters run on that set, then three branches score every candidate:

1. Semantic: cosine similarity to the query vector, admitted when
   > similarity_threshold
2. Trigram: pg_trgm similarity of content_text to the query text,
   admitted when > trigram_threshold
3. Keyword: full-text rank of content_text for the query text, admitted
   when > 0.01

The branches are outer-joined by record id. A branch that did not admit a
record contributes 0 to that record's score, and a record is kept when at
least one branch admitted it. Results are ordered by combined score, then
trigram score, then keyword score.

A missing query vector disables only the semantic branch; empty query text
disables only the text branches. Neither fails the call.
"""

import logging
from collections import Counter
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence

from supabase import Client

from receipt_search.schemas.search import (
    ContentTypeShare,
    HybridSearchParams,
    MerchantSuggestion,
    SearchFilters,
    SearchResponse,
    SearchResult,
    SearchStats,
    TextSearchParams,
)
from receipt_search.services.embedding_store import is_blank
from receipt_search.services.search import repository, scoring
from receipt_search.services.search.filters import apply_date_amount_filters
from receipt_search.services.search.repository import SearchCandidate
from receipt_search.services.search.scope import SearchScope
from receipt_search.services.source_service import has_role
from receipt_search.utils.constants import (
    ADMIN_ROLE,
    CANDIDATE_MULTIPLIER,
    EMBEDDING_DIMENSIONS,
    EMBEDDINGS_TABLE,
    MIN_CANDIDATES,
)
from receipt_search.utils.errors import AuthorizationError

logger = logging.getLogger(__name__)

KEYWORD_THRESHOLD = 0.01


@dataclass(frozen=True)
class RankingConfig:
    """Thresholds and weights of one ranking pass."""
    similarity_threshold: float
    trigram_threshold: float
    semantic_weight: float
    trigram_weight: float
    keyword_weight: float
    match_count: int
    text_only: bool = False

    @classmethod
    def hybrid(cls, params: HybridSearchParams) -> "RankingConfig":
        return cls(
            similarity_threshold=params.similarity_threshold,
            trigram_threshold=params.trigram_threshold,
            semantic_weight=params.semantic_weight,
            trigram_weight=params.trigram_weight,
            keyword_weight=params.keyword_weight,
            match_count=params.match_count,
        )

    @classmethod
    def text(cls, params: TextSearchParams) -> "RankingConfig":
        return cls(
            similarity_threshold=params.similarity_threshold,
            trigram_threshold=params.similarity_threshold,
            semantic_weight=params.semantic_weight,
            trigram_weight=params.trigram_weight,
            keyword_weight=params.keyword_weight,
            match_count=params.match_count,
            text_only=True,
        )


def usable_query_vector(query_embedding: Optional[Sequence[float]]) -> Optional[List[float]]:
    """The query vector if it can drive the semantic branch, else None."""
    if not query_embedding:
        return None
    if len(query_embedding) != EMBEDDING_DIMENSIONS:
        logger.warning(
            f"Ignoring query vector with {len(query_embedding)} dimensions "
            f"(expected {EMBEDDING_DIMENSIONS}); semantic branch disabled"
        )
        return None
    return [float(value) for value in query_embedding]


def candidate_count(match_count: int) -> int:
    """Per-branch cap on the rows the database proposes for ranking."""
    return max(match_count * CANDIDATE_MULTIPLIER, MIN_CANDIDATES)


def rank_candidates(
    candidates: Sequence[SearchCandidate],
    query_text: Optional[str],
    query_embedding: Optional[Sequence[float]],
    config: RankingConfig,
) -> List[SearchResult]:
    """
    Score, admit, fuse and order candidates.

    The semantic score is the similarity computed by the database; a
    candidate without one is scored from its own vector when it carries it.

    Args:
        candidates: Visible records that passed the structural filters
        query_text: Query text (None or blank disables trigram and keyword)
        query_embedding: Query vector (None disables the semantic branch)
        config: Thresholds, weights and result cap

    Returns:
        At most config.match_count results, best first.
    """
    text = query_text.strip() if query_text and query_text.strip() else None
    vector = None if config.text_only else query_embedding

    scored: List[SearchResult] = []
    for candidate in candidates:
        record = candidate.record
        semantic = 0.0
        if vector is not None:
            value = candidate.semantic_similarity
            if value is None and record.embedding is not None and len(record.embedding) == len(vector):
                value = scoring.cosine_similarity(record.embedding, vector)
            if value is not None and value > config.similarity_threshold:
                semantic = value

        trigram = 0.0
        keyword = 0.0
        if text is not None:
            value = scoring.trigram_similarity(record.content_text, text)
            if value > config.trigram_threshold:
                trigram = value

            if config.text_only:
                value = scoring.text_match_score(text, record.content_text)
            else:
                value = scoring.keyword_rank(text, record.content_text)
            if value > KEYWORD_THRESHOLD:
                keyword = value

        if semantic == 0.0 and trigram == 0.0 and keyword == 0.0:
            continue

        combined = (
            semantic * config.semantic_weight
            + trigram * config.trigram_weight
            + keyword * config.keyword_weight
        )
        scored.append(SearchResult(
            id=record.id,
            source_type=record.source_type,
            source_id=record.source_id,
            content_type=record.content_type,
            content_text=record.content_text or "",
            similarity=round(semantic, 6),
            trigram_similarity=round(trigram, 6),
            keyword_score=round(keyword, 6),
            combined_score=round(combined, 6),
            metadata=record.metadata,
        ))

    scored.sort(key=lambda result: (
        -result.combined_score,
        -result.trigram_similarity,
        -result.keyword_score,
        result.id,
    ))
    return scored[:config.match_count]


async def _run_search(
    supabase_client: Client,
    scope: SearchScope,
    query_text: Optional[str],
    query_embedding: Optional[Sequence[float]],
    filters: SearchFilters,
    config: RankingConfig,
) -> SearchResponse:
    vector = None if config.text_only else usable_query_vector(query_embedding)
    text_enabled = not is_blank(query_text)

    if vector is None and not text_enabled:
        logger.info("Search called without usable query text or vector; returning no results")
        return SearchResponse(results=[], count=0, semantic_enabled=False, text_enabled=False)

    candidates = repository.load_search_candidates(
        supabase_client,
        scope,
        filters,
        query_text=query_text if text_enabled else None,
        query_embedding=vector,
        trigram_threshold=config.trigram_threshold,
        candidate_count=candidate_count(config.match_count),
    )
    kept = await apply_date_amount_filters(
        supabase_client, [candidate.record for candidate in candidates], filters
    )
    kept_ids = {record.id for record in kept}
    candidates = [candidate for candidate in candidates if candidate.record.id in kept_ids]

    results = rank_candidates(candidates, query_text, vector, config)

    logger.info(
        f"Search ranked {len(candidates)} candidates into {len(results)} results "
        f"(semantic={vector is not None}, text={text_enabled}, text_only={config.text_only})"
    )
    return SearchResponse(
        results=results,
        count=len(results),
        semantic_enabled=vector is not None,
        text_enabled=text_enabled,
    )


async def enhanced_hybrid_search(
    supabase_client: Client,
    scope: SearchScope,
    query_embedding: Optional[Sequence[float]],
    query_text: Optional[str] = None,
    filters: Optional[SearchFilters] = None,
    params: Optional[HybridSearchParams] = None,
) -> SearchResponse:
    """Vector + text hybrid search (weights 0.6 / 0.15 / 0.25 by default)."""
    return await _run_search(
        supabase_client,
        scope,
        query_text,
        query_embedding,
        filters or SearchFilters(),
        RankingConfig.hybrid(params or HybridSearchParams()),
    )


async def text_hybrid_search(
    supabase_client: Client,
    scope: SearchScope,
    query_text: Optional[str],
    filters: Optional[SearchFilters] = None,
    params: Optional[TextSearchParams] = None,
) -> SearchResponse:
    """
    Text-only variant for callers without a query vector.

    Trigram admission uses similarity_threshold, keyword scoring adds the
    substring / first-or-last word boosts, and the semantic component is 0.
    """
    return await _run_search(
        supabase_client,
        scope,
        query_text,
        None,
        filters or SearchFilters(),
        RankingConfig.text(params or TextSearchParams()),
    )


async def search(
    supabase_client: Client,
    scope: SearchScope,
    query_embedding: Optional[Sequence[float]] = None,
    query_text: Optional[str] = None,
    filters: Optional[SearchFilters] = None,
    params: Optional[HybridSearchParams] = None,
    text_params: Optional[TextSearchParams] = None,
) -> SearchResponse:
    """
    Entry point used by the API layer.

    Runs the hybrid ranking when a usable query vector is present and the
    text-only variant otherwise.
    """
    if usable_query_vector(query_embedding) is None:
        return await text_hybrid_search(
            supabase_client,
            scope,
            query_text=query_text,
            filters=filters,
            params=text_params,
        )

    return await enhanced_hybrid_search(
        supabase_client,
        scope,
        query_embedding=query_embedding,
        query_text=query_text,
        filters=filters,
        params=params,
    )


# =========================================================
# Auxiliary queries
# =========================================================

async def fuzzy_merchant_search(
    supabase_client: Client,
    scope: SearchScope,
    merchant_query: str,
    similarity_threshold: float = 0.4,
    match_count: int = 10,
    user_filter: Optional[str] = None,
) -> List[MerchantSuggestion]:
    """
    "Did you mean" merchant suggestions.

    Trigram-only match over merchant embeddings, grouped by merchant text,
    with occurrence count, latest date and summed amount per merchant.
    """
    if is_blank(merchant_query):
        return []

    filters = SearchFilters(content_types=["merchant"], user_filter=user_filter)
    candidates = repository.load_search_candidates(
        supabase_client,
        scope,
        filters,
        query_text=merchant_query,
        query_embedding=None,
        trigram_threshold=similarity_threshold,
        candidate_count=candidate_count(match_count),
    )

    groups: Dict[str, Dict[str, Any]] = {}
    for candidate in candidates:
        merchant = (candidate.record.content_text or "").strip()
        if not merchant:
            continue
        score = scoring.trigram_similarity(merchant, merchant_query)
        if score <= similarity_threshold:
            continue

        metadata = candidate.record.metadata
        group = groups.setdefault(merchant, {
            "similarity_score": score,
            "occurrence_count": 0,
            "latest_date": None,
            "total_amount": None,
        })
        group["occurrence_count"] += 1
        if metadata.date is not None and (group["latest_date"] is None or metadata.date > group["latest_date"]):
            group["latest_date"] = metadata.date
        if metadata.amount is not None:
            group["total_amount"] = round((group["total_amount"] or 0.0) + metadata.amount, 2)

    suggestions = [
        MerchantSuggestion(merchant_name=merchant, **values)
        for merchant, values in groups.items()
    ]
    suggestions.sort(key=lambda item: (-item.similarity_score, -item.occurrence_count, item.merchant_name))
    return suggestions[:match_count]


async def ensure_admin_or_self(
    supabase_client: Client,
    caller_id: str,
    user_filter: Optional[str],
) -> None:
    """
    Gate for analytics that can span other users.

    Raises:
        AuthorizationError: Caller asked about other users without the admin role.
    """
    if user_filter is not None and user_filter == caller_id:
        return
    if not await has_role(supabase_client, caller_id, ADMIN_ROLE):
        logger.warning(f"User {caller_id} denied access to cross-user search statistics")
        raise AuthorizationError("Admin role required for statistics across users")


async def get_enhanced_search_stats(
    supabase_client: Client,
    caller_id: str,
    user_filter: Optional[str] = None,
) -> SearchStats:
    """
    Search index coverage: semantic readiness, trigram readiness, content
    lengths and the most common content types.

    Raises:
        AuthorizationError: user_filter is not the caller and the caller is not an admin.
    """
    await ensure_admin_or_self(supabase_client, caller_id, user_filter)

    filters = SearchFilters(user_filter=user_filter)
    rows = repository.load_visible_rows(
        supabase_client,
        SearchScope.service(),
        filters,
        columns="id, source_type, user_id, team_id, content_type, content_text",
    )

    count_query = supabase_client.table(EMBEDDINGS_TABLE).select("id", count="exact").is_("embedding", "null")
    if user_filter:
        count_query = count_query.eq("user_id", user_filter)
    missing_vectors = count_query.execute().count or 0

    total = len(rows)
    populated = [row["content_text"] for row in rows if not is_blank(row.get("content_text"))]
    lengths = [len(row["content_text"]) for row in rows if row.get("content_text") is not None]
    semantic_ready = max(total - missing_vectors, 0)

    type_counts = Counter(row["content_type"] for row in rows)
    top_types = [
        ContentTypeShare(
            content_type=content_type,
            count=count,
            percentage=round(count * 100 / total, 2),
        )
        for content_type, count in type_counts.most_common(10)
    ]

    avg_length = round(sum(lengths) / len(lengths), 2) if lengths else None
    return SearchStats(
        total_embeddings=total,
        semantic_ready=semantic_ready,
        trigram_indexed=len(populated),
        avg_content_length=avg_length,
        top_content_types=top_types,
        search_performance_metrics={
            "semantic_coverage": round(semantic_ready * 100 / total, 2) if total else None,
            "trigram_coverage": round(len(populated) * 100 / total, 2) if total else None,
            "avg_content_length": avg_length,
        },
    )
