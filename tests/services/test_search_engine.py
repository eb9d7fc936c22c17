"""
Tests for the hybrid search engine.

Covers:
- Ownership scoping (own, team and public directory rows)
- Branch admission and score fusion
- Text-only fallback when no usable query vector is available
- Structural, date and amount filters
- Candidate generation in the database and the ranking tie-breaks
- Merchant suggestions and index statistics
"""

import pytest

from receipt_search.schemas.embeddings import EmbeddingRecord
from receipt_search.schemas.search import HybridSearchParams, SearchFilters, TextSearchParams
from receipt_search.services.search import (
    SearchScope,
    enhanced_hybrid_search,
    fuzzy_merchant_search,
    get_enhanced_search_stats,
    resolve_scope,
    search,
    text_hybrid_search,
)
from receipt_search.services.search.engine import RankingConfig, candidate_count, rank_candidates
from receipt_search.services.search.repository import SearchCandidate
from receipt_search.utils.constants import EMBEDDINGS_TABLE, SEARCH_CANDIDATES_RPC
from receipt_search.utils.errors import AuthorizationError
from tests.fakes import embedding_row, unit_vector


@pytest.fixture
def seeded_client(supabase_client):
    """Acme rows owned by different callers plus a public directory entry."""
    rows = [
        embedding_row("r-own", "Acme Store", user_id="user-1", embedding=unit_vector(1)),
        embedding_row("r-other", "Acme Store", user_id="user-2", embedding=unit_vector(1)),
        embedding_row("r-team", "Acme Store Branch", user_id="user-2", team_id="team-1", embedding=unit_vector(1)),
        embedding_row(
            "biz-1",
            "Acme Store Sdn Bhd",
            source_type="business_directory",
            content_type="business_name",
            user_id=None,
            embedding=unit_vector(1),
        ),
        embedding_row("r-cafe", "Corner Cafe", user_id="user-1", embedding=unit_vector(2)),
    ]
    for row in rows:
        supabase_client.add_row(EMBEDDINGS_TABLE, row)
    return supabase_client


def source_ids(response):
    return [result.source_id for result in response.results]


class TestOwnershipScoping:

    @pytest.mark.asyncio
    async def test_other_users_private_rows_are_never_returned(self, seeded_client):
        scope = SearchScope.for_user("user-1")

        response = await text_hybrid_search(seeded_client, scope, "Acme")

        assert set(source_ids(response)) == {"r-own", "biz-1"}

    @pytest.mark.asyncio
    async def test_team_rows_are_visible_to_members(self, seeded_client):
        scope = SearchScope.for_user("user-1", team_ids=["team-1"])

        response = await text_hybrid_search(seeded_client, scope, "Acme")

        assert set(source_ids(response)) == {"r-own", "r-team", "biz-1"}

    @pytest.mark.asyncio
    async def test_hybrid_search_applies_the_same_scope(self, seeded_client):
        scope = SearchScope.for_user("user-2")

        response = await enhanced_hybrid_search(seeded_client, scope, unit_vector(1), "Acme")

        assert "r-own" not in source_ids(response)
        assert {"r-other", "r-team", "biz-1"} <= set(source_ids(response))

    @pytest.mark.asyncio
    async def test_resolve_scope_reads_team_memberships(self, supabase_client):
        supabase_client.add_row("team_members", {"user_id": "user-1", "team_id": "team-1"})
        supabase_client.add_row("team_members", {"user_id": "user-9", "team_id": "team-9"})

        scope = await resolve_scope(supabase_client, "user-1")

        assert scope.user_id == "user-1"
        assert scope.team_ids == frozenset({"team-1"})
        assert scope.allows({"source_type": "receipt", "user_id": "user-2", "team_id": "team-1"})
        assert not scope.allows({"source_type": "receipt", "user_id": "user-2", "team_id": None})


class TestRanking:

    @pytest.mark.asyncio
    async def test_exact_text_match_is_admitted_on_keyword_alone(self, supabase_client):
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("r-1", "Acme Store", embedding=unit_vector(2)))
        params = HybridSearchParams(similarity_threshold=0.99, trigram_threshold=1.0)

        response = await enhanced_hybrid_search(
            supabase_client, SearchScope.service(), unit_vector(1), "Acme Store", params=params
        )

        assert len(response.results) == 1
        result = response.results[0]
        assert result.keyword_score == 1.0
        assert result.similarity == 0.0
        assert result.trigram_similarity == 0.0
        assert result.combined_score == pytest.approx(0.25)

    @pytest.mark.asyncio
    async def test_semantic_ordering_and_threshold(self, supabase_client):
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("close", "Blue Bottle", embedding=unit_vector(1)))
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("near", "Green Leaf", embedding=unit_vector(1, 0.8)))
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("far", "Red Door", embedding=unit_vector(2)))

        response = await enhanced_hybrid_search(supabase_client, SearchScope.service(), unit_vector(1))

        assert source_ids(response) == ["close", "near"]
        assert response.results[0].combined_score == pytest.approx(0.6)
        assert response.results[1].similarity == pytest.approx(0.8)
        assert response.semantic_enabled is True
        assert response.text_enabled is False

    @pytest.mark.asyncio
    async def test_match_count_caps_results(self, supabase_client):
        for index in range(5):
            supabase_client.add_row(
                EMBEDDINGS_TABLE, embedding_row(f"r-{index}", f"Acme outlet {index}", embedding=unit_vector(1))
            )

        response = await enhanced_hybrid_search(
            supabase_client,
            SearchScope.service(),
            unit_vector(1),
            params=HybridSearchParams(match_count=3),
        )

        assert response.count == 3

    @pytest.mark.asyncio
    async def test_rows_with_empty_content_are_not_searchable(self, supabase_client):
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("empty", "  ", embedding=unit_vector(1)))
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("full", "Acme", embedding=unit_vector(1)))

        response = await enhanced_hybrid_search(supabase_client, SearchScope.service(), unit_vector(1))

        assert source_ids(response) == ["full"]


class TestDegradedInputs:

    @pytest.mark.asyncio
    async def test_no_vector_and_no_text_returns_empty(self, seeded_client):
        response = await search(seeded_client, SearchScope.for_user("user-1"), None, "   ")

        assert response.results == []
        assert response.semantic_enabled is False
        assert response.text_enabled is False

    @pytest.mark.asyncio
    async def test_missing_vector_falls_back_to_text_search(self, seeded_client):
        response = await search(seeded_client, SearchScope.for_user("user-1"), None, "Acme")

        assert response.semantic_enabled is False
        assert "r-own" in source_ids(response)
        assert all(result.similarity == 0.0 for result in response.results)

    @pytest.mark.asyncio
    async def test_wrong_dimension_vector_is_ignored(self, seeded_client):
        response = await search(seeded_client, SearchScope.for_user("user-1"), [0.1, 0.2], "Acme")

        assert response.semantic_enabled is False
        assert "r-own" in source_ids(response)

    @pytest.mark.asyncio
    async def test_text_search_boosts_substring_matches(self, seeded_client):
        response = await text_hybrid_search(
            seeded_client,
            SearchScope.for_user("user-1"),
            "acme",
            params=TextSearchParams(similarity_threshold=0.9),
        )

        assert response.results[0].keyword_score == 1.0
        assert "r-cafe" not in source_ids(response)


def candidate(record_id, content_text, semantic_similarity):
    record = EmbeddingRecord(
        id=record_id,
        source_type="receipt",
        source_id=record_id,
        content_type="merchant",
        content_text=content_text,
    )
    return SearchCandidate(record=record, semantic_similarity=semantic_similarity)


def semantic_only_config(trigram_threshold):
    return RankingConfig(
        similarity_threshold=0.5,
        trigram_threshold=trigram_threshold,
        semantic_weight=1.0,
        trigram_weight=0.0,
        keyword_weight=0.0,
        match_count=10,
    )


class TestTieBreaks:

    def test_equal_combined_scores_are_ordered_by_trigram(self):
        candidates = [
            candidate("a-partial", "Acme Shop", 0.9),
            candidate("b-exact", "Acme Store", 0.9),
        ]

        results = rank_candidates(candidates, "Acme Store", unit_vector(1), semantic_only_config(0.0))

        assert [result.id for result in results] == ["b-exact", "a-partial"]
        assert results[0].combined_score == results[1].combined_score
        assert results[0].trigram_similarity > results[1].trigram_similarity

    def test_equal_combined_and_trigram_scores_are_ordered_by_keyword(self):
        candidates = [
            candidate("a-loose", "Acme Store Sdn Bhd Kuala Lumpur", 0.9),
            candidate("b-tight", "Acme Store", 0.9),
        ]

        results = rank_candidates(candidates, "Acme Store", unit_vector(1), semantic_only_config(1.0))

        assert [result.id for result in results] == ["b-tight", "a-loose"]
        assert results[0].combined_score == results[1].combined_score
        assert results[0].trigram_similarity == results[1].trigram_similarity == 0.0
        assert results[0].keyword_score > results[1].keyword_score

    def test_full_ties_fall_back_to_id(self):
        candidates = [candidate("b", "Acme", 0.9), candidate("a", "Acme", 0.9)]

        results = rank_candidates(candidates, None, unit_vector(1), semantic_only_config(0.3))

        assert [result.id for result in results] == ["a", "b"]


class TestCandidateGeneration:

    @staticmethod
    def record_calls(client):
        calls = []
        default = client.rpc_handlers[SEARCH_CANDIDATES_RPC]

        def recording(params):
            rows = default(params)
            calls.append((params, rows))
            return rows

        client.rpc_handlers[SEARCH_CANDIDATES_RPC] = recording
        return calls

    @pytest.mark.asyncio
    async def test_scope_and_filters_are_sent_to_the_database(self, seeded_client):
        calls = self.record_calls(seeded_client)
        scope = SearchScope.for_user("user-1", team_ids=["team-1"])

        await text_hybrid_search(
            seeded_client,
            scope,
            "  Acme Store ",
            filters=SearchFilters(content_types=["merchant"]),
            params=TextSearchParams(match_count=5),
        )

        assert len(calls) == 1
        params, _ = calls[0]
        assert params["scope_user_id"] == "user-1"
        assert params["scope_team_ids"] == ["team-1"]
        assert params["scope_is_service"] is False
        assert params["content_types"] == ["merchant"]
        assert params["source_types"] is None
        assert params["query_text"] == "Acme Store"
        assert params["boundary_words"] == ["acme", "store"]
        assert params["query_embedding"] is None
        assert params["trigram_threshold"] == 0.3
        assert params["candidate_count"] == candidate_count(5)

    @pytest.mark.asyncio
    async def test_search_does_not_scan_the_embedding_table(self, seeded_client):
        await search(seeded_client, SearchScope.for_user("user-1"), unit_vector(1), "Acme")

        assert (EMBEDDINGS_TABLE, "select") not in seeded_client.executed

    @pytest.mark.asyncio
    async def test_similarity_comes_back_without_vectors(self, supabase_client):
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("r-1", "Blue Bottle", embedding=unit_vector(1, 0.8)))
        calls = self.record_calls(supabase_client)

        response = await enhanced_hybrid_search(supabase_client, SearchScope.service(), unit_vector(1))

        _, rows = calls[0]
        assert rows and all("embedding" not in row for row in rows)
        assert response.results[0].similarity == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_rows_outside_the_scope_are_dropped(self, supabase_client):
        foreign = embedding_row("r-foreign", "Acme Store", user_id="user-2")
        foreign.update({"id": "e-foreign", "semantic_similarity": None})
        supabase_client.rpc_handlers[SEARCH_CANDIDATES_RPC] = lambda params: [foreign]

        response = await text_hybrid_search(supabase_client, SearchScope.for_user("user-1"), "Acme Store")

        assert response.results == []

    def test_candidate_count_scales_with_match_count(self):
        assert candidate_count(5) == 200
        assert candidate_count(50) == 500


class TestFilters:

    @pytest.mark.asyncio
    async def test_source_and_content_type_filters(self, seeded_client):
        response = await text_hybrid_search(
            seeded_client,
            SearchScope.for_user("user-1"),
            "Acme",
            filters=SearchFilters(source_types=["business_directory"]),
        )
        assert source_ids(response) == ["biz-1"]

        response = await text_hybrid_search(
            seeded_client,
            SearchScope.for_user("user-1"),
            "Acme",
            filters=SearchFilters(content_types=["merchant"]),
        )
        assert source_ids(response) == ["r-own"]

    @pytest.mark.asyncio
    async def test_date_and_amount_filters_use_source_rows(self, supabase_client):
        supabase_client.add_row("receipts", {"id": "r-cheap", "date": "2025-01-10", "total": 5.0})
        supabase_client.add_row("receipts", {"id": "r-pricey", "date": "2025-01-12", "total": 90.0})
        supabase_client.add_row("receipts", {"id": "r-old", "date": "2024-06-01", "total": 90.0})
        for source_id in ("r-cheap", "r-pricey", "r-old"):
            supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row(source_id, "Acme Store"))
        supabase_client.add_row(
            EMBEDDINGS_TABLE,
            embedding_row("cat-1", "Acme", source_type="custom_category", content_type="name"),
        )

        filters = SearchFilters(start_date="2025-01-01", amount_min=10)
        response = await text_hybrid_search(supabase_client, SearchScope.service(), "Acme", filters=filters)

        assert set(source_ids(response)) == {"r-pricey", "cat-1"}

    @pytest.mark.asyncio
    async def test_metadata_is_used_when_source_row_is_gone(self, supabase_client):
        supabase_client.add_row(
            EMBEDDINGS_TABLE,
            embedding_row("gone", "Acme Store", metadata={"amount": 50.0, "date": "2025-02-01"}),
        )
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("unknown", "Acme Store"))

        filters = SearchFilters(amount_max=60)
        response = await text_hybrid_search(supabase_client, SearchScope.service(), "Acme", filters=filters)

        assert source_ids(response) == ["gone"]

    def test_inverted_ranges_are_rejected(self):
        with pytest.raises(ValueError):
            SearchFilters(amount_min=10, amount_max=5)
        with pytest.raises(ValueError):
            SearchFilters(start_date="2025-02-01", end_date="2025-01-01")


class TestFuzzyMerchantSearch:

    @pytest.mark.asyncio
    async def test_groups_similar_merchants(self, supabase_client):
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row(
            "r-1", "Starbucks", metadata={"amount": 12.5, "date": "2025-01-01"}
        ))
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row(
            "r-2", "Starbucks", metadata={"amount": 7.5, "date": "2025-03-01"}
        ))
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("r-3", "Petronas"))
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("r-4", "Starbucks", user_id="user-2"))

        suggestions = await fuzzy_merchant_search(
            supabase_client, SearchScope.for_user("user-1"), "Starbuck"
        )

        assert len(suggestions) == 1
        suggestion = suggestions[0]
        assert suggestion.merchant_name == "Starbucks"
        assert suggestion.occurrence_count == 2
        assert suggestion.total_amount == 20.0
        assert suggestion.latest_date.isoformat() == "2025-03-01"

    @pytest.mark.asyncio
    async def test_blank_query_returns_nothing(self, supabase_client):
        assert await fuzzy_merchant_search(supabase_client, SearchScope.service(), "  ") == []


class TestSearchStats:

    @pytest.fixture
    def stats_client(self, supabase_client):
        supabase_client.rpc_handlers["has_role"] = lambda params: params["_user_id"] == "admin-1"
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("r-1", "Acme", embedding=unit_vector(1)))
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("r-1", "Lunch with team", content_type="notes"))
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("r-2", "Other", user_id="user-2", embedding=unit_vector(1)))
        return supabase_client

    @pytest.mark.asyncio
    async def test_own_stats_do_not_require_admin(self, stats_client):
        stats = await get_enhanced_search_stats(stats_client, caller_id="user-1", user_filter="user-1")

        assert stats.total_embeddings == 2
        assert stats.semantic_ready == 1
        assert stats.trigram_indexed == 2
        assert {share.content_type for share in stats.top_content_types} == {"merchant", "notes"}

    @pytest.mark.asyncio
    async def test_cross_user_stats_require_admin(self, stats_client):
        with pytest.raises(AuthorizationError):
            await get_enhanced_search_stats(stats_client, caller_id="user-1", user_filter="user-2")
        with pytest.raises(AuthorizationError):
            await get_enhanced_search_stats(stats_client, caller_id="user-1")

    @pytest.mark.asyncio
    async def test_admin_sees_all_users(self, stats_client):
        stats = await get_enhanced_search_stats(stats_client, caller_id="admin-1")

        assert stats.total_embeddings == 3
        assert stats.semantic_ready == 2
        assert stats.search_performance_metrics["semantic_coverage"] == pytest.approx(66.67)
