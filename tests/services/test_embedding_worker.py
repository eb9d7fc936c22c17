"""
Tests for the embedding queue worker.

The embedder is replaced by a deterministic fake; the database by the
in-memory Supabase client. Covers:
- Completion only after the embeddings were written
- Failure isolation, retry bookkeeping and metrics
- Delete tasks and stale content cleanup
- The trigger -> worker -> search round trip
"""

from typing import List

import httpx
import pytest

from receipt_search.services.embedding_worker import EmbeddingQueueWorker, classify_error
from receipt_search.services.queue_service import enqueue_source_change
from receipt_search.services.search import SearchScope, search
from receipt_search.schemas.search import SearchFilters
from receipt_search.utils.constants import EMBEDDINGS_TABLE, METRICS_TABLE, QUEUE_TABLE
from receipt_search.utils.errors import NotFoundError, ValidationError
from tests.fakes import embedding_row, unit_vector


class FakeEmbedder:
    """Maps every text to the same axis vector; can be told to fail."""

    model = "fake-embedding-model"

    def __init__(self, fail_on: str = None):
        self.fail_on = fail_on
        self.calls: List[str] = []

    async def embed(self, text: str, task_type: str = "RETRIEVAL_DOCUMENT") -> List[float]:
        self.calls.append(text)
        if self.fail_on and self.fail_on in text:
            raise httpx.ConnectError("connection reset")
        return unit_vector(1)

    async def embed_query(self, text: str) -> List[float]:
        return await self.embed(text, "RETRIEVAL_QUERY")


def task_row(client, source_id):
    return next(row for row in client.rows(QUEUE_TABLE) if row["source_id"] == source_id)


class TestClassifyError:

    @pytest.mark.parametrize("error,expected", [
        (ValidationError("empty"), "validation"),
        (NotFoundError("gone"), "not_found"),
        (httpx.ConnectError("reset"), "network"),
        (TimeoutError(), "network"),
        (RuntimeError("boom"), "processing_error"),
    ])
    def test_classification(self, error, expected):
        assert classify_error(error) == expected


class TestWorkerRun:

    @pytest.mark.asyncio
    async def test_insert_task_writes_embeddings_then_completes(self, supabase_client):
        supabase_client.add_row("receipts", {
            "id": "r-1", "user_id": "user-1", "merchant": "Acme Store", "notes": "Team lunch",
        })
        await enqueue_source_change(supabase_client, "receipts", "INSERT", "r-1")
        embedder = FakeEmbedder()

        summary = await EmbeddingQueueWorker(supabase_client, embedder, worker_id="w-1").run_once()

        assert summary.claimed == 1
        assert summary.completed == 1
        assert summary.failed == 0

        rows = supabase_client.rows(EMBEDDINGS_TABLE)
        assert {row["content_type"] for row in rows} == {"merchant", "notes"}
        assert all(row["metadata"]["embedding_model"] == "fake-embedding-model" for row in rows)

        task = task_row(supabase_client, "r-1")
        assert task["status"] == "completed"
        assert task["worker_id"] is None

        metrics = supabase_client.rows(METRICS_TABLE)
        assert len(metrics) == 1
        assert metrics[0]["success"] is True
        assert metrics[0]["api_model"] == "fake-embedding-model"

    @pytest.mark.asyncio
    async def test_failing_task_does_not_stop_the_batch(self, supabase_client):
        supabase_client.add_row("receipts", {"id": "r-bad", "user_id": "user-1", "merchant": "Broken Cafe"})
        supabase_client.add_row("receipts", {"id": "r-good", "user_id": "user-1", "merchant": "Acme Store"})
        await enqueue_source_change(supabase_client, "receipts", "INSERT", "r-bad")
        await enqueue_source_change(supabase_client, "receipts", "INSERT", "r-good")

        summary = await EmbeddingQueueWorker(
            supabase_client, FakeEmbedder(fail_on="Broken"), worker_id="w-1"
        ).run_once()

        assert (summary.completed, summary.failed) == (1, 1)

        bad = task_row(supabase_client, "r-bad")
        assert bad["status"] == "failed"
        assert bad["retry_count"] == 1
        assert "connection reset" in bad["error_message"]
        assert task_row(supabase_client, "r-good")["status"] == "completed"

        failed_metric = next(row for row in supabase_client.rows(METRICS_TABLE) if not row["success"])
        assert failed_metric["error_type"] == "network"

        # Nothing was written for the failed source
        assert [row["source_id"] for row in supabase_client.rows(EMBEDDINGS_TABLE)] == ["r-good"]

    @pytest.mark.asyncio
    async def test_failed_task_is_retried_on_next_run(self, supabase_client):
        supabase_client.add_row("receipts", {"id": "r-1", "user_id": "user-1", "merchant": "Flaky Mart"})
        await enqueue_source_change(supabase_client, "receipts", "UPDATE", "r-1")

        await EmbeddingQueueWorker(supabase_client, FakeEmbedder(fail_on="Flaky"), worker_id="w-1").run_once()
        summary = await EmbeddingQueueWorker(supabase_client, FakeEmbedder(), worker_id="w-1").run_once()

        assert summary.requeued == 1
        assert summary.completed == 1
        assert task_row(supabase_client, "r-1")["status"] == "completed"

    @pytest.mark.asyncio
    async def test_missing_source_fails_as_not_found(self, supabase_client):
        await enqueue_source_change(supabase_client, "receipts", "UPDATE", "r-missing")

        summary = await EmbeddingQueueWorker(supabase_client, FakeEmbedder(), worker_id="w-1").run_once()

        assert summary.outcomes[0].error_type == "not_found"
        assert task_row(supabase_client, "r-missing")["status"] == "failed"

    @pytest.mark.asyncio
    async def test_delete_task_removes_embeddings(self, supabase_client):
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("r-1", "Acme", embedding=unit_vector(1)))
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row("r-2", "Other", embedding=unit_vector(1)))
        await enqueue_source_change(supabase_client, "receipts", "DELETE", "r-1")

        summary = await EmbeddingQueueWorker(supabase_client, FakeEmbedder(), worker_id="w-1").run_once()

        assert summary.completed == 1
        assert [row["source_id"] for row in supabase_client.rows(EMBEDDINGS_TABLE)] == ["r-2"]

    @pytest.mark.asyncio
    async def test_cleared_field_removes_stale_embedding(self, supabase_client):
        supabase_client.add_row("receipts", {"id": "r-1", "user_id": "user-1", "merchant": "Acme", "notes": None})
        supabase_client.add_row(EMBEDDINGS_TABLE, embedding_row(
            "r-1", "Old note", content_type="notes", embedding=unit_vector(1)
        ))
        await enqueue_source_change(supabase_client, "receipts", "UPDATE", "r-1")

        await EmbeddingQueueWorker(supabase_client, FakeEmbedder(), worker_id="w-1").run_once()

        assert [row["content_type"] for row in supabase_client.rows(EMBEDDINGS_TABLE)] == ["merchant"]

    @pytest.mark.asyncio
    async def test_tasks_are_processed_in_admission_order(self, supabase_client):
        for receipt_id in ("r-low", "r-high"):
            supabase_client.add_row("receipts", {"id": receipt_id, "user_id": "user-1", "merchant": receipt_id})
        await enqueue_source_change(supabase_client, "receipts", "UPDATE", "r-low")
        await enqueue_source_change(supabase_client, "receipts", "INSERT", "r-high")
        embedder = FakeEmbedder()

        await EmbeddingQueueWorker(supabase_client, embedder, worker_id="w-1", batch_size=1).run_once()

        assert embedder.calls == ["r-high"]
        assert task_row(supabase_client, "r-low")["status"] == "pending"


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_new_receipt_becomes_searchable(self, supabase_client):
        supabase_client.add_row("receipts", {"id": "r-acme", "user_id": "user-1", "merchant": "Acme Store"})

        task = await enqueue_source_change(supabase_client, "receipts", "INSERT", "r-acme")
        assert task.operation == "insert"
        assert task.priority == "high"

        await EmbeddingQueueWorker(supabase_client, FakeEmbedder(), worker_id="w-1").run_once()

        response = await search(
            supabase_client,
            SearchScope.for_user("user-1"),
            query_text="Acme",
            filters=SearchFilters(source_types=["receipt"]),
        )

        assert [result.source_id for result in response.results] == ["r-acme"]
        assert response.results[0].content_type == "merchant"
        assert response.results[0].combined_score > 0

        other_user = await search(
            supabase_client,
            SearchScope.for_user("user-2"),
            query_embedding=unit_vector(1),
            query_text="Acme",
        )
        assert other_user.results == []
