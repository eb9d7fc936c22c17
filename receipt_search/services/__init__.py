"""
Service layer for the receipt search backend.

Contains the logic behind the HTTP routes and the embedding worker:
- embedding_store: validated, idempotent writes to unified_embeddings
- queue_service: enqueue, claim, status transitions and queue maintenance
- search: hybrid ranking, merchant suggestions, snippets and index stats
- maintenance_service: content health, repair and coverage jobs
- embedding_worker: drains the queue into the embedding store

Services take a Supabase client as their first argument and raise the
domain errors in utils/errors.py.
"""

from .embedding_store import (
    delete_embeddings_for_source,
    get_embeddings_for_source,
    upsert_embedding,
)
from .queue_service import (
    cancel_queue_items_by_source,
    claim_queue_items,
    cleanup_old_queue_items,
    enqueue_source_change,
    fetch_pending_queue_items,
    get_dead_queue_items,
    get_queue_statistics,
    reclaim_expired_leases,
    requeue_failed_items,
    update_queue_item_status,
)
from .maintenance_service import (
    analyze_content_health,
    find_missing_embeddings,
    get_embedding_coverage_stats,
    repair_line_item_content,
    repair_malformed_content,
)

__all__ = [
    # Embedding store
    "upsert_embedding",
    "get_embeddings_for_source",
    "delete_embeddings_for_source",
    # Queue
    "enqueue_source_change",
    "fetch_pending_queue_items",
    "claim_queue_items",
    "update_queue_item_status",
    "reclaim_expired_leases",
    "requeue_failed_items",
    "cancel_queue_items_by_source",
    "cleanup_old_queue_items",
    "get_dead_queue_items",
    "get_queue_statistics",
    # Maintenance
    "analyze_content_health",
    "repair_malformed_content",
    "repair_line_item_content",
    "find_missing_embeddings",
    "get_embedding_coverage_stats",
]
