"""
Shared constants for the embedding store, queue and search engine.

Table names, source/content type vocabularies and queue enums live here so
that services, routes and tests agree on a single spelling.
"""

# Tables
EMBEDDINGS_TABLE = "unified_embeddings"
QUEUE_TABLE = "embedding_queue"
METRICS_TABLE = "embedding_metrics"

# Fixed vector width of the embedding column (VECTOR(1536))
EMBEDDING_DIMENSIONS = 1536

DEFAULT_LANGUAGE = "en"

# Source types stored in unified_embeddings.source_type
SOURCE_TYPES = (
    "receipt",
    "claim",
    "line_item",
    "team_member",
    "custom_category",
    "business_directory",
)

# Visible to every caller regardless of owner
PUBLIC_SOURCE_TYPES = frozenset({"business_directory"})

# Source types that carry a date and an amount; date/amount filters
# only apply to these
AMOUNT_DATE_SOURCE_TYPES = frozenset({"receipt", "claim"})

# Source type -> source-of-truth table
SOURCE_TABLES = {
    "receipt": "receipts",
    "claim": "claims",
    "line_item": "line_items",
    "team_member": "team_members",
    "custom_category": "custom_categories",
    "business_directory": "business_directory",
}

# Watched table -> source type (used by the change webhook)
WATCHED_TABLES = {table: source_type for source_type, table in SOURCE_TABLES.items()}

# Receipt content types that find_missing_embeddings checks, mapped to the
# receipts column that feeds them
RECEIPT_CONTENT_COLUMNS = {
    "full_text": "fullText",
    "merchant": "merchant",
    "notes": "notes",
}

# Queue vocabulary
QUEUE_OPERATIONS = ("insert", "update", "delete")
PRIORITY_ORDER = ("high", "medium", "low")
OPERATION_PRIORITY = {
    "insert": "high",
    "update": "medium",
    "delete": "low",
}

STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"
STATUS_CANCELLED = "cancelled"

QUEUE_STATUSES = (
    STATUS_PENDING,
    STATUS_PROCESSING,
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_CANCELLED,
)
TERMINAL_STATUSES = frozenset({STATUS_COMPLETED, STATUS_FAILED, STATUS_CANCELLED})

# Metric error classification
METRIC_ERROR_TYPES = (
    "validation",
    "not_found",
    "api_limit",
    "network",
    "processing_error",
    "unknown",
)

# Role checked by the has_role RPC for operator endpoints
ADMIN_ROLE = "admin"

# PostgREST returns at most this many rows per request by default
POSTGREST_PAGE_SIZE = 1000

# Candidate generation RPC for the search engine; each branch returns at
# most max(match_count * CANDIDATE_MULTIPLIER, MIN_CANDIDATES) rows
SEARCH_CANDIDATES_RPC = "match_search_candidates"
CANDIDATE_MULTIPLIER = 10
MIN_CANDIDATES = 200
