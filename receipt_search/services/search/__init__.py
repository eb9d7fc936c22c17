"""
Hybrid search over unified_embeddings.
"""

from .engine import (
    enhanced_hybrid_search,
    fuzzy_merchant_search,
    get_enhanced_search_stats,
    search,
    text_hybrid_search,
)
from .scope import SearchScope, resolve_scope
from .snippets import extract_contextual_snippets

__all__ = [
    "search",
    "enhanced_hybrid_search",
    "text_hybrid_search",
    "fuzzy_merchant_search",
    "get_enhanced_search_stats",
    "extract_contextual_snippets",
    "SearchScope",
    "resolve_scope",
]
