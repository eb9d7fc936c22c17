"""
Database access layer for the receipt search backend.

All database operations go through the Supabase Python client:
- User-scoped clients respect Row Level Security (RLS)
- The service role client is reserved for the worker, the change webhook and
  search paths that apply SearchScope

Table schemas, constraints and indexes are declared in supabase/migrations/.
Paging helpers for PostgREST (which caps responses at 1000 rows) live in
receipt_search.db.paging.
"""

from .client import get_service_role_client, get_supabase_client

__all__ = ["get_supabase_client", "get_service_role_client"]
