"""
Supabase client factories.

Two kinds of clients exist:

1. User clients (get_supabase_client): carry the caller's JWT, so every
   PostgREST query is subject to Row Level Security.
2. Service clients (get_service_role_client): use the secret key and bypass
   RLS. Used by the embedding worker, the change webhook and the search
   engine. Search re-applies ownership in exactly one place
   (receipt_search.services.search.scope.SearchScope), so a service client
   must never be handed to code that does not go through that scope.
"""

import logging
from functools import lru_cache

from receipt_search.config import settings
from supabase import Client, create_client

logger = logging.getLogger(__name__)


def get_supabase_client(access_token: str) -> Client:
    """
    Create an authenticated Supabase client for a specific user.

    This client respects Row Level Security (RLS) policies because it uses
    the user's JWT access token from Supabase Auth.

    Args:
        access_token: The user's JWT access token from Supabase Auth.

    Returns:
        An authenticated Supabase client that enforces RLS.
    """
    client: Client = create_client(
        supabase_url=settings.SUPABASE_URL,
        supabase_key=settings.SUPABASE_PUBLISHABLE_KEY
    )

    # The token's 'sub' claim is what auth.uid() resolves to inside RLS policies
    client.auth.set_session(access_token, access_token)

    logger.debug(
        "Created authenticated Supabase client with user token "
        "(RLS enforced)"
    )

    return client


@lru_cache(maxsize=1)
def get_service_role_client() -> Client:
    """
    Create (once) a Supabase client with service_role privileges.

    WARNING: This bypasses RLS. Only use it for:
    - The embedding queue worker and the worker-facing endpoints
    - The database change webhook
    - Search and maintenance paths that scope rows through SearchScope

    Returns:
        A Supabase client with service_role privileges.

    Raises:
        RuntimeError: If SUPABASE_SECRET_KEY is not configured.
    """
    if not settings.SUPABASE_SECRET_KEY:
        raise RuntimeError(
            "SUPABASE_SECRET_KEY is not configured. "
            "The service role client is required for queue and search operations."
        )

    client: Client = create_client(
        supabase_url=settings.SUPABASE_URL,
        supabase_key=settings.SUPABASE_SECRET_KEY
    )

    logger.info("Created service role Supabase client (RLS bypassed)")

    return client
