"""
Access to the source-of-truth tables (receipts, claims, line_items, ...)
and to team membership / role lookups.
"""

import logging
from typing import Any, Dict, Iterable, List, Optional, cast

from supabase import Client

from receipt_search.db.paging import chunked
from receipt_search.utils.constants import SOURCE_TABLES
from receipt_search.utils.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

# Ids per in_() filter; keeps the request URL well below proxy limits
ID_CHUNK_SIZE = 200


def source_table_for(source_type: str) -> str:
    """
    Map a source type to its table.

    Raises:
        ValidationError: Unknown source type.
    """
    table = SOURCE_TABLES.get(source_type)
    if table is None:
        raise ValidationError(f"Unknown source_type '{source_type}'")
    return table


async def get_source_record(
    supabase_client: Client,
    source_type: str,
    source_id: str,
) -> Dict[str, Any]:
    """
    Load the source row an embedding is built from.

    Raises:
        ValidationError: Unknown source type.
        NotFoundError: The row does not exist (deleted or never created).
    """
    table = source_table_for(source_type)
    result = supabase_client.table(table).select("*").eq("id", source_id).execute()

    if not result.data:
        raise NotFoundError(
            f"{source_type} {source_id} not found",
            details={"source_type": source_type, "source_id": source_id},
        )

    return cast(Dict[str, Any], result.data[0])


async def get_source_records_by_ids(
    supabase_client: Client,
    table: str,
    ids: Iterable[str],
    columns: str = "*",
) -> Dict[str, Dict[str, Any]]:
    """Fetch rows of `table` by id, in chunks. Missing ids are simply absent."""
    unique_ids = sorted({str(value) for value in ids})
    rows: Dict[str, Dict[str, Any]] = {}

    for chunk in chunked(unique_ids, ID_CHUNK_SIZE):
        result = supabase_client.table(table).select(columns).in_("id", list(chunk)).execute()
        for row in cast(List[Dict[str, Any]], result.data or []):
            rows[str(row["id"])] = row

    return rows


async def get_user_team_ids(supabase_client: Client, user_id: str) -> List[str]:
    """Teams the user is an active member of."""
    result = (
        supabase_client.table("team_members")
        .select("team_id")
        .eq("user_id", user_id)
        .execute()
    )
    rows = cast(List[Dict[str, Any]], result.data or [])
    return sorted({str(row["team_id"]) for row in rows if row.get("team_id")})


async def has_role(supabase_client: Client, user_id: str, role: str) -> bool:
    """
    Check an application role through the has_role RPC.

    Any RPC failure counts as "no role".
    """
    try:
        response = supabase_client.rpc("has_role", {"_user_id": user_id, "_role": role}).execute()
    except Exception as e:
        logger.error(f"has_role RPC failed for user_id={user_id}: {e}")
        return False

    data: Optional[Any] = response.data
    if isinstance(data, list):
        data = data[0] if data else False
    return bool(data)
