"""
Helpers for reading PostgREST result sets larger than one response page.
"""

from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterator, List, Sequence, TypeVar, cast

from receipt_search.utils.constants import POSTGREST_PAGE_SIZE

T = TypeVar("T")


def fetch_all_rows(
    make_query: Callable[[], Any],
    page_size: int = POSTGREST_PAGE_SIZE,
) -> List[Dict[str, Any]]:
    """
    Read every row of a query, one page at a time.

    Args:
        make_query: Zero-argument callable returning a fresh, filtered and
            ordered request builder (builders are mutable, so each page
            needs a new one)
        page_size: Rows per request

    Returns:
        All rows, in the order the query defines.
    """
    rows: List[Dict[str, Any]] = []
    for page in iter_row_pages(make_query, page_size):
        rows.extend(page)
    return rows


def iter_row_pages(
    make_query: Callable[[], Any],
    page_size: int = POSTGREST_PAGE_SIZE,
) -> Iterator[List[Dict[str, Any]]]:
    """Yield successive pages until a short page signals the end."""
    offset = 0
    while True:
        result = make_query().range(offset, offset + page_size - 1).execute()
        page = cast(List[Dict[str, Any]], result.data or [])
        if page:
            yield page
        if len(page) < page_size:
            return
        offset += page_size


def chunked(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Split a sequence into slices of at most `size` items (for in_ filters)."""
    for start in range(0, len(items), size):
        yield items[start:start + size]


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string, the format timestamptz columns return."""
    return datetime.now(timezone.utc).isoformat()
