"""
Date and amount filters.

These constrain receipt and claim records only, using the date and amount
held by the source row (receipts.date / receipts.total, claims.submitted_at
/ claims.amount). When the source row is gone the typed metadata copy is
used. Records of every other source type pass unchanged.
"""

import logging
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Tuple

from supabase import Client

from receipt_search.schemas.embeddings import EmbeddingRecord
from receipt_search.schemas.search import SearchFilters
from receipt_search.services.source_service import get_source_records_by_ids
from receipt_search.utils.constants import AMOUNT_DATE_SOURCE_TYPES

logger = logging.getLogger(__name__)


def _as_date(raw: Any) -> Optional[date]:
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    try:
        return date.fromisoformat(str(raw)[:10])
    except ValueError:
        return None


def _as_float(raw: Any) -> Optional[float]:
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


def _source_values(source_type: str, row: Dict[str, Any]) -> Tuple[Optional[date], Optional[float]]:
    if source_type == "receipt":
        return _as_date(row.get("date")), _as_float(row.get("total"))
    return (
        _as_date(row.get("submitted_at") or row.get("created_at")),
        _as_float(row.get("amount")),
    )


def passes_date_amount_filters(
    record_date: Optional[date],
    record_amount: Optional[float],
    filters: SearchFilters,
) -> bool:
    """A filter that is set excludes records with no value for it."""
    if filters.start_date is not None and (record_date is None or record_date < filters.start_date):
        return False
    if filters.end_date is not None and (record_date is None or record_date > filters.end_date):
        return False
    if filters.amount_min is not None and (record_amount is None or record_amount < filters.amount_min):
        return False
    if filters.amount_max is not None and (record_amount is None or record_amount > filters.amount_max):
        return False
    return True


async def apply_date_amount_filters(
    supabase_client: Client,
    records: List[EmbeddingRecord],
    filters: SearchFilters,
) -> List[EmbeddingRecord]:
    """Drop receipt/claim records outside the requested date and amount ranges."""
    if not filters.has_date_or_amount_filter:
        return records

    receipt_ids = [record.source_id for record in records if record.source_type == "receipt"]
    claim_ids = [record.source_id for record in records if record.source_type == "claim"]

    sources: Dict[Tuple[str, str], Dict[str, Any]] = {}
    if receipt_ids:
        rows = await get_source_records_by_ids(supabase_client, "receipts", receipt_ids, "id, date, total")
        sources.update({("receipt", source_id): row for source_id, row in rows.items()})
    if claim_ids:
        rows = await get_source_records_by_ids(
            supabase_client, "claims", claim_ids, "id, amount, submitted_at, created_at"
        )
        sources.update({("claim", source_id): row for source_id, row in rows.items()})

    kept: List[EmbeddingRecord] = []
    for record in records:
        if record.source_type not in AMOUNT_DATE_SOURCE_TYPES:
            kept.append(record)
            continue

        source_row = sources.get((record.source_type, record.source_id))
        if source_row is not None:
            record_date, record_amount = _source_values(record.source_type, source_row)
        else:
            record_date, record_amount = record.metadata.date, record.metadata.amount

        if passes_date_amount_filters(record_date, record_amount, filters):
            kept.append(record)

    logger.debug(f"Date/amount filters kept {len(kept)} of {len(records)} candidates")
    return kept
