"""
Maintenance and repair jobs for unified_embeddings.

- analyze_content_health(): coverage of non-empty content per
  (source_type, content_type), read only
- repair_malformed_content(): rewrite empty content_text from the source
  table
- repair_line_item_content(): rewrite line item rows that carry the parent
  merchant name instead of the item description
- find_missing_embeddings(): receipts with text but no embedding
- get_embedding_coverage_stats(): receipt level coverage

Batch jobs isolate every record: a failing record is reported with
status="error" and the run continues. Repaired rows are queued for
re-embedding so the vector follows the new text.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, cast

from supabase import Client

from receipt_search.db.paging import chunked, fetch_all_rows
from receipt_search.schemas.maintenance import (
    ContentHealthRow,
    EmbeddingCoverageStats,
    MissingEmbedding,
    RepairOutcome,
    RepairReport,
)
from receipt_search.services import queue_service
from receipt_search.services.content_extractors import load_source_contents
from receipt_search.services.embedding_store import is_blank, update_embedding_content
from receipt_search.services.search.repository import load_visible_rows
from receipt_search.services.search.scope import SearchScope
from receipt_search.services.source_service import (
    ID_CHUNK_SIZE,
    get_source_record,
    source_table_for,
)
from receipt_search.utils.constants import EMBEDDINGS_TABLE, RECEIPT_CONTENT_COLUMNS
from receipt_search.utils.errors import NotFoundError

logger = logging.getLogger(__name__)

_ROW_COLUMNS = "id, source_type, source_id, content_type, content_text, user_id, team_id, metadata"


# =========================================================
# Content health
# =========================================================

def summarize_content_health(rows: List[Dict[str, Any]]) -> List[ContentHealthRow]:
    """Group embedding rows by (source_type, content_type) and count empty content."""
    groups: Dict[Tuple[str, str], List[int]] = {}
    for row in rows:
        counts = groups.setdefault((row["source_type"], row["content_type"]), [0, 0])
        counts[0] += 1
        if is_blank(row.get("content_text")):
            counts[1] += 1

    result = []
    for (source_type, content_type), (total, empty) in sorted(groups.items()):
        result.append(ContentHealthRow(
            source_type=source_type,
            content_type=content_type,
            total_embeddings=total,
            empty_content=empty,
            has_content=total - empty,
            content_health_percentage=round((total - empty) * 100 / total, 2),
        ))
    return result


async def analyze_content_health(supabase_client: Client) -> List[ContentHealthRow]:
    """Diagnostic only, never modifies rows."""
    rows = load_visible_rows(
        supabase_client,
        SearchScope.service(),
        columns="id, source_type, user_id, team_id, content_type, content_text",
    )
    return summarize_content_health(rows)


# =========================================================
# Repair
# =========================================================

def receipt_repair_text(content_type: str, receipt: Dict[str, Any]) -> Optional[str]:
    """
    Authoritative text of a receipt content type.

    full_text / merchant / notes map to their columns. The fallback content
    type takes the first of fullText, "merchant - total", merchant and
    "Receipt from <date>". Any other content type gets the merchant name or
    "Unknown".
    """
    def clean(value: Any) -> str:
        return str(value).strip() if value is not None else ""

    merchant = clean(receipt.get("merchant"))

    if content_type in RECEIPT_CONTENT_COLUMNS:
        return clean(receipt.get(RECEIPT_CONTENT_COLUMNS[content_type])) or None

    if content_type == "fallback":
        full_text = clean(receipt.get("fullText"))
        if full_text:
            return full_text
        if merchant and receipt.get("total") is not None:
            return f"{merchant} - {receipt['total']}"
        if merchant:
            return merchant
        if receipt.get("date"):
            return f"Receipt from {receipt['date']}"
        return None

    return merchant or "Unknown"


async def _repaired_text(supabase_client: Client, row: Dict[str, Any]) -> Optional[str]:
    source_type = row["source_type"]
    source_id = str(row["source_id"])
    content_type = row["content_type"]

    if source_type == "receipt":
        receipt = await get_source_record(supabase_client, "receipt", source_id)
        return receipt_repair_text(content_type, receipt)

    if source_type == "claim" and content_type in ("title", "description"):
        claim = await get_source_record(supabase_client, "claim", source_id)
        value = claim.get(content_type)
        return str(value).strip() if value and str(value).strip() else None

    for content in await load_source_contents(supabase_client, source_type, source_id):
        if content.content_type == content_type:
            return content.content_text
    return None


async def _rewrite_and_requeue(supabase_client: Client, row: Dict[str, Any], new_text: str) -> None:
    await update_embedding_content(supabase_client, str(row["id"]), new_text)
    await queue_service.enqueue_source_change(
        supabase_client,
        table=source_table_for(row["source_type"]),
        operation="update",
        record_id=str(row["source_id"]),
        provenance={"reason": "content_repair", "embedding_id": str(row["id"])},
    )


def _outcome(row: Dict[str, Any], status: str, message: str) -> RepairOutcome:
    return RepairOutcome(
        embedding_id=str(row["id"]),
        source_type=row["source_type"],
        source_id=str(row["source_id"]),
        content_type=row["content_type"],
        status=status,
        message=message,
    )


async def repair_malformed_content(
    supabase_client: Client,
    source_type: Optional[str] = None,
    limit: Optional[int] = None,
) -> RepairReport:
    """
    Rewrite empty content_text from the source-of-truth tables.

    Args:
        supabase_client: Service role Supabase client
        source_type: Restrict the run to one source type
        limit: Maximum number of records to examine

    Returns:
        One outcome per examined record plus fixed/skipped/error counts.
    """
    rows = load_visible_rows(supabase_client, SearchScope.service(), columns=_ROW_COLUMNS)
    targets = [
        row for row in rows
        if is_blank(row.get("content_text")) and (source_type is None or row["source_type"] == source_type)
    ]
    if limit is not None:
        targets = targets[:limit]

    report = RepairReport()
    for row in targets:
        try:
            new_text = await _repaired_text(supabase_client, row)
            if not new_text:
                report.add(_outcome(row, "skipped", "No content available"))
                continue

            await _rewrite_and_requeue(supabase_client, row, new_text)
            report.add(_outcome(row, "fixed", "Content updated"))

        except NotFoundError:
            report.add(_outcome(row, "error", f"{row['source_type']} not found"))
        except Exception as e:
            logger.error(f"Repair failed for embedding {row['id']}: {e}")
            report.add(_outcome(row, "error", str(e)))

    logger.info(
        f"Content repair finished: fixed={report.fixed_count}, "
        f"skipped={report.skipped_count}, errors={report.error_count}"
    )
    return report


async def repair_line_item_content(
    supabase_client: Client,
    limit: Optional[int] = None,
) -> RepairReport:
    """
    Fix line item embeddings whose text is empty or is the parent merchant
    name while the line item's own description says something else.
    """
    rows = load_visible_rows(
        supabase_client,
        SearchScope.service(),
        columns=_ROW_COLUMNS,
        extra=lambda query: query.eq("source_type", "line_item"),
    )

    report = RepairReport()
    examined = 0
    for row in rows:
        if limit is not None and examined >= limit:
            break

        try:
            current = (row.get("content_text") or "").strip()
            line_item = await get_source_record(supabase_client, "line_item", str(row["source_id"]))
            description = (line_item.get("description") or "").strip()

            merchant = ""
            if line_item.get("receipt_id"):
                try:
                    receipt = await get_source_record(supabase_client, "receipt", str(line_item["receipt_id"]))
                    merchant = (receipt.get("merchant") or "").strip()
                except NotFoundError:
                    merchant = ((row.get("metadata") or {}).get("merchant") or "").strip()

            carries_merchant = bool(merchant) and current.casefold() == merchant.casefold()
            if current and not (carries_merchant and description.casefold() != merchant.casefold()):
                continue

            examined += 1
            if not description:
                report.add(_outcome(row, "skipped", "Line item has no description"))
                continue

            await _rewrite_and_requeue(supabase_client, row, description)
            report.add(_outcome(row, "fixed", "Content replaced with line item description"))

        except NotFoundError:
            examined += 1
            report.add(_outcome(row, "error", "line_item not found"))
        except Exception as e:
            examined += 1
            logger.error(f"Line item repair failed for embedding {row['id']}: {e}")
            report.add(_outcome(row, "error", str(e)))

    logger.info(
        f"Line item repair finished: fixed={report.fixed_count}, "
        f"skipped={report.skipped_count}, errors={report.error_count}"
    )
    return report


# =========================================================
# Coverage
# =========================================================

def _embedded_content_types(supabase_client: Client, receipt_ids: List[str]) -> Dict[str, set]:
    embedded: Dict[str, set] = {}
    for chunk in chunked(receipt_ids, ID_CHUNK_SIZE):
        result = (
            supabase_client.table(EMBEDDINGS_TABLE)
            .select("source_id, content_type")
            .eq("source_type", "receipt")
            .in_("source_id", list(chunk))
            .execute()
        )
        for row in cast(List[Dict[str, Any]], result.data or []):
            embedded.setdefault(str(row["source_id"]), set()).add(row["content_type"])
    return embedded


async def find_missing_embeddings(supabase_client: Client, limit: int = 100) -> List[MissingEmbedding]:
    """
    Receipts with non-empty full_text / merchant / notes but no embedding
    for that content type, newest first.
    """
    receipts = fetch_all_rows(
        lambda: (
            supabase_client.table("receipts")
            .select("id, merchant, fullText, notes, date, user_id")
            .order("date", desc=True)
            .order("id", desc=False)
        )
    )

    missing: List[MissingEmbedding] = []
    for batch in chunked(receipts, ID_CHUNK_SIZE):
        embedded = _embedded_content_types(supabase_client, [str(receipt["id"]) for receipt in batch])

        for receipt in batch:
            have = embedded.get(str(receipt["id"]), set())
            lacking = [
                content_type
                for content_type, column in RECEIPT_CONTENT_COLUMNS.items()
                if not is_blank(receipt.get(column)) and content_type not in have
            ]
            if lacking:
                missing.append(MissingEmbedding(
                    receipt_id=str(receipt["id"]),
                    merchant=receipt.get("merchant"),
                    date=receipt.get("date"),
                    user_id=receipt.get("user_id"),
                    missing_content_types=lacking,
                ))
                if len(missing) >= limit:
                    return missing

    return missing


async def get_embedding_coverage_stats(supabase_client: Client) -> EmbeddingCoverageStats:
    """How many receipts have at least one embedding."""
    receipt_ids = {
        str(row["id"])
        for row in fetch_all_rows(lambda: supabase_client.table("receipts").select("id").order("id", desc=False))
    }
    embedded_ids = {
        str(row["source_id"])
        for row in fetch_all_rows(
            lambda: (
                supabase_client.table(EMBEDDINGS_TABLE)
                .select("source_id")
                .eq("source_type", "receipt")
                .order("id", desc=False)
            )
        )
    }
    with_embeddings = len(receipt_ids & embedded_ids)
    return EmbeddingCoverageStats(
        total_receipts=len(receipt_ids),
        receipts_with_embeddings=with_embeddings,
        receipts_missing_embeddings=len(receipt_ids) - with_embeddings,
    )
