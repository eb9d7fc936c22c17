"""
Content extractors: turn a source row into the texts that get embedded.

Each extractor returns one ExtractedContent per content type the row has
text for. Blank fields produce nothing; the embedding writer would reject
them anyway.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from supabase import Client

from receipt_search.schemas.embeddings import EmbeddingMetadata
from receipt_search.services.source_service import get_source_record
from receipt_search.utils.constants import DEFAULT_LANGUAGE
from receipt_search.utils.errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)


@dataclass
class ExtractedContent:
    """One text to embed for a source entity."""
    content_type: str
    content_text: str
    metadata: EmbeddingMetadata = field(default_factory=EmbeddingMetadata)
    user_id: Optional[str] = None
    team_id: Optional[str] = None
    language: str = DEFAULT_LANGUAGE


def _clean(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def _optional_float(value: Any) -> Optional[float]:
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _receipt_metadata(receipt: Dict[str, Any], **extra: Any) -> EmbeddingMetadata:
    return EmbeddingMetadata.from_json({
        "amount": _optional_float(receipt.get("total")),
        "currency": receipt.get("currency"),
        "date": receipt.get("date"),
        **extra,
    })


def extract_receipt_content(receipt: Dict[str, Any]) -> List[ExtractedContent]:
    """
    merchant, full_text and notes of a receipt.

    When none of them has text, a single "fallback" content built from the
    structured fields (merchant, date, total) is produced instead.

    Raises:
        ValidationError: The receipt has nothing embeddable at all.
    """
    user_id = receipt.get("user_id")
    team_id = receipt.get("team_id")
    merchant = _clean(receipt.get("merchant"))
    contents: List[ExtractedContent] = []

    if merchant:
        contents.append(ExtractedContent(
            content_type="merchant",
            content_text=merchant,
            metadata=_receipt_metadata(receipt),
            user_id=user_id,
            team_id=team_id,
        ))

    full_text = _clean(receipt.get("fullText"))
    if full_text:
        contents.append(ExtractedContent(
            content_type="full_text",
            content_text=full_text,
            metadata=_receipt_metadata(receipt, merchant=merchant or None),
            user_id=user_id,
            team_id=team_id,
        ))

    notes = _clean(receipt.get("notes"))
    if notes:
        contents.append(ExtractedContent(
            content_type="notes",
            content_text=notes,
            metadata=_receipt_metadata(receipt, merchant=merchant or None),
            user_id=user_id,
            team_id=team_id,
        ))

    if contents:
        return contents

    fallback_parts = [
        f"Merchant: {merchant}" if merchant else "",
        f"Date: {receipt['date']}" if receipt.get("date") else "",
        f"Total: {receipt['total']}" if receipt.get("total") is not None else "",
        f"Payment: {receipt['payment_method']}" if receipt.get("payment_method") else "",
    ]
    fallback_text = "\n".join(part for part in fallback_parts if part)

    if not fallback_text:
        raise ValidationError(f"Receipt {receipt.get('id')} has no embeddable content")

    logger.warning(f"Receipt {receipt.get('id')} has no text fields, using fallback content")
    return [ExtractedContent(
        content_type="fallback",
        content_text=fallback_text,
        metadata=_receipt_metadata(receipt, is_fallback=True),
        user_id=user_id,
        team_id=team_id,
    )]


def extract_line_item_content(
    line_item: Dict[str, Any],
    receipt: Optional[Dict[str, Any]] = None,
) -> List[ExtractedContent]:
    """
    The description of one line item.

    The parent receipt supplies ownership, date and the merchant name kept
    in metadata. The description is repeated in metadata so the writer can
    tell a genuine item named like the shop from a copied merchant name.
    """
    receipt = receipt or {}
    description = _clean(line_item.get("description"))
    merchant = _clean(receipt.get("merchant"))

    if not description:
        return []

    metadata = EmbeddingMetadata.from_json({
        "amount": _optional_float(line_item.get("amount")),
        "currency": receipt.get("currency"),
        "date": receipt.get("date"),
        "receipt_id": line_item.get("receipt_id"),
        "line_item_id": line_item.get("id"),
        "merchant": merchant or None,
        "description": description,
    })

    return [ExtractedContent(
        content_type="line_item",
        content_text=description,
        metadata=metadata,
        user_id=receipt.get("user_id"),
        team_id=receipt.get("team_id"),
    )]


def extract_claim_content(claim: Dict[str, Any]) -> List[ExtractedContent]:
    """title, description and attachment names of a claim."""
    user_id = claim.get("claimant_id")
    team_id = claim.get("team_id")
    title = _clean(claim.get("title"))

    def metadata(**extra: Any) -> EmbeddingMetadata:
        return EmbeddingMetadata.from_json({
            "amount": _optional_float(claim.get("amount")),
            "currency": claim.get("currency"),
            "date": claim.get("submitted_at") or claim.get("created_at"),
            "category": claim.get("category"),
            "status": claim.get("status"),
            **extra,
        })

    contents: List[ExtractedContent] = []

    if title:
        contents.append(ExtractedContent("title", title, metadata(), user_id, team_id))

    description = _clean(claim.get("description"))
    if description:
        contents.append(ExtractedContent("description", description, metadata(title=title or None), user_id, team_id))

    attachments = claim.get("attachments")
    if isinstance(attachments, list) and attachments:
        names = [
            _clean(item.get("name") or item.get("filename")) if isinstance(item, dict) else _clean(item)
            for item in attachments
        ]
        attachment_text = " ".join(name for name in names if name)
        if attachment_text:
            contents.append(ExtractedContent(
                "attachments",
                attachment_text,
                metadata(title=title or None, attachment_count=len(attachments)),
                user_id,
                team_id,
            ))

    return contents


def extract_team_member_content(
    team_member: Dict[str, Any],
    profile: Optional[Dict[str, Any]] = None,
) -> List[ExtractedContent]:
    """Searchable profile line: first name, last name, email, role."""
    profile = profile or {}
    parts = [
        _clean(profile.get("first_name")),
        _clean(profile.get("last_name")),
        _clean(profile.get("email")),
        _clean(team_member.get("role")),
    ]
    text = " ".join(part for part in parts if part)
    if not text:
        return []

    return [ExtractedContent(
        content_type="profile",
        content_text=text,
        metadata=EmbeddingMetadata.from_json({"role": team_member.get("role")}),
        user_id=team_member.get("user_id"),
        team_id=team_member.get("team_id"),
    )]


def extract_custom_category_content(category: Dict[str, Any]) -> List[ExtractedContent]:
    name = _clean(category.get("name"))
    if not name:
        return []
    return [ExtractedContent(
        content_type="name",
        content_text=name,
        metadata=EmbeddingMetadata.from_json({"color": category.get("color"), "icon": category.get("icon")}),
        user_id=category.get("user_id"),
    )]


def extract_business_directory_content(business: Dict[str, Any]) -> List[ExtractedContent]:
    """
    Public directory entries: English and Malay names, keywords, address.

    These rows have no owner and are visible to every caller.
    """
    base = {
        "business_type": business.get("business_type"),
        "city": business.get("city"),
        "state": business.get("state"),
    }
    contents: List[ExtractedContent] = []

    name = _clean(business.get("business_name"))
    if name:
        contents.append(ExtractedContent("business_name", name, EmbeddingMetadata.from_json(base)))

    malay_name = _clean(business.get("business_name_malay"))
    if malay_name:
        contents.append(ExtractedContent(
            "business_name_malay",
            malay_name,
            EmbeddingMetadata.from_json(base),
            language="ms",
        ))

    keywords = business.get("keywords")
    if isinstance(keywords, list):
        keyword_text = " ".join(_clean(keyword) for keyword in keywords if _clean(keyword))
        if keyword_text:
            contents.append(ExtractedContent(
                "keywords",
                keyword_text,
                EmbeddingMetadata.from_json({**base, "business_name": name or None}),
            ))

    address_parts = [
        _clean(business.get(key))
        for key in ("address_line1", "address_line2", "city", "state", "postcode")
    ]
    address = " ".join(part for part in address_parts if part)
    if address:
        contents.append(ExtractedContent(
            "address",
            address,
            EmbeddingMetadata.from_json({**base, "business_name": name or None}),
        ))

    return contents


async def load_source_contents(
    supabase_client: Client,
    source_type: str,
    source_id: str,
) -> List[ExtractedContent]:
    """
    Load a source row (plus the related rows it needs) and extract its contents.

    Raises:
        NotFoundError: The source row does not exist.
        ValidationError: Unknown source type, or nothing embeddable.
    """
    record = await get_source_record(supabase_client, source_type, source_id)

    if source_type == "receipt":
        return extract_receipt_content(record)

    if source_type == "line_item":
        receipt: Optional[Dict[str, Any]] = None
        if record.get("receipt_id"):
            try:
                receipt = await get_source_record(supabase_client, "receipt", str(record["receipt_id"]))
            except NotFoundError:
                logger.warning(f"Line item {source_id} references missing receipt {record['receipt_id']}")
        return extract_line_item_content(record, receipt)

    if source_type == "claim":
        return extract_claim_content(record)

    if source_type == "team_member":
        profile: Optional[Dict[str, Any]] = None
        if record.get("user_id"):
            result = supabase_client.table("profiles").select("*").eq("id", record["user_id"]).execute()
            profile = result.data[0] if result.data else None
        return extract_team_member_content(record, profile)

    if source_type == "custom_category":
        return extract_custom_category_content(record)

    if source_type == "business_directory":
        return extract_business_directory_content(record)

    raise ValidationError(f"No content extractor for source_type '{source_type}'")
