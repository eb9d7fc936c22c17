"""
Tests for the content extractors that turn source rows into embeddable texts.
"""

import pytest

from receipt_search.services.content_extractors import (
    extract_business_directory_content,
    extract_claim_content,
    extract_line_item_content,
    extract_receipt_content,
    extract_team_member_content,
    load_source_contents,
)
from receipt_search.utils.errors import NotFoundError, ValidationError


def by_type(contents):
    return {content.content_type: content for content in contents}


class TestReceiptContent:

    def test_merchant_full_text_and_notes(self):
        receipt = {
            "id": "r-1",
            "user_id": "user-1",
            "team_id": "team-1",
            "merchant": " Acme Store ",
            "fullText": "ACME STORE\nMilk 2x 5.00",
            "notes": "Office supplies",
            "total": "42.50",
            "currency": "MYR",
            "date": "2025-06-01",
        }

        contents = by_type(extract_receipt_content(receipt))

        assert set(contents) == {"merchant", "full_text", "notes"}
        assert contents["merchant"].content_text == "Acme Store"
        assert contents["merchant"].metadata.amount == 42.5
        assert contents["merchant"].metadata.date.isoformat() == "2025-06-01"
        assert contents["full_text"].metadata.merchant == "Acme Store"
        assert contents["notes"].user_id == "user-1"
        assert contents["notes"].team_id == "team-1"

    def test_blank_fields_produce_nothing(self):
        receipt = {"id": "r-1", "merchant": "Acme", "fullText": "   ", "notes": None}

        contents = extract_receipt_content(receipt)

        assert [content.content_type for content in contents] == ["merchant"]

    def test_fallback_from_structured_fields(self):
        receipt = {"id": "r-1", "merchant": "", "date": "2025-06-01", "total": 12, "payment_method": "card"}

        contents = extract_receipt_content(receipt)

        assert len(contents) == 1
        assert contents[0].content_type == "fallback"
        assert contents[0].content_text == "Date: 2025-06-01\nTotal: 12\nPayment: card"

    def test_nothing_embeddable_raises(self):
        with pytest.raises(ValidationError):
            extract_receipt_content({"id": "r-1"})


class TestLineItemContent:

    def test_description_with_parent_metadata(self):
        line_item = {"id": "li-1", "receipt_id": "r-1", "description": "Oat milk 1L", "amount": 8.9}
        receipt = {"id": "r-1", "merchant": "Acme Store", "user_id": "user-1", "date": "2025-06-01"}

        contents = extract_line_item_content(line_item, receipt)

        assert len(contents) == 1
        content = contents[0]
        assert content.content_type == "line_item"
        assert content.content_text == "Oat milk 1L"
        assert content.user_id == "user-1"
        assert content.metadata.receipt_id == "r-1"
        assert content.metadata.line_item_id == "li-1"
        assert content.metadata.merchant == "Acme Store"
        assert content.metadata.extra["description"] == "Oat milk 1L"

    def test_description_equal_to_merchant_is_kept_with_its_description(self):
        line_item = {"id": "li-1", "receipt_id": "r-1", "description": "Starbucks"}
        receipt = {"id": "r-1", "merchant": "Starbucks"}

        contents = extract_line_item_content(line_item, receipt)

        assert [content.content_text for content in contents] == ["Starbucks"]
        assert contents[0].metadata.extra["description"] == "Starbucks"


class TestOtherSources:

    def test_claim_contents(self):
        claim = {
            "id": "c-1",
            "claimant_id": "user-1",
            "team_id": "team-1",
            "title": "Client dinner",
            "description": "Dinner with Acme",
            "attachments": [{"name": "receipt.pdf"}, "photo.jpg"],
            "amount": 120,
            "created_at": "2025-05-30T08:00:00Z",
        }

        contents = by_type(extract_claim_content(claim))

        assert set(contents) == {"title", "description", "attachments"}
        assert contents["attachments"].content_text == "receipt.pdf photo.jpg"
        assert contents["title"].user_id == "user-1"
        assert contents["title"].metadata.date.isoformat() == "2025-05-30"

    def test_team_member_profile_line(self):
        contents = extract_team_member_content(
            {"user_id": "user-1", "team_id": "team-1", "role": "admin"},
            {"first_name": "Aisha", "last_name": "Rahman", "email": "aisha@example.com"},
        )

        assert contents[0].content_type == "profile"
        assert contents[0].content_text == "Aisha Rahman aisha@example.com admin"

    def test_business_directory_is_public_and_bilingual(self):
        contents = by_type(extract_business_directory_content({
            "business_name": "Acme Trading",
            "business_name_malay": "Perniagaan Acme",
            "keywords": ["hardware", "tools"],
            "city": "Ipoh",
        }))

        assert contents["business_name"].user_id is None
        assert contents["business_name_malay"].language == "ms"
        assert contents["keywords"].content_text == "hardware tools"
        assert contents["address"].content_text == "Ipoh"


class TestLoadSourceContents:

    @pytest.mark.asyncio
    async def test_line_item_loads_parent_receipt(self, supabase_client):
        supabase_client.add_row("receipts", {"id": "r-1", "merchant": "Acme Store", "user_id": "user-1"})
        supabase_client.add_row("line_items", {"id": "li-1", "receipt_id": "r-1", "description": "Oat milk"})

        contents = await load_source_contents(supabase_client, "line_item", "li-1")

        assert contents[0].user_id == "user-1"
        assert contents[0].metadata.merchant == "Acme Store"

    @pytest.mark.asyncio
    async def test_missing_source_raises_not_found(self, supabase_client):
        with pytest.raises(NotFoundError):
            await load_source_contents(supabase_client, "receipt", "missing")

    @pytest.mark.asyncio
    async def test_unknown_source_type_raises(self, supabase_client):
        with pytest.raises(ValidationError):
            await load_source_contents(supabase_client, "invoice", "x-1")
