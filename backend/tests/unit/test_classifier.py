"""
Unit Tests — Document type classification
"""

from __future__ import annotations

import pytest

from docintel.core.exceptions import AIProviderError
from docintel.processing.classifier import (
    MAX_OUTPUT_TOKENS,
    SAMPLE_LENGTH,
    classify_document,
    parse_label,
)
from tests.fakes import FakeModelClient


@pytest.mark.unit
class TestParseLabel:

    @pytest.mark.parametrize("reply,expected", [
        ("contract", "contract"),
        ("  Email\n", "email"),
        ("MEETING_NOTES", "meeting_notes"),
        ("This looks like a quotation.", "quotation"),
        ("Type: email (probably)", "email"),
        ("invoice", None),
        ("", None),
    ])
    def test_labels(self, reply, expected):
        assert parse_label(reply) == expected


@pytest.mark.unit
class TestClassifyDocument:

    async def test_no_client_means_no_label(self):
        assert await classify_document(None, "anything") is None

    async def test_sends_bounded_sample(self):
        client = FakeModelClient(replies=["contract"])
        label = await classify_document(client, "x" * 5000)

        assert label == "contract"
        assert len(client.calls) == 1
        assert len(client.calls[0]["prompt"]) == SAMPLE_LENGTH == 1000
        assert client.calls[0]["max_tokens"] == MAX_OUTPUT_TOKENS

    async def test_provider_error_is_swallowed(self):
        client = FakeModelClient(replies=[AIProviderError("boom", status_code=500)])
        assert await classify_document(client, "text") is None

    async def test_unknown_reply_is_none(self):
        client = FakeModelClient(replies=["a purchase order"])
        assert await classify_document(client, "text") is None
