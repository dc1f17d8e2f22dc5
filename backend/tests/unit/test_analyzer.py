"""
Unit Tests — Document Analyzer
═══════════════════════════════
Tests for:
  • parse_analysis_reply  — plain JSON, fenced JSON, bad JSON, normalisation
  • DocumentAnalyzer      — not configured, provider failure, RAG enrichment
"""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from docintel.core.exceptions import AIProviderError
from docintel.processing.analyzer import (
    AnalysisParseError,
    DocumentAnalyzer,
    parse_analysis_reply,
)
from docintel.rag.retriever import RetrievalEngine
from docintel.repositories.base import NewChunk
from tests.fakes import FakeAIClients, FakeDocumentStore, FakeEmbeddingClient, FakeModelClient

ORG = "org-1"

FULL_REPLY = {
    "summary": "Two-year service agreement.",
    "entities": {"people": ["Alice"], "companies": ["Acme"], "dates": ["2025-01-01"]},
    "sentiment": "Positive",
    "keyPoints": ["Term is two years"],
    "actionItems": ["Countersign", None],
    "confidence": 0.92,
}


@pytest.mark.unit
class TestParseAnalysisReply:

    def test_full_reply(self):
        result = parse_analysis_reply(json.dumps(FULL_REPLY), "gpt-4o-mini")

        assert result.summary == "Two-year service agreement."
        assert result.entities.companies == ["Acme"]
        assert result.sentiment == "positive"
        assert result.key_points == ["Term is two years"]
        assert result.action_items == ["Countersign"]
        assert result.confidence == pytest.approx(0.92)
        assert result.model == "gpt-4o-mini"

    def test_markdown_fence_is_tolerated(self):
        reply = "```json\n" + json.dumps({"summary": "ok"}) + "\n```"
        assert parse_analysis_reply(reply, "m").summary == "ok"

    def test_defaults_for_missing_fields(self):
        result = parse_analysis_reply('{"summary": "s"}', "m")
        assert result.sentiment == "neutral"
        assert result.confidence == pytest.approx(0.8)
        assert result.entities.people == []

    @pytest.mark.parametrize("value,expected", [(7, 1.0), (-2, 0.0), ("high", 0.8), (True, 0.8)])
    def test_confidence_is_clamped(self, value, expected):
        result = parse_analysis_reply(json.dumps({"summary": "s", "confidence": value}), "m")
        assert result.confidence == pytest.approx(expected)

    def test_null_entities_become_empty(self):
        result = parse_analysis_reply(json.dumps({**FULL_REPLY, "entities": None}), "m")

        assert result.summary == "Two-year service agreement."
        assert result.entities.people == []
        assert result.entities.companies == []
        assert result.entities.dates == []

    def test_null_entity_list_becomes_empty(self):
        entities = {"people": None, "companies": ["Acme", None], "dates": ["2025-01-01"]}
        result = parse_analysis_reply(json.dumps({**FULL_REPLY, "entities": entities}), "m")

        assert result.entities.people == []
        assert result.entities.companies == ["Acme"]
        assert result.key_points == ["Term is two years"]
        assert result.confidence == pytest.approx(0.92)

    def test_null_summary_becomes_empty(self):
        result = parse_analysis_reply(json.dumps({**FULL_REPLY, "summary": None}), "gpt-4o-mini")

        assert result.summary == ""
        assert result.model == "gpt-4o-mini"
        assert result.entities.companies == ["Acme"]

    @pytest.mark.parametrize("reply", ["not json", "[1, 2]", '{"keyPoints": []}', '{"summary": 3}'])
    def test_unusable_reply_raises(self, reply):
        with pytest.raises(AnalysisParseError):
            parse_analysis_reply(reply, "m")

    def test_serializes_with_camel_case_keys(self):
        dumped = parse_analysis_reply(json.dumps(FULL_REPLY), "m").model_dump(by_alias=True)
        assert "keyPoints" in dumped
        assert "actionItems" in dumped


@pytest.mark.unit
class TestDocumentAnalyzer:

    async def test_not_configured_placeholder(self):
        analyzer = DocumentAnalyzer(FakeAIClients())
        result = await analyzer.analyze(ORG, "Contract.pdf", "hello world")

        assert result.summary == '"Contract.pdf" contains 11 characters'
        assert result.model == "none"
        assert result.confidence == 0.0
        assert result.key_points and result.action_items

    async def test_provider_failure_placeholder(self):
        model = FakeModelClient(replies=[AIProviderError("upstream down", status_code=503)])
        result = await DocumentAnalyzer(FakeAIClients(model=model)).analyze(ORG, "a", "text")

        assert result.summary.startswith("Analysis failed:")
        assert result.model == "error"
        assert result.confidence == 0.0

    async def test_unparseable_reply_placeholder(self):
        model = FakeModelClient(replies=["I cannot help with that"])
        result = await DocumentAnalyzer(FakeAIClients(model=model)).analyze(ORG, "a", "text")
        assert result.model == "error"

    async def test_uses_type_specific_prompt(self):
        model = FakeModelClient(replies=[json.dumps(FULL_REPLY)])
        result = await DocumentAnalyzer(FakeAIClients(model=model)).analyze(ORG, "a", "text", "email")

        assert result.model == "gpt-4o-mini"
        assert "E-mail focus" in model.calls[0]["system"]
        assert model.calls[0]["prompt"] == "text"


@pytest.mark.unit
@pytest.mark.rag
class TestAnalyzerRagEnrichment:

    @pytest.fixture
    async def indexed(self):
        documents = FakeDocumentStore()
        doc = documents.add_document(ORG, name="Prior Contract.pdf")
        await documents.replace_chunks(doc.id, ORG, [NewChunk("Renewal is automatic.", 0, 0, 21)])
        chunk = documents.chunks_of(doc.id)[0]
        await documents.save_embeddings([(chunk.id, [1.0, 0.0])], "emb", 2)
        return documents

    def _analyzer(self, documents, rag: bool):
        model = FakeModelClient(replies=['{"summary": "ok"}'])
        ai = FakeAIClients(
            model=model,
            embedder=FakeEmbeddingClient(vector_fn=lambda text: [1.0, 0.0]),
            features={"rag": rag},
        )
        return DocumentAnalyzer(ai, RetrievalEngine(documents, ai)), model

    async def test_context_appended_when_rag_enabled(self, indexed):
        analyzer, model = self._analyzer(indexed, rag=True)
        await analyzer.analyze(ORG, "New.pdf", "New contract body")

        prompt = model.calls[0]["prompt"]
        assert prompt.startswith("New contract body\n\n---\nRelated document context:\n")
        assert "[Document 1: Prior Contract.pdf (relevance: 100%)]" in prompt
        assert "Renewal is automatic." in prompt

    async def test_no_context_when_rag_disabled(self, indexed):
        analyzer, model = self._analyzer(indexed, rag=False)
        await analyzer.analyze(ORG, "New.pdf", "New contract body")
        assert model.calls[0]["prompt"] == "New contract body"

    async def test_retrieval_failure_does_not_fail_analysis(self, indexed):
        analyzer, model = self._analyzer(indexed, rag=True)
        analyzer._retrieval.query = AsyncMock(side_effect=RuntimeError("db down"))

        result = await analyzer.analyze(ORG, "New.pdf", "New contract body")

        assert result.summary == "ok"
        assert model.calls[0]["prompt"] == "New contract body"
