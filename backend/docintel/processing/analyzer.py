"""
Document Analysis
═════════════════

    DocumentAnalyzer.analyze(org, name, content, analysis_type) → AnalysisResult

Never raises for AI problems; it degrades instead:

  AI not configured   → placeholder, confidence 0, model "none"
  provider / parse    → placeholder "Analysis failed: …", confidence 0,
  error                 model "error"

RAG enrichment (organization feature flag "rag"): the first 500 characters
of the document are used as the query, the top 3 sources are appended to
the prompt. Any retrieval failure is logged and the analysis continues
without context.
"""

from __future__ import annotations

import json
import logging
import re

from pydantic import ValidationError

from docintel.llm.clients import AIClients
from docintel.llm.prompts import get_document_analysis_prompt
from docintel.rag.pipeline import build_rag_context
from docintel.rag.retriever import RetrievalEngine
from docintel.schemas.analysis import AnalysisResult

logger = logging.getLogger(__name__)

MAX_OUTPUT_TOKENS = 2000
RAG_QUERY_LENGTH  = 500
RAG_TOP_K         = 3

_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL | re.IGNORECASE)


class AnalysisParseError(ValueError):
    pass


def parse_analysis_reply(reply: str, model: str) -> AnalysisResult:
    """Parse the model's JSON reply, tolerating a markdown code fence around it."""
    text = reply.strip()
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)

    try:
        data = json.loads(text)
    except ValueError as exc:
        raise AnalysisParseError(f"Model reply is not valid JSON: {exc}") from exc
    if not isinstance(data, dict) or "summary" not in data:
        raise AnalysisParseError("Model reply has no summary")
    if data["summary"] is not None and not isinstance(data["summary"], str):
        raise AnalysisParseError("Model reply summary is not text")

    data["model"] = model or "unknown"
    try:
        return AnalysisResult.model_validate(data)
    except ValidationError as exc:
        raise AnalysisParseError(str(exc)) from exc


def not_configured_placeholder(document_name: str, content: str) -> AnalysisResult:
    return AnalysisResult(
        summary=f'"{document_name}" contains {len(content)} characters',
        key_points=["AI is not configured, so only basic information is shown"],
        action_items=["Configure an AI provider and API key in the organization settings"],
        confidence=0.0,
        model="none",
    )


def failed_placeholder(message: str) -> AnalysisResult:
    return AnalysisResult(summary=f"Analysis failed: {message}", confidence=0.0, model="error")


class DocumentAnalyzer:
    def __init__(self, ai: AIClients, retrieval: RetrievalEngine | None = None) -> None:
        self._ai        = ai
        self._retrieval = retrieval

    async def _rag_context(self, organization_id: str, content: str) -> str:
        if self._retrieval is None:
            return ""
        if not await self._ai.feature_enabled(organization_id, "rag"):
            return ""
        try:
            result = await build_rag_context(
                self._retrieval,
                organization_id,
                content[:RAG_QUERY_LENGTH],
                top_k=RAG_TOP_K,
            )
        except Exception as exc:
            logger.warning("RAG enrichment failed, continuing without context | org=%s error=%s",
                           organization_id, exc)
            return ""
        return result.context if result else ""

    async def analyze(
        self,
        organization_id: str,
        document_name: str,
        content: str,
        analysis_type: str = "contract",
    ) -> AnalysisResult:
        client = await self._ai.model_client(organization_id)
        if client is None:
            logger.info("Analysis skipped, AI not configured | org=%s", organization_id)
            return not_configured_placeholder(document_name, content)

        prompt = content
        rag_context = await self._rag_context(organization_id, content)
        if rag_context:
            prompt = f"{content}\n\n---\nRelated document context:\n{rag_context}"

        try:
            reply = await client.generate(
                system=get_document_analysis_prompt(analysis_type),
                prompt=prompt,
                max_tokens=MAX_OUTPUT_TOKENS,
            )
            result = parse_analysis_reply(reply, client.model_name)
        except Exception as exc:
            logger.warning("Analysis failed | org=%s type=%s error=%s", organization_id, analysis_type, exc)
            return failed_placeholder(str(exc))

        logger.info(
            "Analysis ok | org=%s type=%s model=%s confidence=%.2f",
            organization_id, analysis_type, result.model, result.confidence,
        )
        return result
