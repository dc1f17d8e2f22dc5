"""
Pipeline triggers — the entry points the CRM calls.

    request_extraction(document)        after an upload is stored
    request_analysis(user, org, doc, analysis_type)
                                        user-initiated, rate limited per user

Analysis requests are checked synchronously (document exists in the caller's
organization, caller has access) so an obviously bad request fails with a
4xx instead of an asynchronous run that can only fail. The analysis run
repeats the access check because permissions may change before it executes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass

from docintel.core.exceptions import AIRateLimitError, DocumentAccessDenied, DocumentNotFoundError
from docintel.events.orchestrator import Orchestrator
from docintel.llm.rate_limit import FixedWindowRateLimiter
from docintel.repositories.base import DocumentRecord, DocumentStore
from docintel.schemas.events import (
    ANALYZE_REQUESTED,
    TEXT_EXTRACT,
    AnalyzeRequested,
    TextExtractRequested,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TriggerResult:
    event:   str
    run_ids: list[str]

    @property
    def queued(self) -> bool:
        return bool(self.run_ids)


class PipelineTriggers:
    def __init__(
        self,
        orchestrator: Orchestrator,
        documents: DocumentStore,
        rate_limiter: FixedWindowRateLimiter,
    ) -> None:
        self._orchestrator = orchestrator
        self._documents    = documents
        self._rate_limiter = rate_limiter

    async def _load_document(self, organization_id: str, document_id: str) -> DocumentRecord:
        document = await self._documents.get_document(document_id)
        if document is None or document.organization_id != organization_id:
            raise DocumentNotFoundError(document_id)
        return document

    async def request_extraction(self, document: DocumentRecord) -> TriggerResult:
        if not document.file_path:
            raise DocumentNotFoundError(document.id)

        payload = TextExtractRequested(
            document_id=document.id,
            organization_id=document.organization_id,
            file_path=document.file_path,
            mime_type=document.mime_type,
        )
        run_ids = await self._orchestrator.emit(TEXT_EXTRACT, payload.to_data())
        logger.info("Extraction requested | doc=%s runs=%d", document.id, len(run_ids))
        return TriggerResult(event=TEXT_EXTRACT, run_ids=run_ids)

    async def request_extraction_by_id(self, organization_id: str, document_id: str) -> TriggerResult:
        return await self.request_extraction(await self._load_document(organization_id, document_id))

    async def request_analysis(
        self,
        user_id: str,
        organization_id: str,
        document_id: str,
        analysis_type: str = "contract",
    ) -> TriggerResult:
        document = await self._load_document(organization_id, document_id)
        if not await self._documents.has_access(document, user_id):
            raise DocumentAccessDenied(document_id, user_id)

        decision = self._rate_limiter.check(f"analysis:{user_id}")
        if not decision.allowed:
            logger.warning("Analysis rate limited | user=%s", user_id)
            raise AIRateLimitError(retry_after=decision.retry_after(time.monotonic()))

        payload = AnalyzeRequested(
            document_id=document_id,
            organization_id=organization_id,
            user_id=user_id,
            analysis_type=analysis_type,
        )
        run_ids = await self._orchestrator.emit(ANALYZE_REQUESTED, payload.to_data())
        logger.info("Analysis requested | doc=%s user=%s runs=%d", document_id, user_id, len(run_ids))
        return TriggerResult(event=ANALYZE_REQUESTED, run_ids=run_ids)
