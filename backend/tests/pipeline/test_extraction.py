"""
Pipeline Tests — extract-document-text
═══════════════════════════════════════
Full event chain on the inline transport:

    document/text.extract
      → extract-document-text
          → document/text.extract.completed
          → document/embed.requested → embed-document-chunks
                → document/embed.completed → handle-embed-completed
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from docintel.processing.extractor import DOCX_MIME_TYPE
from docintel.schemas.events import TEXT_EXTRACT, TextExtractRequested
from tests.conftest import ORG_ID
from tests.fakes import build_pdf


def _extract_event(doc) -> dict:
    return TextExtractRequested(
        document_id=doc.id,
        organization_id=doc.organization_id,
        file_path=doc.file_path,
        mime_type=doc.mime_type,
    ).to_data()


def _by_function(orchestrator, outcomes):
    runs = orchestrator.run_store.runs
    return {runs[o.run_id].function_id: o for o in outcomes}


@pytest.mark.pipeline
class TestExtractionHappyPath:

    async def test_pdf_extracted_chunked_classified_and_embedded(self, pipeline, documents, storage, model_client, embedding_client):
        orchestrator, transport, _ = pipeline
        model_client.replies = ["contract"]
        documents.add_member(ORG_ID, "admin-1", role="admin")
        doc = documents.add_document(ORG_ID, name="Contract.pdf", file_path="org/contract.pdf")
        storage.objects["org/contract.pdf"] = build_pdf([
            "Service agreement between Acme and Globex",
            "Term of twenty four months",
            "Signed by both parties",
        ])

        await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        outcomes = await transport.drain()
        by_fn = _by_function(orchestrator, outcomes)

        extraction = by_fn["extract-document-text"]
        assert extraction.status == "completed"
        assert extraction.result["success"] is True
        assert extraction.result["chunkCount"] == 1
        assert extraction.result["wordCount"] == 15
        assert extraction.steps == [
            "mark-processing", "extract-text", "chunk-text",
            "extract-completed", "auto-classify", "trigger-embedding",
        ]

        stored = documents.docs[doc.id]
        assert stored.extraction_status == "completed"
        assert "Acme" in stored.content
        assert "twenty four months" in stored.content
        assert stored.content.rstrip().endswith("Signed by both parties")
        assert stored.type == "contract"
        assert documents.status_history[doc.id][:2] == ["processing", "completed"]

        chunks = documents.chunks_of(doc.id)
        assert len(chunks) == 1
        assert chunks[0].embedding is not None
        assert chunks[0].embedding_model == "text-embedding-3-small"

        assert by_fn["embed-document-chunks"].status == "completed"
        assert by_fn["handle-embed-completed"].status == "completed"
        assert [n["user_id"] for n in documents.notifications] == ["admin-1"]
        assert "(1 chunks)" in documents.notifications[0]["message"]

    async def test_docx_extraction(self, pipeline, documents, storage, sample_docx_bytes):
        orchestrator, transport, _ = pipeline
        doc = documents.add_document(ORG_ID, name="Notes.docx", mime_type=DOCX_MIME_TYPE, file_path="org/notes.docx")
        storage.objects["org/notes.docx"] = sample_docx_bytes

        await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        await transport.drain()

        assert documents.docs[doc.id].content.startswith("Meeting notes for the quarterly review.")
        assert documents.docs[doc.id].extraction_status == "completed"

    async def test_classification_failure_does_not_fail_extraction(self, pipeline, documents, storage, model_client):
        orchestrator, transport, _ = pipeline
        model_client.replies = [RuntimeError("provider exploded")]
        doc = documents.add_document(ORG_ID, mime_type="text/plain", file_path="org/a.txt", type="email")
        storage.objects["org/a.txt"] = b"Hello team, please review the attached proposal."

        await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        outcomes = await transport.drain()

        assert _by_function(orchestrator, outcomes)["extract-document-text"].status == "completed"
        assert documents.docs[doc.id].type == "email"

    async def test_unrecognised_label_keeps_type(self, pipeline, documents, storage, model_client):
        orchestrator, transport, _ = pipeline
        model_client.replies = ["invoice"]
        doc = documents.add_document(ORG_ID, mime_type="text/plain", file_path="org/a.txt", type="quotation")
        storage.objects["org/a.txt"] = b"Some text"

        await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        await transport.drain()

        assert documents.docs[doc.id].type == "quotation"


@pytest.mark.pipeline
class TestExtractionNoText:

    async def test_scanned_pdf_is_unsupported(self, pipeline, documents, storage):
        orchestrator, transport, _ = pipeline
        doc = documents.add_document(ORG_ID, file_path="org/scan.pdf")
        storage.objects["org/scan.pdf"] = build_pdf(["", ""])

        await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        outcomes = await transport.drain()

        [outcome] = outcomes
        assert outcome.result == {"success": False, "reason": "no_text", "documentId": doc.id}
        assert documents.docs[doc.id].extraction_status == "unsupported"
        assert documents.chunks_of(doc.id) == []

    async def test_unsupported_mime_type(self, pipeline, documents, storage):
        orchestrator, transport, _ = pipeline
        doc = documents.add_document(ORG_ID, mime_type="image/png", file_path="org/logo.png")

        await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        [outcome] = await transport.drain()

        assert outcome.result["reason"] == "unsupported_mime_type"
        assert outcome.steps == ["mark-processing", "mark-unsupported"]
        assert documents.docs[doc.id].extraction_status == "unsupported"
        assert storage.downloads == []

    async def test_no_embedding_when_text_has_no_chunks(self, pipeline, documents, storage):
        orchestrator, transport, _ = pipeline
        doc = documents.add_document(ORG_ID, mime_type="text/plain", file_path="org/blank.txt")
        storage.objects["org/blank.txt"] = b"   \n  "

        await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        outcomes = await transport.drain()

        assert [o.result["reason"] for o in outcomes] == ["no_text"]


@pytest.mark.pipeline
class TestExtractionRetriesAndIdempotency:

    async def test_re_extraction_replaces_chunks(self, pipeline, documents, storage):
        orchestrator, transport, _ = pipeline
        doc = documents.add_document(ORG_ID, mime_type="text/plain", file_path="org/long.txt")
        storage.objects["org/long.txt"] = ("Clause text about renewal terms. " * 60).encode()

        await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        await transport.drain()
        first = [(c.chunk_index, c.start_offset, c.end_offset) for c in documents.chunks_of(doc.id)]

        orchestrator.run_store.claims.clear()   # outside the idempotency window
        await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        await transport.drain()
        second = [(c.chunk_index, c.start_offset, c.end_offset) for c in documents.chunks_of(doc.id)]

        assert len(first) > 1
        assert first == second
        assert len(documents.chunks) == len(first)

    async def test_re_extraction_without_text_drops_old_content(self, pipeline, documents, storage):
        orchestrator, transport, services = pipeline
        services.retrieval.invalidate = MagicMock(wraps=services.retrieval.invalidate)
        doc = documents.add_document(ORG_ID, mime_type="text/plain", file_path="org/notes.txt")
        storage.objects["org/notes.txt"] = b"Renewal is due in March for the Acme account."

        await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        await transport.drain()
        assert documents.chunks_of(doc.id)
        services.retrieval.invalidate.reset_mock()

        storage.objects["org/notes.txt"] = b"  \n "
        orchestrator.run_store.claims.clear()   # outside the idempotency window
        await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        [outcome] = await transport.drain()

        assert outcome.result == {"success": False, "reason": "no_text", "documentId": doc.id}
        stored = documents.docs[doc.id]
        assert stored.extraction_status == "unsupported"
        assert stored.content is None
        assert documents.chunks_of(doc.id) == []
        services.retrieval.invalidate.assert_called_once_with(ORG_ID)

    async def test_duplicate_event_is_ignored(self, pipeline, documents, storage):
        orchestrator, transport, _ = pipeline
        doc = documents.add_document(ORG_ID, mime_type="text/plain", file_path="org/a.txt")
        storage.objects["org/a.txt"] = b"Hello"

        first = await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        second = await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))

        assert len(first) == 1
        assert second == []

    async def test_transient_download_failure_is_retried(self, pipeline, documents, storage):
        orchestrator, transport, _ = pipeline
        doc = documents.add_document(ORG_ID, mime_type="text/plain", file_path="org/late.txt")

        real_get = storage.get_file_buffer
        calls = []

        async def flaky_get(key):
            calls.append(key)
            if len(calls) == 1:
                raise ConnectionError("S3 timeout")
            return b"Eventually consistent text"

        storage.get_file_buffer = flaky_get
        await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        outcomes = await transport.drain()
        storage.get_file_buffer = real_get

        extraction = [o for o in outcomes if orchestrator.run_store.runs[o.run_id].function_id == "extract-document-text"]
        assert [o.status for o in extraction] == ["retry", "completed"]
        assert extraction[1].steps[0] == "extract-text"   # mark-processing memoized
        assert documents.docs[doc.id].extraction_status == "completed"

    async def test_missing_file_fails_after_retries(self, pipeline, documents):
        orchestrator, transport, _ = pipeline
        doc = documents.add_document(ORG_ID, mime_type="text/plain", file_path="org/missing.txt")

        await orchestrator.emit(TEXT_EXTRACT, _extract_event(doc))
        outcomes = await transport.drain()

        assert [o.status for o in outcomes] == ["retry", "retry", "failed"]
        assert documents.docs[doc.id].extraction_status == "failed"
        [audit] = documents.audits
        assert audit["action"] == "document.extraction_failed"
        assert audit["entity_id"] == doc.id
        assert audit["details"]["status"] == "failed"
