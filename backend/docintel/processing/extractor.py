"""
Text Extraction
═══════════════

Pure function: (file bytes, MIME type) → ExtractionResult, or None when the
file has no usable text layer.

Supported formats:
  application/pdf                                   → pypdf, pages joined by "\\n\\n"
  application/vnd.openxmlformats-…document (DOCX)   → python-docx paragraphs
  text/plain, text/csv, text/markdown, text/html,
  text/xml, application/json                        → UTF-8 decode

"No text" outcomes (None):
  - PDF whose trimmed text is shorter than MIN_PDF_TEXT_LENGTH
    (scanned / image-only; OCR is out of scope)
  - DOCX or plain text that is empty after trimming

Parser exceptions are NOT swallowed here: a corrupt file raises, and the
orchestrator decides whether to retry. Callers must check is_supported()
first; extract_text() raises UnsupportedMimeTypeError otherwise.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration constants
# ---------------------------------------------------------------------------

PDF_MIME_TYPE  = "application/pdf"
DOCX_MIME_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

TEXT_MIME_TYPES = frozenset({
    "text/plain",
    "text/csv",
    "text/markdown",
    "text/html",
    "text/xml",
    "application/json",
})

SUPPORTED_MIME_TYPES = frozenset({PDF_MIME_TYPE, DOCX_MIME_TYPE}) | TEXT_MIME_TYPES

# Below this many characters a PDF is treated as scanned (image-only)
MIN_PDF_TEXT_LENGTH = 10


class UnsupportedMimeTypeError(ValueError):
    pass


# ---------------------------------------------------------------------------
# Result dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ExtractionResult:
    """
    text        : extracted text (untrimmed, as produced by the parser)
    word_count  : number of whitespace-separated tokens
    page_count  : PDF page count; None for other formats
    """
    text:       str
    word_count: int
    page_count: int | None = None


def _normalize_mime(mime_type: str) -> str:
    # "text/plain; charset=utf-8" → "text/plain"
    return mime_type.split(";", 1)[0].strip().lower()


def is_supported(mime_type: str) -> bool:
    return _normalize_mime(mime_type) in SUPPORTED_MIME_TYPES


def count_words(text: str) -> int:
    return len(text.split())


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def extract_text(data: bytes, mime_type: str) -> ExtractionResult | None:
    mime = _normalize_mime(mime_type)

    if mime == PDF_MIME_TYPE:
        return _extract_pdf(data)
    if mime == DOCX_MIME_TYPE:
        return _extract_docx(data)
    if mime in TEXT_MIME_TYPES:
        return _extract_plain(data)

    raise UnsupportedMimeTypeError(f"Unsupported MIME type: {mime_type}")


def _extract_pdf(data: bytes) -> ExtractionResult | None:
    """Extract text from PDF bytes using pypdf."""
    from pypdf import PdfReader

    reader = PdfReader(io.BytesIO(data))
    pages = [page.extract_text() or "" for page in reader.pages]
    text = "\n\n".join(pages)

    if len(text.strip()) < MIN_PDF_TEXT_LENGTH:
        logger.info("PDF has no text layer | pages=%d chars=%d", len(pages), len(text.strip()))
        return None

    return ExtractionResult(text=text, word_count=count_words(text), page_count=len(pages))


def _extract_docx(data: bytes) -> ExtractionResult | None:
    """Extract raw text from DOCX bytes using python-docx."""
    import docx

    document = docx.Document(io.BytesIO(data))
    text = "\n".join(para.text for para in document.paragraphs)

    if not text.strip():
        return None
    return ExtractionResult(text=text, word_count=count_words(text))


def _extract_plain(data: bytes) -> ExtractionResult | None:
    # utf-8-sig drops a leading BOM; undecodable bytes become U+FFFD
    text = data.decode("utf-8-sig", errors="replace")

    if not text.strip():
        return None
    return ExtractionResult(text=text, word_count=count_words(text))
