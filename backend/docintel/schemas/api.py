"""
HTTP request/response schemas for the pipeline trigger and RAG query routes.

All error bodies share one envelope (ErrorResponse); clients branch on
`error_code`, which for AI failures is one of the handle_ai_error codes.
"""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field

from docintel.processing.classifier import VALID_TYPES


# ---------------------------------------------------------------------------
# Pipeline triggers
# ---------------------------------------------------------------------------

class AnalyzeRequest(BaseModel):
    analysis_type: str = Field(
        "contract",
        description=f"Analysis emphasis; one of {', '.join(VALID_TYPES)}",
    )


class PipelineAcceptedResponse(BaseModel):
    """202 Accepted: the pipeline run was queued (or was already queued)."""
    document_id: UUID
    event:       str
    run_ids:     list[str]
    duplicate:   bool = Field(False, description="True when an identical request is already in flight")


# ---------------------------------------------------------------------------
# RAG query
# ---------------------------------------------------------------------------

class RagQueryRequest(BaseModel):
    query:        str = Field(..., min_length=1, max_length=4000)
    top_k:        int = Field(5, ge=1, le=50)
    min_score:    float = Field(0.7, ge=0.0, le=1.0)
    document_ids: list[UUID] | None = None
    customer_id:  UUID | None = None


class RagSource(BaseModel):
    chunk_id:      str
    document_id:   str
    document_name: str
    content:       str
    score:         float


class RagQueryResponse(BaseModel):
    configured: bool
    context:    str = ""
    sources:    list[RagSource] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Structured error bodies
# ---------------------------------------------------------------------------

class ErrorDetail(BaseModel):
    """Single structured error — may appear in a list."""
    field:   str | None = Field(None, description="Request field that caused the error, if applicable")
    message: str
    code:    str        = Field(..., description="Machine-readable error code for client handling")


class ErrorResponse(BaseModel):
    """
    Uniform error envelope for all 4xx/5xx responses.
    Clients should check `error_code` for programmatic handling.
    """
    error_code: str               = Field(..., description="Stable machine-readable code")
    message:    str               = Field(..., description="Human-readable summary")
    details:    list[ErrorDetail] = Field(default_factory=list)
    request_id: str | None        = Field(None, description="Trace ID for log correlation")
