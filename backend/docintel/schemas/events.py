"""
Pipeline event names and payload schemas.

Wire format is camelCase JSON (documentId, organizationId, ...); Python code
reads snake_case attributes. Every payload validates on the way in
(`Model.model_validate(event.data)`) and serializes with `to_data()`.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

# ---------------------------------------------------------------------------
# Event names
# ---------------------------------------------------------------------------

TEXT_EXTRACT           = "document/text.extract"
TEXT_EXTRACT_COMPLETED = "document/text.extract.completed"
EMBED_REQUESTED        = "document/embed.requested"
EMBED_COMPLETED        = "document/embed.completed"
ANALYZE_REQUESTED      = "document/analyze.requested"
ANALYZE_COMPLETED      = "document/analyze.completed"


class EventPayload(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )

    document_id:     str
    organization_id: str

    def to_data(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class TextExtractRequested(EventPayload):
    file_path: str
    mime_type: str


class TextExtractCompleted(EventPayload):
    word_count:  int = Field(ge=0)
    chunk_count: int = Field(ge=0)


class EmbedRequested(EventPayload):
    pass


class EmbedCompleted(EventPayload):
    chunk_count:     int = Field(ge=0)
    embedding_model: str


class AnalyzeRequested(EventPayload):
    user_id:       str
    analysis_type: str = "contract"


class AnalyzeCompleted(EventPayload):
    analysis_id: str
    user_id:     str
