"""
Structured analysis produced by the AI model (or a degraded placeholder).

The model is asked for camelCase keys (keyPoints, actionItems); both the
camelCase and snake_case spellings validate.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

Sentiment = Literal["positive", "negative", "neutral"]


class AnalysisEntities(BaseModel):
    people:    list[str] = Field(default_factory=list)
    companies: list[str] = Field(default_factory=list)
    dates:     list[str] = Field(default_factory=list)

    @field_validator("people", "companies", "dates", mode="before")
    @classmethod
    def _stringify_names(cls, value: object) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item is not None]


class AnalysisResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    summary:      str
    entities:     AnalysisEntities = Field(default_factory=AnalysisEntities)
    sentiment:    Sentiment = "neutral"
    key_points:   list[str] = Field(default_factory=list)
    action_items: list[str] = Field(default_factory=list)
    confidence:   float = 0.8
    model:        str = "unknown"

    @field_validator("summary", mode="before")
    @classmethod
    def _null_summary(cls, value: object) -> object:
        return "" if value is None else value

    @field_validator("entities", mode="before")
    @classmethod
    def _null_entities(cls, value: object) -> object:
        return {} if value is None else value

    @field_validator("sentiment", mode="before")
    @classmethod
    def _normalize_sentiment(cls, value: object) -> str:
        value = str(value or "").strip().lower()
        return value if value in ("positive", "negative", "neutral") else "neutral"

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: object) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return 0.8
        return min(1.0, max(0.0, float(value)))

    @field_validator("key_points", "action_items", mode="before")
    @classmethod
    def _stringify_items(cls, value: object) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item is not None]
