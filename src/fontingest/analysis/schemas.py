"""Pydantic models for each analysis stage's structured output.

These double as the ``response_schema`` sent to the model and as the
typed result after validation. Field types are deliberately permissive
(plain ``str`` values): vocabulary membership is checked by
:mod:`fontingest.analysis.validation`, which separates blocking errors
from warnings instead of rejecting on the first mismatch.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator


class SourceRef(BaseModel):
    """Where a claim came from (web page, font table, inference)."""

    model_config = ConfigDict(extra="ignore")

    source_type: str = "inferred"
    source_ref: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)


class TagScore(BaseModel):
    """A vocabulary value with its own confidence and evidence."""

    model_config = ConfigDict(extra="ignore")

    value: str
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    evidence_keys: list[str] = Field(default_factory=list)

    @field_validator("value")
    @classmethod
    def normalize_value(cls, v: str) -> str:
        return v.strip().lower().replace(" ", "_").replace("-", "_")


class Classification(TagScore):
    sources: list[SourceRef] = Field(default_factory=list)


class Person(BaseModel):
    """Designer, foundry or other credited person."""

    model_config = ConfigDict(extra="ignore")

    role: str
    name: str
    source: str
    confidence: float = Field(ge=0.0, le=1.0)
    source_url: str | None = None


class HistoricalContext(BaseModel):
    model_config = ConfigDict(extra="ignore")

    period: str | None = None
    cultural_influence: list[str] = Field(default_factory=list)
    notable_usage: list[str] = Field(default_factory=list)


class VisualAnalysis(BaseModel):
    """Visual-stage classification from metrics and metadata only."""

    model_config = ConfigDict(extra="ignore")

    style_primary: Classification
    substyle: Classification | None = None
    moods: list[TagScore]
    use_cases: list[TagScore]
    negative_tags: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


class EnrichedAnalysis(VisualAnalysis):
    """Visual classification plus web-sourced provenance."""

    people: list[Person] = Field(default_factory=list)
    historical_context: HistoricalContext | None = None
    sources: list[SourceRef] = Field(default_factory=list)


class SummaryOutput(BaseModel):
    """Summary stage output: one marketing description."""

    description: str = Field(..., min_length=1)
