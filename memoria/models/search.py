"""Retrieval and assistant models.

Everything here is transient: constructed per query, returned to the
caller, never persisted.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from memoria.models.document import ContentType, SourceDescriptor, as_utc


class DateRange(BaseModel):
    """Inclusive creation-time window.

    Bounds are held in UTC; naive datetimes are read as UTC so every store
    backend filters on the same instants.
    """

    model_config = ConfigDict(frozen=True)

    start: datetime | None = None
    end: datetime | None = None

    @field_validator("start", "end")
    @classmethod
    def _to_utc(cls, moment: datetime | None) -> datetime | None:
        return as_utc(moment) if moment is not None else None

    @model_validator(mode="after")
    def _check_order(self) -> DateRange:
        if self.start and self.end and self.end < self.start:
            raise ValueError("date range end precedes start")
        return self

    def contains(self, moment: datetime) -> bool:
        if self.start and moment < self.start:
            return False
        if self.end and moment > self.end:
            return False
        return True


class SearchOptions(BaseModel):
    model_config = ConfigDict(frozen=True)

    limit: int = Field(default=10, ge=1, le=100)
    content_type: ContentType | None = None
    date_range: DateRange | None = None


class QueryAnalysis(BaseModel):
    """Structured reading of a query produced by the classifier."""

    model_config = ConfigDict(frozen=True)

    intent: str = "search"
    temporal_hint: str | None = Field(
        default=None, description="Phrase such as 'today' or 'last week', if the query implies one."
    )
    content_type_hints: list[ContentType] = Field(default_factory=list)
    entities: list[str] = Field(default_factory=list)
    keywords: list[str] = Field(default_factory=list)

    @classmethod
    def fallback(cls, query: str) -> QueryAnalysis:
        """Analysis used whenever the classifier is unavailable."""
        return cls(intent="search", temporal_hint=None, keywords=query.split())


class MatchType(str, Enum):  # noqa: UP042
    VECTOR = "vector"
    LEXICAL = "lexical"
    HYBRID = "hybrid"
    TEMPORAL = "temporal"


FULL_DOCUMENT_KEY = "full"


class SearchResult(BaseModel):
    """One ranked hit.  ``chunk_id`` is None for document-level lexical hits."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    chunk_id: str | None = None
    title: str
    content_type: ContentType
    text: str = Field(description="Chunk text or display excerpt.")
    vector_score: float = 0.0
    lexical_score: float = 0.0
    final_score: float = 0.0
    match_type: MatchType
    source: SourceDescriptor
    created_at: datetime
    tags: list[str] = Field(default_factory=list)

    @property
    def fusion_key(self) -> tuple[str, str]:
        return (self.document_id, self.chunk_id or FULL_DOCUMENT_KEY)


class SearchResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: list[SearchResult] = Field(default_factory=list)
    total_found: int = 0
    query_analysis: QueryAnalysis
    degraded: list[str] = Field(
        default_factory=list,
        description="Fallbacks applied while answering, e.g. 'classification'.",
    )


# ---------------------------------------------------------------------------
# Assistant
# ---------------------------------------------------------------------------

class ChatMessage(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: Literal["system", "user", "assistant"]
    content: str


class Completion(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    model: str
    usage: dict[str, int] = Field(default_factory=dict)


class Citation(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_id: str
    chunk_id: str | None = None
    title: str
    relevance_score: float


class AssistantReply(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    model: str
    usage: dict[str, int] = Field(default_factory=dict)
    citations: list[Citation] = Field(default_factory=list)
    search: SearchResponse


class StreamEvent(BaseModel):
    """One event of a streamed answer: ordered ``chunk`` fragments then one ``done``."""

    model_config = ConfigDict(frozen=True)

    type: Literal["chunk", "done"]
    content: str = ""
    citations: list[Citation] = Field(default_factory=list)
