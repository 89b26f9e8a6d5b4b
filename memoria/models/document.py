"""Document and chunk models.

A :class:`Document` is the unit of mutation for the whole system: intake
creates it, the extraction stage fills ``content`` and ``metadata``, the
embedding stage replaces ``chunks`` as one list, and retrieval reads it.
All models are frozen; state changes produce new instances via
``model_copy(update={...})`` and are persisted by the document store in a
single conditional write.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(moment: datetime) -> datetime:
    """Return *moment* as an aware UTC datetime; naive values are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


class ContentType(str, Enum):  # noqa: UP042
    """What kind of content a document was ingested from."""

    AUDIO = "audio"
    DOCUMENT = "document"
    WEB = "web"
    TEXT = "text"
    IMAGE = "image"


class SourceKind(str, Enum):  # noqa: UP042
    """How the content reached the system."""

    UPLOAD = "upload"
    URL = "url"
    MANUAL = "manual"


class ProcessingStatus(str, Enum):  # noqa: UP042
    """Document processing state machine.

    ``pending -> processing -> completed`` on the happy path, or
    ``pending|processing -> failed`` on any stage error.  ``completed`` and
    ``failed`` are terminal; failure is sticky until a re-ingest.
    """

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class SourceDescriptor(BaseModel):
    """Origin of a document plus the origin-specific fields."""

    model_config = ConfigDict(frozen=True)

    kind: SourceKind
    original_name: str | None = Field(default=None, description="Uploaded file name.")
    url: str | None = Field(default=None, description="Fetched page URL.")
    file_path: str | None = Field(default=None, description="Path of the stored upload.")


class DocumentMetadata(BaseModel):
    """Extraction metadata.  Zero/None until the extraction stage runs."""

    model_config = ConfigDict(frozen=True)

    size: int = Field(default=0, ge=0, description="Source size in bytes (or characters for text).")
    mime_type: str | None = None
    language: str = "en"
    word_count: int = Field(default=0, ge=0)
    extraction_duration: float = Field(default=0.0, ge=0, description="Seconds spent extracting.")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    page_count: int | None = Field(default=None, ge=0)
    extracted_at: datetime | None = None


class Chunk(BaseModel):
    """An offset-tracked slice of a document's text with its embedding.

    ``embedding_degraded`` marks a placeholder vector produced while the
    embedding provider was unavailable.  Vector retrieval never scores such
    chunks.
    """

    model_config = ConfigDict(frozen=True)

    chunk_id: str = Field(description="'{document_id}_{ordinal}'.")
    text: str
    embedding: list[float] = Field(default_factory=list)
    start_offset: int = Field(ge=0)
    end_offset: int = Field(ge=0)
    embedding_degraded: bool = False

    @model_validator(mode="after")
    def _check_offsets(self) -> Chunk:
        if self.end_offset < self.start_offset:
            raise ValueError("end_offset must not precede start_offset")
        return self


def make_chunk_id(document_id: str, ordinal: int) -> str:
    return f"{document_id}_{ordinal}"


class Document(BaseModel):
    """An ingested piece of personal content and everything derived from it."""

    model_config = ConfigDict(frozen=True)

    document_id: str
    owner_id: str = Field(min_length=1)
    title: str
    content: str = ""
    content_type: ContentType
    source: SourceDescriptor
    metadata: DocumentMetadata = Field(default_factory=DocumentMetadata)
    chunks: list[Chunk] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)
    is_processed: bool = False
    processing_status: ProcessingStatus = ProcessingStatus.PENDING
    processing_error: str | None = None
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    indexed_at: datetime | None = None
    last_accessed_at: datetime | None = None

    @field_validator("tags")
    @classmethod
    def _normalise_tags(cls, tags: list[str]) -> list[str]:
        # Tags behave as a set but keep first-seen order for display.
        seen: dict[str, None] = {}
        for tag in tags:
            cleaned = tag.strip()
            if cleaned:
                seen.setdefault(cleaned, None)
        return list(seen)

    @field_validator("created_at", "updated_at", "indexed_at", "last_accessed_at")
    @classmethod
    def _normalise_timestamps(cls, moment: datetime | None) -> datetime | None:
        return as_utc(moment) if moment is not None else None

    @model_validator(mode="after")
    def _check_status(self) -> Document:
        if self.is_processed and self.processing_status != ProcessingStatus.COMPLETED:
            raise ValueError("is_processed requires processing_status 'completed'")
        if self.processing_status == ProcessingStatus.FAILED and not self.processing_error:
            raise ValueError("failed documents must carry a processing_error")
        return self

    @property
    def chunk_count(self) -> int:
        return len(self.chunks)

    @property
    def is_searchable(self) -> bool:
        return self.is_processed and bool(self.chunks)
