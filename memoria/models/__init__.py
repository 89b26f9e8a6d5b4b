"""Memoria domain models -- re-exports all public model classes.

    - document.py -- Document, Chunk and their enums/metadata
    - job.py      -- pipeline Job and the tagged-union job payloads
    - search.py   -- search options/results and assistant messages
"""

from __future__ import annotations

from memoria.models.document import (
    Chunk,
    ContentType,
    Document,
    DocumentMetadata,
    ProcessingStatus,
    SourceDescriptor,
    SourceKind,
    make_chunk_id,
    utc_now,
)
from memoria.models.job import (
    AudioJobPayload,
    DocumentJobPayload,
    EmbeddingJobPayload,
    ExtractionPayload,
    ImageJobPayload,
    Job,
    JobPayload,
    JobStatus,
    JobType,
    WebJobPayload,
)
from memoria.models.search import (
    AssistantReply,
    ChatMessage,
    Citation,
    Completion,
    DateRange,
    MatchType,
    QueryAnalysis,
    SearchOptions,
    SearchResponse,
    SearchResult,
    StreamEvent,
)

__all__ = [
    "AssistantReply",
    "AudioJobPayload",
    "ChatMessage",
    "Chunk",
    "Citation",
    "Completion",
    "ContentType",
    "DateRange",
    "Document",
    "DocumentJobPayload",
    "DocumentMetadata",
    "EmbeddingJobPayload",
    "ExtractionPayload",
    "ImageJobPayload",
    "Job",
    "JobPayload",
    "JobStatus",
    "JobType",
    "MatchType",
    "ProcessingStatus",
    "QueryAnalysis",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "SourceDescriptor",
    "SourceKind",
    "StreamEvent",
    "WebJobPayload",
    "make_chunk_id",
    "utc_now",
]
