"""Intake: validate an ingestion request, create the document, enqueue its first job.

This is the only entry point that creates documents.  Everything after
creation happens in the pipeline workers:

    enqueue_ingestion ──→ Document(pending) ──→ extraction job ──→ embedding job
           │
           └── manual text ──→ Document(completed, not yet searchable) ──→ embedding job

Validation failures raise :class:`ValidationError` before anything is
written, so a rejected request never leaves a document or a job behind.
"""

from __future__ import annotations

import uuid
from collections.abc import Sequence
from pathlib import Path
from typing import Union
from urllib.parse import urlparse

import structlog
from pydantic import BaseModel, ConfigDict, Field

from memoria.interfaces.document_store import IDocumentStore
from memoria.models.document import (
    ContentType,
    Document,
    DocumentMetadata,
    ProcessingStatus,
    SourceDescriptor,
    SourceKind,
)
from memoria.models.job import (
    AudioJobPayload,
    DocumentJobPayload,
    EmbeddingJobPayload,
    ImageJobPayload,
    Job,
    JobPayload,
    WebJobPayload,
)
from memoria.pipeline.job_queue import JobSink
from memoria.utils.errors import ConflictError, PipelineError, ValidationError
from memoria.utils.text import count_words, default_web_title, detect_language

logger = structlog.get_logger(logger_name=__name__)

ALLOWED_MIME_TYPES: frozenset[str] = frozenset(
    {
        "audio/mpeg",
        "audio/mp4",
        "audio/wav",
        "audio/x-m4a",
        "application/pdf",
        "text/plain",
        "text/markdown",
        "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
        "image/jpeg",
        "image/png",
        "image/gif",
    }
)

_TITLE_PREVIEW_CHARS = 50
_UPLOAD_TYPES = (ContentType.AUDIO, ContentType.DOCUMENT, ContentType.IMAGE)


class UploadSource(BaseModel):
    """A file already written to local storage by the caller."""

    model_config = ConfigDict(frozen=True)

    file_path: str
    original_name: str
    mime_type: str
    size: int = Field(default=0, ge=0)


class UrlSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str


class TextSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str


SourceRef = Union[UploadSource, UrlSource, TextSource]


def content_type_for_mime(mime_type: str) -> ContentType:
    if mime_type.startswith("audio/"):
        return ContentType.AUDIO
    if mime_type.startswith("image/"):
        return ContentType.IMAGE
    return ContentType.DOCUMENT


def _text_title(text: str) -> str:
    stripped = text.strip()
    if len(stripped) > _TITLE_PREVIEW_CHARS:
        return stripped[:_TITLE_PREVIEW_CHARS] + "..."
    return stripped


class IntakeService:
    """Turns ingestion requests into documents plus their first pipeline job.

    Parameters
    ----------
    store:
        Where documents are created.
    sink:
        Enqueue handle of the running job queue.
    """

    def __init__(self, store: IDocumentStore, sink: JobSink) -> None:
        self._store = store
        self._sink = sink

    async def enqueue_ingestion(
        self,
        owner_id: str,
        source_ref: SourceRef,
        *,
        content_type: ContentType | None = None,
        tags: Sequence[str] = (),
        title: str | None = None,
    ) -> str:
        """Validate, create the document and enqueue its first job.

        Returns
        -------
        str
            The new document id.

        Raises
        ------
        ValidationError
            When the request is malformed; nothing is created.
        """
        if not owner_id or not owner_id.strip():
            raise ValidationError("owner_id is required")

        document_id = str(uuid.uuid4())
        if isinstance(source_ref, UploadSource):
            document, payload = self._prepare_upload(owner_id, document_id, source_ref, content_type, title)
        elif isinstance(source_ref, UrlSource):
            document, payload = self._prepare_url(owner_id, document_id, source_ref, content_type, title)
        elif isinstance(source_ref, TextSource):
            document, payload = self._prepare_text(owner_id, document_id, source_ref, content_type, title)
        else:
            raise ValidationError(f"Unsupported source: {type(source_ref).__name__}")

        document = document.model_copy(update={"tags": list(tags)})
        document = Document.model_validate(document.model_dump())
        await self._store.create_document(document)
        await self._enqueue_or_fail(document, payload)

        logger.info(
            "ingestion_enqueued",
            document_id=document_id,
            content_type=document.content_type.value,
            job_type=payload.kind.value,
        )
        return document_id

    async def get_processing_status(self, owner_id: str, document_id: str) -> dict[str, str]:
        """Return ``{"status": ...}`` plus ``"error"`` when the document failed."""
        document = await self._store.get_document(owner_id, document_id)
        status = {"status": document.processing_status.value}
        if document.processing_error:
            status["error"] = document.processing_error
        return status

    async def reingest(self, owner_id: str, document_id: str) -> Job:
        """Restart processing of a failed document.

        A document that still has its extracted text only re-runs the
        embedding stage.  One without text re-runs extraction from its
        original source, provided that source is still reachable.
        """
        document = await self._store.get_document(owner_id, document_id)
        if document.processing_status != ProcessingStatus.FAILED:
            raise ConflictError(
                f"Only failed documents can be re-ingested (document is {document.processing_status.value})"
            )

        if document.content.strip():
            payload: JobPayload = EmbeddingJobPayload(document_id=document_id, owner_id=owner_id)
            next_status = ProcessingStatus.PROCESSING
        else:
            payload = self._extraction_payload_for(document, require_source=True)
            next_status = ProcessingStatus.PENDING

        await self._store.transition_status(
            owner_id, document_id, expected=(ProcessingStatus.FAILED,), new_status=next_status
        )
        job = await self._enqueue_or_fail(document, payload)
        logger.info("document_reingested", document_id=document_id, job_type=payload.kind.value)
        return job

    # -- Request preparation -------------------------------------------------

    def _prepare_upload(
        self,
        owner_id: str,
        document_id: str,
        source: UploadSource,
        content_type: ContentType | None,
        title: str | None,
    ) -> tuple[Document, JobPayload]:
        if source.mime_type not in ALLOWED_MIME_TYPES:
            raise ValidationError(f"Unsupported file type: {source.mime_type}")
        inferred = content_type_for_mime(source.mime_type)
        if content_type is None:
            content_type = inferred
        elif content_type not in _UPLOAD_TYPES:
            raise ValidationError(f"Content type {content_type.value} cannot come from an upload")
        if content_type != inferred:
            raise ValidationError(f"Content type {content_type.value} does not match {source.mime_type}")

        document = Document(
            document_id=document_id,
            owner_id=owner_id,
            title=title or source.original_name,
            content_type=content_type,
            source=SourceDescriptor(
                kind=SourceKind.UPLOAD,
                original_name=source.original_name,
                file_path=source.file_path,
            ),
            metadata=DocumentMetadata(size=source.size, mime_type=source.mime_type),
        )
        return document, self._extraction_payload_for(document)

    def _prepare_url(
        self,
        owner_id: str,
        document_id: str,
        source: UrlSource,
        content_type: ContentType | None,
        title: str | None,
    ) -> tuple[Document, JobPayload]:
        if content_type not in (None, ContentType.WEB):
            raise ValidationError(f"Content type {content_type.value} cannot come from a URL")
        parsed = urlparse(source.url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ValidationError(f"Invalid URL: {source.url}")

        url = parsed.geturl()
        document = Document(
            document_id=document_id,
            owner_id=owner_id,
            title=title or default_web_title(url),
            content_type=ContentType.WEB,
            source=SourceDescriptor(kind=SourceKind.URL, url=url),
            metadata=DocumentMetadata(mime_type="text/html"),
        )
        return document, WebJobPayload(document_id=document_id, owner_id=owner_id, url=url)

    def _prepare_text(
        self,
        owner_id: str,
        document_id: str,
        source: TextSource,
        content_type: ContentType | None,
        title: str | None,
    ) -> tuple[Document, JobPayload]:
        if content_type not in (None, ContentType.TEXT):
            raise ValidationError(f"Content type {content_type.value} cannot come from manual text")
        text = source.text.strip()
        if not text:
            raise ValidationError("Text content is empty")

        # Manual text skips extraction: it is complete on arrival and only
        # becomes searchable once the embedding stage has chunked it.
        document = Document(
            document_id=document_id,
            owner_id=owner_id,
            title=title or _text_title(text),
            content=text,
            content_type=ContentType.TEXT,
            source=SourceDescriptor(kind=SourceKind.MANUAL),
            metadata=DocumentMetadata(
                size=len(text),
                mime_type="text/plain",
                language=detect_language(text),
                word_count=count_words(text),
            ),
            processing_status=ProcessingStatus.COMPLETED,
            is_processed=False,
        )
        return document, EmbeddingJobPayload(document_id=document_id, owner_id=owner_id)

    def _extraction_payload_for(self, document: Document, require_source: bool = False) -> JobPayload:
        source = document.source
        common = {"document_id": document.document_id, "owner_id": document.owner_id}
        if source.kind == SourceKind.URL and source.url:
            return WebJobPayload(url=source.url, **common)
        if source.kind == SourceKind.UPLOAD and source.file_path:
            if require_source and not Path(source.file_path).exists():
                raise ValidationError(f"Upload for document {document.document_id} is no longer available")
            mime_type = document.metadata.mime_type or ""
            if document.content_type == ContentType.AUDIO:
                return AudioJobPayload(file_path=source.file_path, mime_type=mime_type, **common)
            if document.content_type == ContentType.IMAGE:
                return ImageJobPayload(file_path=source.file_path, mime_type=mime_type, **common)
            return DocumentJobPayload(file_path=source.file_path, mime_type=mime_type, **common)
        raise ValidationError(f"Source of document {document.document_id} is no longer available")

    async def _enqueue_or_fail(self, document: Document, payload: JobPayload) -> Job:
        try:
            return await self._sink.enqueue(payload)
        except PipelineError as exc:
            await self._store.mark_failed(document.owner_id, document.document_id, exc.message)
            raise
