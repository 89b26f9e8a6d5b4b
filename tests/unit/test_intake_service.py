"""Unit tests for IntakeService: validation, document creation and first job."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from memoria.models.document import ContentType, ProcessingStatus, SourceKind
from memoria.models.job import (
    AudioJobPayload,
    DocumentJobPayload,
    EmbeddingJobPayload,
    ImageJobPayload,
    Job,
    WebJobPayload,
)
from memoria.services.intake_service import (
    IntakeService,
    TextSource,
    UploadSource,
    UrlSource,
    content_type_for_mime,
)
from memoria.utils.errors import ConflictError, NotFoundError, PipelineError, ValidationError

OWNER = "owner-1"


@pytest.fixture
def sink() -> AsyncMock:
    mock = AsyncMock()
    mock.enqueue = AsyncMock(side_effect=lambda payload: Job(payload=payload))
    return mock


@pytest.fixture
def intake(memory_store, sink) -> IntakeService:
    return IntakeService(memory_store, sink)


def _enqueued(sink: AsyncMock):
    return [call.args[0] for call in sink.enqueue.await_args_list]


# ======================================================================
# Manual text
# ======================================================================


class TestTextIngestion:
    @pytest.mark.asyncio
    async def test_creates_completed_unsearchable_document(self, intake, memory_store, sink) -> None:
        text = "Meeting Alpha covered budget and timeline. Launch is next quarter."

        document_id = await intake.enqueue_ingestion(OWNER, TextSource(text=f"  {text}  "), tags=["work", "work"])

        document = await memory_store.get_document(OWNER, document_id)
        assert document.processing_status is ProcessingStatus.COMPLETED
        assert document.is_processed is False
        assert document.content == text
        assert document.title == text[:50] + "..."
        assert document.tags == ["work"]
        assert document.metadata.word_count == 10
        assert document.metadata.language == "en"
        assert document.source.kind is SourceKind.MANUAL
        assert _enqueued(sink) == [EmbeddingJobPayload(document_id=document_id, owner_id=OWNER)]

    @pytest.mark.asyncio
    async def test_short_text_becomes_its_own_title(self, intake, memory_store) -> None:
        document_id = await intake.enqueue_ingestion(OWNER, TextSource(text="Call Sam"))

        assert (await memory_store.get_document(OWNER, document_id)).title == "Call Sam"

    @pytest.mark.asyncio
    async def test_explicit_title_wins(self, intake, memory_store) -> None:
        document_id = await intake.enqueue_ingestion(OWNER, TextSource(text="Call Sam"), title="Todo")

        assert (await memory_store.get_document(OWNER, document_id)).title == "Todo"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   \n\t"])
    async def test_blank_text_rejected_without_side_effects(self, intake, memory_store, sink, text) -> None:
        with pytest.raises(ValidationError):
            await intake.enqueue_ingestion(OWNER, TextSource(text=text))

        assert await memory_store.list_documents(OWNER) == []
        sink.enqueue.assert_not_awaited()


# ======================================================================
# Uploads and URLs
# ======================================================================


class TestUploadIngestion:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        ("mime_type", "content_type", "payload_type"),
        [
            ("application/pdf", ContentType.DOCUMENT, DocumentJobPayload),
            ("audio/mpeg", ContentType.AUDIO, AudioJobPayload),
            ("image/png", ContentType.IMAGE, ImageJobPayload),
        ],
    )
    async def test_routes_by_mime_type(
        self, intake, memory_store, sink, mime_type, content_type, payload_type
    ) -> None:
        source = UploadSource(file_path="/data/uploads/f1", original_name="f1.bin", mime_type=mime_type, size=42)

        document_id = await intake.enqueue_ingestion(OWNER, source)

        document = await memory_store.get_document(OWNER, document_id)
        assert document.content_type is content_type
        assert document.processing_status is ProcessingStatus.PENDING
        assert document.title == "f1.bin"
        assert document.metadata.size == 42
        assert document.source.file_path == "/data/uploads/f1"
        (payload,) = _enqueued(sink)
        assert isinstance(payload, payload_type)
        assert payload.mime_type == mime_type

    @pytest.mark.asyncio
    async def test_rejects_unsupported_mime_type(self, intake, memory_store) -> None:
        source = UploadSource(file_path="/tmp/x.exe", original_name="x.exe", mime_type="application/x-msdownload")

        with pytest.raises(ValidationError, match="Unsupported file type"):
            await intake.enqueue_ingestion(OWNER, source)
        assert await memory_store.list_documents(OWNER) == []

    @pytest.mark.asyncio
    async def test_rejects_mismatched_content_type(self, intake) -> None:
        source = UploadSource(file_path="/tmp/a.pdf", original_name="a.pdf", mime_type="application/pdf")

        with pytest.raises(ValidationError):
            await intake.enqueue_ingestion(OWNER, source, content_type=ContentType.AUDIO)
        with pytest.raises(ValidationError):
            await intake.enqueue_ingestion(OWNER, source, content_type=ContentType.WEB)

    def test_content_type_for_mime(self) -> None:
        assert content_type_for_mime("audio/wav") is ContentType.AUDIO
        assert content_type_for_mime("image/gif") is ContentType.IMAGE
        assert content_type_for_mime("text/markdown") is ContentType.DOCUMENT


class TestUrlIngestion:
    @pytest.mark.asyncio
    async def test_creates_web_document_with_host_title(self, intake, memory_store, sink) -> None:
        document_id = await intake.enqueue_ingestion(OWNER, UrlSource(url=" https://example.com/post?id=1 "))

        document = await memory_store.get_document(OWNER, document_id)
        assert document.content_type is ContentType.WEB
        assert document.title == "Web content from example.com"
        assert document.source.url == "https://example.com/post?id=1"
        assert _enqueued(sink) == [
            WebJobPayload(document_id=document_id, owner_id=OWNER, url="https://example.com/post?id=1")
        ]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["", "example.com", "ftp://example.com/file", "https://"])
    async def test_rejects_invalid_urls(self, intake, url) -> None:
        with pytest.raises(ValidationError):
            await intake.enqueue_ingestion(OWNER, UrlSource(url=url))


class TestRequestValidation:
    @pytest.mark.asyncio
    async def test_owner_required(self, intake) -> None:
        with pytest.raises(ValidationError):
            await intake.enqueue_ingestion("  ", TextSource(text="hello"))

    @pytest.mark.asyncio
    async def test_text_cannot_claim_another_type(self, intake) -> None:
        with pytest.raises(ValidationError):
            await intake.enqueue_ingestion(OWNER, TextSource(text="hello"), content_type=ContentType.AUDIO)

    @pytest.mark.asyncio
    async def test_options_are_keyword_only(self, intake, memory_store) -> None:
        with pytest.raises(TypeError):
            await intake.enqueue_ingestion(OWNER, TextSource(text="hello"), ContentType.TEXT)  # type: ignore[misc]

        assert await memory_store.list_documents(OWNER) == []

    @pytest.mark.asyncio
    async def test_enqueue_failure_marks_document_failed(self, memory_store) -> None:
        sink = AsyncMock()
        sink.enqueue = AsyncMock(side_effect=PipelineError("Job queue is not running"))
        intake = IntakeService(memory_store, sink)

        with pytest.raises(PipelineError):
            await intake.enqueue_ingestion(OWNER, TextSource(text="hello there"))

        (document,) = await memory_store.list_documents(OWNER)
        assert document.processing_status is ProcessingStatus.FAILED
        assert document.processing_error == "Job queue is not running"


# ======================================================================
# Status and re-ingest
# ======================================================================


class TestStatusAndReingest:
    @pytest.mark.asyncio
    async def test_status_includes_error_only_when_failed(self, intake, memory_store) -> None:
        document_id = await intake.enqueue_ingestion(OWNER, TextSource(text="hello there"))
        assert await intake.get_processing_status(OWNER, document_id) == {"status": "completed"}

        await memory_store.mark_failed(OWNER, document_id, "Embedding generation failed: down")

        assert await intake.get_processing_status(OWNER, document_id) == {
            "status": "failed",
            "error": "Embedding generation failed: down",
        }

    @pytest.mark.asyncio
    async def test_status_of_unknown_document(self, intake) -> None:
        with pytest.raises(NotFoundError):
            await intake.get_processing_status(OWNER, "missing")

    @pytest.mark.asyncio
    async def test_reingest_with_content_reruns_embedding(self, intake, memory_store, sink) -> None:
        document_id = await intake.enqueue_ingestion(OWNER, TextSource(text="hello there"))
        await memory_store.mark_failed(OWNER, document_id, "down")

        job = await intake.reingest(OWNER, document_id)

        assert job.payload == EmbeddingJobPayload(document_id=document_id, owner_id=OWNER)
        document = await memory_store.get_document(OWNER, document_id)
        assert document.processing_status is ProcessingStatus.PROCESSING
        assert document.processing_error is None

    @pytest.mark.asyncio
    async def test_reingest_without_content_reruns_extraction(
        self, intake, memory_store, tmp_path: Path
    ) -> None:
        upload = tmp_path / "notes.pdf"
        upload.write_bytes(b"%PDF")
        source = UploadSource(file_path=str(upload), original_name="notes.pdf", mime_type="application/pdf")
        document_id = await intake.enqueue_ingestion(OWNER, source)
        await memory_store.mark_failed(OWNER, document_id, "Insufficient content extracted (3 characters)")

        job = await intake.reingest(OWNER, document_id)

        assert isinstance(job.payload, DocumentJobPayload)
        assert (await memory_store.get_document(OWNER, document_id)).processing_status is ProcessingStatus.PENDING

    @pytest.mark.asyncio
    async def test_reingest_requires_reachable_upload(self, intake, memory_store) -> None:
        source = UploadSource(file_path="/nonexistent/notes.pdf", original_name="notes.pdf", mime_type="application/pdf")
        document_id = await intake.enqueue_ingestion(OWNER, source)
        await memory_store.mark_failed(OWNER, document_id, "corrupt")

        with pytest.raises(ValidationError):
            await intake.reingest(OWNER, document_id)
        assert (await memory_store.get_document(OWNER, document_id)).processing_status is ProcessingStatus.FAILED

    @pytest.mark.asyncio
    async def test_only_failed_documents_can_be_reingested(self, intake) -> None:
        document_id = await intake.enqueue_ingestion(OWNER, TextSource(text="hello there"))

        with pytest.raises(ConflictError):
            await intake.reingest(OWNER, document_id)

    @pytest.mark.asyncio
    async def test_reingest_enqueue_failure_leaves_document_failed(self, intake, memory_store, sink) -> None:
        document_id = await intake.enqueue_ingestion(OWNER, TextSource(text="hello there"))
        await memory_store.mark_failed(OWNER, document_id, "down")
        sink.enqueue = AsyncMock(side_effect=PipelineError("Job queue is not running"))

        with pytest.raises(PipelineError):
            await intake.reingest(OWNER, document_id)

        document = await memory_store.get_document(OWNER, document_id)
        assert document.processing_status is ProcessingStatus.FAILED
        assert document.processing_error == "Job queue is not running"
