"""Stage workers: extraction (audio/document/web/image) and embedding.

Each worker implements the queue's ``process`` / ``on_failure`` pair.

Extraction stage::

    pending|processing --(guarded)--> processing
    extractor.extract(payload) -> text + metadata
    text too short?  -> ExtractionError(retryable=False)
    save_extraction (status stays processing)
    enqueue EmbeddingJobPayload via the injected JobSink

Embedding stage::

    load document (skip if failed)
    chunk -> embed_batch(STRICT) -> assemble Chunk list
    replace_chunks: completed, is_processed, indexed_at in one write
    sync the optional vector index

The embedding job is only enqueued once extraction has been saved, so the
two stages never run concurrently for one document.  Terminal failures go
through ``on_failure``, which marks the document failed without touching
its content or chunks.
"""

from __future__ import annotations

import time
from pathlib import Path

import structlog

from memoria.interfaces.document_store import IDocumentStore
from memoria.interfaces.vector_index import IVectorIndex
from memoria.models.document import Chunk, ProcessingStatus, SourceKind, make_chunk_id, utc_now
from memoria.models.job import EmbeddingJobPayload, Job
from memoria.pipeline.job_queue import JobSink
from memoria.providers.extractors.registry import ExtractorRegistry
from memoria.services.chunker import TextChunker
from memoria.services.embedding_service import EmbeddingPolicy, EmbeddingService
from memoria.utils.errors import ConflictError, ExtractionError, MemoriaError, NotFoundError
from memoria.utils.text import count_words, default_web_title

logger = structlog.get_logger(logger_name=__name__)


def describe_error(error: BaseException) -> str:
    if isinstance(error, MemoriaError):
        return error.message
    return str(error) or error.__class__.__name__


class ExtractionWorker:
    """Runs a content extractor for one job and hands off to the embedding stage."""

    def __init__(
        self,
        store: IDocumentStore,
        extractors: ExtractorRegistry,
        sink: JobSink,
        min_extracted_chars: int = 10,
        delete_source_files: bool = False,
    ) -> None:
        self._store = store
        self._extractors = extractors
        self._sink = sink
        self._min_chars = min_extracted_chars
        self._delete_source_files = delete_source_files

    async def process(self, job: Job) -> None:
        payload = job.payload
        try:
            document = await self._store.transition_status(
                payload.owner_id,
                payload.document_id,
                expected=(ProcessingStatus.PENDING, ProcessingStatus.PROCESSING),
                new_status=ProcessingStatus.PROCESSING,
            )
        except (ConflictError, NotFoundError) as exc:
            # A failed, completed or deleted document is never revived by a stale job.
            logger.warning("extraction_skipped", reason=str(exc))
            return

        extractor = self._extractors.get(payload.kind)
        started = time.perf_counter()
        result = await extractor.extract(payload)
        duration = time.perf_counter() - started

        text = result.text.strip()
        if len(text) < self._min_chars:
            raise ExtractionError(
                f"Insufficient content extracted ({len(text)} characters)",
                provider_name=extractor.get_provider_name(),
                retryable=False,
            )

        metadata = document.metadata.model_copy(
            update={
                "language": result.language,
                "word_count": count_words(text),
                "extraction_duration": round(duration, 3),
                "confidence": result.confidence,
                "page_count": result.page_count,
                "extracted_at": utc_now(),
            }
        )
        title = None
        if (
            result.title
            and document.source.kind == SourceKind.URL
            and document.title == default_web_title(document.source.url or "")
        ):
            title = result.title

        await self._store.save_extraction(
            payload.owner_id, payload.document_id, text, metadata, title=title
        )
        logger.info(
            "document_extracted",
            chars=len(text),
            words=metadata.word_count,
            language=metadata.language,
            duration=metadata.extraction_duration,
        )

        await self._sink.enqueue(
            EmbeddingJobPayload(document_id=payload.document_id, owner_id=payload.owner_id)
        )
        self._remove_source_file(getattr(payload, "file_path", None))

    async def on_failure(self, job: Job, error: BaseException) -> None:
        message = describe_error(error)
        try:
            await self._store.mark_failed(job.payload.owner_id, job.document_id, message)
        except NotFoundError:
            logger.warning("mark_failed_document_missing")
            return
        logger.error("document_failed", stage="extraction", error=message)

    def _remove_source_file(self, file_path: str | None) -> None:
        if not self._delete_source_files or not file_path:
            return
        try:
            Path(file_path).unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("source_file_cleanup_failed", file_path=file_path, error=str(exc))


class EmbeddingWorker:
    """Chunks a document, embeds the chunks and swaps in the new chunk list."""

    def __init__(
        self,
        store: IDocumentStore,
        chunker: TextChunker,
        embeddings: EmbeddingService,
        policy: EmbeddingPolicy = EmbeddingPolicy.STRICT,
        vector_index: IVectorIndex | None = None,
    ) -> None:
        self._store = store
        self._chunker = chunker
        self._embeddings = embeddings
        self._policy = policy
        self._vector_index = vector_index

    async def process(self, job: Job) -> None:
        payload = job.payload
        try:
            document = await self._store.get_document(payload.owner_id, payload.document_id)
        except NotFoundError:
            logger.warning("embedding_skipped", reason="document not found")
            return
        if document.processing_status == ProcessingStatus.FAILED:
            logger.warning("embedding_skipped", reason="document failed")
            return

        spans = self._chunker.chunk(document.content)
        outcomes = await self._embeddings.embed_batch([s.text for s in spans], self._policy)
        chunks = [
            Chunk(
                chunk_id=make_chunk_id(document.document_id, ordinal),
                text=span.text,
                embedding=outcome.vector,
                start_offset=span.start_offset,
                end_offset=span.end_offset,
                embedding_degraded=outcome.degraded,
            )
            for ordinal, (span, outcome) in enumerate(zip(spans, outcomes, strict=True))
        ]

        try:
            updated = await self._store.replace_chunks(
                payload.owner_id, payload.document_id, chunks, indexed_at=utc_now()
            )
        except ConflictError as exc:
            logger.warning("embedding_skipped", reason=str(exc))
            return

        if self._vector_index is not None:
            await self._vector_index.delete_document(payload.owner_id, payload.document_id)
            await self._vector_index.add_chunks(updated, chunks)

        logger.info(
            "document_indexed",
            chunks=len(chunks),
            degraded=sum(1 for c in chunks if c.embedding_degraded),
        )

    async def on_failure(self, job: Job, error: BaseException) -> None:
        message = f"Embedding generation failed: {describe_error(error)}"
        try:
            await self._store.mark_failed(job.payload.owner_id, job.document_id, message)
        except NotFoundError:
            logger.warning("mark_failed_document_missing")
            return
        logger.error("document_failed", stage="embedding", error=message)
