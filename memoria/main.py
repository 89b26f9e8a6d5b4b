"""Memoria application wiring.

Builds every provider, service and pipeline component from a
:class:`Settings` instance and connects them through constructor
injection.  There are no module-level singletons: callers (the CLI, an
HTTP layer, tests) create a :class:`Container`, ``start()`` it, use its
services and ``close()`` it.

Any collaborator can be passed in explicitly to override the one the
settings would build, which is how tests run the full pipeline against
mock providers.
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from memoria.config.settings import Settings
from memoria.interfaces.content_extractor import IContentExtractor
from memoria.interfaces.document_store import IDocumentStore
from memoria.interfaces.embedding_provider import IEmbeddingProvider
from memoria.interfaces.llm_provider import ILLMProvider
from memoria.interfaces.query_classifier import IQueryClassifier
from memoria.interfaces.vector_index import IVectorIndex
from memoria.models.job import JobType
from memoria.pipeline.job_queue import JobQueue
from memoria.pipeline.status_tracker import StatusTracker
from memoria.pipeline.workers import EmbeddingWorker, ExtractionWorker
from memoria.providers.extractors.registry import ExtractorRegistry
from memoria.services.assistant_service import AssistantService
from memoria.services.chunker import TextChunker
from memoria.services.embedding_service import EmbeddingPolicy, EmbeddingService
from memoria.services.intake_service import IntakeService
from memoria.services.retrieval_service import HybridSearchEngine

logger = structlog.get_logger(logger_name=__name__)

_EXTRACTION_TYPES = (JobType.AUDIO, JobType.DOCUMENT, JobType.WEB, JobType.IMAGE)


@dataclass
class Container:
    """Everything a caller needs, already wired together."""

    settings: Settings
    store: IDocumentStore
    vector_index: IVectorIndex | None
    embeddings: EmbeddingService
    extractors: ExtractorRegistry
    tracker: StatusTracker
    queue: JobQueue
    intake: IntakeService
    search: HybridSearchEngine
    assistant: AssistantService | None

    async def start(self) -> None:
        await self.store.initialize()
        await self.queue.start()
        logger.info(
            "memoria_started",
            store=type(self.store).__name__,
            vector_index=type(self.vector_index).__name__ if self.vector_index else None,
            extractors=[t.value for t in self.extractors.job_types()],
        )

    async def close(self) -> None:
        await self.queue.stop()
        for extractor in self.extractors.all():
            close = getattr(extractor, "close", None)
            if close is not None:
                await close()
        await self.store.close()
        logger.info("memoria_stopped")


# ---------------------------------------------------------------------------
# Provider builders
# ---------------------------------------------------------------------------


def _build_store(settings: Settings) -> IDocumentStore:
    if settings.store_backend == "memory":
        from memoria.providers.store.memory_store import InMemoryDocumentStore

        return InMemoryDocumentStore()

    from memoria.providers.store.sqlite_store import SQLiteDocumentStore

    return SQLiteDocumentStore(db_path=settings.store_sqlite_path)


def _build_vector_index(settings: Settings) -> IVectorIndex | None:
    if settings.store_vector_index != "chromadb":
        return None

    from memoria.providers.vector_index.chromadb_index import ChromaDBVectorIndex

    return ChromaDBVectorIndex(
        persist_directory=settings.store_chromadb_persist_dir,
        collection_name=settings.store_chromadb_collection,
    )


def _build_extractors(settings: Settings) -> ExtractorRegistry:
    from memoria.providers.extractors.audio_extractor import WhisperAudioExtractor
    from memoria.providers.extractors.document_extractor import FileDocumentExtractor
    from memoria.providers.extractors.image_extractor import TesseractImageExtractor
    from memoria.providers.extractors.web_extractor import WebPageExtractor

    return ExtractorRegistry(
        {
            JobType.AUDIO: WhisperAudioExtractor(settings.resolve_provider()),
            JobType.DOCUMENT: FileDocumentExtractor(),
            JobType.WEB: WebPageExtractor(timeout=settings.pipeline_web_fetch_timeout),
            JobType.IMAGE: TesseractImageExtractor(),
        }
    )


def _build_model_providers(
    settings: Settings,
) -> tuple[IEmbeddingProvider, ILLMProvider, IQueryClassifier]:
    from memoria.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider
    from memoria.providers.llm.openai_provider import OpenAILLMProvider
    from memoria.providers.llm.query_classifier import LLMQueryClassifier

    config = settings.resolve_provider()
    llm = OpenAILLMProvider(config)
    classifier = LLMQueryClassifier(OpenAILLMProvider(config, model=config.classifier_model))
    return OpenAIEmbeddingProvider(config), llm, classifier


# ---------------------------------------------------------------------------
# Full DI assembly
# ---------------------------------------------------------------------------


def build_container(
    settings: Settings,
    *,
    store: IDocumentStore | None = None,
    vector_index: IVectorIndex | None = None,
    embedding_provider: IEmbeddingProvider | None = None,
    llm: ILLMProvider | None = None,
    classifier: IQueryClassifier | None = None,
    extractors: dict[JobType, IContentExtractor] | ExtractorRegistry | None = None,
    tracker: StatusTracker | None = None,
) -> Container:
    """Assemble a :class:`Container` from *settings*.

    Model providers are only built from settings when at least one of
    ``embedding_provider`` / ``llm`` / ``classifier`` is missing, so a
    fully injected container never needs provider credentials.  When an
    ``llm`` is given without a ``classifier``, the classifier reuses it.
    """
    store = store or _build_store(settings)
    if vector_index is None:
        vector_index = _build_vector_index(settings)

    if embedding_provider is None or (llm is None and classifier is None):
        built_embedding, built_llm, built_classifier = _build_model_providers(settings)
        embedding_provider = embedding_provider or built_embedding
        llm = llm or built_llm
        classifier = classifier or built_classifier
    if classifier is None:
        from memoria.providers.llm.query_classifier import LLMQueryClassifier

        classifier = LLMQueryClassifier(llm)

    if isinstance(extractors, ExtractorRegistry):
        registry = extractors
    elif extractors is not None:
        registry = ExtractorRegistry(extractors)
    else:
        registry = _build_extractors(settings)

    embeddings = EmbeddingService(
        embedding_provider,
        dimension=settings.provider_embedding_dimension,
        batch_size=settings.embedding_batch_size,
        max_concurrency=settings.embedding_max_concurrency,
        cache_size=settings.embedding_cache_size,
        cache_ttl=settings.embedding_cache_ttl,
    )

    tracker = tracker or StatusTracker(
        max_documents=settings.pipeline_job_history_size,
        ttl_seconds=settings.pipeline_job_history_ttl_seconds,
    )
    queue = JobQueue(
        pool_sizes=settings.pool_sizes(),
        max_attempts=settings.pipeline_max_attempts,
        backoff_base_seconds=settings.pipeline_backoff_base_seconds,
        tracker=tracker,
        history_size=settings.pipeline_job_history_size,
        history_ttl_seconds=settings.pipeline_job_history_ttl_seconds,
    )
    extraction_worker = ExtractionWorker(
        store,
        registry,
        sink=queue,
        min_extracted_chars=settings.pipeline_min_extracted_chars,
        delete_source_files=settings.pipeline_delete_source_files,
    )
    for job_type in _EXTRACTION_TYPES:
        if job_type in registry.job_types():
            queue.register_handler(job_type, extraction_worker)
    queue.register_handler(
        JobType.EMBEDDING,
        EmbeddingWorker(
            store,
            TextChunker(settings.chunking_size, settings.chunking_overlap),
            embeddings,
            policy=EmbeddingPolicy(settings.embedding_pipeline_policy),
            vector_index=vector_index,
        ),
    )

    search = HybridSearchEngine(
        store,
        embeddings,
        classifier,
        vector_index=vector_index,
        similarity_threshold=settings.retrieval_similarity_threshold,
        vector_weight=settings.retrieval_vector_weight,
        lexical_weight=settings.retrieval_lexical_weight,
        lexical_candidates=settings.retrieval_lexical_candidates,
        default_lookback_days=settings.retrieval_default_lookback_days,
        default_limit=settings.retrieval_default_limit,
        query_policy=EmbeddingPolicy(settings.embedding_query_policy),
    )

    return Container(
        settings=settings,
        store=store,
        vector_index=vector_index,
        embeddings=embeddings,
        extractors=registry,
        tracker=tracker,
        queue=queue,
        intake=IntakeService(store, queue),
        search=search,
        assistant=AssistantService(search, llm) if llm is not None else None,
    )
