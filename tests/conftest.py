"""Shared pytest fixtures for the memoria test suite."""

from __future__ import annotations

import hashlib
import struct
import uuid
from collections.abc import AsyncIterator
from datetime import datetime
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import chromadb
import pytest

from memoria.config.settings import Settings
from memoria.interfaces.content_extractor import ExtractionResult, IContentExtractor
from memoria.interfaces.embedding_provider import IEmbeddingProvider
from memoria.interfaces.llm_provider import ILLMProvider
from memoria.interfaces.query_classifier import IQueryClassifier
from memoria.models.document import (
    Chunk,
    ContentType,
    Document,
    ProcessingStatus,
    SourceDescriptor,
    SourceKind,
    make_chunk_id,
    utc_now,
)
from memoria.models.job import ExtractionPayload
from memoria.models.search import Completion, QueryAnalysis
from memoria.providers.store.memory_store import InMemoryDocumentStore
from memoria.providers.vector_index.chromadb_index import ChromaDBVectorIndex
from memoria.utils.errors import ProviderError

EMBEDDING_DIM = 64


def hash_to_vector(text: str, dim: int = EMBEDDING_DIM) -> list[float]:
    """Deterministic unit-length vector derived from SHA-256 of *text*."""
    digest = hashlib.sha256(text.encode("utf-8")).digest()
    raw = digest
    while len(raw) < dim * 4:
        raw += hashlib.sha256(raw).digest()
    # Unpack as unsigned ints to avoid NaN/inf floats, then centre on zero.
    values = [v / 2**31 - 1.0 for v in struct.unpack(f"<{dim}I", raw[: dim * 4])]
    magnitude = max(sum(v * v for v in values) ** 0.5, 1e-10)
    return [v / magnitude for v in values]


def unit_vector(*components: float, dim: int = EMBEDDING_DIM) -> list[float]:
    """Pad *components* with zeros to *dim* and normalise."""
    values = list(components) + [0.0] * (dim - len(components))
    magnitude = max(sum(v * v for v in values) ** 0.5, 1e-10)
    return [v / magnitude for v in values]


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class MockEmbeddingProvider(IEmbeddingProvider):
    """Deterministic hash-based embeddings.

    ``vectors`` pins specific texts to specific vectors.  ``fail_times``
    makes the next N calls raise :class:`ProviderError`; ``-1`` fails
    forever.
    """

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        fail_times: int = 0,
        dim: int = EMBEDDING_DIM,
    ) -> None:
        self.vectors = dict(vectors or {})
        self.fail_times = fail_times
        self.dim = dim
        self.calls = 0

    def _maybe_fail(self) -> None:
        self.calls += 1
        if self.fail_times != 0:
            if self.fail_times > 0:
                self.fail_times -= 1
            raise ProviderError("embedding backend unavailable", provider_name="mock-embedding")

    def _vector(self, text: str) -> list[float]:
        return self.vectors.get(text) or hash_to_vector(text, self.dim)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self._maybe_fail()
        return [self._vector(t) for t in texts]

    async def embed(self, text: str) -> list[float]:
        self._maybe_fail()
        return self._vector(text)

    def get_dimension(self) -> int:
        return self.dim

    def get_provider_name(self) -> str:
        return "mock-embedding"


class FakeExtractor(IContentExtractor):
    """Scripted extractor: returns (or raises) the scripted outcomes in order.

    The last outcome repeats once the script runs out.
    """

    def __init__(self, *outcomes: ExtractionResult | Exception) -> None:
        self._outcomes = list(outcomes) or [ExtractionResult(text="")]
        self.calls: list[ExtractionPayload] = []

    async def extract(self, payload: ExtractionPayload) -> ExtractionResult:
        self.calls.append(payload)
        index = min(len(self.calls) - 1, len(self._outcomes) - 1)
        outcome = self._outcomes[index]
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def get_provider_name(self) -> str:
        return "fake-extractor"


class StaticClassifier(IQueryClassifier):
    """Returns a fixed analysis, or the keyword fallback when none is given."""

    def __init__(self, analysis: QueryAnalysis | None = None) -> None:
        self.analysis = analysis

    async def classify(self, query: str) -> QueryAnalysis:
        return self.analysis or QueryAnalysis.fallback(query)


def make_document(
    document_id: str = "doc-1",
    owner_id: str = "owner-1",
    content: str = "",
    title: str = "Test document",
    content_type: ContentType = ContentType.TEXT,
    status: ProcessingStatus = ProcessingStatus.PENDING,
    chunks: list[Chunk] | None = None,
    created_at: datetime | None = None,
    **extra: Any,
) -> Document:
    processed = status == ProcessingStatus.COMPLETED and chunks is not None
    return Document(
        document_id=document_id,
        owner_id=owner_id,
        title=title,
        content=content,
        content_type=content_type,
        source=extra.pop("source", SourceDescriptor(kind=SourceKind.MANUAL)),
        chunks=chunks or [],
        processing_status=status,
        is_processed=extra.pop("is_processed", processed),
        created_at=created_at or utc_now(),
        **extra,
    )


def make_chunk(
    document_id: str,
    ordinal: int,
    text: str,
    embedding: list[float] | None = None,
    degraded: bool = False,
) -> Chunk:
    return Chunk(
        chunk_id=make_chunk_id(document_id, ordinal),
        text=text,
        embedding=embedding if embedding is not None else hash_to_vector(text),
        start_offset=0,
        end_offset=len(text),
        embedding_degraded=degraded,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def project_root() -> Path:
    return Path(__file__).parent.parent


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    """Settings for tests: in-memory store, tiny dimension, no backoff delay."""
    return Settings(
        provider_kind="ollama",
        provider_embedding_dimension=EMBEDDING_DIM,
        store_backend="memory",
        store_sqlite_path=str(tmp_path / "memoria.db"),
        pipeline_backoff_base_seconds=0.0,
        embedding_cache_ttl=0,
    )


@pytest.fixture
def memory_store() -> InMemoryDocumentStore:
    return InMemoryDocumentStore()


@pytest.fixture
def mock_embedding_provider() -> MockEmbeddingProvider:
    return MockEmbeddingProvider()


@pytest.fixture
def mock_llm_provider() -> ILLMProvider:
    """Mock ILLMProvider.

    ``complete`` returns a fixed Completion; ``stream`` yields three
    fragments.  Override ``complete.return_value`` / ``stream.side_effect``
    per test.
    """

    async def _stream(*args: Any, **kwargs: Any) -> AsyncIterator[str]:
        for fragment in ("Meeting ", "Alpha ", "covered the budget."):
            yield fragment

    mock = MagicMock(spec=ILLMProvider)
    mock.get_provider_name.return_value = "mock-llm"
    mock.complete = AsyncMock(
        return_value=Completion(
            text="Meeting Alpha covered the budget.",
            model="mock-model",
            usage={"prompt_tokens": 10, "completion_tokens": 6, "total_tokens": 16},
        )
    )
    mock.stream = MagicMock(side_effect=_stream)
    return mock


@pytest.fixture
def chroma_index() -> ChromaDBVectorIndex:
    """A real ChromaDB index on an in-process client, isolated by collection name."""
    client = chromadb.EphemeralClient(settings=chromadb.config.Settings(anonymized_telemetry=False))
    return ChromaDBVectorIndex(client=client, collection_name=f"memoria-{uuid.uuid4().hex}")
