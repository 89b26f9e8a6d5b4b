"""Embedding access with an explicit failure policy.

Every embedding the system computes goes through :class:`EmbeddingService`.
Callers pass an :class:`EmbeddingPolicy`:

* ``STRICT``  -- a provider failure raises :class:`ProviderError`.  The
  pipeline uses this so the job queue can retry and, after the last
  attempt, mark the document failed.
* ``DEGRADE`` -- a provider failure yields a zero vector of the configured
  dimension with ``degraded=True``.  Search uses this for the query
  embedding so an outage leaves lexical retrieval working.

A zero vector has cosine similarity 0 with everything, so a degraded
query embedding can never clear the vector-retrieval threshold, and
degraded chunks are excluded from vector scoring outright.

Query embeddings are memoised in a ``cachetools.TTLCache`` keyed by a hash
of the text; degraded results are never cached.
"""

from __future__ import annotations

import asyncio
import hashlib
from enum import Enum

import structlog
from cachetools import TTLCache
from pydantic import BaseModel, ConfigDict

from memoria.interfaces.embedding_provider import IEmbeddingProvider
from memoria.utils.concurrency import batched, throttled_gather
from memoria.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)


class EmbeddingPolicy(str, Enum):  # noqa: UP042
    STRICT = "strict"
    DEGRADE = "degrade"


class EmbeddingOutcome(BaseModel):
    model_config = ConfigDict(frozen=True)

    vector: list[float]
    degraded: bool = False


class EmbeddingService:
    """Wraps an :class:`IEmbeddingProvider` with batching, caching and fallbacks.

    Parameters
    ----------
    provider:
        The embedding backend.
    dimension:
        Vector length used for fallback vectors and shape checks.
    batch_size:
        Texts per provider call in :meth:`embed_batch`.
    max_concurrency:
        Provider calls in flight at once for one :meth:`embed_batch`.
    cache_size, cache_ttl:
        Bounds of the query-embedding cache.  ``cache_ttl=0`` disables it.
    """

    def __init__(
        self,
        provider: IEmbeddingProvider,
        dimension: int,
        batch_size: int = 100,
        max_concurrency: int = 4,
        cache_size: int = 1024,
        cache_ttl: int = 3600,
    ) -> None:
        self._provider = provider
        self._dimension = dimension
        self._batch_size = batch_size
        self._max_concurrency = max_concurrency
        self._cache: TTLCache[str, list[float]] | None = (
            TTLCache(maxsize=cache_size, ttl=cache_ttl) if cache_ttl > 0 else None
        )

    @property
    def dimension(self) -> int:
        return self._dimension

    def fallback_vector(self) -> list[float]:
        return [0.0] * self._dimension

    async def embed(self, text: str, policy: EmbeddingPolicy) -> EmbeddingOutcome:
        """Embed a single text (typically a search query), using the cache."""
        key = _cache_key(text)
        if self._cache is not None:
            cached = self._cache.get(key)
            if cached is not None:
                logger.debug("embedding_cache_hit")
                return EmbeddingOutcome(vector=cached)

        try:
            vector = await self._provider.embed(text)
            self._check_shape([vector], expected=1)
        except ProviderError as exc:
            return self._handle_failure(exc, policy, count=1)[0]

        if self._cache is not None:
            self._cache[key] = vector
        return EmbeddingOutcome(vector=vector)

    async def embed_batch(self, texts: list[str], policy: EmbeddingPolicy) -> list[EmbeddingOutcome]:
        """Embed *texts*, returning one outcome per input in input order.

        Under ``DEGRADE`` the whole call degrades when any batch fails, so a
        document never ends up with a mix of real and placeholder vectors.
        """
        if not texts:
            return []

        semaphore = asyncio.Semaphore(self._max_concurrency)
        batches = batched(texts, self._batch_size)
        try:
            results = await throttled_gather(
                [self._provider.embed_batch(list(batch)) for batch in batches],
                semaphore=semaphore,
            )
            vectors = [vector for batch_vectors in results for vector in batch_vectors]
            self._check_shape(vectors, expected=len(texts))
        except ProviderError as exc:
            return self._handle_failure(exc, policy, count=len(texts))

        logger.debug("embedding_batch_complete", texts=len(texts), batches=len(batches))
        return [EmbeddingOutcome(vector=v) for v in vectors]

    def _check_shape(self, vectors: list[list[float]], expected: int) -> None:
        if len(vectors) != expected:
            raise ProviderError(
                message=f"Expected {expected} embeddings, received {len(vectors)}",
                provider_name=self._provider.get_provider_name(),
            )
        for vector in vectors:
            if len(vector) != self._dimension:
                raise ProviderError(
                    message=f"Embedding dimension {len(vector)} != {self._dimension}",
                    provider_name=self._provider.get_provider_name(),
                    retryable=False,
                )

    def _handle_failure(
        self, exc: ProviderError, policy: EmbeddingPolicy, count: int
    ) -> list[EmbeddingOutcome]:
        if policy is EmbeddingPolicy.STRICT:
            raise exc
        logger.warning(
            "embedding_degraded",
            provider=self._provider.get_provider_name(),
            texts=count,
            error=str(exc),
        )
        return [EmbeddingOutcome(vector=self.fallback_vector(), degraded=True) for _ in range(count)]


def _cache_key(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()
