"""Hybrid retrieval: vector similarity fused with full-text relevance.

Data flow for one query
-----------------------
  1. CLASSIFY  -- the query classifier extracts intent, a temporal hint
                  and keywords.  On provider failure a fallback analysis
                  (intent "search", keywords = query words) is used.
  2. EMBED     -- the query embedding uses the DEGRADE policy: an outage
                  yields a zero vector, which can never clear the
                  similarity threshold, so the query runs lexical-only.
  3. RETRIEVE  -- vector and lexical retrieval run concurrently.
                  Vector: native index when configured, otherwise a
                  brute-force cosine scan of the owner's chunks.  Both
                  keep similarity > threshold (0.70) and skip degraded
                  chunks.  Lexical: the store's full-text search.
  4. FUSE      -- 0.7 x vector + 0.3 x lexical, keyed by (document, chunk)
                  (see :func:`memoria.services.ranking.fuse_results`).
  5. BOOST     -- recency multiplier when the query has a temporal hint.
  6. RANK      -- sort descending and truncate to the requested limit.

Fallbacks that were applied are listed in ``SearchResponse.degraded`` so
callers can tell a clean answer from a degraded one.  A store failure is
not absorbed; it surfaces as :class:`RetrievalError`.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime

import structlog

from memoria.interfaces.document_store import IDocumentStore
from memoria.interfaces.query_classifier import IQueryClassifier
from memoria.interfaces.vector_index import IVectorIndex
from memoria.models.document import Chunk, Document, utc_now
from memoria.models.search import (
    DateRange,
    MatchType,
    QueryAnalysis,
    SearchOptions,
    SearchResponse,
    SearchResult,
)
from memoria.services import ranking
from memoria.services.embedding_service import EmbeddingPolicy, EmbeddingService
from memoria.utils.errors import MemoriaError, RetrievalError, StoreError, ValidationError

logger = structlog.get_logger(logger_name=__name__)

_MIN_VECTOR_CANDIDATES = 20


class HybridSearchEngine:
    """Answers a search query over one owner's processed documents.

    Parameters
    ----------
    store:
        Document store providing chunk scans and full-text search.
    embeddings:
        Embedding access used for the query vector.
    classifier:
        Query classifier; failures fall back to a keyword analysis.
    vector_index:
        Optional native index.  When ``None`` the engine scans chunks.
    similarity_threshold:
        Vector hits must score strictly above this.
    vector_weight, lexical_weight:
        Fusion weights.
    lexical_candidates:
        Full-text hits requested from the store per query.
    default_lookback_days:
        Temporal window for hints without a fixed window.
    default_limit:
        Result count used when a call passes no options.
    query_policy:
        Failure policy for the query embedding.
    clock:
        Returns "now"; injectable for tests.
    """

    def __init__(
        self,
        store: IDocumentStore,
        embeddings: EmbeddingService,
        classifier: IQueryClassifier,
        vector_index: IVectorIndex | None = None,
        similarity_threshold: float = 0.70,
        vector_weight: float = 0.7,
        lexical_weight: float = 0.3,
        lexical_candidates: int = 20,
        default_lookback_days: int = ranking.DEFAULT_LOOKBACK_DAYS,
        default_limit: int = 10,
        query_policy: EmbeddingPolicy = EmbeddingPolicy.DEGRADE,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._store = store
        self._embeddings = embeddings
        self._classifier = classifier
        self._vector_index = vector_index
        self._threshold = similarity_threshold
        self._vector_weight = vector_weight
        self._lexical_weight = lexical_weight
        self._lexical_candidates = lexical_candidates
        self._default_lookback_days = default_lookback_days
        self._default_limit = default_limit
        self._query_policy = query_policy
        self._clock = clock

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(
        self,
        owner_id: str,
        query: str,
        options: SearchOptions | None = None,
    ) -> SearchResponse:
        """Run a hybrid search.

        Raises
        ------
        ValidationError
            If the query is empty.
        RetrievalError
            If the document store or vector index fails.
        """
        if not query or not query.strip():
            raise ValidationError("Search query is empty")
        options = options or SearchOptions(limit=self._default_limit)
        degraded: list[str] = []

        analysis = await self._classify(query, degraded)
        outcome = await self._embeddings.embed(query, self._query_policy)
        if outcome.degraded:
            degraded.append("query_embedding")

        keywords = analysis.keywords or query.split()
        try:
            vector_hits, lexical_hits = await asyncio.gather(
                self._vector_search(owner_id, outcome.vector, outcome.degraded, options),
                self._lexical_search(owner_id, query, keywords, options),
            )
        except StoreError as exc:
            logger.error("hybrid_search_failed", error=str(exc))
            raise RetrievalError("Search failed") from exc

        fused = ranking.fuse_results(
            vector_hits, lexical_hits, self._vector_weight, self._lexical_weight
        )
        boosted = ranking.apply_temporal_boost(
            fused, analysis.temporal_hint, self._clock(), self._default_lookback_days
        )
        results = ranking.rank(boosted, options.limit)

        await self._touch(owner_id, results)
        logger.info(
            "hybrid_search_complete",
            vector_hits=len(vector_hits),
            lexical_hits=len(lexical_hits),
            returned=len(results),
            temporal_hint=analysis.temporal_hint,
            degraded=degraded or None,
        )
        return SearchResponse(
            results=results,
            total_found=len(fused),
            query_analysis=analysis,
            degraded=degraded,
        )

    async def search_by_date_range(
        self,
        owner_id: str,
        start: datetime,
        end: datetime,
        options: SearchOptions | None = None,
    ) -> SearchResponse:
        """List processed documents created between *start* and *end*, newest first."""
        options = options or SearchOptions(limit=self._default_limit)
        try:
            window = DateRange(start=start, end=end)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc

        try:
            documents = await self._store.list_documents(
                owner_id,
                content_type=options.content_type,
                date_range=window,
                limit=options.limit,
                processed_only=True,
            )
        except StoreError as exc:
            raise RetrievalError("Search failed") from exc

        results = [
            _result_for(
                document,
                chunk_id=None,
                text=ranking.extract_relevant_text(document.content, []),
                final_score=1.0,
                match_type=MatchType.TEMPORAL,
            )
            for document in documents
        ]
        return SearchResponse(
            results=results,
            total_found=len(results),
            query_analysis=QueryAnalysis(intent="temporal"),
        )

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _classify(self, query: str, degraded: list[str]) -> QueryAnalysis:
        try:
            return await self._classifier.classify(query)
        except MemoriaError as exc:
            logger.warning("query_classification_fallback", error=str(exc))
            degraded.append("classification")
            return QueryAnalysis.fallback(query)

    async def _vector_search(
        self,
        owner_id: str,
        embedding: list[float],
        embedding_degraded: bool,
        options: SearchOptions,
    ) -> list[SearchResult]:
        if embedding_degraded:
            return []
        top_k = max(options.limit * 2, _MIN_VECTOR_CANDIDATES)
        if self._vector_index is not None:
            return await self._index_search(owner_id, embedding, top_k, options)

        pairs = await self._store.scan_chunks(owner_id, options.content_type, options.date_range)
        scored: list[tuple[float, Document, Chunk]] = []
        for document, chunk in pairs:
            if chunk.embedding_degraded or not chunk.embedding:
                continue
            similarity = ranking.cosine_similarity(embedding, chunk.embedding)
            if similarity > self._threshold:
                scored.append((similarity, document, chunk))
        scored.sort(key=lambda item: item[0], reverse=True)

        return [
            _result_for(
                document,
                chunk_id=chunk.chunk_id,
                text=chunk.text,
                vector_score=similarity,
                match_type=MatchType.VECTOR,
            )
            for similarity, document, chunk in scored[:top_k]
        ]

    async def _index_search(
        self,
        owner_id: str,
        embedding: list[float],
        top_k: int,
        options: SearchOptions,
    ) -> list[SearchResult]:
        hits = await self._vector_index.query(
            owner_id,
            embedding,
            top_k=top_k,
            min_similarity=self._threshold,
            content_type=options.content_type,
            date_range=options.date_range,
        )
        if not hits:
            return []

        documents = await self._store.get_documents(owner_id, {hit.document_id for hit in hits})
        results: list[SearchResult] = []
        for hit in hits:
            document = documents.get(hit.document_id)
            # The index can lag the store; trust the store's view.
            if document is None or not document.is_processed:
                continue
            chunk = next((c for c in document.chunks if c.chunk_id == hit.chunk_id), None)
            if chunk is None or chunk.embedding_degraded:
                continue
            results.append(
                _result_for(
                    document,
                    chunk_id=chunk.chunk_id,
                    text=chunk.text,
                    vector_score=hit.similarity,
                    match_type=MatchType.VECTOR,
                )
            )
        return results

    async def _lexical_search(
        self,
        owner_id: str,
        query: str,
        keywords: list[str],
        options: SearchOptions,
    ) -> list[SearchResult]:
        hits = await self._store.full_text_search(
            owner_id,
            query,
            content_type=options.content_type,
            date_range=options.date_range,
            limit=self._lexical_candidates,
        )
        return [
            _result_for(
                document,
                chunk_id=None,
                text=ranking.extract_relevant_text(document.content, keywords),
                lexical_score=score,
                match_type=MatchType.LEXICAL,
            )
            for document, score in hits
        ]

    async def _touch(self, owner_id: str, results: list[SearchResult]) -> None:
        if not results:
            return
        try:
            await self._store.touch_documents(
                owner_id, {r.document_id for r in results}, self._clock()
            )
        except MemoriaError as exc:
            logger.warning("access_time_update_failed", error=str(exc))


def _result_for(
    document: Document,
    chunk_id: str | None,
    text: str,
    match_type: MatchType,
    vector_score: float = 0.0,
    lexical_score: float = 0.0,
    final_score: float = 0.0,
) -> SearchResult:
    return SearchResult(
        document_id=document.document_id,
        chunk_id=chunk_id,
        title=document.title,
        content_type=document.content_type,
        text=text,
        vector_score=vector_score,
        lexical_score=lexical_score,
        final_score=final_score,
        match_type=match_type,
        source=document.source,
        created_at=document.created_at,
        tags=document.tags,
    )
