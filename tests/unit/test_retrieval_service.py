"""Unit tests for HybridSearchEngine over the in-memory store."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest

from memoria.interfaces.vector_index import IVectorIndex, VectorHit
from memoria.models.document import ContentType, ProcessingStatus
from memoria.models.search import DateRange, MatchType, QueryAnalysis, SearchOptions
from memoria.services.embedding_service import EmbeddingService
from memoria.services.retrieval_service import HybridSearchEngine
from memoria.utils.errors import ProviderError, RetrievalError, StoreError, ValidationError
from tests.conftest import (
    EMBEDDING_DIM,
    MockEmbeddingProvider,
    StaticClassifier,
    make_chunk,
    make_document,
    unit_vector,
)

OWNER = "owner-1"
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

QUERY_VECTOR = unit_vector(1.0, 0.0)
CLOSE_VECTOR = unit_vector(1.0, 0.1)  # cosine ~0.995
FAR_VECTOR = unit_vector(0.0, 1.0)  # cosine 0


def _engine(store, provider=None, classifier=None, **kwargs) -> HybridSearchEngine:
    provider = provider or MockEmbeddingProvider(vectors={"budget": QUERY_VECTOR, "budget today": QUERY_VECTOR})
    return HybridSearchEngine(
        store,
        EmbeddingService(provider, dimension=EMBEDDING_DIM, cache_ttl=0),
        classifier or StaticClassifier(),
        clock=lambda: NOW,
        **kwargs,
    )


async def _add(store, document_id: str, content: str, *embeddings, owner_id: str = OWNER, **kwargs) -> None:
    chunks = [make_chunk(document_id, i, content, embedding=e) for i, e in enumerate(embeddings)]
    await store.create_document(
        make_document(
            document_id,
            owner_id=owner_id,
            content=content,
            status=ProcessingStatus.COMPLETED,
            chunks=chunks,
            created_at=kwargs.pop("created_at", NOW - timedelta(days=200)),
            **kwargs,
        )
    )


class FailingClassifier(StaticClassifier):
    async def classify(self, query: str) -> QueryAnalysis:
        raise ProviderError("classifier down")


# ======================================================================
# Fusion of the two retrievers
# ======================================================================


class TestHybridSearch:
    @pytest.mark.asyncio
    async def test_vector_hit_above_threshold_only(self, memory_store) -> None:
        await _add(memory_store, "close", "quarterly figures", CLOSE_VECTOR)
        await _add(memory_store, "far", "holiday plans", FAR_VECTOR)

        response = await _engine(memory_store).search(OWNER, "budget")

        assert [r.document_id for r in response.results] == ["close"]
        hit = response.results[0]
        assert hit.match_type is MatchType.VECTOR
        assert hit.chunk_id == "close_0"
        assert hit.final_score == pytest.approx(0.7 * hit.vector_score)
        assert response.degraded == []

    @pytest.mark.asyncio
    async def test_similarity_exactly_at_threshold_is_excluded(self, memory_store) -> None:
        # Against QUERY_VECTOR these score exactly 0.7 and 0.8.
        at_threshold = [7.0, 1.0, 5.0, 5.0] + [0.0] * (EMBEDDING_DIM - 4)
        above = [8.0, 6.0] + [0.0] * (EMBEDDING_DIM - 2)
        await _add(memory_store, "at", "quarterly figures", at_threshold)
        await _add(memory_store, "above", "holiday plans", above)

        response = await _engine(memory_store).search(OWNER, "budget")

        assert [r.document_id for r in response.results] == ["above"]
        assert response.results[0].vector_score == pytest.approx(0.8)

    @pytest.mark.asyncio
    async def test_wrong_dimension_chunk_is_skipped(self, memory_store) -> None:
        await _add(memory_store, "short", "quarterly figures", [1.0, 0.0, 0.0])
        await _add(memory_store, "close", "holiday plans", CLOSE_VECTOR)

        response = await _engine(memory_store).search(OWNER, "budget")

        assert [r.document_id for r in response.results] == ["close"]

    @pytest.mark.asyncio
    async def test_vector_and_lexical_on_same_document_fuse(self, memory_store) -> None:
        await _add(memory_store, "doc-1", "The budget was approved.", CLOSE_VECTOR)

        response = await _engine(memory_store).search(OWNER, "budget")

        (hit,) = response.results
        assert hit.match_type is MatchType.HYBRID
        assert hit.lexical_score == pytest.approx(1.0)
        assert hit.final_score == pytest.approx(0.7 * hit.vector_score + 0.3)
        assert response.total_found == 1

    @pytest.mark.asyncio
    async def test_lexical_only_hit_is_document_level(self, memory_store) -> None:
        await _add(memory_store, "doc-1", "Budget review. Weather was fine.", FAR_VECTOR)

        response = await _engine(memory_store).search(OWNER, "budget")

        (hit,) = response.results
        assert hit.chunk_id is None
        assert hit.match_type is MatchType.LEXICAL
        assert hit.text == "Budget review"
        assert hit.final_score == pytest.approx(0.3)

    @pytest.mark.asyncio
    async def test_degraded_chunks_never_match_by_vector(self, memory_store) -> None:
        await memory_store.create_document(
            make_document(
                "doc-1",
                content="unrelated words",
                status=ProcessingStatus.COMPLETED,
                chunks=[make_chunk("doc-1", 0, "unrelated words", embedding=QUERY_VECTOR, degraded=True)],
            )
        )

        response = await _engine(memory_store).search(OWNER, "budget")

        assert response.results == []

    @pytest.mark.asyncio
    async def test_results_limited_and_sorted(self, memory_store) -> None:
        for i in range(5):
            await _add(memory_store, f"doc-{i}", "budget " * (i + 1), unit_vector(1.0, 0.1 * i))

        response = await _engine(memory_store).search(OWNER, "budget", SearchOptions(limit=3))

        scores = [r.final_score for r in response.results]
        assert len(scores) == 3
        assert scores == sorted(scores, reverse=True)
        assert response.total_found == 5

    @pytest.mark.asyncio
    async def test_other_owners_documents_invisible(self, memory_store) -> None:
        await _add(memory_store, "theirs", "budget", CLOSE_VECTOR, owner_id="owner-2")

        response = await _engine(memory_store).search(OWNER, "budget")

        assert response.results == []

    @pytest.mark.asyncio
    async def test_content_type_filter(self, memory_store) -> None:
        await _add(memory_store, "web", "budget", CLOSE_VECTOR, content_type=ContentType.WEB)
        await _add(memory_store, "text", "budget", CLOSE_VECTOR)

        response = await _engine(memory_store).search(
            OWNER, "budget", SearchOptions(content_type=ContentType.WEB)
        )

        assert {r.document_id for r in response.results} == {"web"}

    @pytest.mark.asyncio
    async def test_touches_returned_documents(self, memory_store) -> None:
        await _add(memory_store, "doc-1", "budget", CLOSE_VECTOR)

        await _engine(memory_store).search(OWNER, "budget")

        assert (await memory_store.get_document(OWNER, "doc-1")).last_accessed_at == NOW


# ======================================================================
# Degradation and errors
# ======================================================================


class TestDegradation:
    @pytest.mark.asyncio
    async def test_embedding_outage_runs_lexical_only(self, memory_store) -> None:
        await _add(memory_store, "doc-1", "The budget was approved.", CLOSE_VECTOR)

        response = await _engine(memory_store, provider=MockEmbeddingProvider(fail_times=-1)).search(
            OWNER, "budget"
        )

        (hit,) = response.results
        assert hit.match_type is MatchType.LEXICAL
        assert response.degraded == ["query_embedding"]

    @pytest.mark.asyncio
    async def test_classifier_failure_falls_back(self, memory_store) -> None:
        await _add(memory_store, "doc-1", "budget", CLOSE_VECTOR)

        response = await _engine(memory_store, classifier=FailingClassifier()).search(OWNER, "budget")

        assert response.degraded == ["classification"]
        assert response.query_analysis.intent == "search"
        assert response.query_analysis.keywords == ["budget"]
        assert len(response.results) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   "])
    async def test_empty_query_rejected(self, memory_store, query: str) -> None:
        with pytest.raises(ValidationError):
            await _engine(memory_store).search(OWNER, query)

    @pytest.mark.asyncio
    async def test_store_failure_raises_retrieval_error(self, memory_store) -> None:
        memory_store.scan_chunks = AsyncMock(side_effect=StoreError("disk gone"))

        with pytest.raises(RetrievalError, match="Search failed"):
            await _engine(memory_store).search(OWNER, "budget")

    @pytest.mark.asyncio
    async def test_touch_failure_is_not_fatal(self, memory_store) -> None:
        await _add(memory_store, "doc-1", "budget", CLOSE_VECTOR)
        memory_store.touch_documents = AsyncMock(side_effect=StoreError("locked"))

        response = await _engine(memory_store).search(OWNER, "budget")

        assert len(response.results) == 1


# ======================================================================
# Temporal handling
# ======================================================================


class TestTemporal:
    @pytest.mark.asyncio
    async def test_recent_document_boosted_by_hint(self, memory_store) -> None:
        await _add(memory_store, "fresh", "notes", CLOSE_VECTOR, created_at=NOW)
        await _add(memory_store, "stale", "notes", CLOSE_VECTOR, created_at=NOW - timedelta(days=3))
        classifier = StaticClassifier(QueryAnalysis(temporal_hint="today", keywords=["budget"]))

        response = await _engine(memory_store, classifier=classifier).search(OWNER, "budget today")

        by_id = {r.document_id: r for r in response.results}
        assert response.results[0].document_id == "fresh"
        assert by_id["fresh"].final_score == pytest.approx(by_id["stale"].final_score * (1 + math.exp(0)))

    @pytest.mark.asyncio
    async def test_search_by_date_range(self, memory_store) -> None:
        await _add(memory_store, "in-range", "Meeting notes about launch.", CLOSE_VECTOR, created_at=NOW - timedelta(days=2))
        await _add(memory_store, "too-old", "Older notes.", CLOSE_VECTOR, created_at=NOW - timedelta(days=40))
        await memory_store.create_document(make_document("unprocessed", created_at=NOW - timedelta(days=1)))

        response = await _engine(memory_store).search_by_date_range(OWNER, NOW - timedelta(days=7), NOW)

        assert [r.document_id for r in response.results] == ["in-range"]
        assert response.results[0].match_type is MatchType.TEMPORAL
        assert response.results[0].final_score == 1.0
        assert response.query_analysis.intent == "temporal"

    @pytest.mark.asyncio
    async def test_date_range_limit_counts_processed_documents_only(self, memory_store) -> None:
        await _add(memory_store, "old", "Processed notes.", CLOSE_VECTOR, created_at=NOW - timedelta(days=3))
        for i in range(3):
            await memory_store.create_document(make_document(f"pending-{i}", created_at=NOW - timedelta(hours=i)))

        response = await _engine(memory_store).search_by_date_range(
            OWNER, NOW - timedelta(days=7), NOW, SearchOptions(limit=3)
        )

        assert [r.document_id for r in response.results] == ["old"]

    @pytest.mark.asyncio
    async def test_naive_date_range_is_read_as_utc(self, memory_store) -> None:
        await _add(memory_store, "recent", "quarterly figures", CLOSE_VECTOR, created_at=NOW - timedelta(days=2))
        await _add(memory_store, "old", "quarterly figures", CLOSE_VECTOR, created_at=NOW - timedelta(days=40))
        naive_now = NOW.replace(tzinfo=None)
        window = DateRange(start=naive_now - timedelta(days=7), end=naive_now)

        searched = await _engine(memory_store).search(OWNER, "budget", SearchOptions(date_range=window))
        listed = await _engine(memory_store).search_by_date_range(OWNER, window.start, window.end)
        listed_naive = await _engine(memory_store).search_by_date_range(
            OWNER, naive_now - timedelta(days=7), naive_now
        )

        assert [r.document_id for r in searched.results] == ["recent"]
        assert [r.document_id for r in listed.results] == ["recent"]
        assert [r.document_id for r in listed_naive.results] == ["recent"]

    @pytest.mark.asyncio
    async def test_reversed_date_range_rejected(self, memory_store) -> None:
        with pytest.raises(ValidationError):
            await _engine(memory_store).search_by_date_range(OWNER, NOW, NOW - timedelta(days=1))


# ======================================================================
# Defaults
# ======================================================================


class TestDefaultLimit:
    @pytest.mark.asyncio
    async def test_search_without_options_uses_default_limit(self, memory_store) -> None:
        for i in range(5):
            await _add(memory_store, f"doc-{i}", "budget", unit_vector(1.0, 0.1 * i))

        response = await _engine(memory_store, default_limit=2).search(OWNER, "budget")

        assert len(response.results) == 2
        assert response.total_found == 5

    @pytest.mark.asyncio
    async def test_date_range_without_options_uses_default_limit(self, memory_store) -> None:
        for i in range(5):
            await _add(memory_store, f"doc-{i}", "notes", CLOSE_VECTOR, created_at=NOW - timedelta(days=i))

        response = await _engine(memory_store, default_limit=2).search_by_date_range(
            OWNER, NOW - timedelta(days=7), NOW
        )

        assert [r.document_id for r in response.results] == ["doc-0", "doc-1"]


# ======================================================================
# Native vector index
# ======================================================================


class TestVectorIndexPath:
    @pytest.mark.asyncio
    async def test_hits_resolved_against_store(self, memory_store) -> None:
        await _add(memory_store, "doc-1", "quarterly figures", CLOSE_VECTOR)
        await memory_store.create_document(make_document("pending-doc"))
        index = AsyncMock(spec=IVectorIndex)
        index.query.return_value = [
            VectorHit(document_id="doc-1", chunk_id="doc-1_0", similarity=0.93),
            VectorHit(document_id="pending-doc", chunk_id="pending-doc_0", similarity=0.91),
            VectorHit(document_id="gone", chunk_id="gone_0", similarity=0.90),
        ]

        response = await _engine(memory_store, vector_index=index).search(OWNER, "budget")

        (hit,) = response.results
        assert hit.document_id == "doc-1"
        assert hit.vector_score == pytest.approx(0.93)
        kwargs = index.query.await_args.kwargs
        assert kwargs["top_k"] == 20
        assert kwargs["min_similarity"] == pytest.approx(0.70)

    @pytest.mark.asyncio
    async def test_chromadb_index_matches_chunk_scan(self, memory_store, chroma_index) -> None:
        corpus = {
            "nearest": unit_vector(1.0, 0.1),
            "middle": unit_vector(1.0, 0.5),
            "edge": unit_vector(1.0, 0.9),
            "below": unit_vector(0.5, 1.0),
            "far": FAR_VECTOR,
        }
        for document_id, vector in corpus.items():
            await _add(memory_store, document_id, "quarterly figures", vector)
            document = await memory_store.get_document(OWNER, document_id)
            await chroma_index.add_chunks(document, document.chunks)
        await _add(memory_store, "theirs", "quarterly figures", CLOSE_VECTOR, owner_id="owner-2")
        theirs = await memory_store.get_document("owner-2", "theirs")
        await chroma_index.add_chunks(theirs, theirs.chunks)

        scanned = await _engine(memory_store).search(OWNER, "budget")
        indexed = await _engine(memory_store, vector_index=chroma_index).search(OWNER, "budget")

        assert [r.chunk_id for r in indexed.results] == [r.chunk_id for r in scanned.results]
        assert [r.chunk_id for r in scanned.results] == ["nearest_0", "middle_0", "edge_0"]
        for via_index, via_scan in zip(indexed.results, scanned.results, strict=True):
            assert via_index.vector_score == pytest.approx(via_scan.vector_score, abs=1e-4)
