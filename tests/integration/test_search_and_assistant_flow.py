"""Ingest-then-query flows: hybrid search and the assistant over real pipeline output."""

from __future__ import annotations

import pytest
import pytest_asyncio

from memoria.main import Container, build_container
from memoria.models.document import ContentType
from memoria.models.search import MatchType, SearchOptions
from memoria.services.intake_service import TextSource
from tests.conftest import MockEmbeddingProvider, StaticClassifier, unit_vector

OWNER = "owner-1"
MEETING_NOTE = "Meeting Alpha covered budget and timeline. Launch is next quarter."
GROCERIES = "Grocery list: apples, oats, coffee beans, olive oil."
ROLLOUT_QUERY = "what did we decide about rollout"

FILLER = [
    "Dentist appointment moved to Friday morning.",
    "Book recommendations from Sam: two novels and a biography.",
    "Gym schedule: swimming on Mondays, cycling on Thursdays.",
]


@pytest.fixture
def pinned_provider() -> MockEmbeddingProvider:
    """Rollout query lands next to the meeting note and far from groceries."""
    return MockEmbeddingProvider(
        vectors={
            MEETING_NOTE: unit_vector(1.0, 0.2),
            ROLLOUT_QUERY: unit_vector(1.0),
            GROCERIES: unit_vector(0.0, 0.0, 1.0),
        }
    )


@pytest_asyncio.fixture
async def container(test_settings, mock_llm_provider, pinned_provider):
    built: Container = build_container(
        test_settings,
        embedding_provider=pinned_provider,
        llm=mock_llm_provider,
        classifier=StaticClassifier(),
        extractors={},
    )
    await built.start()
    yield built
    await built.close()


async def _ingest(container: Container, text: str, owner_id: str = OWNER) -> str:
    document_id = await container.intake.enqueue_ingestion(owner_id, TextSource(text=text))
    await container.queue.join()
    return document_id


class TestHybridSearch:
    @pytest.mark.asyncio
    async def test_semantic_match_without_shared_words(self, container) -> None:
        meeting_id = await _ingest(container, MEETING_NOTE)
        await _ingest(container, GROCERIES)

        response = await container.search.search(OWNER, ROLLOUT_QUERY)

        assert [r.document_id for r in response.results] == [meeting_id]
        assert response.results[0].match_type is MatchType.VECTOR
        assert response.results[0].final_score == pytest.approx(0.7 * response.results[0].vector_score)

    @pytest.mark.asyncio
    async def test_shared_words_and_similarity_fuse(self, container, pinned_provider) -> None:
        pinned_provider.vectors["budget timeline"] = unit_vector(1.0)
        meeting_id = await _ingest(container, MEETING_NOTE)

        response = await container.search.search(OWNER, "budget timeline")

        (result,) = response.results
        assert result.document_id == meeting_id
        assert result.match_type is MatchType.HYBRID
        assert result.chunk_id == f"{meeting_id}_0"
        assert result.lexical_score > 0

    @pytest.mark.asyncio
    async def test_other_owners_documents_are_invisible(self, container) -> None:
        await _ingest(container, MEETING_NOTE, owner_id="owner-2")

        assert (await container.search.search(OWNER, "timeline")).results == []
        assert len((await container.search.search("owner-2", "timeline")).results) == 1

    @pytest.mark.asyncio
    async def test_content_type_filter(self, container) -> None:
        await _ingest(container, MEETING_NOTE)

        response = await container.search.search(
            OWNER, "timeline", SearchOptions(content_type=ContentType.WEB)
        )

        assert response.results == []

    @pytest.mark.asyncio
    async def test_query_embedding_outage_degrades_to_lexical(self, container, pinned_provider) -> None:
        meeting_id = await _ingest(container, MEETING_NOTE)
        pinned_provider.fail_times = -1

        response = await container.search.search(OWNER, "timeline")

        assert "query_embedding" in response.degraded
        assert [r.document_id for r in response.results] == [meeting_id]
        assert response.results[0].match_type is MatchType.LEXICAL

    @pytest.mark.asyncio
    async def test_search_records_access(self, container) -> None:
        meeting_id = await _ingest(container, MEETING_NOTE)

        await container.search.search(OWNER, "timeline")

        document = await container.store.get_document(OWNER, meeting_id)
        assert document.last_accessed_at is not None


class TestSqliteBackedFlow:
    @pytest_asyncio.fixture
    async def sqlite_container(self, test_settings, mock_llm_provider, pinned_provider):
        settings = test_settings.model_copy(update={"store_backend": "sqlite"})
        built = build_container(
            settings,
            embedding_provider=pinned_provider,
            llm=mock_llm_provider,
            classifier=StaticClassifier(),
            extractors={},
        )
        await built.start()
        yield built
        await built.close()

    @pytest.mark.asyncio
    async def test_ingest_and_search(self, sqlite_container) -> None:
        for text in FILLER:
            await _ingest(sqlite_container, text)
        meeting_id = await _ingest(sqlite_container, MEETING_NOTE)

        lexical = await sqlite_container.search.search(OWNER, "timeline")
        semantic = await sqlite_container.search.search(OWNER, ROLLOUT_QUERY)

        assert lexical.results[0].document_id == meeting_id
        assert lexical.results[0].final_score > 0
        assert semantic.results[0].document_id == meeting_id


class TestAssistantFlow:
    @pytest.mark.asyncio
    async def test_answer_cites_ingested_document(self, container, mock_llm_provider) -> None:
        meeting_id = await _ingest(container, MEETING_NOTE)

        reply = await container.assistant.answer(OWNER, ROLLOUT_QUERY)

        assert reply.text == "Meeting Alpha covered the budget."
        assert [c.document_id for c in reply.citations] == [meeting_id]
        system_prompt = mock_llm_provider.complete.await_args.args[0][0].content
        assert MEETING_NOTE in system_prompt

    @pytest.mark.asyncio
    async def test_stream_ends_with_citations(self, container) -> None:
        meeting_id = await _ingest(container, MEETING_NOTE)

        events = [e async for e in container.assistant.stream_answer(OWNER, ROLLOUT_QUERY)]

        assert events[-1].type == "done"
        assert [c.document_id for c in events[-1].citations] == [meeting_id]
        assert "".join(e.content for e in events if e.type == "chunk") == "Meeting Alpha covered the budget."
