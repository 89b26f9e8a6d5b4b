"""Unit tests for AssistantService with a stubbed search engine."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from memoria.models.document import ContentType, SourceDescriptor, SourceKind
from memoria.models.search import (
    ChatMessage,
    MatchType,
    QueryAnalysis,
    SearchResponse,
    SearchResult,
)
from memoria.services.assistant_service import AssistantService, build_context, citations_for
from memoria.services.retrieval_service import HybridSearchEngine
from memoria.utils.errors import ProviderError, ValidationError


def _result(document_id: str, title: str, text: str, score: float) -> SearchResult:
    return SearchResult(
        document_id=document_id,
        chunk_id=f"{document_id}_0",
        title=title,
        content_type=ContentType.TEXT,
        text=text,
        final_score=score,
        match_type=MatchType.HYBRID,
        source=SourceDescriptor(kind=SourceKind.MANUAL),
        created_at=datetime(2024, 6, 1, tzinfo=timezone.utc),
    )


RESULTS = [
    _result("doc-1", "Meeting Alpha", "Meeting Alpha covered budget and timeline.", 0.9),
    _result("doc-2", "Roadmap", "Launch is next quarter.", 0.6),
]


@pytest.fixture
def search_engine() -> MagicMock:
    engine = MagicMock(spec=HybridSearchEngine)
    engine.search = AsyncMock(
        return_value=SearchResponse(
            results=RESULTS, total_found=2, query_analysis=QueryAnalysis.fallback("budget")
        )
    )
    return engine


class TestPromptAssembly:
    def test_context_block_format(self) -> None:
        assert build_context(RESULTS) == (
            "Source: Meeting Alpha (text)\nMeeting Alpha covered budget and timeline."
            "\n\n---\n\n"
            "Source: Roadmap (text)\nLaunch is next quarter."
        )

    def test_citations_follow_result_order(self) -> None:
        citations = citations_for(RESULTS)

        assert [(c.document_id, c.chunk_id, c.relevance_score) for c in citations] == [
            ("doc-1", "doc-1_0", 0.9),
            ("doc-2", "doc-2_0", 0.6),
        ]


class TestAnswer:
    @pytest.mark.asyncio
    async def test_answers_with_citations(self, search_engine, mock_llm_provider) -> None:
        service = AssistantService(search_engine, mock_llm_provider)

        reply = await service.answer("owner-1", "What did Meeting Alpha cover?")

        assert reply.text == "Meeting Alpha covered the budget."
        assert reply.usage["total_tokens"] == 16
        assert [c.document_id for c in reply.citations] == ["doc-1", "doc-2"]
        options = search_engine.search.await_args.args[2]
        assert options.limit == 5

    @pytest.mark.asyncio
    async def test_messages_are_system_history_question(self, search_engine, mock_llm_provider) -> None:
        service = AssistantService(search_engine, mock_llm_provider, temperature=0.2, max_tokens=300)
        history = [ChatMessage(role="system", content="ignored")] + [
            ChatMessage(role="user" if i % 2 == 0 else "assistant", content=f"turn {i}") for i in range(8)
        ]

        await service.answer("owner-1", "And the launch?", history)

        messages = mock_llm_provider.complete.await_args.args[0]
        assert messages[0].role == "system"
        assert "Source: Meeting Alpha (text)" in messages[0].content
        assert [m.content for m in messages[1:-1]] == [f"turn {i}" for i in range(3, 8)]
        assert messages[-1] == ChatMessage(role="user", content="And the launch?")
        kwargs = mock_llm_provider.complete.await_args.kwargs
        assert kwargs == {"temperature": 0.2, "max_tokens": 300}

    @pytest.mark.asyncio
    async def test_empty_question_rejected(self, search_engine, mock_llm_provider) -> None:
        with pytest.raises(ValidationError):
            await AssistantService(search_engine, mock_llm_provider).answer("owner-1", "  ")

        search_engine.search.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_llm_errors_propagate(self, search_engine, mock_llm_provider) -> None:
        mock_llm_provider.complete.side_effect = ProviderError("overloaded")

        with pytest.raises(ProviderError):
            await AssistantService(search_engine, mock_llm_provider).answer("owner-1", "Budget?")


class TestStreamAnswer:
    @pytest.mark.asyncio
    async def test_chunks_then_done_with_citations(self, search_engine, mock_llm_provider) -> None:
        service = AssistantService(search_engine, mock_llm_provider)

        events = [e async for e in service.stream_answer("owner-1", "What did Meeting Alpha cover?")]

        assert [e.type for e in events] == ["chunk", "chunk", "chunk", "done"]
        assert "".join(e.content for e in events[:-1]) == "Meeting Alpha covered the budget."
        assert [c.document_id for c in events[-1].citations] == ["doc-1", "doc-2"]

    @pytest.mark.asyncio
    async def test_empty_fragments_skipped(self, search_engine, mock_llm_provider) -> None:
        async def _stream(*args, **kwargs):
            for fragment in ("", "Hi", ""):
                yield fragment

        mock_llm_provider.stream.side_effect = _stream

        events = [e async for e in AssistantService(search_engine, mock_llm_provider).stream_answer("o", "q")]

        assert [(e.type, e.content) for e in events] == [("chunk", "Hi"), ("done", "")]

    @pytest.mark.asyncio
    async def test_no_results_still_answers(self, search_engine, mock_llm_provider) -> None:
        search_engine.search.return_value = SearchResponse(query_analysis=QueryAnalysis.fallback("x"))

        events = [e async for e in AssistantService(search_engine, mock_llm_provider).stream_answer("o", "x")]

        assert events[-1].type == "done"
        assert events[-1].citations == []
