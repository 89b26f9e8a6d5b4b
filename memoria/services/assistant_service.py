"""Question answering over the owner's knowledge base.

Each question runs a hybrid search first (top 5 results), then asks the
LLM to answer from those results.  The streaming variant completes the
search before the first fragment is yielded, so citations are always
known by the time the terminal ``done`` event is sent.
"""

from __future__ import annotations

from collections.abc import AsyncIterator, Sequence

import structlog

from memoria.interfaces.llm_provider import ILLMProvider
from memoria.models.search import (
    AssistantReply,
    ChatMessage,
    Citation,
    SearchOptions,
    SearchResponse,
    SearchResult,
    StreamEvent,
)
from memoria.services.retrieval_service import HybridSearchEngine
from memoria.utils.errors import ValidationError

logger = structlog.get_logger(logger_name=__name__)

CONTEXT_RESULTS = 5
HISTORY_MESSAGES = 5

_SYSTEM_PROMPT = (
    "You are a helpful AI assistant with access to the user's personal knowledge base. "
    "Use the provided context to answer questions accurately and comprehensively.\n\n"
    "Context from user's documents:\n{context}\n\n"
    "Instructions:\n"
    "- Answer based primarily on the provided context\n"
    "- If the context doesn't contain relevant information, say so clearly\n"
    "- Cite sources when possible by mentioning document titles\n"
    "- Be concise but thorough\n"
    "- If asked about temporal information, pay attention to dates and timestamps\n"
    "- Maintain a conversational and helpful tone"
)


def build_context(results: Sequence[SearchResult]) -> str:
    """Render search results as the prompt's context block."""
    return "\n\n---\n\n".join(
        f"Source: {r.title or 'Unknown'} ({r.content_type.value})\n{r.text}" for r in results
    )


def citations_for(results: Sequence[SearchResult]) -> list[Citation]:
    return [
        Citation(
            document_id=r.document_id,
            chunk_id=r.chunk_id,
            title=r.title,
            relevance_score=r.final_score,
        )
        for r in results
    ]


class AssistantService:
    """Retrieval-augmented answers, whole or streamed.

    Parameters
    ----------
    search_engine:
        Hybrid search used to gather context.
    llm:
        Completion provider.
    temperature, max_tokens:
        Passed through to every completion call.
    """

    def __init__(
        self,
        search_engine: HybridSearchEngine,
        llm: ILLMProvider,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> None:
        self._search = search_engine
        self._llm = llm
        self._temperature = temperature
        self._max_tokens = max_tokens

    async def answer(
        self,
        owner_id: str,
        question: str,
        history: Sequence[ChatMessage] = (),
    ) -> AssistantReply:
        search, messages = await self._prepare(owner_id, question, history)
        completion = await self._llm.complete(
            messages, temperature=self._temperature, max_tokens=self._max_tokens
        )
        logger.info(
            "assistant_answered",
            sources=len(search.results),
            model=completion.model,
            total_tokens=completion.usage.get("total_tokens"),
        )
        return AssistantReply(
            text=completion.text,
            model=completion.model,
            usage=completion.usage,
            citations=citations_for(search.results),
            search=search,
        )

    async def stream_answer(
        self,
        owner_id: str,
        question: str,
        history: Sequence[ChatMessage] = (),
    ) -> AsyncIterator[StreamEvent]:
        """Yield ``chunk`` events in order, then one ``done`` event with citations."""
        search, messages = await self._prepare(owner_id, question, history)
        fragments = 0
        async for fragment in self._llm.stream(
            messages, temperature=self._temperature, max_tokens=self._max_tokens
        ):
            if not fragment:
                continue
            fragments += 1
            yield StreamEvent(type="chunk", content=fragment)

        logger.info("assistant_streamed", sources=len(search.results), fragments=fragments)
        yield StreamEvent(type="done", citations=citations_for(search.results))

    async def _prepare(
        self,
        owner_id: str,
        question: str,
        history: Sequence[ChatMessage],
    ) -> tuple[SearchResponse, list[ChatMessage]]:
        if not question or not question.strip():
            raise ValidationError("Question is empty")

        search = await self._search.search(
            owner_id, question, SearchOptions(limit=CONTEXT_RESULTS)
        )
        system = ChatMessage(
            role="system",
            content=_SYSTEM_PROMPT.format(context=build_context(search.results)),
        )
        recent = [m for m in history if m.role != "system"][-HISTORY_MESSAGES:]
        messages = [system, *recent, ChatMessage(role="user", content=question)]
        return search, messages
