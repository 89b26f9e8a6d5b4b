"""LLM-backed query classifier.

Asks the completion provider for a small JSON object describing a search
query and converts it into a :class:`QueryAnalysis`.  Any failure (API
error, unparseable output) is raised as :class:`ProviderError`; the
retrieval engine owns the fallback.
"""

from __future__ import annotations

import json
import re
from typing import Any

import structlog

from memoria.interfaces.llm_provider import ILLMProvider
from memoria.interfaces.query_classifier import IQueryClassifier
from memoria.models.document import ContentType
from memoria.models.search import ChatMessage, QueryAnalysis
from memoria.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)

# Models often wrap JSON in ```json ... ``` fences despite instructions.
_JSON_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)

_SYSTEM_PROMPT = (
    "Analyze the user's search query over their personal notes, documents, "
    "recordings, web clippings and images. Extract:\n"
    "1. intent: one of search, question, command\n"
    "2. temporal: a time phrase such as today, yesterday, this week, last week, "
    "this month, last month, or null\n"
    "3. contentTypes: any of audio, document, web, text, image the query refers to\n"
    "4. entities: people, projects, places or organisations named\n"
    "5. keywords: the important search terms\n\n"
    "Return only a JSON object with keys: intent, temporal, contentTypes, entities, keywords."
)


class LLMQueryClassifier(IQueryClassifier):
    """Classifies queries with a low-temperature completion call."""

    def __init__(self, llm: ILLMProvider, max_tokens: int = 200) -> None:
        self._llm = llm
        self._max_tokens = max_tokens

    async def classify(self, query: str) -> QueryAnalysis:
        completion = await self._llm.complete(
            [
                ChatMessage(role="system", content=_SYSTEM_PROMPT),
                ChatMessage(role="user", content=query),
            ],
            temperature=0.1,
            max_tokens=self._max_tokens,
        )
        try:
            parsed = _parse_json_object(completion.text)
        except (json.JSONDecodeError, ValueError) as exc:
            raise ProviderError(
                message=f"Unparseable classification response: {exc}",
                provider_name=self._llm.get_provider_name(),
            ) from exc

        analysis = _to_analysis(parsed, query)
        logger.debug(
            "query_classified",
            intent=analysis.intent,
            temporal_hint=analysis.temporal_hint,
            keywords=len(analysis.keywords),
        )
        return analysis


def _parse_json_object(text: str) -> dict[str, Any]:
    text = text.strip()
    fence_match = _JSON_FENCE_RE.search(text)
    if fence_match:
        text = fence_match.group(1).strip()
    if not text.startswith("{"):
        brace_start = text.find("{")
        brace_end = text.rfind("}")
        if brace_start != -1 and brace_end > brace_start:
            text = text[brace_start : brace_end + 1]

    parsed = json.loads(text)
    if not isinstance(parsed, dict):
        raise ValueError("classification response is not a JSON object")
    return parsed


def _string_list(value: Any) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, list):
        return [str(v).strip() for v in value if str(v).strip()]
    return []


def _to_analysis(parsed: dict[str, Any], query: str) -> QueryAnalysis:
    """Map the loosely-typed model output onto QueryAnalysis, dropping junk values."""
    temporal = parsed.get("temporal") or parsed.get("temporal_hint")
    if isinstance(temporal, list):
        temporal = temporal[0] if temporal else None
    temporal_hint = str(temporal).strip().lower() if temporal else None

    valid_types = {ct.value for ct in ContentType}
    content_types = [
        ContentType(t.lower())
        for t in _string_list(parsed.get("contentTypes") or parsed.get("content_types"))
        if t.lower() in valid_types
    ]

    keywords = _string_list(parsed.get("keywords")) or query.split()
    intent = str(parsed.get("intent") or "search").strip().lower()

    return QueryAnalysis(
        intent=intent,
        temporal_hint=temporal_hint or None,
        content_type_hints=content_types,
        entities=_string_list(parsed.get("entities")),
        keywords=keywords,
    )
