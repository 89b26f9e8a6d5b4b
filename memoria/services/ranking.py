"""Scoring math for hybrid retrieval.

Pure functions shared by :class:`~memoria.services.retrieval_service.HybridSearchEngine`
and its tests:

* :func:`cosine_similarity` -- symmetric, 0 for mismatched or zero vectors.
* :func:`fuse_results` -- weighted merge of vector and lexical hits.
* :func:`apply_temporal_boost` -- recency multiplier inside a lookback window.
* :func:`extract_relevant_text` -- keyword-sentence excerpt for lexical hits.
"""

from __future__ import annotations

import math
import re
from datetime import datetime, timedelta

from memoria.models.search import FULL_DOCUMENT_KEY, MatchType, SearchResult

# Lookback window in days for each recognised temporal phrase.
TEMPORAL_WINDOWS: dict[str, int] = {
    "today": 1,
    "yesterday": 2,
    "this week": 7,
    "last week": 14,
    "this month": 30,
    "last month": 60,
}
DEFAULT_LOOKBACK_DAYS = 365
RECENCY_DECAY_DAYS = 30.0
EXCERPT_MAX_CHARS = 300
EXCERPT_MAX_SENTENCES = 2

_SENTENCE_SPLIT_RE = re.compile(r"[.!?]+")


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """Cosine similarity of two vectors.

    Returns 0.0 rather than raising when the lengths differ, either vector
    is empty, or either has zero norm.
    """
    if len(a) != len(b) or not a:
        return 0.0
    dot = norm_a = norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    return dot / (math.sqrt(norm_a) * math.sqrt(norm_b))


def fuse_results(
    vector_hits: list[SearchResult],
    lexical_hits: list[SearchResult],
    vector_weight: float = 0.7,
    lexical_weight: float = 0.3,
) -> list[SearchResult]:
    """Merge vector and lexical hits into one list keyed by ``(document, chunk-or-full)``.

    Vector hits score ``vector_score * vector_weight``.  A lexical hit is
    document-level: when the same document already has vector hits, its
    weighted score is added to that document's best-scoring chunk;
    otherwise it is inserted under the document's ``"full"`` key.
    The returned list is unsorted.
    """
    fused: dict[tuple[str, str], SearchResult] = {}
    best_chunk: dict[str, tuple[str, str]] = {}

    for hit in vector_hits:
        entry = hit.model_copy(
            update={
                "final_score": hit.vector_score * vector_weight,
                "match_type": MatchType.VECTOR,
            }
        )
        key = entry.fusion_key
        if key in fused and fused[key].vector_score >= entry.vector_score:
            continue
        fused[key] = entry
        current = best_chunk.get(entry.document_id)
        if current is None or fused[current].vector_score < entry.vector_score:
            best_chunk[entry.document_id] = key

    for hit in lexical_hits:
        weighted = hit.lexical_score * lexical_weight
        key = best_chunk.get(hit.document_id, (hit.document_id, FULL_DOCUMENT_KEY))
        existing = fused.get(key)
        if existing is None:
            fused[key] = hit.model_copy(
                update={
                    "chunk_id": None,
                    "final_score": weighted,
                    "match_type": MatchType.LEXICAL,
                }
            )
            continue
        fused[key] = existing.model_copy(
            update={
                "lexical_score": existing.lexical_score + hit.lexical_score,
                "final_score": existing.final_score + weighted,
                "match_type": (
                    MatchType.HYBRID if existing.match_type != MatchType.LEXICAL else MatchType.LEXICAL
                ),
            }
        )

    return list(fused.values())


def lookback_days(temporal_hint: str, default: int = DEFAULT_LOOKBACK_DAYS) -> int:
    """Map a temporal phrase to its lookback window; unknown phrases get *default*."""
    return TEMPORAL_WINDOWS.get(temporal_hint.strip().lower(), default)


def apply_temporal_boost(
    results: list[SearchResult],
    temporal_hint: str | None,
    now: datetime,
    default_days: int = DEFAULT_LOOKBACK_DAYS,
) -> list[SearchResult]:
    """Multiply the score of results created within the hint's window.

    The multiplier is ``1 + exp(-days_since_creation / 30)``: 2.0 for
    content created just now, decaying towards 1.0.  Results outside the
    window are returned unchanged.
    """
    if not temporal_hint:
        return results

    window = timedelta(days=lookback_days(temporal_hint, default_days))
    cutoff = now - window
    boosted: list[SearchResult] = []
    for result in results:
        if result.created_at < cutoff:
            boosted.append(result)
            continue
        days_since = max((now - result.created_at).total_seconds() / 86400.0, 0.0)
        factor = 1.0 + math.exp(-days_since / RECENCY_DECAY_DAYS)
        boosted.append(result.model_copy(update={"final_score": result.final_score * factor}))
    return boosted


def rank(results: list[SearchResult], limit: int) -> list[SearchResult]:
    """Sort by fused score descending and keep the top *limit*."""
    return sorted(results, key=lambda r: r.final_score, reverse=True)[:limit]


def extract_relevant_text(
    content: str,
    keywords: list[str],
    max_length: int = EXCERPT_MAX_CHARS,
) -> str:
    """Build a display excerpt from the sentences that mention any keyword.

    Up to two matching sentences (case-insensitive substring match) are
    joined with ``". "``.  With no match, the first *max_length*
    characters are used.  Either way the excerpt is capped at
    *max_length* characters plus ``"..."``.
    """
    needles = [k.lower() for k in keywords if k.strip()]
    sentences = [s.strip() for s in _SENTENCE_SPLIT_RE.split(content) if s.strip()]
    matching = [s for s in sentences if any(n in s.lower() for n in needles)]

    if not matching:
        excerpt = content.strip()
    else:
        excerpt = ". ".join(matching[:EXCERPT_MAX_SENTENCES])

    if len(excerpt) > max_length:
        return excerpt[:max_length] + "..."
    return excerpt
