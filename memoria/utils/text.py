"""Small text helpers used when recording extraction metadata."""

from __future__ import annotations

import re
from urllib.parse import urlparse

# Function words per language; the language with the most hits in the
# first 1000 characters wins, English on ties or no hits.
_LANGUAGE_MARKERS: dict[str, re.Pattern[str]] = {
    "en": re.compile(r"\b(the|and|or|but|in|on|at|to|for|of|with|by)\b"),
    "es": re.compile(r"\b(el|la|y|o|pero|en|con|de|para|por)\b"),
    "fr": re.compile(r"\b(le|la|et|ou|mais|dans|sur|avec|de|pour)\b"),
    "de": re.compile(r"\b(der|die|das|und|oder|aber|in|auf|mit|von)\b"),
}

_WHITESPACE_RE = re.compile(r"\s+")
_OCR_NOISE_RE = re.compile(r"[^\w\s.,!?;:()\-]")


def detect_language(text: str) -> str:
    """Guess an ISO-639-1 code from function-word frequency."""
    sample = text[:1000].lower()
    best, best_hits = "en", 0
    for language, pattern in _LANGUAGE_MARKERS.items():
        hits = len(pattern.findall(sample))
        if hits > best_hits:
            best, best_hits = language, hits
    return best


def count_words(text: str) -> int:
    return len(text.split())


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text).strip()


def clean_ocr_text(text: str) -> str:
    """Collapse whitespace and drop symbols OCR tends to hallucinate."""
    return collapse_whitespace(_OCR_NOISE_RE.sub("", text))


def default_web_title(url: str) -> str:
    """Title given to a URL document until its page title is known."""
    return f"Web content from {urlparse(url).hostname or url}"
