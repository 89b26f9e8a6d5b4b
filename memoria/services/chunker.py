"""Sentence-aware fixed-window text chunking.

Splits a document's raw content into overlapping windows of roughly
``target_size`` characters.  Where a window boundary falls inside the text
the chunker looks backward for the last sentence terminator (``.``, ``?``,
``!``) and cuts just after it, provided the resulting chunk is at least
half a window long.  Consecutive chunks share ``overlap`` characters so a
sentence straddling a boundary is fully contained in at least one chunk.

The chunker is a pure function of its inputs: no I/O, no randomness, and
the same text always yields the same spans.  Offsets are the raw window
bounds into the input, so the spans of consecutive chunks overlap by
exactly ``overlap`` characters and together cover the whole text; the
``text`` of each span is the window with surrounding whitespace trimmed.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict

_TERMINATORS = (".", "?", "!")


class TextSpan(BaseModel):
    """One chunk of text and its ``[start_offset, end_offset)`` window."""

    model_config = ConfigDict(frozen=True)

    text: str
    start_offset: int
    end_offset: int


class TextChunker:
    """Splits text into overlapping, sentence-aligned windows.

    Parameters
    ----------
    target_size:
        Window length in characters (default 1000).
    overlap:
        Characters shared by consecutive windows (default 200).
    """

    def __init__(self, target_size: int = 1000, overlap: int = 200) -> None:
        if target_size <= 0:
            raise ValueError("target_size must be positive")
        if overlap < 0:
            raise ValueError("overlap must not be negative")
        self._target_size = target_size
        self._overlap = overlap

    @property
    def target_size(self) -> int:
        return self._target_size

    @property
    def overlap(self) -> int:
        return self._overlap

    def chunk(self, text: str) -> list[TextSpan]:
        """Split *text* into ordered :class:`TextSpan` objects.

        Whitespace-only windows are dropped.  Empty or whitespace-only
        input yields an empty list.
        """
        spans: list[TextSpan] = []
        length = len(text)
        start = 0

        while start < length:
            end = min(start + self._target_size, length)
            if end < length:
                end = self._sentence_cut(text, start, end)

            piece = text[start:end].strip()
            if piece:
                spans.append(TextSpan(text=piece, start_offset=start, end_offset=end))

            if end >= length:
                break
            next_start = end - self._overlap
            if next_start <= start:
                # overlap >= target_size: the window can no longer advance.
                break
            start = next_start

        return spans

    def _sentence_cut(self, text: str, start: int, end: int) -> int:
        """Return the cut position for the window ``[start, end)``.

        The last terminator in the window wins when it sits at or past the
        window midpoint and the cut still lets the next window advance.
        """
        terminator = max(text.rfind(t, start, end) for t in _TERMINATORS)
        if terminator < 0:
            return end

        cut = terminator + 1
        half_window = start + self._target_size * 0.5
        if terminator >= half_window and cut - self._overlap > start:
            return cut
        return end
