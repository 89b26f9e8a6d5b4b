"""Abstract base class for content extractors.

Extraction engines (PDF/DOCX parsing, page fetching, speech-to-text, OCR)
are black boxes to the pipeline: each takes a job payload and returns raw
text plus stage metadata in an :class:`ExtractionResult`.  Quality of the
text is the extractor's problem; the pipeline only enforces a minimum
length.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from memoria.models.job import ExtractionPayload


class ExtractionResult(BaseModel):
    """Immutable result from a content extractor."""

    model_config = ConfigDict(frozen=True)

    text: str = Field(description="Raw extracted text.")
    title: str | None = Field(default=None, description="Title found in the source, if any.")
    language: str = Field(default="en", description="Detected or specified language code.")
    confidence: float = Field(default=1.0, ge=0.0, le=1.0)
    page_count: int | None = Field(default=None, ge=0)
    duration_seconds: float | None = Field(
        default=None, description="Media duration for audio sources."
    )
    extra: dict[str, Any] = Field(default_factory=dict)


class IContentExtractor(ABC):
    """Contract for per-content-type extraction backends."""

    @abstractmethod
    async def extract(self, payload: ExtractionPayload) -> ExtractionResult:
        """Extract raw text from the source the payload points at.

        Parameters
        ----------
        payload:
            The job payload: a file path plus mime type, or a URL.

        Returns
        -------
        ExtractionResult
            Text and metadata.

        Raises
        ------
        memoria.utils.errors.ExtractionError
            On unsupported or corrupt input (``retryable=False``) or on a
            transient failure such as a fetch timeout (``retryable=True``).
        """

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable name for this extractor."""

    def supports(self, mime_type: str | None) -> bool:
        """Return True if this extractor accepts *mime_type*.  Defaults to any."""
        return True
