"""Abstract base class for query classification."""

from __future__ import annotations

from abc import ABC, abstractmethod

from memoria.models.search import QueryAnalysis


class IQueryClassifier(ABC):
    """Turns a free-text query into a :class:`QueryAnalysis`."""

    @abstractmethod
    async def classify(self, query: str) -> QueryAnalysis:
        """Classify *query*.

        Raises
        ------
        memoria.utils.errors.ProviderError
            If the classification call fails or returns unusable output.
            The retrieval engine absorbs this into a fallback analysis.
        """
