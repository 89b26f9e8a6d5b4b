"""Abstract base class for text-embedding service providers.

Implementations wrap an OpenAI-compatible ``/embeddings`` endpoint (OpenAI,
Ollama, any compatible gateway) or a deterministic test double.  Failure
policy (raise vs. degrade) is not the provider's concern; providers always
raise and :class:`~memoria.services.embedding_service.EmbeddingService`
applies the configured policy.
"""

from __future__ import annotations

from abc import ABC, abstractmethod


# Concrete implementation: OpenAIEmbeddingProvider (memoria/providers/embedding/)
class IEmbeddingProvider(ABC):
    """Contract for embedding services used by the pipeline and retrieval."""

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embedding vectors for a batch of texts.

        Parameters
        ----------
        texts:
            Text strings to embed.

        Returns
        -------
        list[list[float]]
            One vector per input, in input order.

        Raises
        ------
        memoria.utils.errors.ProviderError
            On network, quota or model errors.
        """

    @abstractmethod
    async def embed(self, text: str) -> list[float]:
        """Generate an embedding vector for a single text string."""

    @abstractmethod
    def get_dimension(self) -> int:
        """Return the (constant) dimensionality of produced vectors."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai-text-embedding-3-small"``."""
