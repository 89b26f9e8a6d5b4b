"""Embedding provider implementations.

OpenAIEmbeddingProvider talks to any OpenAI-compatible ``/embeddings``
endpoint, which covers OpenAI itself, self-hosted gateways and Ollama.
"""

from memoria.providers.embedding.openai_embedding_provider import OpenAIEmbeddingProvider

__all__ = ["OpenAIEmbeddingProvider"]
