"""OpenAI-compatible embedding provider adapter.

Wraps the ``openai`` async client to implement :class:`IEmbeddingProvider`.
The same adapter serves OpenAI itself, Ollama's ``/v1`` endpoint and any
OpenAI-compatible gateway; which one is decided by the resolved
:class:`~memoria.config.settings.ProviderConfig`, never by the key.
"""

from __future__ import annotations

import openai
import structlog

from memoria.config.settings import ProviderConfig
from memoria.interfaces.embedding_provider import IEmbeddingProvider
from memoria.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)

_OPENAI_BATCH_LIMIT = 2048
# Inputs are cut to this many characters before embedding.
_MAX_INPUT_CHARS = 8000


class OpenAIEmbeddingProvider(IEmbeddingProvider):
    """Embedding provider backed by an OpenAI-compatible embeddings API.

    Splits inputs larger than the per-call limit into several requests and
    checks that every returned vector has the configured dimension.
    """

    def __init__(self, config: ProviderConfig) -> None:
        client_kwargs: dict = {"api_key": config.api_key, "timeout": config.request_timeout}
        if config.endpoint:
            client_kwargs["base_url"] = config.endpoint

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = config.embedding_model
        self._dimension = config.embedding_dimension
        self._provider_label = f"{config.kind}_embedding"

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            return []

        inputs = [t[:_MAX_INPUT_CHARS] for t in texts]
        vectors: list[list[float]] = []
        try:
            for start in range(0, len(inputs), _OPENAI_BATCH_LIMIT):
                batch = inputs[start : start + _OPENAI_BATCH_LIMIT]
                response = await self._client.embeddings.create(input=batch, model=self._model)
                # The API may return items out of order; ``index`` is authoritative.
                ordered = sorted(response.data, key=lambda item: item.index)
                vectors.extend(item.embedding for item in ordered)
                logger.info(
                    "openai_embedding_batch",
                    model=self._model,
                    provider=self._provider_label,
                    batch_size=len(batch),
                    tokens=response.usage.total_tokens if response.usage else None,
                )
        except openai.APIError as exc:
            raise ProviderError(
                message=f"Embedding API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        if len(vectors) != len(texts):
            raise ProviderError(
                message=f"Expected {len(texts)} embeddings, received {len(vectors)}",
                provider_name=self.get_provider_name(),
            )
        for vector in vectors:
            if len(vector) != self._dimension:
                raise ProviderError(
                    message=(
                        f"Embedding dimension {len(vector)} does not match "
                        f"configured {self._dimension}"
                    ),
                    provider_name=self.get_provider_name(),
                    retryable=False,
                )
        return vectors

    async def embed(self, text: str) -> list[float]:
        result = await self.embed_batch([text])
        return result[0]

    def get_dimension(self) -> int:
        return self._dimension

    def get_provider_name(self) -> str:
        return self._provider_label
