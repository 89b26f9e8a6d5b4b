"""OpenAI-compatible chat-completion adapter.

Wraps the ``openai`` async client to implement :class:`ILLMProvider`.
Because OpenAI, Ollama and most hosted gateways speak the same chat
completions protocol, one adapter covers every configured provider kind;
the endpoint and model names come from the resolved ProviderConfig.
"""

from __future__ import annotations

from typing import AsyncIterator

import openai
import structlog

from memoria.config.settings import ProviderConfig
from memoria.interfaces.llm_provider import ILLMProvider
from memoria.models.search import ChatMessage, Completion
from memoria.utils.errors import ProviderError

logger = structlog.get_logger(logger_name=__name__)


def build_message_payload(messages: list[ChatMessage], context: str) -> list[dict[str, str]]:
    """Convert messages to the wire format, folding *context* into the system prompt.

    When *context* is non-empty it is appended to the first system message,
    or sent as a new leading system message when there is none.
    """
    payload = [{"role": m.role, "content": m.content} for m in messages]
    if not context:
        return payload
    if payload and payload[0]["role"] == "system":
        payload[0] = {"role": "system", "content": f"{payload[0]['content']}\n\n{context}"}
    else:
        payload.insert(0, {"role": "system", "content": context})
    return payload


class OpenAILLMProvider(ILLMProvider):
    """LLM provider backed by an OpenAI-compatible chat completions API."""

    def __init__(self, config: ProviderConfig, model: str | None = None) -> None:
        client_kwargs: dict = {
            "api_key": config.api_key,
            "timeout": openai.Timeout(config.request_timeout, connect=5.0),
        }
        if config.endpoint:
            client_kwargs["base_url"] = config.endpoint

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self._model = model or config.chat_model
        self._provider_label = config.kind

    async def complete(
        self,
        messages: list[ChatMessage],
        context: str = "",
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> Completion:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=build_message_payload(messages, context),
                temperature=temperature,
                max_tokens=max_tokens,
            )
        except openai.APITimeoutError as exc:
            raise ProviderError(
                message="Completion request timed out",
                provider_name=self.get_provider_name(),
            ) from exc
        except openai.APIError as exc:
            raise ProviderError(
                message=f"Completion API error: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc

        content = response.choices[0].message.content if response.choices else None
        if content is None:
            raise ProviderError(
                message="Completion returned an empty response",
                provider_name=self.get_provider_name(),
            )

        usage: dict[str, int] = {}
        if response.usage:
            usage = {
                "prompt_tokens": response.usage.prompt_tokens,
                "completion_tokens": response.usage.completion_tokens,
                "total_tokens": response.usage.total_tokens,
            }
        logger.info(
            "openai_completion",
            model=self._model,
            provider=self._provider_label,
            tokens=usage.get("total_tokens"),
        )
        return Completion(text=content, model=response.model or self._model, usage=usage)

    async def stream(
        self,
        messages: list[ChatMessage],
        context: str = "",
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> AsyncIterator[str]:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=build_message_payload(messages, context),
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
            )
            fragments = 0
            async for event in response:
                if not event.choices:
                    continue
                delta = event.choices[0].delta.content
                if delta:
                    fragments += 1
                    yield delta
        except openai.APIError as exc:
            raise ProviderError(
                message=f"Streaming completion failed: {exc}",
                provider_name=self.get_provider_name(),
            ) from exc
        logger.info("openai_stream_complete", model=self._model, fragments=fragments)

    def get_provider_name(self) -> str:
        return self._provider_label
