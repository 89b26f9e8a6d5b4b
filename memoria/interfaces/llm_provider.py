"""Abstract base class for chat-completion providers.

The assistant consumes two shapes of output: a whole
:class:`~memoria.models.search.Completion`, or an async stream of ordered
text fragments.  Citations are attached by the assistant service, not the
provider.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator

from memoria.models.search import ChatMessage, Completion


class ILLMProvider(ABC):
    """Contract for completion services used by the assistant and classifier."""

    @abstractmethod
    async def complete(
        self,
        messages: list[ChatMessage],
        context: str = "",
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> Completion:
        """Return a full completion for *messages*.

        Parameters
        ----------
        messages:
            Conversation turns, oldest first.
        context:
            Retrieved material folded into the system prompt.  Empty when
            the caller has already written its own system message.
        temperature:
            Sampling temperature.
        max_tokens:
            Upper bound on generated tokens.

        Raises
        ------
        memoria.utils.errors.ProviderError
            If the API call fails.
        """

    @abstractmethod
    def stream(
        self,
        messages: list[ChatMessage],
        context: str = "",
        temperature: float = 0.3,
        max_tokens: int = 1000,
    ) -> AsyncIterator[str]:
        """Yield the completion as ordered text fragments."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier, e.g. ``"openai"``."""
