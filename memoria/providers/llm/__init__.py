"""Chat-completion adapters and the LLM-backed query classifier."""

from memoria.providers.llm.openai_provider import OpenAILLMProvider
from memoria.providers.llm.query_classifier import LLMQueryClassifier

__all__ = ["LLMQueryClassifier", "OpenAILLMProvider"]
