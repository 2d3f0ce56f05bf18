from amana.services.llm.base import LLMProvider, LLMProviderError, LLMResponse
from amana.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMProviderError", "LLMResponse", "OpenAIProvider"]
