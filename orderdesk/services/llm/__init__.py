from orderdesk.services.llm.base import LLMProvider, LLMResponse
from orderdesk.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider"]
