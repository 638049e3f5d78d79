from lineflow.services.llm.anthropic_provider import AnthropicProvider
from lineflow.services.llm.base import LLMProvider, LLMResponse, LLMUnavailableError
from lineflow.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "LLMUnavailableError", "AnthropicProvider", "OpenAIProvider"]
