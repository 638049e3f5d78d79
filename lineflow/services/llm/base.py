from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional


@dataclass
class LLMResponse:
    content: str
    model: str
    usage: Optional[dict] = None


class LLMUnavailableError(Exception):
    """The LLM call failed at the transport level, returned a non-success status or an unreadable body."""


class LLMProvider(ABC):
    """Abstract base class for LLM providers."""

    @abstractmethod
    def complete(
        self,
        system_prompt: str,
        turns: List[dict],
        model: Optional[str] = None,
        max_tokens: int = 500,
    ) -> LLMResponse:
        """Generate a reply for `turns` ({"role": "user"|"assistant", "content": str}) under `system_prompt`."""
        pass
