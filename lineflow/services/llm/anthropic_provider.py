from typing import List, Optional

import httpx

from lineflow.logging_config import get_logger
from lineflow.services.llm.base import LLMProvider, LLMResponse, LLMUnavailableError

logger = get_logger("llm.anthropic")

ANTHROPIC_VERSION = "2023-06-01"


class AnthropicProvider(LLMProvider):
    """Anthropic Messages API provider, direct or through an Azure AI Foundry resource."""

    def __init__(
        self,
        api_key: str,
        default_model: str = "claude-3-5-haiku-20241022",
        resource: Optional[str] = None,
        timeout_seconds: float = 30.0,
    ):
        self.api_key = api_key
        self.default_model = default_model
        self.resource = resource
        self.timeout_seconds = timeout_seconds
        if resource:
            self.base_url = f"https://{resource}.services.ai.azure.com/anthropic/v1/messages"
        else:
            self.base_url = "https://api.anthropic.com/v1/messages"

    def _headers(self) -> dict:
        headers = {"Content-Type": "application/json", "anthropic-version": ANTHROPIC_VERSION}
        if self.resource:
            headers["Authorization"] = f"Bearer {self.api_key}"
        else:
            headers["x-api-key"] = self.api_key
        return headers

    def complete(
        self,
        system_prompt: str,
        turns: List[dict],
        model: Optional[str] = None,
        max_tokens: int = 500,
    ) -> LLMResponse:
        model = model or self.default_model
        payload = {
            "model": model,
            "max_tokens": max_tokens,
            "system": system_prompt,
            "messages": turns,
        }

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(self.base_url, headers=self._headers(), json=payload)
        except httpx.HTTPError as e:
            raise LLMUnavailableError(f"Anthropic transport error: {e}") from e

        if response.status_code != 200:
            logger.error(f"Anthropic error: {response.status_code} {response.text}")
            raise LLMUnavailableError(f"Anthropic API error: {response.status_code} - {response.text}")

        try:
            data = response.json()
            content = ""
            for block in data.get("content") or []:
                if block.get("type") == "text":
                    content = block.get("text") or ""
                    break
        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Anthropic malformed response: {response.text[:200]}")
            raise LLMUnavailableError(f"Anthropic malformed response: {e}") from e

        return LLMResponse(content=content, model=data.get("model", model), usage=data.get("usage"))
