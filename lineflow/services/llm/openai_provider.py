from typing import List, Optional

import httpx

from lineflow.logging_config import get_logger
from lineflow.services.llm.base import LLMProvider, LLMResponse, LLMUnavailableError

logger = get_logger("llm.openai")


class OpenAIProvider(LLMProvider):
    """OpenAI chat completions provider."""

    def __init__(self, api_key: str, default_model: str = "gpt-5-mini", timeout_seconds: float = 30.0):
        self.api_key = api_key
        self.default_model = default_model
        self.timeout_seconds = timeout_seconds
        self.base_url = "https://api.openai.com/v1/chat/completions"

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
            "messages": [{"role": "system", "content": system_prompt}, *turns],
            "max_completion_tokens": max_tokens,
        }
        logger.debug(f"OpenAI request: model={model}, messages_count={len(turns) + 1}")

        try:
            with httpx.Client(timeout=self.timeout_seconds) as client:
                response = client.post(
                    self.base_url,
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json=payload,
                )
        except httpx.HTTPError as e:
            raise LLMUnavailableError(f"OpenAI transport error: {e}") from e

        if response.status_code != 200:
            logger.error(f"OpenAI error: {response.text}")
            raise LLMUnavailableError(f"OpenAI API error: {response.status_code} - {response.text}")

        try:
            data = response.json()
            content = ""
            if data.get("choices"):
                content = data["choices"][0].get("message", {}).get("content") or ""
        except (ValueError, TypeError, AttributeError, KeyError, IndexError) as e:
            logger.error(f"OpenAI malformed response: {response.text[:200]}")
            raise LLMUnavailableError(f"OpenAI malformed response: {e}") from e
        logger.debug(f"OpenAI content: {content[:100] if content else 'EMPTY'}")

        return LLMResponse(content=content, model=data.get("model", model), usage=data.get("usage"))
