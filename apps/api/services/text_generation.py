"""OpenRouter text generation client (OpenAI-compatible chat completions)."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Literal, Optional, TypedDict

from openai import AsyncOpenAI

from config import settings

logger = logging.getLogger(__name__)


class ChatMessage(TypedDict):
    role: Literal["system", "user", "assistant"]
    content: str


class TextGenerationUnavailableError(RuntimeError):
    """Raised when no OpenRouter API key is configured."""


def get_openrouter_client(api_key: str) -> Optional[AsyncOpenAI]:
    """Get an OpenRouter-backed client, handling placeholders."""
    if not api_key or "your_" in api_key or api_key == "test-key":
        return None
    return AsyncOpenAI(
        api_key=api_key,
        base_url=settings.OPENROUTER_BASE_URL,
        default_headers={
            "HTTP-Referer": settings.APP_URL,
            "X-Title": settings.APP_NAME,
        },
    )


class TextGenerationClient:
    def __init__(self, client: Optional[AsyncOpenAI] = None, default_model: Optional[str] = None) -> None:
        self._client = client if client is not None else get_openrouter_client(settings.OPENROUTER_API_KEY)
        self.default_model = default_model or settings.OPENROUTER_DEFAULT_MODEL

    async def chat(
        self,
        messages: List[ChatMessage],
        *,
        model: Optional[str] = None,
        temperature: float = 0.7,
        max_tokens: int = 2000,
        json_mode: bool = False,
    ) -> str:
        if self._client is None:
            raise TextGenerationUnavailableError("OPENROUTER_API_KEY is not configured")

        request: Dict[str, Any] = {
            "model": model or self.default_model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode:
            request["response_format"] = {"type": "json_object"}

        response = await self._client.chat.completions.create(**request)
        content = response.choices[0].message.content or ""
        logger.debug("OpenRouter completion model=%s chars=%s", request["model"], len(content))
        return content

    async def generate_json(self, prompt: str, system_prompt: Optional[str] = None) -> Any:
        """Ask for a JSON object and return it decoded."""
        messages: List[ChatMessage] = []
        if system_prompt:
            messages.append({"role": "system", "content": system_prompt})
        messages.append({"role": "user", "content": prompt})

        content = await self.chat(messages, json_mode=True)
        return json.loads(content)
