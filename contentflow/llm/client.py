from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from openai import AsyncOpenAI

from contentflow.config import settings

logger = logging.getLogger(__name__)


class LLMClientConfigError(Exception):
    pass


SYSTEM_MESSAGE = "You are a Shopify product content assistant."
_DEFAULT_MODEL = "gpt-4o-mini"
_DEFAULT_TEMPERATURE = 0.4
_DEFAULT_MAX_TOKENS = 300


@dataclass(frozen=True)
class LLMGenerationParams:
    model: str = _DEFAULT_MODEL
    temperature: float = _DEFAULT_TEMPERATURE
    max_tokens: int = _DEFAULT_MAX_TOKENS


GENERATION_PARAMS = LLMGenerationParams()


class LLMClient:
    """
    Thin async wrapper around OpenAI chat completions for product copy.
    Model, temperature and output length are fixed by ``GENERATION_PARAMS``.
    """

    def __init__(self, *, api_key: Optional[str] = None, base_url: Optional[str] = None) -> None:
        self._api_key = api_key if api_key is not None else settings.OPENAI_API_KEY
        self._base_url = base_url if base_url is not None else settings.OPENAI_BASE_URL
        self._openai_client: Optional[AsyncOpenAI] = None

    def _client(self) -> AsyncOpenAI:
        if not self._api_key:
            raise LLMClientConfigError("OPENAI_API_KEY is required for content generation")
        if not self._openai_client:
            client_kwargs: dict[str, Any] = {"api_key": self._api_key}
            if self._base_url:
                client_kwargs["base_url"] = self._base_url
            self._openai_client = AsyncOpenAI(**client_kwargs)
        return self._openai_client

    async def generate(self, content: list[dict[str, Any]]) -> Optional[str]:
        """Run one completion for a user message built from ``content`` parts."""
        params = GENERATION_PARAMS
        completion = await self._client().chat.completions.create(
            model=params.model,
            temperature=params.temperature,
            max_tokens=params.max_tokens,
            messages=[
                {"role": "system", "content": SYSTEM_MESSAGE},
                {"role": "user", "content": content},
            ],
        )
        if not completion or not completion.choices:
            return None
        message = completion.choices[0].message
        text = getattr(message, "content", None)
        if not isinstance(text, str):
            return None
        return text.strip() or None
