"""
Generative model boundary.

`ModelClient` is the only surface the scorer and the aggregator use: a single
prompt in, raw text out. `GeminiModelClient` implements it on top of the
google-genai SDK. No retries here; callers decide what a failure means.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Protocol

from google import genai
from google.genai import types

from discore.core.config import Settings

logger = logging.getLogger(__name__)


class ModelClient(Protocol):
    async def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        ...


class GeminiModelClient:
    """Async Gemini client with a hard per-call timeout."""

    def __init__(
        self,
        api_key: str,
        model: str,
        *,
        top_p: float = 0.8,
        top_k: int = 1,
        timeout: float = 30.0,
    ):
        self._api_key = api_key
        self.model = model
        self.top_p = top_p
        self.top_k = top_k
        self.timeout = timeout
        self._client: Optional[genai.Client] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "GeminiModelClient":
        return cls(
            api_key=settings.GEMINI_API_KEY,
            model=settings.GEMINI_MODEL,
            top_p=settings.MODEL_TOP_P,
            top_k=settings.MODEL_TOP_K,
            timeout=settings.MODEL_TIMEOUT_SECONDS,
        )

    def _get_client(self) -> genai.Client:
        # Created lazily so the app can boot without a key.
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client

    async def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        client = self._get_client()
        config = types.GenerateContentConfig(
            temperature=temperature,
            top_p=self.top_p,
            top_k=self.top_k,
            max_output_tokens=max_tokens,
        )
        response = await asyncio.wait_for(
            client.aio.models.generate_content(
                model=self.model,
                contents=prompt,
                config=config,
            ),
            timeout=self.timeout,
        )
        return getattr(response, "text", "") or ""
