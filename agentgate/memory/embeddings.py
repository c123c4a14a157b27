"""
Embedding provider for semantic memory.

Memory is never a hard dependency: every failure mode (no API key, timeout,
non-2xx response, malformed payload) yields ``None`` and the caller carries
on without memory.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Optional

import httpx
import structlog

from agentgate.config import MemoryConfig

logger = structlog.get_logger(__name__)

EmbedFn = Callable[[str], Awaitable[Optional[list[float]]]]


class OpenAIEmbedder:
    """Calls the OpenAI embeddings endpoint with httpx."""

    def __init__(self, config: MemoryConfig, client: Optional[httpx.AsyncClient] = None):
        self._api_key = config.openai_api_key
        self._url = config.embedding_url
        self._model = config.embedding_model
        self._input_limit = config.embedding_input_limit
        self._client = client or httpx.AsyncClient(timeout=config.embedding_timeout_seconds)
        self._owns_client = client is None
        self._warned_missing_key = False

    @property
    def available(self) -> bool:
        return bool(self._api_key)

    async def __call__(self, text: str) -> Optional[list[float]]:
        return await self.embed(text)

    async def embed(self, text: str) -> Optional[list[float]]:
        if not self._api_key:
            if not self._warned_missing_key:
                logger.warning("embedder.no_api_key")
                self._warned_missing_key = True
            return None

        try:
            response = await self._client.post(
                self._url,
                headers={"Authorization": f"Bearer {self._api_key}"},
                json={"model": self._model, "input": text[: self._input_limit]},
            )
        except httpx.HTTPError as e:
            logger.warning("embedder.request_failed", error=f"{type(e).__name__}: {e}")
            return None

        if not response.is_success:
            logger.warning("embedder.api_error", status=response.status_code)
            return None

        try:
            vector = [float(x) for x in response.json()["data"][0]["embedding"]]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("embedder.malformed_response")
            return None
        return vector or None

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
