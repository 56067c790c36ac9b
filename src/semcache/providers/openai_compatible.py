"""
OpenAI-Compatible Embedding Client

Calls any endpoint implementing the OpenAI embeddings API
(OpenAI itself, Azure-style gateways, Ollama, LM Studio, vLLM, ...):

    POST {base_url}/embeddings  {"input": [...], "model": "..."}
    -> {"data": [{"embedding": [...], "index": 0}, ...]}

HTTP status codes are mapped onto ProviderErrorKind; nothing is raised for
provider-side failures.
"""

import logging
import time
from typing import Any

import httpx

from ..errors import ProviderErrorKind, classify_status
from .base import BaseEmbeddingClient, EmbeddingProviderConfig, ProviderResult

logger = logging.getLogger(__name__)


class OpenAICompatibleEmbeddingClient(BaseEmbeddingClient):
    """
    Embedding client for OpenAI-compatible HTTP endpoints.

    Uses a shared httpx.AsyncClient. Pass ``transport`` to substitute the
    network layer (e.g. httpx.MockTransport in tests).
    """

    def __init__(
        self,
        config: EmbeddingProviderConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(config)

        headers = {"Content-Type": "application/json"}
        if config.api_key:
            headers["Authorization"] = f"Bearer {config.api_key}"

        self._retryable = frozenset(config.retryable_status_codes)
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers=headers,
            timeout=config.timeout,
            transport=transport,
        )

    @property
    def name(self) -> str:
        """Return provider name."""
        return "openai-compatible"

    async def create_embeddings(self, texts: list[str]) -> ProviderResult:
        """
        Request embeddings for a batch of texts.

        Args:
            texts: Texts to embed (at most config.max_batch_size)

        Returns:
            ProviderResult with vectors in input order, or a typed failure
        """
        payload = {"input": texts, "model": self.config.model}
        start_time = time.perf_counter()

        try:
            response = await self._client.post("/embeddings", json=payload)
        except httpx.TransportError as e:
            # Connection failures and timeouts are worth another attempt
            latency_ms = (time.perf_counter() - start_time) * 1000
            logger.warning(
                f"Embedding request transport error: {e}",
                extra={"error_type": type(e).__name__, "model": self.config.model},
            )
            return ProviderResult.error(ProviderErrorKind.TRANSIENT, str(e) or type(e).__name__, latency_ms=latency_ms)

        latency_ms = (time.perf_counter() - start_time) * 1000

        if response.is_error:
            kind = classify_status(response.status_code, self._retryable)
            logger.warning(
                f"Embedding request failed with HTTP {response.status_code}",
                extra={
                    "http_status": response.status_code,
                    "error_kind": kind.value,
                    "model": self.config.model,
                },
            )
            return ProviderResult.error(
                kind,
                f"HTTP {response.status_code}: {response.text[:200]}",
                http_status=response.status_code,
                latency_ms=latency_ms,
            )

        try:
            vectors = self._parse_vectors(response.json(), expected=len(texts))
        except (ValueError, KeyError, TypeError) as e:
            logger.error(
                f"Malformed embeddings response: {e}",
                extra={"model": self.config.model},
            )
            return ProviderResult.error(
                ProviderErrorKind.FATAL,
                f"malformed response: {e}",
                http_status=response.status_code,
                latency_ms=latency_ms,
            )

        return ProviderResult.success(vectors, latency_ms=latency_ms)

    @staticmethod
    def _parse_vectors(body: Any, expected: int) -> list[list[float]]:
        """Extract embeddings from an OpenAI-style response body, ordered by index."""
        data = body["data"]
        if not isinstance(data, list) or len(data) != expected:
            raise ValueError(f"expected {expected} embeddings, got {len(data) if isinstance(data, list) else 'none'}")

        if all("index" in item for item in data):
            data = sorted(data, key=lambda item: item["index"])

        return [[float(x) for x in item["embedding"]] for item in data]

    async def close(self) -> None:
        """Clean up client resources."""
        await self._client.aclose()
