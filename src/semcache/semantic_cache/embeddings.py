"""
Semantic Cache Embedding Provider

Wraps an embedding API client with everything the cache needs around it:

- Content-hash cache of embeddings (cachetools TTLCache, default 24h)
- Retry of transient failures with exponential backoff over typed results
- Deterministic, unit-length fallback vectors when the provider fails
- Single-flight: concurrent requests for the same text share one call
- Order-preserving batch mode, chunked to the provider's batch limit
- Per-operation call/error/latency metrics

Empty or whitespace-only text embeds to the zero vector without a remote
call. Fallback vectors are flagged on the result and never cached.
"""

import asyncio
import hashlib
import logging
import threading
import time
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import numpy as np
from cachetools import TTLCache

from ..errors import DimensionMismatchError, ProviderError, extract_error_code, is_retryable_error
from ..providers.base import BaseEmbeddingClient, EmbeddingProviderConfig, ProviderResult
from ..resilience.retry import RetryConfig, with_result_retry
from .similarity import SimilarityEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EmbeddingResult:
    """A vector plus where it came from."""

    vector: list[float]
    is_fallback: bool = False
    from_cache: bool = False
    model: str | None = None


class Embedder(Protocol):
    """What SemanticCache needs from an embedding source."""

    @property
    def model(self) -> str: ...

    async def embed_with_info(self, text: str, timeout: float | None = None) -> EmbeddingResult: ...


def fallback_embedding(text: str, dimension: int) -> list[float]:
    """
    Deterministic pseudo-embedding for ``text``.

    Seeded from SHA-256 of the text, so the same text yields the same
    vector in every process. Carries no semantic meaning.
    """
    seed = int.from_bytes(hashlib.sha256(text.encode("utf-8")).digest()[:8], "big")
    rng = np.random.default_rng(seed)
    vector = rng.uniform(-1.0, 1.0, dimension)
    norm = np.linalg.norm(vector)
    if norm > 0:
        vector = vector / norm
    return vector.tolist()


@dataclass
class OperationMetrics:
    call_count: int = 0
    error_count: int = 0
    total_duration_ms: float = 0.0
    last_call_at: datetime | None = None

    @property
    def average_duration_ms(self) -> float:
        return self.total_duration_ms / self.call_count if self.call_count else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "call_count": self.call_count,
            "error_count": self.error_count,
            "average_duration_ms": round(self.average_duration_ms, 3),
            "last_call_at": self.last_call_at.isoformat() if self.last_call_at else None,
        }


class EmbeddingMetrics:
    """Thread-safe per-operation metrics."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._operations: dict[str, OperationMetrics] = {}
        self._cache_hits = 0
        self._cache_misses = 0

    def record(self, operation: str, duration_ms: float, error: bool = False) -> None:
        with self._lock:
            metrics = self._operations.setdefault(operation, OperationMetrics())
            metrics.call_count += 1
            metrics.total_duration_ms += duration_ms
            metrics.last_call_at = datetime.now(UTC)
            if error:
                metrics.error_count += 1

    def record_cache_lookup(self, hit: bool) -> None:
        with self._lock:
            if hit:
                self._cache_hits += 1
            else:
                self._cache_misses += 1

    def operation(self, name: str) -> OperationMetrics:
        with self._lock:
            metrics = self._operations.get(name, OperationMetrics())
            return OperationMetrics(
                call_count=metrics.call_count,
                error_count=metrics.error_count,
                total_duration_ms=metrics.total_duration_ms,
                last_call_at=metrics.last_call_at,
            )

    def summary(self) -> dict[str, Any]:
        with self._lock:
            total_calls = sum(m.call_count for m in self._operations.values())
            total_errors = sum(m.error_count for m in self._operations.values())
            total_ms = sum(m.total_duration_ms for m in self._operations.values())
            lookups = self._cache_hits + self._cache_misses
            return {
                "total_calls": total_calls,
                "total_errors": total_errors,
                "average_response_time_ms": round(total_ms / total_calls, 3) if total_calls else 0.0,
                "error_rate": round(total_errors / total_calls, 4) if total_calls else 0.0,
                "cache_hits": self._cache_hits,
                "cache_misses": self._cache_misses,
                "cache_hit_rate": round(self._cache_hits / lookups, 4) if lookups else 0.0,
                "operations": {name: m.to_dict() for name, m in self._operations.items()},
            }

    def reset(self) -> None:
        with self._lock:
            self._operations.clear()
            self._cache_hits = 0
            self._cache_misses = 0


class EmbeddingProvider:
    """
    Embedding generator for the semantic cache.

    Supported backends: anything implementing BaseEmbeddingClient; the
    shipped client speaks the OpenAI-compatible /embeddings API.
    """

    def __init__(
        self,
        client: BaseEmbeddingClient,
        dimension: int,
        config: EmbeddingProviderConfig | None = None,
        timer: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize embedding provider.

        Args:
            client: Remote embedding client
            dimension: Required embedding length
            config: Provider configuration (defaults to the client's)
            timer: Clock for embedding-cache expiry
            sleep: Awaitable sleep used for backoff and batch pacing
        """
        self.client = client
        self.config = config or client.config
        self.dimension = dimension

        self._cache: TTLCache[str, list[float]] = TTLCache(
            maxsize=self.config.cache_max_size,
            ttl=self.config.cache_ttl_seconds,
            timer=timer,
        )
        self._cache_lock = threading.Lock()
        self._in_flight: dict[str, asyncio.Future[list[float]]] = {}
        self._sleep = sleep
        self._retry = RetryConfig(
            max_attempts=self.config.max_retries,
            base_delay=self.config.retry_base_delay,
            max_delay=max(60.0, self.config.retry_base_delay),
        )
        self._engine = SimilarityEngine(dimension)
        self.metrics = EmbeddingMetrics()

        logger.info(
            f"Embedding provider initialized: {client.name}/{self.config.model}",
            extra={"provider": client.name, "model": self.config.model, "dimension": dimension},
        )

    @property
    def model(self) -> str:
        return self.config.model

    def get_dimension(self) -> int:
        return self.dimension

    def cache_key(self, text: str) -> str:
        """Stable key for (model, text)."""
        return hashlib.sha256(f"{self.config.model}\0{text}".encode()).hexdigest()

    # ---------- single text ------------------------------------------------

    async def embed(self, text: str, timeout: float | None = None) -> list[float]:
        """
        Generate embedding for text.

        Args:
            text: Text to embed
            timeout: Optional overall deadline in seconds

        Returns:
            Embedding vector (zero vector for blank text, fallback vector if
            the provider failed)
        """
        result = await self.embed_with_info(text, timeout=timeout)
        return result.vector

    async def embed_with_info(self, text: str, timeout: float | None = None) -> EmbeddingResult:
        """
        Generate embedding for text, reporting cache and fallback status.

        Raises:
            TimeoutError: If ``timeout`` elapses first
            DimensionMismatchError: If the provider returns a vector of the wrong length
        """
        if timeout is None:
            return await self._embed_one(text)
        async with asyncio.timeout(timeout):
            return await self._embed_one(text)

    async def _embed_one(self, text: str) -> EmbeddingResult:
        if not text or not text.strip():
            return EmbeddingResult(self._zero_vector(), model=self.model)

        key = self.cache_key(text)
        cached = self._cache_get(key)
        if cached is not None:
            self.metrics.record("cache_hit", 0.0)
            return EmbeddingResult(cached, from_cache=True, model=self.model)

        try:
            vector = await self._fetch_single_flight(key, text)
        except ProviderError as e:
            return self._fallback(text, e)

        return EmbeddingResult(vector, model=self.model)

    async def _fetch_single_flight(self, key: str, text: str) -> list[float]:
        """Fetch one embedding, sharing the request with concurrent callers."""
        pending = self._in_flight.get(key)
        if pending is not None:
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                task = asyncio.current_task()
                if task is not None and task.cancelling():
                    raise
                # The leader was cancelled, not us: fetch on our own below
                logger.debug("In-flight embedding request cancelled, retrying as leader")

        loop = asyncio.get_running_loop()
        future: asyncio.Future[list[float]] = loop.create_future()
        # Mark failures as retrieved even when nobody else is waiting
        future.add_done_callback(lambda f: f.cancelled() or f.exception())
        self._in_flight[key] = future

        try:
            vector = await self._fetch(key, text)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except BaseException as e:
            future.set_exception(e)
            raise
        else:
            future.set_result(vector)
            return vector
        finally:
            if self._in_flight.get(key) is future:
                del self._in_flight[key]

    async def _fetch(self, key: str, text: str) -> list[float]:
        start_time = time.perf_counter()
        result = await self._request([text])
        duration_ms = (time.perf_counter() - start_time) * 1000

        failure = result.failure
        if failure is not None:
            self.metrics.record("api_call", duration_ms, error=True)
            raise failure.to_exception(self.client.name)

        vector = self._validate(result.vectors[0])
        self.metrics.record("api_call", duration_ms)
        self._cache_put(key, vector)
        return vector

    async def _request(self, texts: list[str]) -> ProviderResult:
        return await with_result_retry(
            self.client.create_embeddings,
            texts,
            config=self._retry,
            sleep=self._sleep,
        )

    # ---------- batch ------------------------------------------------------

    async def embed_batch(self, texts: Sequence[str], timeout: float | None = None) -> list[list[float]]:
        """
        Generate embeddings for multiple texts.

        Args:
            texts: Texts to embed
            timeout: Optional overall deadline in seconds

        Returns:
            One vector per input text, in input order
        """
        results = await self.embed_batch_with_info(texts, timeout=timeout)
        return [result.vector for result in results]

    async def embed_batch_with_info(
        self,
        texts: Sequence[str],
        timeout: float | None = None,
    ) -> list[EmbeddingResult]:
        """Batch variant of embed_with_info; preserves input order and length."""
        if timeout is None:
            return await self._embed_many(texts)
        async with asyncio.timeout(timeout):
            return await self._embed_many(texts)

    async def _embed_many(self, texts: Sequence[str]) -> list[EmbeddingResult]:
        if not texts:
            return []

        results: list[EmbeddingResult | None] = [None] * len(texts)
        positions: dict[str, list[int]] = {}
        text_for_key: dict[str, str] = {}

        # Resolve blanks and cached texts first
        for idx, text in enumerate(texts):
            if not text or not text.strip():
                results[idx] = EmbeddingResult(self._zero_vector(), model=self.model)
                continue

            key = self.cache_key(text)
            if key in positions:
                positions[key].append(idx)
                continue

            cached = self._cache_get(key)
            if cached is not None:
                results[idx] = EmbeddingResult(cached, from_cache=True, model=self.model)
            else:
                positions[key] = [idx]
                text_for_key[key] = text

        keys = list(positions)
        batch_size = self.config.max_batch_size
        # Written to the embedding cache only once every chunk has finished
        fetched: list[tuple[str, list[float]]] = []

        for chunk_no, start in enumerate(range(0, len(keys), batch_size)):
            if chunk_no > 0 and self.config.batch_delay > 0:
                await self._sleep(self.config.batch_delay)

            chunk = keys[start : start + batch_size]
            chunk_texts = [text_for_key[key] for key in chunk]

            start_time = time.perf_counter()
            response = await self._request(chunk_texts)
            duration_ms = (time.perf_counter() - start_time) * 1000

            failure = response.failure
            if failure is None:
                self.metrics.record("batch_api_call", duration_ms)
                for key, vector in zip(chunk, response.vectors, strict=True):
                    vector = self._validate(vector)
                    fetched.append((key, vector))
                    for idx in positions[key]:
                        results[idx] = EmbeddingResult(vector, model=self.model)
            else:
                self.metrics.record("batch_api_call", duration_ms, error=True)
                error = failure.to_exception(self.client.name)
                for key in chunk:
                    fallback = self._fallback(text_for_key[key], error)
                    for idx in positions[key]:
                        results[idx] = fallback

        for key, vector in fetched:
            self._cache_put(key, vector)

        logger.debug(
            f"Embedded batch of {len(texts)} texts ({len(keys)} remote)",
            extra={"batch_size": len(texts), "remote": len(keys)},
        )
        return [result for result in results if result is not None]

    # ---------- similarity helpers -----------------------------------------

    async def similarity_matrix(self, texts: Sequence[str]) -> list[list[float]]:
        """Pairwise cosine similarity of the texts' embeddings."""
        vectors = await self.embed_batch(texts)
        return self._engine.similarity_matrix(vectors)

    async def find_most_similar_texts(
        self,
        query: str,
        candidates: Sequence[str],
        top_k: int = 5,
    ) -> list[tuple[str, float]]:
        """
        Rank candidate texts by similarity to a query text.

        Returns:
            Up to top_k (text, similarity) pairs, most similar first
        """
        if not candidates:
            return []

        query_vector = await self.embed(query)
        candidate_vectors = await self.embed_batch(candidates)

        scored = [
            (text, self._engine.cosine_similarity(query_vector, vector))
            for text, vector in zip(candidates, candidate_vectors, strict=True)
        ]
        scored.sort(key=lambda item: item[1], reverse=True)
        return scored[:top_k]

    # ---------- internals ---------------------------------------------------

    def _fallback(self, text: str, error: ProviderError) -> EmbeddingResult:
        start_time = time.perf_counter()
        vector = fallback_embedding(text, self.dimension)
        self.metrics.record("fallback", (time.perf_counter() - start_time) * 1000, error=True)

        logger.warning(
            f"Using fallback embedding: {error.message}",
            extra={
                "provider": self.client.name,
                "model": self.model,
                "error_type": type(error).__name__,
                "error_code": extract_error_code(error).value,
                "retryable": is_retryable_error(error),
                "http_status": error.details.get("http_status"),
            },
        )
        return EmbeddingResult(vector, is_fallback=True, model=self.model)

    def _validate(self, vector: list[float]) -> list[float]:
        if len(vector) != self.dimension:
            raise DimensionMismatchError(
                expected=self.dimension,
                actual=len(vector),
                details={"model": self.model},
            )
        return vector

    def _zero_vector(self) -> list[float]:
        return [0.0] * self.dimension

    def _cache_get(self, key: str) -> list[float] | None:
        with self._cache_lock:
            vector = self._cache.get(key)
        self.metrics.record_cache_lookup(vector is not None)
        return vector

    def _cache_put(self, key: str, vector: list[float]) -> None:
        with self._cache_lock:
            self._cache[key] = vector

    def cache_size(self) -> int:
        with self._cache_lock:
            return len(self._cache)

    def clear_cache(self) -> None:
        """Clear embedding cache."""
        with self._cache_lock:
            self._cache.clear()
        logger.info("Embedding cache cleared")

    def get_metrics(self) -> dict[str, Any]:
        summary = self.metrics.summary()
        summary["cached_embeddings"] = self.cache_size()
        return summary

    async def close(self) -> None:
        """Clean up resources."""
        self.clear_cache()
        await self.client.close()
