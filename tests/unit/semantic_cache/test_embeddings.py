"""
Embedding Provider Tests

Drives EmbeddingProvider through the real OpenAI-compatible client with
httpx.MockTransport standing in for the embeddings API.
"""

import asyncio
import json

import httpx
import numpy as np
import pytest

from semcache.errors import DimensionMismatchError
from semcache.providers import EmbeddingProviderConfig, OpenAICompatibleEmbeddingClient
from semcache.semantic_cache.embeddings import EmbeddingProvider, fallback_embedding

DIMENSION = 8


def vector_for(text: str, dimension: int = DIMENSION) -> list[float]:
    """Distinct, deterministic vector per text (first 8 characters)."""
    padded = text.ljust(dimension)[:dimension]
    return [float(ord(c)) for c in padded]


class EmbeddingServer:
    """Scripted embeddings endpoint recording every request's inputs."""

    def __init__(self, statuses: list[int] | None = None, dimension: int = DIMENSION, delay: float = 0.0):
        self.statuses = list(statuses or [])
        self.dimension = dimension
        self.delay = delay
        self.requests: list[list[str]] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        texts = json.loads(request.content)["input"]
        self.requests.append(texts)
        if self.delay:
            await asyncio.sleep(self.delay)

        status = self.statuses.pop(0) if self.statuses else 200
        if status != 200:
            return httpx.Response(status, json={"error": {"message": f"status {status}"}})

        data = [{"index": i, "embedding": vector_for(t, self.dimension)} for i, t in enumerate(texts)]
        return httpx.Response(200, json={"data": data})


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeTimer:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def make_provider(server: EmbeddingServer, sleep=None, timer=None, **overrides) -> EmbeddingProvider:
    settings = {"api_key": "sk-test", "retry_base_delay": 0.0, "batch_delay": 0.0}
    settings.update(overrides)
    config = EmbeddingProviderConfig(**settings)
    client = OpenAICompatibleEmbeddingClient(config, transport=httpx.MockTransport(server))
    kwargs = {}
    if sleep is not None:
        kwargs["sleep"] = sleep
    if timer is not None:
        kwargs["timer"] = timer
    return EmbeddingProvider(client, dimension=DIMENSION, config=config, **kwargs)


class TestFallbackEmbedding:
    """Test the deterministic fallback vector."""

    def test_deterministic_and_unit_length(self):
        """Test same text gives the same unit vector."""
        first = fallback_embedding("revenue by region", 16)
        second = fallback_embedding("revenue by region", 16)

        assert first == second
        assert len(first) == 16
        assert np.linalg.norm(first) == pytest.approx(1.0)

    def test_differs_per_text(self):
        """Test different texts give different vectors."""
        assert fallback_embedding("a", 16) != fallback_embedding("b", 16)


class TestEmbed:
    """Test single-text embedding."""

    async def test_embed_and_cache(self):
        """Test the second request for a text is served from the cache."""
        server = EmbeddingServer()
        provider = make_provider(server)

        first = await provider.embed_with_info("total revenue")
        second = await provider.embed_with_info("total revenue")

        assert first.vector == vector_for("total revenue")
        assert first.from_cache is False
        assert second.from_cache is True
        assert second.vector == first.vector
        assert len(server.requests) == 1
        assert provider.cache_size() == 1
        await provider.close()

    async def test_transient_failures_retried(self):
        """Test 429, 429, 200 succeeds on the third attempt with 1s and 2s backoff."""
        server = EmbeddingServer(statuses=[429, 429, 200])
        sleep = RecordingSleep()
        provider = make_provider(server, sleep=sleep, retry_base_delay=1.0)

        result = await provider.embed_with_info("orders this week")

        assert result.is_fallback is False
        assert result.vector == vector_for("orders this week")
        assert len(server.requests) == 3
        assert sleep.delays == [1.0, 2.0]

    async def test_retries_exhausted_falls_back(self):
        """Test persistent 503s end in a fallback vector after max_retries attempts."""
        server = EmbeddingServer(statuses=[503, 503, 503])
        provider = make_provider(server)

        result = await provider.embed_with_info("orders")

        assert result.is_fallback is True
        assert len(server.requests) == 3

    async def test_fatal_error_falls_back_without_caching(self):
        """Test 401 yields identical unit-length fallbacks and nothing is cached."""
        server = EmbeddingServer(statuses=[401, 401])
        provider = make_provider(server)

        first = await provider.embed_with_info("churn by cohort")
        second = await provider.embed_with_info("churn by cohort")

        assert first.is_fallback is True
        assert second.is_fallback is True
        assert first.vector == second.vector
        assert np.linalg.norm(first.vector) == pytest.approx(1.0)
        assert len(server.requests) == 2
        assert provider.cache_size() == 0
        assert provider.get_metrics()["operations"]["fallback"]["call_count"] == 2

    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_text_is_zero_vector(self, text):
        """Test blank input embeds to zeros without a remote call."""
        server = EmbeddingServer()
        provider = make_provider(server)

        vector = await provider.embed(text)

        assert vector == [0.0] * DIMENSION
        assert server.requests == []

    async def test_embedding_cache_ttl(self):
        """Test cached embeddings expire after cache_ttl_seconds."""
        server = EmbeddingServer()
        timer = FakeTimer()
        provider = make_provider(server, timer=timer, cache_ttl_seconds=60)

        await provider.embed("q")
        timer.now += 30
        await provider.embed("q")
        timer.now += 61
        await provider.embed("q")

        assert len(server.requests) == 2

    async def test_dimension_mismatch_raises(self):
        """Test a provider returning the wrong length is surfaced, not masked."""
        server = EmbeddingServer(dimension=4)
        provider = make_provider(server)

        with pytest.raises(DimensionMismatchError):
            await provider.embed("q")

    async def test_timeout(self):
        """Test the overall deadline cancels a slow request."""
        server = EmbeddingServer(delay=1.0)
        provider = make_provider(server)

        with pytest.raises(TimeoutError):
            await provider.embed("slow", timeout=0.01)
        assert provider.cache_size() == 0

    async def test_fallback_logged_with_error_code(self, caplog):
        """Test the fallback warning carries the error code and retryability."""
        server = EmbeddingServer(statuses=[401])
        provider = make_provider(server)

        with caplog.at_level("WARNING", logger="semcache.semantic_cache.embeddings"):
            await provider.embed("orders")

        [record] = [r for r in caplog.records if r.getMessage().startswith("Using fallback embedding")]
        assert record.error_code == "PROVIDER_ERROR"
        assert record.retryable is False
        assert record.http_status == 401

    async def test_single_flight(self):
        """Test concurrent requests for one text share a single remote call."""
        server = EmbeddingServer(delay=0.02)
        provider = make_provider(server)

        results = await asyncio.gather(*(provider.embed("popular question") for _ in range(5)))

        assert len(server.requests) == 1
        assert all(r == results[0] for r in results)

    async def test_waiter_refetches_when_leader_cancelled(self):
        """Test a waiter still gets a vector when the request it joined is cancelled."""
        server = EmbeddingServer(delay=0.05)
        provider = make_provider(server)

        leader = asyncio.create_task(provider.embed("shared"))
        await asyncio.sleep(0.01)
        waiter = asyncio.create_task(provider.embed("shared"))
        await asyncio.sleep(0.01)
        leader.cancel()

        vector = await waiter

        assert vector == vector_for("shared")
        with pytest.raises(asyncio.CancelledError):
            await leader
        assert len(server.requests) == 2


class TestEmbedBatch:
    """Test batch embedding."""

    async def test_chunks_by_max_batch_size(self):
        """Test 250 texts with max_batch_size=100 make 3 calls and keep order."""
        server = EmbeddingServer()
        sleep = RecordingSleep()
        provider = make_provider(server, sleep=sleep, max_batch_size=100, batch_delay=0.1)
        texts = [f"t{i}" for i in range(250)]

        vectors = await provider.embed_batch(texts)

        assert [len(r) for r in server.requests] == [100, 100, 50]
        assert vectors == [vector_for(t) for t in texts]
        assert sleep.delays == [0.1, 0.1]

    async def test_duplicates_blanks_and_cached(self):
        """Test only distinct uncached texts are sent."""
        server = EmbeddingServer()
        provider = make_provider(server)
        await provider.embed("cached")

        results = await provider.embed_batch_with_info(["a", "", "a", "cached", "b"])

        assert server.requests[-1] == ["a", "b"]
        assert [r.vector for r in results] == [
            vector_for("a"),
            [0.0] * DIMENSION,
            vector_for("a"),
            vector_for("cached"),
            vector_for("b"),
        ]
        assert results[3].from_cache is True

    async def test_failed_chunk_falls_back(self):
        """Test a failed chunk yields fallback vectors for that chunk only."""
        server = EmbeddingServer(statuses=[200, 401])
        provider = make_provider(server, max_batch_size=2)

        results = await provider.embed_batch_with_info(["a", "b", "c", "d"])

        assert [r.is_fallback for r in results] == [False, False, True, True]
        assert results[2].vector == fallback_embedding("c", DIMENSION)

    async def test_timeout_leaves_cache_untouched(self):
        """Test a batch cut short by its deadline caches none of its finished chunks."""
        server = EmbeddingServer(delay=0.1)
        provider = make_provider(server, max_batch_size=1)

        with pytest.raises(TimeoutError):
            await provider.embed_batch(["aaaa", "bbbb", "cccc"], timeout=0.25)

        assert len(server.requests) == 3
        assert provider.cache_size() == 0

    async def test_cache_written_after_batch_completes(self):
        """Test every fetched vector is cached once the batch finishes."""
        server = EmbeddingServer()
        provider = make_provider(server, max_batch_size=1)

        await provider.embed_batch(["aaaa", "bbbb", "cccc"])

        assert provider.cache_size() == 3

    async def test_empty_batch(self):
        """Test an empty batch makes no call."""
        server = EmbeddingServer()
        provider = make_provider(server)

        assert await provider.embed_batch([]) == []
        assert server.requests == []


class TestSimilarityHelpers:
    """Test text-level similarity helpers."""

    async def test_find_most_similar_texts(self):
        """Test candidates are ranked by similarity to the query."""
        server = EmbeddingServer()
        provider = make_provider(server)

        ranked = await provider.find_most_similar_texts("aaaa", ["zzzz", "aaab", "aaaa"], top_k=2)

        assert [text for text, _ in ranked] == ["aaaa", "aaab"]
        assert ranked[0][1] == pytest.approx(1.0)

    async def test_similarity_matrix(self):
        """Test the matrix is square with a unit diagonal."""
        server = EmbeddingServer()
        provider = make_provider(server)

        matrix = await provider.similarity_matrix(["x", "y"])

        assert len(matrix) == 2
        assert matrix[0][0] == pytest.approx(1.0)
        assert matrix[1][1] == pytest.approx(1.0)
