"""
semcache Test Configuration and Shared Fixtures

Provides pytest configuration and shared fixtures for the unit tests.
Python 3.12+ with modern type hints and async patterns.
"""

import math
import os
from collections.abc import Generator
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from semcache.observability import ObservabilityAdapter, reset_observability
from semcache.semantic_cache.embeddings import EmbeddingResult

# Set test environment
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "DEBUG"

TEST_DIMENSION = 8


def unit_vector_with_similarity(similarity: float, dimension: int = TEST_DIMENSION) -> list[float]:
    """Unit vector whose cosine similarity to basis_vector(0) is ``similarity``."""
    vector = [0.0] * dimension
    vector[0] = similarity
    vector[1] = math.sqrt(max(0.0, 1.0 - similarity * similarity))
    return vector


def basis_vector(axis: int = 0, dimension: int = TEST_DIMENSION) -> list[float]:
    vector = [0.0] * dimension
    vector[axis] = 1.0
    return vector


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 1, 5, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeEmbedder:
    """
    Embedder returning fixed vectors per text.

    Unknown texts embed to ``default`` (an orthogonal axis unless given).
    """

    def __init__(
        self,
        vectors: dict[str, list[float]] | None = None,
        dimension: int = TEST_DIMENSION,
        default: list[float] | None = None,
    ) -> None:
        self.vectors = dict(vectors or {})
        self.dimension = dimension
        self.default = default or basis_vector(dimension - 1, dimension)
        self.fallback_texts: set[str] = set()
        self.calls: list[str] = []
        self.closed = False

    @property
    def model(self) -> str:
        return "fake-embedding"

    async def embed_with_info(self, text: str, timeout: float | None = None) -> EmbeddingResult:
        self.calls.append(text)
        vector = self.vectors.get(text, self.default)
        return EmbeddingResult(list(vector), is_fallback=text in self.fallback_texts, model=self.model)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    """Fixed clock starting on a Monday morning."""
    return FakeClock()


@pytest.fixture
def observability() -> ObservabilityAdapter:
    """Quiet observability adapter with an in-memory metrics database."""
    return ObservabilityAdapter(
        enable_metrics=False,
        enable_tracing=False,
        metrics_db_path=":memory:",
        log_level="DEBUG",
        json_logs=False,
    )


@pytest.fixture
def embedder() -> FakeEmbedder:
    """Fake embedder with no registered texts."""
    return FakeEmbedder()


@pytest.fixture
def sample_report() -> dict[str, Any]:
    """Typical cached BI payload."""
    return {
        "sql": "SELECT region, SUM(amount) FROM sales GROUP BY region",
        "rows": [
            {"region": "EMEA", "revenue": 120_000},
            {"region": "APAC", "revenue": 95_500},
        ],
        "chart": "bar",
    }


@pytest.fixture(autouse=True)
def reset_singletons() -> Generator[None, None, None]:
    """Reset global singletons after each test to prevent state leakage."""
    yield
    import semcache.config.loader as loader
    import semcache.semantic_cache.cache as cache_module

    loader._config_instance = None
    cache_module._cache = None
    reset_observability()


@pytest.fixture
def vector_at() -> Any:
    """Factory: unit vector with the given cosine similarity to axis 0."""
    return unit_vector_with_similarity


@pytest.fixture
def axis() -> Any:
    """Factory: basis vector along one axis."""
    return basis_vector


@pytest.fixture
def make_embedder() -> Any:
    """Factory for FakeEmbedder instances."""
    return FakeEmbedder
