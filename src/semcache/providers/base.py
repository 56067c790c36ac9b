"""
Base Embedding Client Interface

Defines the configuration, the typed call result and the abstract client
that every embedding backend implements.

Clients never raise for provider-side failures. They return a
ProviderResult carrying either the vectors or a ProviderFailure whose kind
tells the retry loop whether another attempt makes sense.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from pydantic import BaseModel, Field, field_validator

from ..errors import ProviderError, ProviderErrorKind, ProviderFatalError, ProviderTransientError


class EmbeddingProviderConfig(BaseModel):
    """Configuration for the remote embedding provider."""

    api_key: str | None = Field(default=None, description="API key for the provider (optional for local endpoints)")
    base_url: str = Field(default="https://api.openai.com/v1", description="Base URL of the embeddings API")
    model: str = Field(default="text-embedding-3-small", description="Embedding model name")
    timeout: float = Field(default=30.0, gt=0.0, description="Request timeout in seconds")

    # Retry behaviour
    max_retries: int = Field(default=3, ge=1, description="Maximum attempts per request, including the first")
    retry_base_delay: float = Field(default=1.0, ge=0.0, description="Delay after the first failed attempt (s)")
    retryable_status_codes: list[int] = Field(
        default_factory=lambda: [429, 503],
        description="HTTP status codes treated as transient",
    )

    # Batching
    max_batch_size: int = Field(default=100, ge=1, description="Provider limit on inputs per request")
    batch_delay: float = Field(default=0.1, ge=0.0, description="Pause between batch chunks in seconds")

    # Embedding-level cache
    cache_ttl_seconds: int = Field(default=24 * 3600, ge=1, description="TTL of cached embeddings in seconds")
    cache_max_size: int = Field(default=10000, ge=1, description="Maximum cached embeddings")

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        """Ensure base_url is an HTTP(S) URL without trailing slash."""
        if not v.startswith(("http://", "https://")):
            raise ValueError("base_url must start with http:// or https://")
        return v.rstrip("/")


@dataclass(frozen=True)
class ProviderFailure:
    """Typed description of a failed provider call."""

    kind: ProviderErrorKind
    reason: str
    http_status: int | None = None

    def to_exception(self, provider: str) -> ProviderError:
        """Build the matching exception for logging or re-raising."""
        if self.kind is ProviderErrorKind.TRANSIENT:
            return ProviderTransientError(provider, self.reason, self.http_status)
        return ProviderFatalError(provider, self.reason, self.http_status)


@dataclass(frozen=True)
class ProviderResult:
    """Result of one embeddings request: vectors on success, failure otherwise."""

    vectors: list[list[float]] = field(default_factory=list)
    failure: ProviderFailure | None = None
    latency_ms: float = 0.0

    @property
    def ok(self) -> bool:
        return self.failure is None

    @property
    def retryable(self) -> bool:
        return self.failure is not None and self.failure.kind is ProviderErrorKind.TRANSIENT

    @classmethod
    def success(cls, vectors: list[list[float]], latency_ms: float = 0.0) -> "ProviderResult":
        return cls(vectors=vectors, latency_ms=latency_ms)

    @classmethod
    def error(
        cls,
        kind: ProviderErrorKind,
        reason: str,
        http_status: int | None = None,
        latency_ms: float = 0.0,
    ) -> "ProviderResult":
        return cls(failure=ProviderFailure(kind, reason, http_status), latency_ms=latency_ms)


class BaseEmbeddingClient(ABC):
    """
    Abstract base class for embedding API clients.

    Implementations perform exactly one remote request per call; retries,
    caching and fallback are layered on top by EmbeddingProvider.
    """

    def __init__(self, config: EmbeddingProviderConfig) -> None:
        """
        Initialize the client.

        Args:
            config: Provider configuration
        """
        self.config = config

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the provider name (e.g., 'openai-compatible')."""
        pass

    @abstractmethod
    async def create_embeddings(self, texts: list[str]) -> ProviderResult:
        """
        Request embeddings for a batch of texts.

        Args:
            texts: Non-empty texts, at most config.max_batch_size of them

        Returns:
            ProviderResult with one vector per input text, in input order
        """
        pass

    async def close(self) -> None:
        """Release client resources."""
        return None
