"""
Semantic Cache Configuration

Typed configuration for the in-memory semantic query cache: similarity
threshold and its adaptive bounds, capacity, expiry, and analytics knobs.
Embedding provider settings live in semcache.providers.base.
"""

from datetime import timedelta
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class SemanticCacheConfig(BaseModel):
    """Configuration for semantic cache system."""

    enabled: bool = Field(default=True, description="Enable semantic caching")

    # Similarity threshold and adaptive tuning
    minimum_similarity_threshold: float = Field(
        default=0.85,
        ge=0.0,
        le=1.0,
        description="Starting similarity score required for a cache hit (0.0-1.0)",
    )
    threshold_floor: float = Field(default=0.70, ge=0.0, le=1.0, description="Lowest adaptive threshold")
    threshold_ceiling: float = Field(default=0.95, ge=0.0, le=1.0, description="Highest adaptive threshold")
    threshold_lower_step: float = Field(
        default=0.05, gt=0.0, le=0.5, description="Threshold decrease when the hit rate is low"
    )
    threshold_raise_step: float = Field(
        default=0.02, gt=0.0, le=0.5, description="Threshold increase when the hit rate is high"
    )
    low_hit_rate: float = Field(default=0.3, ge=0.0, le=1.0, description="Hit rate below which recall is widened")
    high_hit_rate: float = Field(
        default=0.8, ge=0.0, le=1.0, description="Hit rate above which precision is tightened"
    )
    adaptation_min_queries: int = Field(
        default=100,
        ge=0,
        description="Threshold only adapts once more than this many queries were observed",
    )
    adaptation_window_seconds: int = Field(
        default=7 * 24 * 3600,
        ge=1,
        description="Trailing window of lookups used for threshold adaptation",
    )

    # Capacity and expiry
    max_cache_entries: int = Field(default=10000, ge=1, description="Maximum entries before pruning")
    default_ttl_seconds: int = Field(default=24 * 3600, ge=1, description="Entry time-to-live in seconds")
    prune_on_insert: bool = Field(
        default=True,
        description="Prune lowest-value entries as soon as a set exceeds capacity",
    )

    # Embeddings
    embedding_dimension: int = Field(default=1536, ge=1, description="Length of every stored embedding")

    # Ranking and analytics
    fallback_ranking_penalty: float = Field(
        default=0.0,
        ge=0.0,
        le=1.0,
        description="Fraction removed from the ranking score of entries with fallback embeddings",
    )
    statistics_window_size: int = Field(
        default=100_000,
        ge=1,
        description="Maximum lookup events retained for windowed statistics",
    )
    storage_bytes_per_entry: int = Field(
        default=1024,
        ge=0,
        description="Payload size assumed when a payload's size is unknown",
    )
    optimization_interval_seconds: int = Field(
        default=6 * 3600,
        ge=1,
        description="Interval used by run_maintenance between optimize() passes",
    )

    @field_validator("high_hit_rate")
    @classmethod
    def validate_hit_rates(cls, v: float, info: Any) -> float:
        """Ensure the high hit rate sits above the low hit rate."""
        low = info.data.get("low_hit_rate")
        if low is not None and v <= low:
            raise ValueError("high_hit_rate must be greater than low_hit_rate")
        return v

    @model_validator(mode="after")
    def validate_threshold_bounds(self) -> "SemanticCacheConfig":
        """Ensure the starting threshold lies within the adaptive bounds."""
        if self.threshold_floor > self.threshold_ceiling:
            raise ValueError("threshold_floor must be <= threshold_ceiling")
        if not self.threshold_floor <= self.minimum_similarity_threshold <= self.threshold_ceiling:
            raise ValueError(
                "minimum_similarity_threshold must lie within "
                f"[{self.threshold_floor}, {self.threshold_ceiling}]"
            )
        return self

    @property
    def default_ttl(self) -> timedelta:
        return timedelta(seconds=self.default_ttl_seconds)

    @property
    def adaptation_window(self) -> timedelta:
        return timedelta(seconds=self.adaptation_window_seconds)
