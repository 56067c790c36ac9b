"""
Semantic Cache Data Model

Cache entries and the transient/aggregate records produced around them.

Entries are plain dataclasses: the embedding and payload never change after
creation, only access bookkeeping does, and that happens under the entry's
own lock. Results returned to callers are Pydantic models.
"""

import re
import threading
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import numpy as np
from pydantic import BaseModel, Field

_WHITESPACE = re.compile(r"\s+")


def utc_now() -> datetime:
    return datetime.now(UTC)


def normalize_query(text: str) -> str:
    """Trim, lowercase and collapse whitespace runs to a single space."""
    return _WHITESPACE.sub(" ", text.strip().lower())


def compute_query_complexity(text: str) -> int:
    """
    Score how involved a query looks, for analytics.

    Starts at 1; joins and grouping weigh 2, ordering and filtering 1,
    and long texts (> 200 chars) add 1.
    """
    lowered = text.lower()
    complexity = 1
    if "join" in lowered:
        complexity += 2
    if "group by" in lowered:
        complexity += 2
    if "order by" in lowered:
        complexity += 1
    if "where" in lowered:
        complexity += 1
    if len(text) > 200:
        complexity += 1
    return complexity


def payload_size(payload: Any) -> int | None:
    """Size in bytes of str/bytes payloads; None for anything else."""
    if isinstance(payload, bytes | bytearray):
        return len(payload)
    if isinstance(payload, str):
        return len(payload.encode("utf-8"))
    return None


@dataclass
class EntryMetadata:
    """Known analytics fields of an entry plus an open extension map."""

    query_length: int = 0
    query_complexity: int = 1
    payload_size_bytes: int | None = None
    embedding_model: str | None = None
    is_fallback_embedding: bool = False
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def for_query(
        cls,
        query_text: str,
        payload: Any = None,
        embedding_model: str | None = None,
        is_fallback_embedding: bool = False,
        extra: dict[str, Any] | None = None,
    ) -> "EntryMetadata":
        return cls(
            query_length=len(query_text),
            query_complexity=compute_query_complexity(query_text),
            payload_size_bytes=payload_size(payload),
            embedding_model=embedding_model,
            is_fallback_embedding=is_fallback_embedding,
            extra=dict(extra or {}),
        )


@dataclass(eq=False)
class CacheEntry:
    """
    A cached query result keyed by its embedding.

    Invariants: ``len(embedding) == embedding_dimension``, ``access_count >= 1``
    and ``last_accessed_at >= created_at``. ``embedding`` is a read-only
    float32 array.
    """

    id: str
    query_text: str
    normalized_query_text: str
    embedding: np.ndarray
    payload: Any
    owner_id: str | None
    created_at: datetime
    last_accessed_at: datetime
    ttl: timedelta
    access_count: int = 1
    metadata: EntryMetadata = field(default_factory=EntryMetadata)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    @classmethod
    def create(
        cls,
        query_text: str,
        embedding: Any,
        payload: Any,
        ttl: timedelta,
        owner_id: str | None = None,
        now: datetime | None = None,
        metadata: EntryMetadata | None = None,
    ) -> "CacheEntry":
        """Build a new entry with a fresh id and a frozen copy of the embedding."""
        created = now or utc_now()
        vector = np.array(embedding, dtype=np.float32)
        vector.setflags(write=False)

        return cls(
            id=uuid.uuid4().hex,
            query_text=query_text,
            normalized_query_text=normalize_query(query_text),
            embedding=vector,
            payload=payload,
            owner_id=owner_id,
            created_at=created,
            last_accessed_at=created,
            ttl=ttl,
            metadata=metadata or EntryMetadata.for_query(query_text, payload),
        )

    @property
    def dimension(self) -> int:
        return int(self.embedding.shape[0])

    def touch(self, now: datetime | None = None) -> int:
        """Record a hit; returns the new access count."""
        now = now or utc_now()
        with self._lock:
            self.access_count += 1
            if now > self.last_accessed_at:
                self.last_accessed_at = now
            return self.access_count

    def access_snapshot(self) -> tuple[int, datetime]:
        """Consistent (access_count, last_accessed_at) pair."""
        with self._lock:
            return self.access_count, self.last_accessed_at

    def is_expired(self, now: datetime) -> bool:
        return now - self.created_at > self.ttl


@dataclass
class CandidateMatch:
    """A scored candidate produced during one lookup; never stored."""

    entry: CacheEntry
    similarity_score: float
    ranking_score: float = 0.0


class SimilarQuery(BaseModel):
    """One item returned by SemanticCache.find_similar."""

    query: str
    similarity: float = Field(ge=0.0, le=1.0)
    ranking_score: float
    last_used: datetime
    usage_count: int = Field(ge=1)
    owner_id: str | None = None


class CacheAnalytics(BaseModel):
    """Aggregate view of cache effectiveness over a trailing period."""

    period_seconds: float = 0.0
    total_queries: int = 0
    hits: int = 0
    misses: int = 0
    hit_rate: float = 0.0
    average_similarity: float = 0.0
    unique_queries: int = 0
    total_entries: int = 0
    storage_estimate_bytes: int = 0
    similarity_threshold: float = 0.0
    optimization_recommendations: list[str] = Field(default_factory=list)
    performance_metrics: dict[str, float] = Field(default_factory=dict)
    generated_at: datetime = Field(default_factory=utc_now)


class CacheHealth(BaseModel):
    """Health summary for monitoring probes."""

    is_healthy: bool
    status: str
    issues: list[str] = Field(default_factory=list)
    metrics: dict[str, float] = Field(default_factory=dict)
    checked_at: datetime = Field(default_factory=utc_now)


class OptimizationReport(BaseModel):
    """What one optimize() pass did."""

    expired_removed: int = 0
    pruned: int = 0
    threshold_before: float = 0.0
    threshold_after: float = 0.0
    reindexed: bool = False
    errors: list[str] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=utc_now)
    duration_ms: float = 0.0

    @property
    def threshold_changed(self) -> bool:
        return self.threshold_before != self.threshold_after
