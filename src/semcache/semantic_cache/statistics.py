"""
Semantic Cache Statistics

Shared mutable state of a cache instance, owned explicitly and injected
into the components that need it:

- CacheStatistics: lookup counters plus a bounded window of lookup events
- AdaptiveThreshold: the current similarity cutoff and its tuning rule
- UsageTracker: write-side patterns (query lengths, owners) for analytics

All three are safe to share between asyncio tasks and worker threads.
"""

import logging
import threading
from collections import Counter, deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from .config import SemanticCacheConfig
from .models import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LookupEvent:
    timestamp: datetime
    hit: bool
    similarity: float
    query_key: str


@dataclass(frozen=True)
class StatisticsSnapshot:
    """Point-in-time totals, either cumulative or for a trailing period."""

    total_queries: int = 0
    hits: int = 0
    misses: int = 0
    similarity_sum: float = 0.0
    similarity_count: int = 0
    unique_queries: int = 0

    @property
    def hit_rate(self) -> float:
        return self.hits / self.total_queries if self.total_queries else 0.0

    @property
    def average_similarity(self) -> float:
        return self.similarity_sum / self.similarity_count if self.similarity_count else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_queries": self.total_queries,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": round(self.hit_rate, 4),
            "average_similarity": round(self.average_similarity, 4),
            "unique_queries": self.unique_queries,
        }


class CacheStatistics:
    """Lookup statistics, updated on every get."""

    def __init__(self, window_size: int = 100_000) -> None:
        self._lock = threading.Lock()
        self._events: deque[LookupEvent] = deque(maxlen=window_size)
        self.total_queries = 0
        self.hits = 0
        self.misses = 0
        self.similarity_sum = 0.0
        self.similarity_count = 0

    def record_hit(self, similarity: float, query_key: str = "", now: datetime | None = None) -> None:
        event = LookupEvent(now or utc_now(), True, similarity, query_key)
        with self._lock:
            self.total_queries += 1
            self.hits += 1
            self.similarity_sum += similarity
            self.similarity_count += 1
            self._events.append(event)

    def record_miss(self, query_key: str = "", now: datetime | None = None) -> None:
        event = LookupEvent(now or utc_now(), False, 0.0, query_key)
        with self._lock:
            self.total_queries += 1
            self.misses += 1
            self._events.append(event)

    def snapshot(self, period: timedelta | None = None, now: datetime | None = None) -> StatisticsSnapshot:
        """
        Totals for the trailing ``period``, or cumulative totals when None.

        Windowed totals only see the most recent ``window_size`` events.
        """
        with self._lock:
            if period is None:
                return StatisticsSnapshot(
                    total_queries=self.total_queries,
                    hits=self.hits,
                    misses=self.misses,
                    similarity_sum=self.similarity_sum,
                    similarity_count=self.similarity_count,
                    unique_queries=len({e.query_key for e in self._events if e.query_key}),
                )
            events = list(self._events)

        cutoff = (now or utc_now()) - period
        window = [e for e in events if e.timestamp >= cutoff]
        hits = [e for e in window if e.hit]
        return StatisticsSnapshot(
            total_queries=len(window),
            hits=len(hits),
            misses=len(window) - len(hits),
            similarity_sum=sum(e.similarity for e in hits),
            similarity_count=len(hits),
            unique_queries=len({e.query_key for e in window if e.query_key}),
        )

    def reset(self) -> None:
        with self._lock:
            self._events.clear()
            self.total_queries = 0
            self.hits = 0
            self.misses = 0
            self.similarity_sum = 0.0
            self.similarity_count = 0


@dataclass(frozen=True)
class ThresholdAdjustment:
    previous: float
    current: float
    hit_rate: float
    total_queries: int


class AdaptiveThreshold:
    """
    Similarity cutoff retuned from observed hit rates.

    A low hit rate widens recall by lowering the cutoff, a high one
    tightens precision by raising it. Nothing changes until more than
    ``min_queries`` lookups were observed.
    """

    def __init__(
        self,
        initial: float = 0.85,
        floor: float = 0.70,
        ceiling: float = 0.95,
        lower_step: float = 0.05,
        raise_step: float = 0.02,
        low_hit_rate: float = 0.3,
        high_hit_rate: float = 0.8,
        min_queries: int = 100,
    ) -> None:
        if not floor <= initial <= ceiling:
            raise ValueError(f"initial threshold {initial} outside [{floor}, {ceiling}]")
        self._lock = threading.Lock()
        self._value = initial
        self.initial = initial
        self.floor = floor
        self.ceiling = ceiling
        self.lower_step = lower_step
        self.raise_step = raise_step
        self.low_hit_rate = low_hit_rate
        self.high_hit_rate = high_hit_rate
        self.min_queries = min_queries

    @classmethod
    def from_config(cls, config: SemanticCacheConfig) -> "AdaptiveThreshold":
        return cls(
            initial=config.minimum_similarity_threshold,
            floor=config.threshold_floor,
            ceiling=config.threshold_ceiling,
            lower_step=config.threshold_lower_step,
            raise_step=config.threshold_raise_step,
            low_hit_rate=config.low_hit_rate,
            high_hit_rate=config.high_hit_rate,
            min_queries=config.adaptation_min_queries,
        )

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def adapt(self, stats: StatisticsSnapshot) -> ThresholdAdjustment | None:
        """Apply one tuning step; returns the adjustment, or None if unchanged."""
        if stats.total_queries <= self.min_queries:
            return None

        hit_rate = stats.hit_rate
        with self._lock:
            previous = self._value
            if hit_rate < self.low_hit_rate:
                proposed = max(self.floor, previous - self.lower_step)
            elif hit_rate > self.high_hit_rate:
                proposed = min(self.ceiling, previous + self.raise_step)
            else:
                return None

            proposed = round(proposed, 4)
            if proposed == previous:
                return None
            self._value = proposed

        logger.info(
            f"Similarity threshold adjusted {previous:.4f} -> {proposed:.4f}",
            extra={"hit_rate": round(hit_rate, 4), "total_queries": stats.total_queries},
        )
        return ThresholdAdjustment(previous, proposed, hit_rate, stats.total_queries)

    def reset(self) -> None:
        with self._lock:
            self._value = self.initial


class UsageTracker:
    """Tracks what gets written: query length buckets and per-owner volume."""

    BUCKET_SIZE = 100
    GLOBAL_OWNER = "global"

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._length_buckets: Counter[int] = Counter()
        self._owner_writes: Counter[str] = Counter()

    def record(self, query_text: str, owner_id: str | None) -> None:
        bucket = (len(query_text) // self.BUCKET_SIZE) * self.BUCKET_SIZE
        with self._lock:
            self._length_buckets[bucket] += 1
            self._owner_writes[owner_id or self.GLOBAL_OWNER] += 1

    def length_distribution(self) -> dict[int, int]:
        with self._lock:
            return dict(self._length_buckets)

    def owner_distribution(self) -> dict[str, int]:
        with self._lock:
            return dict(self._owner_writes)

    def reset(self) -> None:
        with self._lock:
            self._length_buckets.clear()
            self._owner_writes.clear()
