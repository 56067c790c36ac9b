"""
Semantic Cache Administration

Maintenance and reporting over a cache's store and statistics.

optimize() runs four independent steps in order:

    1. expire       drop entries older than their TTL
    2. prune        drop lowest-value entries until at capacity,
                    ordered by (access_count asc, last_accessed_at asc)
    3. adapt        retune the similarity threshold from the trailing hit rate
    4. reindex      hook for a future ANN index (currently a no-op)

A failing step is logged and recorded on the report; the remaining steps
still run. Scheduling is the owner's job: call optimize() directly or
drive it with run_maintenance().
"""

import asyncio
import heapq
import logging
import time
from collections.abc import Callable
from datetime import datetime, timedelta

from .config import SemanticCacheConfig
from .models import CacheAnalytics, CacheEntry, CacheHealth, OptimizationReport, utc_now
from .statistics import AdaptiveThreshold, CacheStatistics, UsageTracker
from .store import CacheStore

logger = logging.getLogger(__name__)

# Fraction of capacity at which cleanup frequency should increase
CLEANUP_PRESSURE_RATIO = 0.8
# Share of all writes from one owner that suggests per-owner partitioning
OWNER_CONCENTRATION_RATIO = 0.3
# Share of writes in long-query buckets that suggests compression
LONG_QUERY_RATIO = 0.2
LONG_QUERY_BUCKET = 500
# Fraction of capacity above which storage efficiency is reported lower
EFFICIENCY_PRESSURE_RATIO = 0.5

LOW_HIT_RATE = 0.3

EMBEDDING_BYTES_PER_ELEMENT = 4


class CacheAdministrator:
    """Lifecycle maintenance, analytics and health for one cache instance."""

    def __init__(
        self,
        config: SemanticCacheConfig,
        store: CacheStore,
        statistics: CacheStatistics,
        threshold: AdaptiveThreshold,
        usage: UsageTracker,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.config = config
        self.store = store
        self.statistics = statistics
        self.threshold = threshold
        self.usage = usage
        self._clock = clock

    def optimize(self, now: datetime | None = None) -> OptimizationReport:
        """
        Run one maintenance pass.

        Returns:
            OptimizationReport describing what changed
        """
        now = now or self._clock()
        start_time = time.perf_counter()
        report = OptimizationReport(started_at=now, threshold_before=self.threshold.value)

        try:
            report.expired_removed = self.expire(now)
        except Exception as e:
            logger.error(f"Expiry step failed: {e}", exc_info=True)
            report.errors.append(f"expire: {e}")

        try:
            report.pruned = self.prune_to_capacity()
        except Exception as e:
            logger.error(f"Prune step failed: {e}", exc_info=True)
            report.errors.append(f"prune: {e}")

        try:
            self.adapt_threshold(now)
        except Exception as e:
            logger.error(f"Threshold adaptation failed: {e}", exc_info=True)
            report.errors.append(f"adapt: {e}")

        try:
            report.reindexed = self.reindex()
        except Exception as e:
            logger.error(f"Reindex step failed: {e}", exc_info=True)
            report.errors.append(f"reindex: {e}")

        report.threshold_after = self.threshold.value
        report.duration_ms = (time.perf_counter() - start_time) * 1000

        logger.info(
            f"Cache optimization completed: {report.expired_removed} expired, {report.pruned} pruned",
            extra={
                "expired_removed": report.expired_removed,
                "pruned": report.pruned,
                "threshold_before": report.threshold_before,
                "threshold_after": report.threshold_after,
                "entries": len(self.store),
                "errors": len(report.errors),
            },
        )
        return report

    def expire(self, now: datetime | None = None) -> int:
        """Remove entries whose age exceeds their TTL."""
        now = now or self._clock()
        expired = [entry.id for entry in self.store.entries_for() if entry.is_expired(now)]

        removed = sum(1 for entry_id in expired if self.store.remove(entry_id))
        if removed:
            logger.debug(f"Expired {removed} cache entries")
        return removed

    def prune_to_capacity(self) -> int:
        """Remove the least used, least recently used entries beyond capacity."""
        excess = len(self.store) - self.config.max_cache_entries
        if excess <= 0:
            return 0

        victims = heapq.nsmallest(excess, self.store.entries_for(), key=_prune_key)
        removed = sum(1 for entry in victims if self.store.remove(entry.id))

        logger.info(
            f"Pruned {removed} cache entries to respect capacity",
            extra={"removed": removed, "max_cache_entries": self.config.max_cache_entries},
        )
        return removed

    def adapt_threshold(self, now: datetime | None = None) -> float:
        """Retune the threshold from the trailing window; returns the current value."""
        now = now or self._clock()
        window = self.statistics.snapshot(self.config.adaptation_window, now=now)
        self.threshold.adapt(window)
        return self.threshold.value

    def reindex(self) -> bool:
        # No ANN index yet; linear scans need no rebuild
        logger.debug("Reindex skipped (linear scan)")
        return False

    def storage_estimate(self) -> int:
        """Approximate bytes held by entries: embeddings, query text and payloads."""
        total = 0
        for entry in self.store.entries_for():
            payload_bytes = entry.metadata.payload_size_bytes
            if payload_bytes is None:
                payload_bytes = self.config.storage_bytes_per_entry
            total += entry.dimension * EMBEDDING_BYTES_PER_ELEMENT
            total += len(entry.query_text.encode("utf-8"))
            total += payload_bytes
        return total

    def recommendations(self) -> list[str]:
        """Suggestions derived from capacity pressure and write patterns."""
        recommendations: list[str] = []
        capacity = self.config.max_cache_entries

        if len(self.store) > capacity * CLEANUP_PRESSURE_RATIO:
            recommendations.append("Cache is nearing capacity; consider increasing cleanup frequency")

        writes = self.usage.owner_distribution()
        total_writes = sum(writes.values())
        owners = {owner: count for owner, count in writes.items() if owner != UsageTracker.GLOBAL_OWNER}
        if owners and total_writes:
            top_owner, top_writes = max(owners.items(), key=lambda item: item[1])
            if top_writes / total_writes > OWNER_CONCENTRATION_RATIO:
                recommendations.append(
                    f"Owner '{top_owner}' accounts for a large share of entries; "
                    "consider per-user cache partitioning"
                )

        lengths = self.usage.length_distribution()
        tracked = sum(lengths.values())
        if tracked:
            long_queries = sum(count for bucket, count in lengths.items() if bucket > LONG_QUERY_BUCKET)
            if long_queries / tracked > LONG_QUERY_RATIO:
                recommendations.append("Many long queries are cached; consider query compression")

        return recommendations

    def performance_metrics(self) -> dict[str, float]:
        entries = len(self.store)
        lengths = self.usage.length_distribution()
        tracked = sum(lengths.values())
        avg_bucket = sum(bucket * count for bucket, count in lengths.items()) / tracked if tracked else 0.0

        owners = [owner for owner in self.usage.owner_distribution() if owner != UsageTracker.GLOBAL_OWNER]

        efficiency = 0.9 if entries > self.config.max_cache_entries * EFFICIENCY_PRESSURE_RATIO else 1.0
        return {
            "total_entries": float(entries),
            "avg_query_length": float(avg_bucket),
            "user_diversity": float(len(owners)),
            "storage_efficiency": efficiency,
        }

    def analytics(self, period: timedelta, now: datetime | None = None) -> CacheAnalytics:
        """Effectiveness and storage view over the trailing ``period``."""
        now = now or self._clock()
        window = self.statistics.snapshot(period, now=now)

        return CacheAnalytics(
            period_seconds=period.total_seconds(),
            total_queries=window.total_queries,
            hits=window.hits,
            misses=window.misses,
            hit_rate=round(window.hit_rate, 4),
            average_similarity=round(window.average_similarity, 4),
            unique_queries=window.unique_queries,
            total_entries=len(self.store),
            storage_estimate_bytes=self.storage_estimate(),
            similarity_threshold=self.threshold.value,
            optimization_recommendations=self.recommendations(),
            performance_metrics=self.performance_metrics(),
            generated_at=now,
        )

    def health(self, now: datetime | None = None) -> CacheHealth:
        """Flag a poor hit rate or an over-capacity store."""
        now = now or self._clock()
        window = self.statistics.snapshot(self.config.adaptation_window, now=now)
        entries = len(self.store)

        issues: list[str] = []
        if window.total_queries and window.hit_rate < LOW_HIT_RATE:
            issues.append(f"Low cache hit rate: {window.hit_rate:.1%}")
        if entries > self.config.max_cache_entries:
            issues.append(f"Cache size exceeds capacity ({entries}/{self.config.max_cache_entries}); consider cleanup")

        return CacheHealth(
            is_healthy=not issues,
            status="healthy" if not issues else "degraded",
            issues=issues,
            metrics={
                "hit_rate": round(window.hit_rate, 4),
                "total_entries": float(entries),
                "total_queries": float(window.total_queries),
                "similarity_threshold": self.threshold.value,
            },
            checked_at=now,
        )

    async def run_maintenance(self, interval: float | None = None, stop_event: asyncio.Event | None = None) -> None:
        """
        Call optimize() every ``interval`` seconds until ``stop_event`` is set.

        Args:
            interval: Seconds between passes (default: config.optimization_interval_seconds)
            stop_event: Event that ends the loop
        """
        interval = interval or float(self.config.optimization_interval_seconds)
        stop_event = stop_event or asyncio.Event()

        logger.info(f"Cache maintenance loop started (every {interval:.0f}s)")
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except TimeoutError:
                self.optimize()
        logger.info("Cache maintenance loop stopped")


def _prune_key(entry: CacheEntry) -> tuple[int, datetime, str]:
    access_count, last_accessed_at = entry.access_snapshot()
    return access_count, last_accessed_at, entry.id
