"""
Statistics, Adaptive Threshold and Usage Tracking Tests
"""

from datetime import timedelta

import pytest

from semcache.semantic_cache.config import SemanticCacheConfig
from semcache.semantic_cache.statistics import (
    AdaptiveThreshold,
    CacheStatistics,
    StatisticsSnapshot,
    UsageTracker,
)


def snapshot(total: int, hits: int) -> StatisticsSnapshot:
    return StatisticsSnapshot(total_queries=total, hits=hits, misses=total - hits)


class TestCacheStatistics:
    """Test lookup counters and windowed snapshots."""

    def test_counters(self, clock):
        """Test cumulative totals."""
        stats = CacheStatistics()
        stats.record_hit(0.9, "a", clock())
        stats.record_hit(0.8, "b", clock())
        stats.record_miss("c", clock())

        snap = stats.snapshot()

        assert snap.total_queries == 3
        assert snap.hits == 2
        assert snap.misses == 1
        assert snap.hit_rate == pytest.approx(2 / 3)
        assert snap.average_similarity == pytest.approx(0.85)
        assert snap.unique_queries == 3

    def test_empty_snapshot(self):
        """Test no lookups gives zero rates rather than dividing by zero."""
        snap = CacheStatistics().snapshot()
        assert snap.hit_rate == 0.0
        assert snap.average_similarity == 0.0

    def test_windowed_snapshot(self, clock):
        """Test only lookups inside the period are counted."""
        stats = CacheStatistics()
        stats.record_miss("old", clock())
        clock.advance(days=2)
        stats.record_hit(0.9, "new", clock())
        stats.record_hit(0.9, "new", clock())

        recent = stats.snapshot(timedelta(days=1), now=clock())

        assert recent.total_queries == 2
        assert recent.hits == 2
        assert recent.hit_rate == 1.0
        assert recent.unique_queries == 1
        assert stats.snapshot().total_queries == 3

    def test_window_size_bounds_events(self, clock):
        """Test the event window keeps only the newest events."""
        stats = CacheStatistics(window_size=5)
        for i in range(10):
            stats.record_miss(f"q{i}", clock())

        assert stats.snapshot(timedelta(days=1), now=clock()).total_queries == 5
        assert stats.snapshot().total_queries == 10

    def test_reset(self, clock):
        """Test reset clears counters and events."""
        stats = CacheStatistics()
        stats.record_hit(0.9, "a", clock())
        stats.reset()

        assert stats.snapshot().total_queries == 0
        assert stats.snapshot(timedelta(days=1), now=clock()).total_queries == 0

    def test_to_dict(self, clock):
        """Test dictionary export rounds rates."""
        stats = CacheStatistics()
        stats.record_hit(0.91234, "a", clock())
        stats.record_miss("b", clock())
        stats.record_miss("c", clock())

        data = stats.snapshot().to_dict()

        assert data["hit_rate"] == pytest.approx(0.3333)
        assert data["average_similarity"] == pytest.approx(0.9123)


class TestAdaptiveThreshold:
    """Test threshold adaptation rules."""

    def test_no_change_with_few_queries(self):
        """Test nothing changes at or below the minimum query count."""
        threshold = AdaptiveThreshold(initial=0.85)

        assert threshold.adapt(snapshot(100, 0)) is None
        assert threshold.value == 0.85

    def test_low_hit_rate_lowers(self):
        """Test 200 queries at 20% hit rate lowers 0.85 to 0.80."""
        threshold = AdaptiveThreshold(initial=0.85)

        adjustment = threshold.adapt(snapshot(200, 40))

        assert threshold.value == pytest.approx(0.80)
        assert adjustment is not None
        assert adjustment.previous == 0.85
        assert adjustment.current == pytest.approx(0.80)

    def test_high_hit_rate_raises(self):
        """Test a hit rate above 80% raises the threshold by 0.02."""
        threshold = AdaptiveThreshold(initial=0.85)
        threshold.adapt(snapshot(200, 180))
        assert threshold.value == pytest.approx(0.87)

    def test_mid_band_unchanged(self):
        """Test hit rates within the band leave the threshold alone."""
        threshold = AdaptiveThreshold(initial=0.85)
        assert threshold.adapt(snapshot(200, 100)) is None
        assert threshold.value == 0.85

    def test_clamped_at_floor(self):
        """Test repeated lowering stops at 0.70."""
        threshold = AdaptiveThreshold(initial=0.72)

        threshold.adapt(snapshot(200, 10))
        assert threshold.value == pytest.approx(0.70)

        assert threshold.adapt(snapshot(200, 10)) is None
        assert threshold.value == pytest.approx(0.70)

    def test_clamped_at_ceiling(self):
        """Test repeated raising stops at 0.95."""
        threshold = AdaptiveThreshold(initial=0.85)
        for _ in range(20):
            threshold.adapt(snapshot(200, 199))

        assert threshold.value == pytest.approx(0.95)

    def test_stays_within_bounds(self):
        """Test any sequence of adaptations stays within [floor, ceiling]."""
        threshold = AdaptiveThreshold(initial=0.85)
        for hits in [0, 200, 0, 0, 0, 0, 200, 200, 0, 200] * 3:
            threshold.adapt(snapshot(200, hits))
            assert 0.70 <= threshold.value <= 0.95

    def test_initial_outside_bounds_rejected(self):
        """Test construction validates the starting value."""
        with pytest.raises(ValueError):
            AdaptiveThreshold(initial=0.5)

    def test_from_config_and_reset(self):
        """Test construction from config and reset to the initial value."""
        config = SemanticCacheConfig(minimum_similarity_threshold=0.9, adaptation_min_queries=10)
        threshold = AdaptiveThreshold.from_config(config)

        threshold.adapt(snapshot(11, 0))
        assert threshold.value == pytest.approx(0.85)

        threshold.reset()
        assert threshold.value == 0.9


class TestUsageTracker:
    """Test write-pattern tracking."""

    def test_length_buckets_and_owners(self):
        """Test lengths are bucketed by 100 and owners default to global."""
        usage = UsageTracker()
        usage.record("x" * 50, "alice")
        usage.record("x" * 150, "alice")
        usage.record("x" * 99, None)

        assert usage.length_distribution() == {0: 2, 100: 1}
        assert usage.owner_distribution() == {"alice": 2, "global": 1}

        usage.reset()
        assert usage.length_distribution() == {}
