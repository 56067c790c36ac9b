"""
Semantic Cache Implementation

In-memory semantic cache: entries are matched by embedding similarity
rather than exact text, ranked, and gated by an adaptive threshold.

Failure policy at this boundary:
- get() degrades to a miss, set() to a no-op, find_similar() to [] and
  analytics() to an empty report; each failure is logged.
- DimensionMismatchError always propagates: it means the provider's
  dimension changed under a populated cache.
- Cancellation always propagates.
"""

import logging
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from ..errors import DimensionMismatchError
from ..observability import ObservabilityAdapter, get_observability
from .administrator import CacheAdministrator
from .config import SemanticCacheConfig
from .embeddings import Embedder, EmbeddingProvider
from .models import (
    CacheAnalytics,
    CacheEntry,
    CacheHealth,
    CandidateMatch,
    EntryMetadata,
    OptimizationReport,
    SimilarQuery,
    normalize_query,
    utc_now,
)
from .ranking import CandidateRanker
from .similarity import SimilarityEngine
from .statistics import AdaptiveThreshold, CacheStatistics, UsageTracker
from .store import CacheStore

if TYPE_CHECKING:
    import httpx

    from ..config import AppConfig

logger = logging.getLogger(__name__)


class SemanticCache:
    """
    Semantic cache facade.

    Lookup path:
        query -> embedding -> scoped candidates -> similarity scan
              -> ranking -> threshold gate -> payload | miss

    Every set() creates a new entry; near-duplicates are left to ranking
    and eviction rather than merged at write time.
    """

    def __init__(
        self,
        config: SemanticCacheConfig,
        embedder: Embedder,
        observability: ObservabilityAdapter | None = None,
        store: CacheStore | None = None,
        statistics: CacheStatistics | None = None,
        threshold: AdaptiveThreshold | None = None,
        clock: Any = utc_now,
    ):
        """
        Initialize semantic cache.

        Args:
            config: Semantic cache configuration
            embedder: Embedding source (normally an EmbeddingProvider)
            observability: Metrics/tracing adapter (global adapter if None)
            store: Entry store to use (new empty store if None)
            statistics: Lookup statistics to update (new if None)
            threshold: Adaptive threshold to gate on (built from config if None)
            clock: Callable returning the current UTC datetime
        """
        self.config = config
        self.embedder = embedder
        self._obs = observability or get_observability()
        self._clock = clock

        self.store = store or CacheStore(config.embedding_dimension)
        self.statistics = statistics or CacheStatistics(config.statistics_window_size)
        self.threshold = threshold or AdaptiveThreshold.from_config(config)
        self.usage = UsageTracker()

        self.engine = SimilarityEngine(config.embedding_dimension)
        self.ranker = CandidateRanker(self.threshold, fallback_penalty=config.fallback_ranking_penalty)
        self.administrator = CacheAdministrator(
            config=config,
            store=self.store,
            statistics=self.statistics,
            threshold=self.threshold,
            usage=self.usage,
            clock=clock,
        )

        logger.info(
            "Semantic cache initialized",
            extra={
                "similarity_threshold": self.threshold.value,
                "max_cache_entries": config.max_cache_entries,
                "embedding_dimension": config.embedding_dimension,
            },
        )

    @classmethod
    def from_config(
        cls,
        app_config: "AppConfig",
        transport: "httpx.AsyncBaseTransport | None" = None,
        observability: ObservabilityAdapter | None = None,
    ) -> "SemanticCache":
        """Build a cache with the configured OpenAI-compatible embedding provider."""
        from ..providers import create_embedding_client

        client = create_embedding_client(app_config.embedding, transport=transport)
        provider = EmbeddingProvider(
            client,
            dimension=app_config.semantic_cache.embedding_dimension,
            config=app_config.embedding,
        )
        return cls(app_config.semantic_cache, provider, observability=observability)

    def _candidates(
        self,
        vector: list[float],
        owner_id: str | None,
        now: datetime,
        min_threshold: float,
    ) -> list[CandidateMatch]:
        entries = [
            entry
            for entry in self.store.entries_for(owner_id)
            if not entry.is_expired(now)
        ]
        return self.engine.find_most_similar(vector, entries, top_k=None, min_threshold=min_threshold)

    async def get(self, query: str, owner_id: str | None = None) -> Any | None:
        """
        Get cached payload by semantic similarity.

        Args:
            query: Query text
            owner_id: Restrict the lookup to one owner's entries (None = all)

        Returns:
            Payload of the accepted entry, or None on a miss
        """
        if not self.config.enabled:
            return None

        try:
            with self._obs.trace("semantic_cache.get"):
                embedding = await self.embedder.embed_with_info(query)
                now = self._clock()
                query_key = normalize_query(query)

                candidates = self._candidates(embedding.vector, owner_id, now, self.threshold.value)
                best = self.ranker.select_best(query, candidates, now)

                if best is None:
                    self.statistics.record_miss(query_key, now)
                    self._obs.increment("semantic_cache.miss")
                    logger.debug(f"Semantic cache miss for query: {query[:50]}")
                    return None

                access_count = best.entry.touch(now)
                self.statistics.record_hit(best.similarity_score, query_key, now)
                self._obs.increment("semantic_cache.hit")
                self._obs.histogram("semantic_cache.similarity", best.similarity_score)

                logger.debug(
                    f"Semantic cache hit for query: {query[:50]}",
                    extra={
                        "entry_id": best.entry.id,
                        "similarity": round(best.similarity_score, 4),
                        "ranking_score": round(best.ranking_score, 4),
                        "access_count": access_count,
                    },
                )
                return best.entry.payload

        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.error(f"Error getting from semantic cache: {e}", exc_info=True)
            self._obs.increment("semantic_cache.error", tags={"operation": "get"})
            return None

    async def set(
        self,
        query: str,
        payload: Any,
        owner_id: str | None = None,
        ttl: timedelta | float | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """
        Store a payload under the query's embedding.

        Args:
            query: Query text to embed
            payload: Opaque cached result
            owner_id: Optional owner scope
            ttl: Entry lifetime (timedelta or seconds; default_ttl if None)
            metadata: Extra analytics fields stored on the entry

        Returns:
            True if stored
        """
        if not self.config.enabled:
            return False

        try:
            with self._obs.trace("semantic_cache.set"):
                embedding = await self.embedder.embed_with_info(query)
                now = self._clock()

                entry = CacheEntry.create(
                    query_text=query,
                    embedding=embedding.vector,
                    payload=payload,
                    ttl=self._resolve_ttl(ttl),
                    owner_id=owner_id,
                    now=now,
                    metadata=EntryMetadata.for_query(
                        query,
                        payload,
                        embedding_model=embedding.model,
                        is_fallback_embedding=embedding.is_fallback,
                        extra=metadata,
                    ),
                )
                self.store.insert(entry)
                self.usage.record(query, owner_id)

                if self.config.prune_on_insert and len(self.store) > self.config.max_cache_entries:
                    # Stale entries go before live ones are ranked for eviction
                    self.administrator.expire(now)
                    self.administrator.prune_to_capacity()

                self._obs.increment("semantic_cache.set")
                self._obs.gauge("semantic_cache.entries", len(self.store))
                logger.debug(
                    f"Cached query: {query[:50]}",
                    extra={"entry_id": entry.id, "owner_id": owner_id, "fallback": embedding.is_fallback},
                )
                return True

        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.error(f"Error setting semantic cache: {e}", exc_info=True)
            self._obs.increment("semantic_cache.error", tags={"operation": "set"})
            return False

    async def find_similar(
        self,
        query: str,
        max_results: int = 5,
        owner_id: str | None = None,
    ) -> list[SimilarQuery]:
        """
        Find cached queries similar to ``query`` without counting a hit.

        Args:
            query: Query text
            max_results: Maximum results to return
            owner_id: Optional owner scope

        Returns:
            Matches at or above the current threshold, best ranked first
        """
        if not self.config.enabled or max_results <= 0:
            return []

        try:
            with self._obs.trace("semantic_cache.find_similar"):
                embedding = await self.embedder.embed_with_info(query)
                now = self._clock()

                candidates = self._candidates(embedding.vector, owner_id, now, self.threshold.value)
                ranked = self.ranker.rank(query, candidates, now)[:max_results]

                results = []
                for match in ranked:
                    access_count, last_accessed_at = match.entry.access_snapshot()
                    results.append(
                        SimilarQuery(
                            query=match.entry.query_text,
                            similarity=match.similarity_score,
                            ranking_score=match.ranking_score,
                            last_used=last_accessed_at,
                            usage_count=access_count,
                            owner_id=match.entry.owner_id,
                        )
                    )
                return results

        except DimensionMismatchError:
            raise
        except Exception as e:
            logger.error(f"Error searching semantic cache: {e}", exc_info=True)
            self._obs.increment("semantic_cache.error", tags={"operation": "find_similar"})
            return []

    def analytics(self, period: timedelta = timedelta(days=7)) -> CacheAnalytics:
        """
        Cache effectiveness over the trailing period.

        Args:
            period: Window of lookups to aggregate

        Returns:
            CacheAnalytics (empty report on internal failure)
        """
        try:
            return self.administrator.analytics(period)
        except Exception as e:
            logger.error(f"Error computing cache analytics: {e}", exc_info=True)
            return CacheAnalytics(period_seconds=period.total_seconds())

    def optimize(self) -> OptimizationReport:
        """Expire, prune, retune the threshold and reindex."""
        report = self.administrator.optimize()
        self._obs.gauge("semantic_cache.entries", len(self.store))
        self._obs.gauge("semantic_cache.threshold", report.threshold_after)
        return report

    def clear(self, pattern: str | None = None, owner_id: str | None = None) -> int:
        """
        Remove entries.

        Args:
            pattern: Case-insensitive substring of the query text
            owner_id: Restrict removal to one owner's entries

        Returns:
            Number of entries removed
        """
        if pattern is None and owner_id is None:
            removed = self.store.clear()
        else:
            needle = pattern.lower() if pattern else None
            doomed = [
                entry.id
                for entry in self.store.entries_for(owner_id)
                if needle is None or needle in entry.query_text.lower()
            ]
            removed = sum(1 for entry_id in doomed if self.store.remove(entry_id))

        logger.info(
            f"Semantic cache cleared {removed} entries",
            extra={"pattern": pattern, "owner_id": owner_id, "removed": removed},
        )
        return removed

    def invalidate_by_data_change(self, table_name: str) -> int:
        """Drop cached queries that mention a table whose data changed."""
        removed = self.clear(pattern=table_name)
        self._obs.event("semantic_cache.invalidated", {"table": table_name, "removed": removed})
        return removed

    def health(self) -> CacheHealth:
        return self.administrator.health()

    def get_stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with entry counts, lookup totals and embedding metrics
        """
        stats: dict[str, Any] = {
            "enabled": self.config.enabled,
            "total_entries": len(self.store),
            "owners": len(self.store.owners()),
            "similarity_threshold": self.threshold.value,
            "max_cache_entries": self.config.max_cache_entries,
            "embedding_dimension": self.config.embedding_dimension,
            "lookups": self.statistics.snapshot().to_dict(),
        }

        get_metrics = getattr(self.embedder, "get_metrics", None)
        if callable(get_metrics):
            stats["embeddings"] = get_metrics()

        return stats

    def _resolve_ttl(self, ttl: timedelta | float | None) -> timedelta:
        if ttl is None:
            return self.config.default_ttl
        if isinstance(ttl, timedelta):
            return ttl
        return timedelta(seconds=ttl)

    async def close(self) -> None:
        """Clean up resources."""
        close = getattr(self.embedder, "close", None)
        if callable(close):
            await close()
        self.store.clear()
        logger.info("Semantic cache closed")


# Global singleton
_cache: SemanticCache | None = None


def get_semantic_cache(config: "AppConfig | None" = None) -> SemanticCache:
    """
    Get global semantic cache instance.

    Args:
        config: Application configuration (creates new instance if provided)

    Returns:
        SemanticCache instance
    """
    global _cache

    if config is not None or _cache is None:
        if config is None:
            from ..config import get_config

            config = get_config()
        _cache = SemanticCache.from_config(config)

    return _cache


async def close_semantic_cache() -> None:
    """Close global semantic cache."""
    global _cache

    if _cache:
        await _cache.close()
        _cache = None
