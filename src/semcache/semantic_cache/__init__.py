"""
Semantic Cache Module

Caches BI query results keyed by the meaning of the question rather than
its exact text.

Components:
- EmbeddingProvider: text -> vector, with caching, retry and fallback
- SimilarityEngine: cosine similarity and linear candidate scans
- CacheStore: concurrency-safe entry storage with per-owner indices
- CandidateRanker: ranks matches and gates them on the adaptive threshold
- CacheAdministrator: expiry, pruning, threshold tuning, analytics, health
- SemanticCache: the facade composing all of the above

Public API:
    - SemanticCache: Main cache interface
    - SemanticCacheConfig: Configuration schema
    - EmbeddingProvider: Embedding generation
    - get_semantic_cache(): Get global cache instance
    - close_semantic_cache(): Cleanup

Usage:
    >>> from semcache.semantic_cache import get_semantic_cache
    >>>
    >>> cache = get_semantic_cache()
    >>> await cache.set("monthly revenue by region", report, owner_id="analyst-7")
    >>>
    >>> # Paraphrases hit the same entry
    >>> report = await cache.get("revenue per region for each month", owner_id="analyst-7")
    >>>
    >>> for match in await cache.find_similar("revenue by region"):
    ...     print(f"{match.query} ({match.similarity:.2f})")
"""

from .administrator import CacheAdministrator
from .cache import SemanticCache, close_semantic_cache, get_semantic_cache
from .config import SemanticCacheConfig
from .embeddings import EmbeddingProvider, EmbeddingResult, fallback_embedding
from .models import (
    CacheAnalytics,
    CacheEntry,
    CacheHealth,
    CandidateMatch,
    EntryMetadata,
    OptimizationReport,
    SimilarQuery,
)
from .ranking import CandidateRanker
from .similarity import SimilarityEngine, cosine_similarity
from .statistics import AdaptiveThreshold, CacheStatistics, UsageTracker
from .store import CacheStore

__all__ = [
    # Main cache interface
    "SemanticCache",
    "get_semantic_cache",
    "close_semantic_cache",
    # Configuration
    "SemanticCacheConfig",
    # Embeddings
    "EmbeddingProvider",
    "EmbeddingResult",
    "fallback_embedding",
    # Components
    "CacheAdministrator",
    "CacheStore",
    "CandidateRanker",
    "SimilarityEngine",
    "cosine_similarity",
    # Shared state
    "AdaptiveThreshold",
    "CacheStatistics",
    "UsageTracker",
    # Models
    "CacheAnalytics",
    "CacheEntry",
    "CacheHealth",
    "CandidateMatch",
    "EntryMetadata",
    "OptimizationReport",
    "SimilarQuery",
]
