"""
semcache - Semantic Query Cache

Similarity-based caching of BI reporting results: paraphrased questions
are served from cache, with adaptive thresholds, ranking and analytics.
"""

__version__ = "1.0.0"

from .semantic_cache import SemanticCache, SemanticCacheConfig, close_semantic_cache, get_semantic_cache

__all__ = [
    "SemanticCache",
    "SemanticCacheConfig",
    "close_semantic_cache",
    "get_semantic_cache",
]
