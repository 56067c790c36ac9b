"""
semcache - Configuration Module

Typed, validated configuration loaded from environment variables and .env.

Usage:
    from semcache.config import get_config

    config = get_config()
    print(config.semantic_cache.minimum_similarity_threshold)
"""

from .loader import get_config, load_config, reload_config
from .schemas import (
    AppConfig,
    EmbeddingProviderConfig,
    Environment,
    LogLevel,
    ObservabilityConfig,
    SemanticCacheConfig,
)

__all__ = [
    "AppConfig",
    "EmbeddingProviderConfig",
    "Environment",
    "LogLevel",
    "ObservabilityConfig",
    "SemanticCacheConfig",
    "get_config",
    "load_config",
    "reload_config",
]
