"""
semcache - Observability Module

Single observability adapter for the package. Metrics, spans and
structured logs go through get_observability().

Usage:
    from semcache.observability import get_observability

    obs = get_observability()
    obs.increment("semantic_cache.hit")
    obs.gauge("semantic_cache.entries", 100)

    with obs.trace("semantic_cache.get"):
        ...
"""

from .monitoring import (
    JSONFormatter,
    ObservabilityAdapter,
    configure_logging,
    get_observability,
    initialize_observability,
    reset_observability,
)

__all__ = [
    "JSONFormatter",
    "ObservabilityAdapter",
    "configure_logging",
    "get_observability",
    "initialize_observability",
    "reset_observability",
]
