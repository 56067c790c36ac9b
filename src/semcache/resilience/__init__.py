"""
semcache - Resilience Module

Retry with exponential backoff over typed provider results.
"""

from .retry import RetryConfig, RetryableResult, exponential_backoff, with_result_retry

__all__ = [
    "RetryConfig",
    "RetryableResult",
    "exponential_backoff",
    "with_result_retry",
]
