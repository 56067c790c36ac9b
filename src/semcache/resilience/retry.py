"""
semcache - Retry Logic with Exponential Backoff

Retries operations that report failure through a typed result instead of
raising. The loop inspects each result: success and non-retryable failures
return immediately, transient failures are retried after a backoff delay.

Delay schedule (jitter disabled, the default):
    attempt 1 fails -> wait base_delay
    attempt 2 fails -> wait base_delay * 2
    attempt 3 fails -> give up, return last result
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Protocol, TypeVar

logger = logging.getLogger(__name__)


class RetryableResult(Protocol):
    """Result shape understood by with_result_retry."""

    @property
    def ok(self) -> bool: ...

    @property
    def retryable(self) -> bool: ...


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Total number of attempts, including the first (default: 3)
        base_delay: Delay after the first failed attempt in seconds (default: 1.0)
        max_delay: Maximum delay in seconds (default: 60.0)
        exponential_base: Exponential backoff base (default: 2.0)
        jitter: Add random jitter to prevent thundering herd (default: False)
        jitter_factor: Jitter randomization factor 0-1 (default: 0.1)
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter: bool = False
    jitter_factor: float = 0.1

    def __post_init__(self) -> None:
        """Validate configuration."""
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must be non-negative")
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        if self.exponential_base < 1.0:
            raise ValueError("exponential_base must be >= 1.0")
        if not 0 <= self.jitter_factor <= 1:
            raise ValueError("jitter_factor must be between 0 and 1")


def exponential_backoff(
    attempt: int,
    base_delay: float = 1.0,
    exponential_base: float = 2.0,
    max_delay: float = 60.0,
    jitter: bool = False,
    jitter_factor: float = 0.1,
) -> float:
    """
    Calculate the delay to wait after a failed attempt.

    Args:
        attempt: Number of the attempt that just failed (1-indexed)
        base_delay: Delay after the first failure in seconds
        exponential_base: Base for exponential calculation
        max_delay: Maximum delay cap
        jitter: Whether to add random jitter
        jitter_factor: Jitter randomization factor (0-1)

    Returns:
        Delay in seconds

    Example:
        >>> exponential_backoff(1)  # 1.0s
        >>> exponential_backoff(2)  # 2.0s
        >>> exponential_backoff(3)  # 4.0s
    """
    if attempt < 1:
        raise ValueError("attempt is 1-indexed")

    delay = min(base_delay * (exponential_base ** (attempt - 1)), max_delay)

    if jitter and jitter_factor > 0 and delay > 0:
        jitter_amount = delay * jitter_factor
        delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))

    return delay


R = TypeVar("R", bound=RetryableResult)


async def with_result_retry(
    func: Callable[..., Awaitable[R]],
    *args: Any,
    config: RetryConfig | None = None,
    on_retry: Callable[[int, R], None] | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    **kwargs: Any,
) -> R:
    """
    Execute an async function returning a typed result, retrying transient failures.

    Args:
        func: Async function returning a RetryableResult
        *args: Positional arguments for func
        config: Retry configuration (uses defaults if None)
        on_retry: Optional callback called before each retry (attempt, result)
        sleep: Awaitable sleep used between attempts
        **kwargs: Keyword arguments for func

    Returns:
        First successful result, first non-retryable failure, or the last
        transient failure once attempts are exhausted
    """
    if config is None:
        config = RetryConfig()

    name = getattr(func, "__name__", repr(func))

    for attempt in range(1, config.max_attempts + 1):
        result = await func(*args, **kwargs)

        if result.ok:
            if attempt > 1:
                logger.info(
                    f"Retry succeeded after {attempt} attempts",
                    extra={"attempt": attempt, "function": name},
                )
            return result

        if not result.retryable:
            logger.debug(
                "Non-retryable failure, not retrying",
                extra={"attempt": attempt, "function": name},
            )
            return result

        if attempt >= config.max_attempts:
            logger.error(
                f"All {config.max_attempts} attempts exhausted",
                extra={"function": name, "max_attempts": config.max_attempts},
            )
            return result

        delay = exponential_backoff(
            attempt=attempt,
            base_delay=config.base_delay,
            exponential_base=config.exponential_base,
            max_delay=config.max_delay,
            jitter=config.jitter,
            jitter_factor=config.jitter_factor,
        )

        logger.warning(
            f"Retry attempt {attempt + 1}/{config.max_attempts} after {delay:.2f}s",
            extra={
                "attempt": attempt + 1,
                "max_attempts": config.max_attempts,
                "delay_seconds": delay,
                "function": name,
            },
        )

        if on_retry:
            try:
                on_retry(attempt, result)
            except Exception as callback_error:
                logger.error(f"Retry callback failed: {callback_error}")

        await sleep(delay)

    # Only reachable when max_attempts < 1 bypassed RetryConfig validation
    raise ValueError(f"max_attempts must be at least 1, got {config.max_attempts}")
