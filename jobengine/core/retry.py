"""Retry and backoff for calls to collaborator services.

Only failures that happen before a request reaches the collaborator are
safe to retry: a collection run that was accepted and then lost its
response must not be started twice. Callers pick the retryable exception
types accordingly (e.g. ``httpx.ConnectError``).
"""

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from jobengine.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    jitter: bool = True
    retryable_exceptions: tuple[type[Exception], ...] = field(default_factory=lambda: (Exception,))


def compute_backoff(attempt: int, config: RetryConfig) -> float:
    """Seconds to wait after the given zero-based failed attempt.

    min(backoff_base * 2^attempt, backoff_max), scaled into [0.5, 1.5)
    when jitter is enabled so replicas don't hammer a recovering service
    in lockstep.
    """
    delay = min(config.backoff_base * (2**attempt), config.backoff_max)
    if config.jitter:
        delay *= 0.5 + random.random()
    return delay


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
) -> T:
    """
    Execute an async callable, retrying retryable failures with backoff.

    Args:
        fn: Async function to execute (no arguments)
        config: Retry configuration, uses defaults if not provided
        operation_name: Name for logging purposes

    Returns:
        Result of fn()

    Raises:
        Exception: The last exception once attempts are exhausted, or any
            non-retryable exception immediately

    Example:
        ```python
        config = RetryConfig(retryable_exceptions=(httpx.ConnectError,))
        response = await retry_with_backoff(
            lambda: client.post(url, json=payload),
            config=config,
            operation_name="collection:execute",
        )
        ```
    """
    config = config or RetryConfig()
    attempts = max(config.max_attempts, 1)

    for attempt in range(attempts):
        try:
            return await fn()
        except config.retryable_exceptions as e:
            if attempt + 1 >= attempts:
                logger.bind(
                    operation=operation_name,
                    attempts=attempts,
                    error=str(e),
                ).error("retry_exhausted")
                raise

            delay = compute_backoff(attempt, config)
            logger.bind(
                operation=operation_name,
                attempt=attempt + 1,
                max_attempts=attempts,
                delay_seconds=round(delay, 2),
                error=str(e),
            ).warning("retry_attempt")
            await asyncio.sleep(delay)

    raise RuntimeError("Unexpected state in retry_with_backoff")
