"""Retry utilities for handling transient failures.

Provides a decorator for retrying async collaborator calls with exponential
backoff. Only idempotent calls should be wrapped: pull request creation is,
merges are not and are never retried.

Example:
    >>> from git_conductor.utils.retry import async_retry
    >>>
    >>> @async_retry(max_attempts=3, backoff_factor=2.0, exceptions=(ConnectionError,))
    ... async def open_pull_request(...):
    ...     ...

Backoff Formula:
    delay = backoff_factor ** attempt_number
    For backoff_factor=2.0: 2s, 4s, 8s, ...
"""

import asyncio
import functools
from collections.abc import Callable
from typing import Any

import structlog

log = structlog.get_logger(__name__)


def async_retry(
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorator for async functions with exponential backoff retry logic.

    Args:
        max_attempts: Maximum number of calls before giving up
        backoff_factor: Base of the exponential delay between attempts.
            ``0`` retries immediately.
        exceptions: Exception types that trigger a retry. Anything else
            propagates on the first occurrence.

    Returns:
        A decorator wrapping an async function with retry logic.

    Raises:
        The last caught exception once all attempts are exhausted.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts:
                        log.error(
                            "retry_exhausted",
                            function=func.__name__,
                            attempts=attempt,
                            error=str(e),
                        )
                        raise

                    delay = backoff_factor**attempt if backoff_factor > 0 else 0.0
                    log.warning(
                        "retry_attempt",
                        function=func.__name__,
                        attempt=attempt,
                        max_attempts=max_attempts,
                        delay=delay,
                        error=str(e),
                    )
                    await asyncio.sleep(delay)

            raise RuntimeError("Retry logic error")

        return wrapper

    return decorator


async def call_with_retry(
    func: Callable[..., Any],
    *args: Any,
    max_attempts: int = 3,
    backoff_factor: float = 2.0,
    exceptions: tuple[type[Exception], ...] = (Exception,),
    **kwargs: Any,
) -> Any:
    """Call ``func`` with the same policy as :func:`async_retry`.

    Useful when the retry policy comes from configuration at runtime.
    """
    wrapped = async_retry(max_attempts=max_attempts, backoff_factor=backoff_factor, exceptions=exceptions)(func)
    return await wrapped(*args, **kwargs)
