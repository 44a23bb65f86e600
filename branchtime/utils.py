"""Shared utilities for branchtime."""

import logging
import time
from collections.abc import Iterator
from functools import wraps
from typing import Any, Callable, TypeVar

T = TypeVar("T")

logger = logging.getLogger("branchtime.utils")

RETRY_MAX_DELAY = 30.0


def backoff_delays(delay: float, backoff: float, max_delay: float) -> Iterator[float]:
    """Yield sleep durations growing by ``backoff`` and capped at ``max_delay``."""
    current = delay
    while True:
        yield min(current, max_delay)
        current *= backoff


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple[type[BaseException], ...] = (Exception,),
    max_delay: float = RETRY_MAX_DELAY,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """Re-invoke a function on the given exceptions, sleeping between attempts.

    The last exception propagates unchanged once ``max_attempts`` calls have
    failed. Exceptions outside ``exceptions`` propagate immediately.

    Args:
        max_attempts: Total calls, including the first.
        delay: Sleep before the second call, in seconds.
        backoff: Factor applied to the sleep after each failure.
        exceptions: Exception types that trigger another attempt.
        max_delay: Upper bound for a single sleep.
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> T:
            delays = backoff_delays(delay, backoff, max_delay)
            attempt = 1
            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        raise
                    pause = next(delays)
                    logger.warning(
                        f"{func.__name__} attempt {attempt}/{max_attempts} failed: {e}; "
                        f"retrying in {pause:.1f}s"
                    )
                    time.sleep(pause)
                    attempt += 1
        return wrapper
    return decorator


def sanitize_ref_name(ref: str) -> str:
    """Make a git ref usable as a file name component.

    Args:
        ref: Reference name, e.g. ``release/1.0``.

    Returns:
        The ref with path separators replaced by dashes.
    """
    return ref.replace("/", "-").replace("\\", "-")


def short_sha(sha: str) -> str:
    """Abbreviate a commit id for log messages."""
    return sha[:12]
