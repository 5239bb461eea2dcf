"""Retry with exponential backoff for provider calls."""

import logging
import time
from functools import wraps
from typing import Callable, Iterator, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

# Substrings that mark a non-transient provider error (quota, billing, throttling)
RATE_LIMIT_INDICATORS = (
    'ratelimiterror',
    'rate limit',
    'quota',
    'billing',
    'insufficient credits',
    '402',
    '429',
)


def is_rate_limit_error(exception: Exception) -> bool:
    """True for quota or throttling errors, which are never worth retrying within a run."""
    text = f"{type(exception).__name__} {exception}".lower()
    return any(indicator in text for indicator in RATE_LIMIT_INDICATORS)


def backoff_delays(
    retries: int, initial_delay: float, backoff_factor: float, max_delay: Optional[float] = None
) -> Iterator[float]:
    """Yield the sleep before each retry: initial_delay, then multiplied by backoff_factor."""
    delay = initial_delay
    for _ in range(retries):
        yield delay if max_delay is None else min(delay, max_delay)
        delay *= backoff_factor


def retry_with_backoff(
    max_retries: int = 2,
    initial_delay: float = 0.5,
    backoff_factor: float = 2.0,
    max_delay: Optional[float] = None,
    exceptions: tuple = (Exception,),
    no_retry: tuple = (),
    abort_when: Optional[Callable[..., bool]] = None,
    log_errors: bool = True,
    skip_rate_limit_errors: bool = True,
):
    """
    Decorator for retrying a function with exponential backoff.

    Args:
        max_retries: Retries after the first attempt
        initial_delay: Seconds to wait before the first retry
        backoff_factor: Multiplier applied to the delay after each retry
        max_delay: Upper bound for a single wait (None for unbounded)
        exceptions: Exceptions that trigger a retry
        no_retry: Exceptions re-raised immediately even if they match ``exceptions``
        abort_when: Called with the wrapped function's arguments before each
            retry; a true result re-raises the last error instead of retrying
            (e.g. the run was cancelled)
        log_errors: Whether to log retry attempts
        skip_rate_limit_errors: If True, quota/rate-limit errors are not retried

    Returns:
        Decorated function
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delays = backoff_delays(max_retries, initial_delay, backoff_factor, max_delay)
            attempt = 0
            while True:
                attempt += 1
                try:
                    return func(*args, **kwargs)
                except no_retry:
                    raise
                except exceptions as e:
                    if skip_rate_limit_errors and is_rate_limit_error(e):
                        if log_errors:
                            logger.error(f"{func.__name__} hit a rate limit/quota error, not retrying: {e}")
                        raise
                    delay = next(delays, None)
                    if delay is None:
                        if log_errors:
                            logger.error(f"{func.__name__} failed after {attempt} attempts: {e}")
                        raise
                    if abort_when is not None and abort_when(*args, **kwargs):
                        if log_errors:
                            logger.warning(f"{func.__name__} failed and the caller gave up, not retrying: {e}")
                        raise
                    if log_errors:
                        logger.warning(
                            f"{func.__name__} failed (attempt {attempt}/{max_retries + 1}): {e}. "
                            f"Retrying in {delay:.2f}s..."
                        )
                    time.sleep(delay)

        return wrapper
    return decorator
