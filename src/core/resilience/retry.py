"""
Backoff policy and a bounded retry decorator.

``RetryConfig`` serves two callers. The tailer uses only ``get_delay`` to
pace its unbounded poll retries. ``with_retry_async`` uses the whole policy
for one-shot calls such as a DescribeLogStreams page, where transient and
auth failures are retried a few times and permanent ones raise at once.
"""

import asyncio
import logging
import random
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import wraps

from core.errors.exceptions import (
    PipelineError,
    ThrottlingError,
    classify_exception,
    is_retryable_error,
    wrap_exception,
)
from core.types import ErrorCategory

logger = logging.getLogger(__name__)

_TRUE_STRINGS = ("1", "true", "yes", "on")


def _as_bool(value) -> bool:
    # bool("false") is True, and YAML/env values arrive as strings
    if isinstance(value, str):
        return value.strip().lower() in _TRUE_STRINGS
    return bool(value)


def _extract_error_category(error: Exception) -> str:
    return classify_exception(error).value


@dataclass
class RetryConfig:
    """
    Exponential backoff: ``base_delay * exponential_base ** attempt``,
    capped at ``max_delay``.

    With ``jitter`` the delay is drawn from [delay/2, delay] (equal jitter),
    so tailers that failed together do not retry together. A
    ``ThrottlingError`` carrying ``retry_after`` overrides the computed delay
    unless ``respect_retry_after`` is off.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True
    respect_permanent: bool = True
    respect_retry_after: bool = True
    # Exception types that are never retried whatever their category
    never_retry: set[type[Exception]] = field(default_factory=set)

    def __post_init__(self):
        self.max_attempts = int(self.max_attempts)
        self.base_delay = float(self.base_delay)
        self.max_delay = float(self.max_delay)
        self.exponential_base = float(self.exponential_base)
        self.jitter = _as_bool(self.jitter)
        self.respect_permanent = _as_bool(self.respect_permanent)
        self.respect_retry_after = _as_bool(self.respect_retry_after)

        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("Retry delays must be non-negative")
        if self.exponential_base < 1.0:
            raise ValueError("exponential_base must be >= 1.0")

    def get_delay(self, attempt: int, error: Exception | None = None) -> float:
        """Seconds to wait before retry number ``attempt`` (0-indexed)."""
        if self.respect_retry_after and isinstance(error, ThrottlingError) and error.retry_after:
            return min(error.retry_after, self.max_delay)

        delay = min(self.base_delay * self.exponential_base**attempt, self.max_delay)
        if self.jitter:
            delay = delay / 2 + random.uniform(0, delay / 2)
        return min(delay, self.max_delay)

    def should_retry(self, error: Exception, attempt: int) -> bool:
        """False once ``max_attempts`` is used up, or for errors retrying cannot fix."""
        if attempt + 1 >= self.max_attempts:
            return False
        if self.never_retry and isinstance(error, tuple(self.never_retry)):
            return False
        if not self.respect_permanent and classify_exception(error) == ErrorCategory.PERMANENT:
            return True
        return is_retryable_error(error)

    @classmethod
    def from_dict(cls, data: dict | None, **defaults) -> "RetryConfig":
        """Build from a YAML mapping; ``multiplier`` is accepted for ``exponential_base``."""
        values = dict(defaults)
        for key, value in (data or {}).items():
            key = "exponential_base" if key == "multiplier" else key
            if key not in _YAML_FIELDS:
                raise ValueError(f"Unknown retry setting: '{key}'")
            values[key] = value
        return cls(**values)


_YAML_FIELDS = frozenset(
    {
        "max_attempts",
        "base_delay",
        "max_delay",
        "exponential_base",
        "jitter",
        "respect_permanent",
        "respect_retry_after",
    }
)

DEFAULT_RETRY = RetryConfig(max_attempts=3, base_delay=1.0)

# Matches the fixed 15 second pause between failed polls
POLL_BACKOFF = RetryConfig(
    max_attempts=1,
    base_delay=15.0,
    max_delay=15.0,
    exponential_base=1.0,
    jitter=False,
)

# DescribeLogStreams is limited to a few calls per second per account, so
# discovery of many prefixes at startup can be throttled
DISCOVERY_RETRY = RetryConfig(max_attempts=4, base_delay=1.0, max_delay=10.0)


def _failure_fields(func: Callable, wrapped: Exception, attempt: int, config: RetryConfig) -> dict:
    return {
        "operation": func.__name__,
        "attempt": attempt + 1,
        "max_attempts": config.max_attempts,
        "error_type": type(wrapped).__name__,
        "error_category": _extract_error_category(wrapped),
        "error_message": str(wrapped)[:200],
    }


def with_retry_async(config: RetryConfig | None = None, wrap_errors: bool = True):
    """
    Retry an async call a bounded number of times.

    Each failure is classified first: permanent errors and the last attempt
    raise immediately, anything else sleeps ``config.get_delay`` and tries
    again. With ``wrap_errors`` a raw library exception is raised as its
    ``PipelineError`` wrapper, so callers see ``ThrottlingError`` rather
    than a botocore ``ClientError``.

    Usage:
        @with_retry_async(config=DISCOVERY_RETRY)
        async def describe_log_streams_page(self, log_group, prefix="", next_token=None):
            ...
    """
    if config is None:
        config = DEFAULT_RETRY

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    wrapped = (
                        wrap_exception(e)
                        if wrap_errors and not isinstance(e, PipelineError)
                        else e
                    )
                    fields = _failure_fields(func, wrapped, attempt, config)

                    if not config.should_retry(wrapped, attempt):
                        logger.error("Giving up on %s", func.__name__, extra=fields)
                        if wrapped is e:
                            raise
                        raise wrapped from e

                    delay = config.get_delay(attempt, wrapped)
                    fields["delay_seconds"] = round(delay, 2)
                    logger.warning("Retryable error for %s, will retry", func.__name__, extra=fields)
                    await asyncio.sleep(delay)
                    attempt += 1
                    continue

                if attempt > 0:
                    logger.info(
                        "Retry succeeded for %s after %d attempts",
                        func.__name__,
                        attempt + 1,
                        extra={"operation": func.__name__, "attempt": attempt + 1},
                    )
                return result

        return wrapper

    return decorator


__all__ = [
    "RetryConfig",
    "with_retry_async",
    "DEFAULT_RETRY",
    "DISCOVERY_RETRY",
    "POLL_BACKOFF",
]
