"""
Resilience patterns module.

Provides fault tolerance primitives for talking to remote APIs.

Components:
    - RetryConfig: Exponential backoff configuration (also the tailer's backoff policy)
    - @with_retry_async decorator: Retry with jitter
    - RateLimiter: Token bucket rate limiting shared across tailers
"""

from .rate_limiter import (
    RateLimiter,
    RateLimiterConfig,
)
from .retry import (
    DEFAULT_RETRY,
    DISCOVERY_RETRY,
    POLL_BACKOFF,
    RetryConfig,
    with_retry_async,
)

__all__ = [
    # Rate Limiter
    "RateLimiter",
    "RateLimiterConfig",
    # Retry
    "RetryConfig",
    "with_retry_async",
    "DEFAULT_RETRY",
    "DISCOVERY_RETRY",
    "POLL_BACKOFF",
]
