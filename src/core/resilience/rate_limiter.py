"""
Token bucket rate limiter shared by every tailer.

CloudWatch Logs enforces per-account request quotas on GetLogEvents and
DescribeLogStreams. With one tailer per stream, a large deployment can
exceed them; a single limiter shared by every tailer keeps the aggregate
request rate under a configured ceiling.

The bucket holds up to ``burst_capacity`` tokens and refills at
``calls_per_second``. Each source request takes one token and waits when
the bucket is empty.

Usage:
    limiter = RateLimiter(RateLimiterConfig(calls_per_second=10, enabled=True))

    await limiter.acquire()
    page = await client.get_log_events(...)
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

_TRUE_STRINGS = ("1", "true", "yes", "on")


@dataclass
class RateLimiterConfig:
    """Request budget for the log source. Disabled unless configured."""

    calls_per_second: float = 10.0
    # None means one second worth of calls
    burst_capacity: Optional[float] = None
    enabled: bool = False
    name: str = "rate_limiter"

    def __post_init__(self):
        self.calls_per_second = float(self.calls_per_second)
        if self.calls_per_second <= 0:
            raise ValueError("calls_per_second must be positive")
        if self.burst_capacity is not None:
            self.burst_capacity = float(self.burst_capacity)
        if isinstance(self.enabled, str):
            self.enabled = self.enabled.strip().lower() in _TRUE_STRINGS

    @classmethod
    def from_dict(cls, data: dict | None, name: str = "rate_limiter") -> "RateLimiterConfig":
        data = data or {}
        return cls(
            calls_per_second=data.get("calls_per_second", 10.0),
            burst_capacity=data.get("burst_capacity"),
            enabled=data.get("enabled", False),
            name=name,
        )


class RateLimiter:
    """
    Async token bucket.

    Waiters queue on a single lock and sleep while holding it, so tailers
    are served in arrival order and none can starve another.
    """

    def __init__(self, config: Optional[RateLimiterConfig] = None):
        self.config = config or RateLimiterConfig(enabled=True)
        self._rate = self.config.calls_per_second
        self._burst_capacity = self.config.burst_capacity or self._rate
        self._tokens = self._burst_capacity
        self._last_update = time.monotonic()
        self._lock = asyncio.Lock()
        self._waits = 0

        logger.info(
            f"Rate limiter '{self.config.name}' "
            f"{'initialized' if self.config.enabled else 'initialized but DISABLED'}",
            extra={
                "rate_limiter": self.config.name,
                "calls_per_second": self._rate,
                "burst_capacity": self._burst_capacity,
            },
        )

    def _refill(self) -> None:
        now = time.monotonic()
        self._tokens = min(
            self._burst_capacity, self._tokens + (now - self._last_update) * self._rate
        )
        self._last_update = now

    def _wait_time(self, tokens: float) -> float:
        return max(0.0, (tokens - self._tokens) / self._rate)

    async def acquire(self, tokens: float = 1.0) -> None:
        """
        Take ``tokens`` from the bucket, waiting for a refill if needed.

        Raises:
            ValueError: More tokens requested than the bucket can ever hold
        """
        if not self.config.enabled:
            return

        if tokens > self._burst_capacity:
            raise ValueError(
                f"Requested tokens ({tokens}) exceeds burst capacity ({self._burst_capacity})"
            )

        async with self._lock:
            self._refill()
            wait_time = self._wait_time(tokens)
            if wait_time == 0.0:
                self._tokens -= tokens
                return

            self._waits += 1
            logger.debug(
                f"Rate limit reached for '{self.config.name}', waiting {wait_time:.3f}s",
                extra={
                    "rate_limiter": self.config.name,
                    "wait_seconds": wait_time,
                    "tokens_available": self._tokens,
                    "tokens_requested": tokens,
                },
            )
            await asyncio.sleep(wait_time)

            # The refill during the sleep covers exactly this request
            self._tokens = 0.0
            self._last_update = time.monotonic()

    def get_stats(self) -> dict:
        return {
            "name": self.config.name,
            "enabled": self.config.enabled,
            "calls_per_second": self._rate,
            "burst_capacity": self._burst_capacity,
            "tokens_available": self._tokens,
            "waits": self._waits,
        }


__all__ = [
    "RateLimiter",
    "RateLimiterConfig",
]
