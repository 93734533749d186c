"""
Offset store protocol and the shared load/save logic behind every backend.

Backends only move bytes: ``_read(key)`` returns the stored value or None
when the key is absent, ``_write(key, data)`` overwrites it. BaseOffsetStore
turns that into the cursor contract:

- load(): stored cursor, or now - fallback when the key is absent
- save(): persist the cursor as a base-10 ASCII integer
- every backend call is bounded by request_timeout
- any backend failure surfaces as OffsetStoreError
"""

import asyncio
import logging
import time
from datetime import timedelta
from typing import Protocol, runtime_checkable

from core.errors.exceptions import OffsetStoreError, classify_exception
from core.types import ErrorCategory
from logtail.models import Cursor, decode_cursor, encode_cursor, fallback_cursor

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0


@runtime_checkable
class OffsetStore(Protocol):
    """Persistence for one cursor per checkpoint key.

    Implementations must allow concurrent load/save calls on different keys.
    """

    async def start(self) -> None:
        """Open connections. Called once before the first load."""
        ...

    async def load(self, key: str, fallback: timedelta) -> Cursor:
        """Return the stored cursor, or now - fallback (ms) if there is none.

        Raises:
            OffsetStoreError: The backend could not be read or holds a
                value that is not a cursor
        """
        ...

    async def save(self, key: str, cursor: Cursor) -> None:
        """Overwrite the stored cursor.

        Raises:
            OffsetStoreError: The write did not succeed
        """
        ...

    async def close(self) -> None:
        """Release connections."""
        ...


class BaseOffsetStore:
    """Cursor encoding, fallback, timeouts and error wrapping for backends."""

    backend = "base"

    def __init__(
        self,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self.request_timeout = request_timeout
        self._logger = logger or logging.getLogger(type(self).__module__)

    async def start(self) -> None:
        pass

    async def close(self) -> None:
        pass

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _read(self, key: str) -> bytes | None:
        raise NotImplementedError

    async def _write(self, key: str, data: bytes) -> None:
        raise NotImplementedError

    async def load(self, key: str, fallback: timedelta) -> Cursor:
        raw = await self._call("read", key, self._read(key))

        if raw is None:
            cursor = fallback_cursor(fallback)
            self._logger.info(
                "No checkpoint found, starting from fallback position",
                extra={
                    "backend": self.backend,
                    "checkpoint_key": key,
                    "cursor": cursor,
                    "fallback_seconds": fallback.total_seconds(),
                },
            )
            return cursor

        cursor = decode_cursor(raw, key)
        self._logger.info(
            "Loaded checkpoint",
            extra={"backend": self.backend, "checkpoint_key": key, "cursor": cursor},
        )
        return cursor

    async def save(self, key: str, cursor: Cursor) -> None:
        start = time.perf_counter()
        await self._call("write", key, self._write(key, encode_cursor(cursor)))
        self._logger.debug(
            "Saved checkpoint",
            extra={
                "backend": self.backend,
                "checkpoint_key": key,
                "cursor": cursor,
                "duration_ms": round((time.perf_counter() - start) * 1000, 2),
            },
        )

    async def _call(self, operation: str, key: str, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.request_timeout)
        except OffsetStoreError:
            raise
        except TimeoutError as e:
            raise OffsetStoreError(
                f"Offset store {operation} timed out after {self.request_timeout}s for '{key}'",
                cause=e,
                context={"backend": self.backend, "checkpoint_key": key},
                category=ErrorCategory.TRANSIENT,
            ) from e
        except Exception as e:
            raise OffsetStoreError(
                f"Offset store {operation} failed for '{key}'",
                cause=e,
                context={
                    "backend": self.backend,
                    "checkpoint_key": key,
                    "error_type": type(e).__name__,
                },
                category=classify_exception(e),
            ) from e


__all__ = [
    "OffsetStore",
    "BaseOffsetStore",
    "DEFAULT_REQUEST_TIMEOUT_SECONDS",
]
