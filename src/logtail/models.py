"""
Data model shared by the tailing engine.

- LogSource: one log group plus stream-name prefix, with the namespace its
  checkpoints live under
- StreamID: concrete stream name inside a log group
- Cursor: int milliseconds since the epoch of the last processed event
- Event / Batch: what a poll returns and what a sink receives
"""

import re
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, ConfigDict, Field

from core.errors.exceptions import OffsetStoreError

StreamID = str
Cursor = int

# Cursors are persisted as int64 milliseconds
MAX_CURSOR = 2**63 - 1
_CURSOR_DIGITS = re.compile(r"[0-9]+")


@dataclass(frozen=True)
class LogSource:
    """A log group and stream prefix to tail for one service."""

    service: str
    log_group: str
    stream_prefix: str
    kv_namespace: str

    def checkpoint_key(self, stream_id: StreamID) -> str:
        return checkpoint_key(self.kv_namespace, stream_id)


class Event(BaseModel):
    """One log event as returned by GetLogEvents."""

    model_config = ConfigDict(frozen=True)

    timestamp: int = Field(..., description="Event time, ms since epoch")
    message: str = Field(..., description="Raw log line")
    ingestion_time: int | None = Field(
        default=None, description="Time CloudWatch received the event, ms since epoch"
    )
    log_group: str = ""
    stream_id: str = ""


# Non-empty, in source order
Batch = tuple[Event, ...]


def checkpoint_key(kv_namespace: str, stream_id: StreamID) -> str:
    """Build the store key for a stream: ``{kv_namespace}/{stream_id}``.

    Stream names may themselves contain ``/``; the key keeps them verbatim.
    """
    return f"{kv_namespace.rstrip('/')}/{stream_id}"


def encode_cursor(cursor: Cursor) -> bytes:
    """Persisted form of a cursor: base-10 ASCII integer."""
    return str(int(cursor)).encode("ascii")


def decode_cursor(raw: bytes | str, key: str = "") -> Cursor:
    """Parse a persisted cursor.

    Only what encode_cursor writes is accepted: ASCII digits, no sign, no
    digit separators, at most MAX_CURSOR.

    Raises:
        OffsetStoreError: Value is anything else. A corrupt checkpoint is a
            read failure, not a missing one.
    """
    text = raw.decode("ascii", errors="replace") if isinstance(raw, bytes) else raw
    text = text.strip()
    if _CURSOR_DIGITS.fullmatch(text) and int(text) <= MAX_CURSOR:
        return int(text)
    raise OffsetStoreError(
        f"Stored cursor for '{key}' is not a valid cursor: {text[:64]!r}",
        context={"checkpoint_key": key},
    )


def now_ms() -> Cursor:
    return int(datetime.now(UTC).timestamp() * 1000)


def fallback_cursor(fallback: timedelta) -> Cursor:
    """Start position when a stream has never been checkpointed."""
    return now_ms() - int(fallback.total_seconds() * 1000)


def advance_cursor(cursor: Cursor, batch: Batch) -> Cursor:
    """Largest of the current cursor and every timestamp in the batch.

    Events inside a batch are not guaranteed to be sorted, so the maximum is
    taken over the whole batch rather than its last element.
    """
    if not batch:
        return cursor
    return max(cursor, max(event.timestamp for event in batch))


__all__ = [
    "LogSource",
    "StreamID",
    "Cursor",
    "Event",
    "Batch",
    "checkpoint_key",
    "encode_cursor",
    "decode_cursor",
    "now_ms",
    "fallback_cursor",
    "advance_cursor",
]
