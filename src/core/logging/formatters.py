"""Log formatters for JSON and console output."""

import json
import logging
import re
import sys
from datetime import UTC, datetime
from typing import Any

from core.logging.context import get_log_context
from core.utils.json_serializers import json_serializer

# Record extras copied into JSON output. A type coerces the value so that
# cursor and timing fields stay numeric for downstream aggregation.
LOG_FIELDS: dict[str, type | None] = {
    # Stream identity (may also come from context)
    "service": None,
    "log_group": None,
    "stream_id": None,
    "checkpoint_key": None,
    # Tailer progress
    "state": None,
    "cursor": int,
    "previous_cursor": int,
    "event_count": int,
    "batch_size": int,
    "page_size": int,
    "stream_count": int,
    "tailer_count": int,
    "error_count": int,
    # Errors
    "error_category": None,
    "error_message": None,
    "error_code": None,
    "error": None,
    "error_type": None,
    # Retry and rate limiting
    "attempt": int,
    "max_attempts": int,
    "total_attempts": int,
    "delay_seconds": float,
    "wait_seconds": float,
    "rate_limiter": None,
    # Offset store backends and sinks
    "backend": None,
    "sink_type": None,
    "destination": None,
    "address": None,
    "topic": None,
    "container": None,
    "path": None,
    "http_status": int,
    "http_url": None,
    # Timing
    "operation": None,
    "duration_ms": float,
    "fallback_seconds": float,
    "grace_seconds": float,
}

CONTEXT_FIELDS = ("service", "log_group", "stream_id", "stage", "worker_id")

# Blob SAS signatures and Consul/Elasticsearch tokens can appear in URLs
_URL_FIELDS = frozenset({"http_url", "address"})
_SENSITIVE_PARAMS = re.compile(
    r"([?&])(sig|token|key|secret|password|auth)=[^&]*",
    re.IGNORECASE,
)


def redact_url(url: str) -> str:
    return _SENSITIVE_PARAMS.sub(r"\1\2=[REDACTED]", url)


def _coerce(field: str, value: Any) -> Any:
    expected = LOG_FIELDS.get(field)
    if expected is not None:
        try:
            value = expected(value)
        except (ValueError, TypeError):
            return None
    if field in _URL_FIELDS and isinstance(value, str):
        return redact_url(value)
    return value


class JSONFormatter(logging.Formatter):
    """
    One JSON object per line, for jq and log shippers.

    Context fields (service, log_group, stream_id) come from contextvars;
    explicit ``extra`` values on the record override them. DEBUG and
    ERROR records also carry the source location.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        log_context = get_log_context()
        entry.update((f, log_context[f]) for f in CONTEXT_FIELDS if log_context.get(f))

        if record.levelno in (logging.DEBUG, logging.ERROR, logging.CRITICAL):
            entry["file"] = f"{record.filename}:{record.lineno}"

        for field in LOG_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = _coerce(field, value)

        if record.exc_info:
            exc_type, exc_value, _ = record.exc_info
            entry["exception"] = {
                "type": exc_type.__name__ if exc_type else None,
                "message": str(exc_value) if exc_value else None,
                "stacktrace": self.formatException(record.exc_info),
            }

        return json.dumps(entry, default=json_serializer, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """
    ``<time> - <LEVEL> - [service] - [stage] - [stream] [cursor:N] message``

    Levels are coloured only when stdout is a TTY.
    """

    COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self._use_colors = sys.stdout.isatty()

    def _level(self, record: logging.LogRecord) -> str:
        color = self.COLORS.get(record.levelno) if self._use_colors else None
        if color is None:
            return record.levelname
        return f"{color}{record.levelname}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        log_context = get_log_context()

        prefix = [datetime.now().strftime("%Y-%m-%d %H:%M:%S"), self._level(record)]
        prefix.extend(f"[{log_context[f]}]" for f in ("service", "stage") if log_context[f])

        tags = []
        stream_id = getattr(record, "stream_id", None) or log_context.get("stream_id")
        if stream_id:
            tags.append(f"[{stream_id}]")
        cursor = getattr(record, "cursor", None)
        if cursor is not None:
            tags.append(f"[cursor:{cursor}]")

        line = " - ".join(prefix) + " - " + " ".join(tags + [record.getMessage()])
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line
