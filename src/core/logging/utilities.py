"""Logging utility functions."""

import logging
from collections.abc import MutableMapping
from typing import Any

# Attributes every LogRecord already has; passing one in ``extra`` raises
_RESERVED_LOG_KEYS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime"}

_MAX_ERROR_MESSAGE = 500


def log_with_context(
    logger: logging.Logger | logging.LoggerAdapter,
    level: int,
    msg: str,
    **kwargs: Any,
) -> None:
    """
    Log with structured fields passed as keyword arguments.

    Keys that clash with LogRecord attributes are dropped rather than
    raising. ``exc_info`` is passed through to the logger.

    Example:
        log_with_context(logger, logging.INFO, "Checkpoint saved", cursor=cursor)
    """
    exc_info = kwargs.pop("exc_info", None)
    extra = {k: v for k, v in kwargs.items() if k not in _RESERVED_LOG_KEYS}
    logger.log(level, msg, exc_info=exc_info, extra=extra)


def log_exception(
    logger: logging.Logger | logging.LoggerAdapter,
    exc: Exception,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log a failure with its type, category and (truncated) message.

    ``error_category`` comes from PipelineError subclasses unless the caller
    supplies one.

    Example:
        try:
            await store.save(key, cursor)
        except OffsetStoreError as e:
            log_exception(logger, e, "Checkpoint save failed", cursor=cursor)
    """
    category = getattr(exc, "category", None)
    if category is not None:
        kwargs.setdefault("error_category", getattr(category, "value", str(category)))
    kwargs.setdefault("error_type", type(exc).__name__)

    error_msg = str(exc)
    if len(error_msg) > _MAX_ERROR_MESSAGE:
        error_msg = error_msg[:_MAX_ERROR_MESSAGE] + "..."
    kwargs["error_message"] = error_msg

    logger.log(level, msg, exc_info=exc if include_traceback else None, extra=kwargs)


class StreamLoggerAdapter(logging.LoggerAdapter):
    """
    Logger adapter that stamps every record with a stream's identity.

    Handed by a tailer to the components it drives so their records carry
    ``service``, ``log_group`` and ``stream_id`` without threading those
    values through every call. Fields passed in ``extra`` at the call site
    are merged with, and win over, the adapter's own.
    """

    def process(self, msg: str, kwargs: MutableMapping[str, Any]):
        extra = dict(self.extra or {})
        extra.update(kwargs.get("extra") or {})
        kwargs["extra"] = extra
        return msg, kwargs


def log_startup_banner(
    logger: logging.Logger,
    title: str,
    **fields: Any,
) -> None:
    """
    Log a startup banner with one line per configuration field.

    Example:
        log_startup_banner(
            logger,
            "CloudWatch Log Tailer",
            instance_id="logtail-brave-golden-tiger",
            offset_store="consul",
            services=2,
        )
    """
    separator = "=" * 50

    lines = ["", separator, title, separator]
    for key, value in fields.items():
        if value is None or value == "":
            continue
        label = f"{key.replace('_', ' ').title()}:"
        lines.append(f"{label:<16}{value}")
    lines.append(separator)
    lines.append("")

    logger.info("\n".join(lines))
