"""Context managers for structured logging."""

import logging
import time
from typing import Any, Dict, Optional

from core.logging.context import get_log_context, set_log_context
from core.logging.utilities import log_exception, log_with_context


class LogContext:
    """
    Scope log context fields to a block.

    Fields left as None are cleared for the duration of the block, so a
    discovery block for one log group never inherits another group's
    stream_id. The previous values come back on exit.

    Usage:
        with LogContext(service="billing", log_group="/aws/ecs/billing"):
            await discoverer.discover(source)
    """

    _FIELDS = ("service", "log_group", "stream_id", "stage", "worker_id")

    def __init__(
        self,
        service: Optional[str] = None,
        log_group: Optional[str] = None,
        stream_id: Optional[str] = None,
        stage: Optional[str] = None,
        worker_id: Optional[str] = None,
    ):
        self.new_context = {
            "service": service,
            "log_group": log_group,
            "stream_id": stream_id,
            "stage": stage,
            "worker_id": worker_id,
        }
        self.old_context: Dict[str, str] = {}

    def __enter__(self) -> "LogContext":
        self.old_context = get_log_context()
        set_log_context(**self.new_context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_log_context(**{key: self.old_context.get(key, "") for key in self._FIELDS})
        return False


class OperationContext:
    """
    Time a block and emit one record when it ends.

    Success is logged at ``level``, raised to INFO once the block runs past
    ``slow_threshold_ms``. Failures are logged at WARNING with the error
    classification and then propagate. Task cancellation is not a failure
    and is not logged.
    """

    def __init__(
        self,
        logger: logging.Logger | logging.LoggerAdapter,
        operation: str,
        level: int = logging.DEBUG,
        slow_threshold_ms: Optional[float] = 1000.0,
        **context: Any,
    ):
        self.logger = logger
        self.operation = operation
        self.level = level
        self.slow_threshold_ms = slow_threshold_ms
        self.context: Dict[str, Any] = dict(context)
        self._started: Optional[float] = None

    @property
    def elapsed_ms(self) -> float:
        if self._started is None:
            return 0.0
        return round((time.perf_counter() - self._started) * 1000, 2)

    def add_context(self, **kwargs: Any) -> None:
        """Attach result fields (stream counts, cursors) before the block ends."""
        self.context.update(kwargs)

    def _success_level(self, elapsed_ms: float) -> int:
        if self.slow_threshold_ms is not None and elapsed_ms > self.slow_threshold_ms:
            return max(self.level, logging.INFO)
        return self.level

    def __enter__(self) -> "OperationContext":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed_ms = self.elapsed_ms
        fields = {"operation": self.operation, "duration_ms": elapsed_ms, **self.context}

        if exc_val is None:
            log_with_context(
                self.logger,
                self._success_level(elapsed_ms),
                f"Completed: {self.operation}",
                **fields,
            )
        elif isinstance(exc_val, Exception):
            log_exception(
                self.logger,
                exc_val,
                f"Failed: {self.operation}",
                level=logging.WARNING,
                include_traceback=False,
                **fields,
            )
        return False


def log_operation(
    logger: logging.Logger | logging.LoggerAdapter,
    operation: str,
    level: int = logging.DEBUG,
    slow_threshold_ms: Optional[float] = 1000.0,
    **context: Any,
) -> OperationContext:
    """Shorthand for ``OperationContext`` in a ``with`` statement."""
    return OperationContext(
        logger, operation, level=level, slow_threshold_ms=slow_threshold_ms, **context
    )
