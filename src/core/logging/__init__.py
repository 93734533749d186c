"""
Structured logging module.

Provides JSON file logging, a readable console format and per-task context
propagation through contextvars.
"""

from core.logging.context import (
    clear_log_context,
    get_log_context,
    set_log_context,
)
from core.logging.context_managers import (
    LogContext,
    OperationContext,
    log_operation,
)
from core.logging.formatters import ConsoleFormatter, JSONFormatter
from core.logging.setup import (
    get_log_file_path,
    setup_logging,
)
from core.logging.utilities import (
    StreamLoggerAdapter,
    log_exception,
    log_startup_banner,
    log_with_context,
)

__all__ = [
    # Setup
    "setup_logging",
    "get_log_file_path",
    # Formatters
    "JSONFormatter",
    "ConsoleFormatter",
    # Context
    "set_log_context",
    "get_log_context",
    "clear_log_context",
    # Context Managers
    "LogContext",
    "OperationContext",
    "log_operation",
    # Utilities
    "log_with_context",
    "log_exception",
    "log_startup_banner",
    "StreamLoggerAdapter",
]
