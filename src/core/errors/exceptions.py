"""
Unified exception hierarchy for logtail.

Provides typed exceptions with retry classification so the tailer can tell
a throttled poll (back off and repeat) from a missing checkpoint backend
(stop the stream) without inspecting library-specific exception types.
"""

import errno

# Import ErrorCategory from canonical source to avoid duplicate enum issues
# (comparing enums from different classes always returns False)
from core.types import ErrorCategory

_RETRYABLE = (ErrorCategory.TRANSIENT, ErrorCategory.AUTH, ErrorCategory.UNKNOWN)


class PipelineError(Exception):
    """
    Base exception for all logtail errors.

    ``context`` carries the identifiers a log line needs (log_group,
    stream_id, checkpoint key). ``category`` defaults per class and can be
    overridden per instance, so a DiscoveryError that wraps a throttled
    describe call stays TRANSIENT.
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Exception | None = None,
        context: dict | None = None,
        category: ErrorCategory | None = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        if category is not None:
            self.category = category
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        return self.category in _RETRYABLE

    @property
    def should_refresh_auth(self) -> bool:
        return self.category == ErrorCategory.AUTH

    def __str__(self) -> str:
        if self.cause is None:
            return self.message
        return f"{self.message} | Caused by: {self.cause}"


# =============================================================================
# Category base classes
# =============================================================================


class AuthError(PipelineError):
    """Credentials rejected or expired."""

    category = ErrorCategory.AUTH


class TransientError(PipelineError):
    """Failure expected to clear on its own; retry with backoff."""

    category = ErrorCategory.TRANSIENT


class ThrottlingError(TransientError):
    """Request quota exceeded. ``retry_after`` is honoured when the API sends one."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        cause: Exception | None = None,
        context: dict | None = None,
    ):
        super().__init__(message, cause, context)
        self.retry_after = retry_after


class PermanentError(PipelineError):
    """Retrying cannot help (missing log group, bad parameters)."""

    category = ErrorCategory.PERMANENT


# =============================================================================
# Domain-Specific Errors
# =============================================================================


class ConfigurationError(PermanentError):
    """Configuration document missing, malformed, or inconsistent."""


class DiscoveryError(PipelineError):
    """Log streams for a source could not be enumerated."""


class OffsetStoreError(PipelineError):
    """Cursor could not be read from or written to the offset store backend."""


class SourceError(TransientError):
    """Error from the remote log source API (poll or describe)."""


class SinkError(PipelineError):
    """Destination rejected or failed to accept a batch."""


# =============================================================================
# Error Classification Utilities
# =============================================================================

_THROTTLE_MARKERS = ("throttl", "429", "rate exceeded")

TRANSIENT_ERROR_MARKERS = frozenset(
    _THROTTLE_MARKERS
    + (
        "502",
        "503",
        "504",
        "timeout",
        "timed out",
        "connection",
        "temporarily unavailable",
        "service unavailable",
    )
)

# Checked in order against the lowercased type name and message; first hit wins
_MESSAGE_RULES: tuple[tuple[ErrorCategory, tuple[str, ...]], ...] = (
    (
        ErrorCategory.TRANSIENT,
        (
            "connectionerror",
            "connection refused",
            "connection reset",
            "connection aborted",
            "no route to host",
            "network unreachable",
            "name resolution",
            "broken pipe",
            "endpointconnectionerror",
            "timeout",
            "timed out",
        ),
    ),
    (
        ErrorCategory.AUTH,
        (
            "401",
            "unauthorized",
            "expiredtoken",
            "token expired",
            "invalid token",
            "unrecognizedclient",
            "nocredentials",
            "unable to locate credentials",
        ),
    ),
    (ErrorCategory.TRANSIENT, _THROTTLE_MARKERS + ("502", "503", "504")),
    (ErrorCategory.PERMANENT, ("404", "not found", "does not exist")),
)

# Disk full, read-only filesystem, permission denied
_PERMANENT_ERRNOS = frozenset({errno.ENOSPC, errno.EROFS, errno.EACCES, errno.EPERM})


def is_transient_error(exc: Exception) -> bool:
    """True when a retry can reasonably be expected to succeed."""
    if isinstance(exc, PipelineError):
        return exc.category == ErrorCategory.TRANSIENT

    error_str = str(exc).lower()
    return any(marker in error_str for marker in TRANSIENT_ERROR_MARKERS)


def is_retryable_error(exc: Exception) -> bool:
    """Transient, auth and unclassified errors are retried; permanent ones are not."""
    if isinstance(exc, PipelineError):
        return exc.is_retryable
    return classify_exception(exc) in _RETRYABLE


def classify_http_status(status_code: int) -> ErrorCategory:
    """Map an HTTP status from Consul, Elasticsearch or Azure to a category."""
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN
    if status_code in (401, 403):
        return ErrorCategory.AUTH
    if status_code in (408, 429) or status_code >= 500:
        return ErrorCategory.TRANSIENT
    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT
    return ErrorCategory.UNKNOWN


def classify_os_error(error: OSError) -> ErrorCategory:
    """Only errnos that cannot clear without intervention are PERMANENT."""
    if error.errno in _PERMANENT_ERRNOS:
        return ErrorCategory.PERMANENT
    return ErrorCategory.TRANSIENT


def _classify_by_text(exc: Exception) -> ErrorCategory:
    haystack = f"{type(exc).__name__} {exc}".lower()
    for category, markers in _MESSAGE_RULES:
        if any(marker in haystack for marker in markers):
            return category
    return ErrorCategory.UNKNOWN


def classify_exception(exc: Exception) -> ErrorCategory:
    """
    Classify any exception.

    Typed errors keep their own category, botocore errors go through the AWS
    code table, OS errors through errno, and everything else falls back to
    matching the type name and message.
    """
    if isinstance(exc, PipelineError):
        return exc.category

    # Lazy import: classifiers depends on this module
    from core.errors.classifiers import classify_aws_error

    aws_category = classify_aws_error(exc)
    if aws_category is not None:
        return aws_category

    if isinstance(exc, OSError) and exc.errno is not None:
        return classify_os_error(exc)

    return _classify_by_text(exc)


def _is_throttling(exc: Exception) -> bool:
    from core.errors.classifiers import get_aws_error_code, is_throttling_code

    if is_throttling_code(get_aws_error_code(exc)):
        return True
    exc_str = str(exc).lower()
    return any(marker in exc_str for marker in _THROTTLE_MARKERS)


def wrap_exception(
    exc: Exception,
    default_class: type = PipelineError,
    context: dict | None = None,
) -> PipelineError:
    """
    Wrap a library exception in the matching PipelineError subclass.

    ``default_class`` is used for unclassified errors, and for transient ones
    when it is itself transient (so a connection reset during a poll comes
    back as SourceError). Typed errors are returned as-is with ``context``
    merged in.
    """
    if isinstance(exc, PipelineError):
        if context:
            exc.context.update(context)
        return exc

    context = dict(context or {})
    context.setdefault("error_type", type(exc).__name__)
    message = str(exc)
    category = classify_exception(exc)

    if category == ErrorCategory.AUTH:
        return AuthError(message, cause=exc, context=context)
    if category == ErrorCategory.PERMANENT:
        return PermanentError(message, cause=exc, context=context)
    if category == ErrorCategory.TRANSIENT:
        if _is_throttling(exc):
            return ThrottlingError(message, cause=exc, context=context)
        if issubclass(default_class, TransientError):
            return default_class(message, cause=exc, context=context)
        return TransientError(message, cause=exc, context=context)
    return default_class(message, cause=exc, context=context)
