"""
Core types shared across modules.
"""

from enum import Enum


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Used by the tailer and the retry helpers to decide between backing off,
    failing a single stream, or aborting startup.

    Categories:
        TRANSIENT: Temporary failures that should retry with backoff
                   (e.g., network timeouts, throttling, 5xx responses)
        AUTH: Credential failures (expired session, denied role assumption)
        PERMANENT: Non-retriable failures that won't succeed on retry
                   (e.g., missing log group, invalid configuration)
        UNKNOWN: Unclassified errors, may retry conservatively
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    UNKNOWN = "unknown"


__all__ = [
    "ErrorCategory",
]
