"""
Error classification and exception hierarchy.

Provides:
- ErrorCategory enum for classifying errors
- PipelineError hierarchy for typed exceptions
- Classification utilities for error handling
- AWS error-code classifiers
"""

from core.errors.classifiers import (
    AWS_ERROR_CODES,
    classify_aws_error,
    classify_aws_error_code,
    get_aws_error_code,
)
from core.errors.exceptions import (
    AuthError,
    ConfigurationError,
    DiscoveryError,
    OffsetStoreError,
    PermanentError,
    PipelineError,
    SinkError,
    SourceError,
    ThrottlingError,
    TransientError,
    classify_exception,
    classify_http_status,
    is_retryable_error,
    is_transient_error,
    wrap_exception,
)
from core.types import ErrorCategory

__all__ = [
    # Enums
    "ErrorCategory",
    # Base classes
    "PipelineError",
    "AuthError",
    "TransientError",
    "PermanentError",
    "ThrottlingError",
    # Domain errors
    "ConfigurationError",
    "DiscoveryError",
    "OffsetStoreError",
    "SourceError",
    "SinkError",
    # Classification utilities
    "is_transient_error",
    "is_retryable_error",
    "classify_http_status",
    "classify_exception",
    "wrap_exception",
    # AWS classifiers
    "AWS_ERROR_CODES",
    "classify_aws_error",
    "classify_aws_error_code",
    "get_aws_error_code",
]
