"""
Centralized error classification for AWS API calls.

botocore raises a single ClientError type for every service error; the
actual reason lives in ``response["Error"]["Code"]``. This module maps those
codes onto ErrorCategory so callers can decide between backing off and
giving up without string matching on messages.
"""

from core.types import ErrorCategory

AWS_ERROR_CODES = {
    "auth_errors": [
        "ExpiredToken",
        "ExpiredTokenException",
        "InvalidClientTokenId",
        "UnrecognizedClientException",
        "AccessDeniedException",
        "AccessDenied",
        "SignatureDoesNotMatch",
    ],
    "throttling_errors": [
        "ThrottlingException",
        "Throttling",
        "TooManyRequestsException",
        "RequestLimitExceeded",
        "LimitExceededException",
    ],
    "transient_errors": [
        "ServiceUnavailableException",
        "ServiceUnavailable",
        "InternalFailure",
        "InternalServerError",
        "RequestTimeout",
        "RequestTimeoutException",
    ],
    "permanent_errors": [
        "ResourceNotFoundException",
        "InvalidParameterException",
        "ValidationException",
        "MissingParameter",
    ],
}


def classify_aws_error_code(error_code: str) -> ErrorCategory:
    """
    Classify an AWS error code into an ErrorCategory.

    Args:
        error_code: Value of ``response["Error"]["Code"]``

    Returns:
        ErrorCategory; UNKNOWN for codes not listed above
    """
    if error_code in AWS_ERROR_CODES["auth_errors"]:
        return ErrorCategory.AUTH
    if error_code in AWS_ERROR_CODES["throttling_errors"]:
        return ErrorCategory.TRANSIENT
    if error_code in AWS_ERROR_CODES["transient_errors"]:
        return ErrorCategory.TRANSIENT
    if error_code in AWS_ERROR_CODES["permanent_errors"]:
        return ErrorCategory.PERMANENT
    return ErrorCategory.UNKNOWN


def get_aws_error_code(exc: Exception) -> str | None:
    """Extract the AWS error code from a botocore ClientError, if present."""
    response = getattr(exc, "response", None)
    if not isinstance(response, dict):
        return None
    return response.get("Error", {}).get("Code")


def classify_aws_error(exc: Exception) -> ErrorCategory | None:
    """
    Classify a botocore exception.

    Returns None when the exception is not a botocore error so callers can
    fall back to generic classification.
    """
    from botocore.exceptions import (
        BotoCoreError,
        ClientError,
        ConnectionError as BotoConnectionError,
        NoCredentialsError,
        PartialCredentialsError,
    )

    if isinstance(exc, ClientError):
        code = get_aws_error_code(exc) or ""
        category = classify_aws_error_code(code)
        if category != ErrorCategory.UNKNOWN:
            return category
        status = exc.response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if isinstance(status, int) and status >= 500:
            return ErrorCategory.TRANSIENT
        return ErrorCategory.UNKNOWN

    if isinstance(exc, (NoCredentialsError, PartialCredentialsError)):
        return ErrorCategory.AUTH

    if isinstance(exc, BotoConnectionError):
        return ErrorCategory.TRANSIENT

    if isinstance(exc, BotoCoreError):
        return ErrorCategory.UNKNOWN

    return None


def is_throttling_code(error_code: str | None) -> bool:
    return error_code in AWS_ERROR_CODES["throttling_errors"]


__all__ = [
    "AWS_ERROR_CODES",
    "classify_aws_error_code",
    "classify_aws_error",
    "get_aws_error_code",
    "is_throttling_code",
]
