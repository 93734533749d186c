"""
Tests for AWS error classification.
"""

from botocore.exceptions import (
    ClientError,
    EndpointConnectionError,
    NoCredentialsError,
    ParamValidationError,
)

from core.errors import (
    AWS_ERROR_CODES,
    AuthError,
    PermanentError,
    SourceError,
    ThrottlingError,
    classify_aws_error,
    classify_aws_error_code,
    get_aws_error_code,
    wrap_exception,
)
from core.errors.classifiers import is_throttling_code
from core.errors.exceptions import classify_exception
from core.types import ErrorCategory


def client_error(code: str, status: int = 400, operation: str = "GetLogEvents") -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": f"{code} happened"},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        operation,
    )


class TestAWSErrorCodeClassification:
    def test_auth_codes(self):
        for code in AWS_ERROR_CODES["auth_errors"]:
            assert classify_aws_error_code(code) == ErrorCategory.AUTH, code

    def test_throttling_codes_are_transient(self):
        for code in AWS_ERROR_CODES["throttling_errors"]:
            assert classify_aws_error_code(code) == ErrorCategory.TRANSIENT, code
            assert is_throttling_code(code)

    def test_transient_codes(self):
        for code in AWS_ERROR_CODES["transient_errors"]:
            assert classify_aws_error_code(code) == ErrorCategory.TRANSIENT, code

    def test_permanent_codes(self):
        for code in AWS_ERROR_CODES["permanent_errors"]:
            assert classify_aws_error_code(code) == ErrorCategory.PERMANENT, code

    def test_unknown_code(self):
        assert classify_aws_error_code("SomethingNew") == ErrorCategory.UNKNOWN
        assert not is_throttling_code(None)


class TestClassifyAWSError:
    def test_get_error_code(self):
        assert get_aws_error_code(client_error("ThrottlingException")) == "ThrottlingException"
        assert get_aws_error_code(ValueError("no response")) is None

    def test_client_error_by_code(self):
        assert classify_aws_error(client_error("ResourceNotFoundException")) == ErrorCategory.PERMANENT
        assert classify_aws_error(client_error("ExpiredTokenException", 403)) == ErrorCategory.AUTH

    def test_unlisted_code_with_5xx_is_transient(self):
        assert classify_aws_error(client_error("Oops", 503)) == ErrorCategory.TRANSIENT

    def test_unlisted_code_with_4xx_is_unknown(self):
        assert classify_aws_error(client_error("Oops", 400)) == ErrorCategory.UNKNOWN

    def test_no_credentials_is_auth(self):
        assert classify_aws_error(NoCredentialsError()) == ErrorCategory.AUTH

    def test_endpoint_connection_is_transient(self):
        err = EndpointConnectionError(endpoint_url="https://logs.us-east-1.amazonaws.com")
        assert classify_aws_error(err) == ErrorCategory.TRANSIENT

    def test_other_botocore_error_is_unknown(self):
        assert classify_aws_error(ParamValidationError(report="bad")) == ErrorCategory.UNKNOWN

    def test_non_botocore_returns_none(self):
        assert classify_aws_error(ValueError("x")) is None


class TestWrapAWSErrors:
    """wrap_exception picks the right class for botocore failures."""

    def test_throttling_client_error(self):
        wrapped = wrap_exception(client_error("ThrottlingException"), default_class=SourceError)
        assert isinstance(wrapped, ThrottlingError)

    def test_expired_token(self):
        wrapped = wrap_exception(client_error("ExpiredTokenException", 400), default_class=SourceError)
        assert isinstance(wrapped, AuthError)

    def test_missing_log_group(self):
        wrapped = wrap_exception(client_error("ResourceNotFoundException"), default_class=SourceError)
        assert isinstance(wrapped, PermanentError)

    def test_service_unavailable_becomes_source_error(self):
        wrapped = wrap_exception(client_error("ServiceUnavailableException", 503), default_class=SourceError)
        assert isinstance(wrapped, SourceError)
        assert classify_exception(wrapped) == ErrorCategory.TRANSIENT
