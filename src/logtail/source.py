"""
CloudWatch Logs access.

boto3 is synchronous; every API call runs in a worker thread through
asyncio.to_thread and is bounded by request_timeout on top of botocore's
own connect/read timeouts. An optional shared RateLimiter caps the request
rate of all tailers together.

Credentials come from exactly one source, in this order:
    1. Named profile (aws.profile)
    2. Assumed IAM role (aws.role_arn), refreshed before expiry
    3. Static access key pair (aws.access_key / aws.secret_key)
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import boto3
from botocore.config import Config as BotocoreConfig
from botocore.credentials import DeferredRefreshableCredentials
from botocore.session import get_session

from config.config import AWSConfig
from core.errors.exceptions import ConfigurationError, SourceError, wrap_exception
from core.resilience.rate_limiter import RateLimiter
from core.resilience.retry import DISCOVERY_RETRY, with_retry_async
from logtail.models import Batch, Event, StreamID

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30.0
ROLE_SESSION_NAME = "logtail"

logger = logging.getLogger(__name__)


def create_boto_session(aws: AWSConfig) -> boto3.Session:
    """Build a boto3 session from the configured credential source.

    Raises:
        ConfigurationError: No usable credential source is configured
    """
    source = aws.credential_source

    if source == "profile":
        session = boto3.Session(profile_name=aws.profile, region_name=aws.region)
    elif source == "role":
        session = _assumed_role_session(aws)
    elif source == "static":
        session = boto3.Session(
            aws_access_key_id=aws.access_key,
            aws_secret_access_key=aws.secret_key,
            aws_session_token=aws.session_token or None,
            region_name=aws.region,
        )
    else:
        raise ConfigurationError(
            "No AWS credentials configured: set aws.profile, aws.role_arn, "
            "or aws.access_key and aws.secret_key"
        )

    logger.info(
        "AWS session created",
        extra={"operation": "create_boto_session", "backend": source},
    )
    return session


def _assumed_role_session(aws: AWSConfig) -> boto3.Session:
    """Session whose credentials come from sts:AssumeRole and refresh themselves."""
    sts = boto3.Session(region_name=aws.region).client("sts")

    def refresh() -> dict[str, str]:
        response = sts.assume_role(
            RoleArn=aws.role_arn,
            RoleSessionName=f"{ROLE_SESSION_NAME}-{int(time.time())}",
        )
        credentials = response["Credentials"]
        expiration = credentials["Expiration"]
        return {
            "access_key": credentials["AccessKeyId"],
            "secret_key": credentials["SecretAccessKey"],
            "token": credentials["SessionToken"],
            "expiry_time": (
                expiration.isoformat() if isinstance(expiration, datetime) else str(expiration)
            ),
        }

    botocore_session = get_session()
    # botocore has no public setter for refreshable credentials
    botocore_session._credentials = DeferredRefreshableCredentials(
        refresh_using=refresh, method="sts-assume-role"
    )
    botocore_session.set_config_variable("region", aws.region)
    return boto3.Session(botocore_session=botocore_session)


@dataclass(frozen=True)
class EventPage:
    """One GetLogEvents response."""

    events: Batch
    next_forward_token: str | None


class CloudWatchLogsClient:
    """Async facade over the boto3 ``logs`` client."""

    def __init__(
        self,
        session: boto3.Session,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        rate_limiter: RateLimiter | None = None,
        endpoint_url: str | None = None,
        max_pool_connections: int = 50,
        client: Any = None,
    ):
        self.request_timeout = request_timeout
        self._rate_limiter = rate_limiter
        if client is None:
            boto_config = BotocoreConfig(
                connect_timeout=min(10.0, request_timeout),
                read_timeout=request_timeout,
                retries={"max_attempts": 3, "mode": "standard"},
                max_pool_connections=max_pool_connections,
            )
            # boto3 clients are thread-safe; sessions are not, so build it here
            client = session.client("logs", config=boto_config, endpoint_url=endpoint_url or None)
        self._client = client

    async def _call(self, operation: str, **params: Any) -> dict[str, Any]:
        if self._rate_limiter is not None:
            await self._rate_limiter.acquire()

        method = getattr(self._client, operation)
        context = {"operation": operation, "log_group": params.get("logGroupName")}
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(method, **params), timeout=self.request_timeout
            )
        except TimeoutError as e:
            raise SourceError(
                f"{operation} timed out after {self.request_timeout}s",
                cause=e,
                context=context,
            ) from e
        except Exception as e:
            raise wrap_exception(e, default_class=SourceError, context=context) from e

    @with_retry_async(config=DISCOVERY_RETRY)
    async def describe_log_streams_page(
        self,
        log_group: str,
        prefix: str = "",
        next_token: str | None = None,
    ) -> tuple[list[StreamID], str | None]:
        params: dict[str, Any] = {"logGroupName": log_group}
        # The API rejects an empty prefix
        if prefix:
            params["logStreamNamePrefix"] = prefix
        if next_token:
            params["nextToken"] = next_token

        response = await self._call("describe_log_streams", **params)
        names = [stream["logStreamName"] for stream in response.get("logStreams", [])]
        return names, response.get("nextToken")

    async def iter_log_streams(self, log_group: str, prefix: str = "") -> AsyncIterator[StreamID]:
        """Yield stream names page by page until there is no nextToken."""
        next_token = None
        while True:
            names, next_token = await self.describe_log_streams_page(log_group, prefix, next_token)
            for name in names:
                yield name
            if not next_token:
                return

    async def get_log_events(
        self,
        log_group: str,
        stream_id: StreamID,
        start_time: int,
        limit: int,
        next_token: str | None = None,
    ) -> EventPage:
        """Read forward from start_time (inclusive), or from next_token when given."""
        params: dict[str, Any] = {
            "logGroupName": log_group,
            "logStreamName": stream_id,
            "startTime": start_time,
            "startFromHead": True,
            "limit": limit,
        }
        if next_token:
            params["nextToken"] = next_token

        response = await self._call("get_log_events", **params)
        events = tuple(
            Event(
                timestamp=raw["timestamp"],
                message=raw.get("message", ""),
                ingestion_time=raw.get("ingestionTime"),
                log_group=log_group,
                stream_id=stream_id,
            )
            for raw in response.get("events", [])
        )
        return EventPage(events=events, next_forward_token=response.get("nextForwardToken"))


__all__ = [
    "CloudWatchLogsClient",
    "EventPage",
    "create_boto_session",
]
