"""Resolve a LogSource into the concrete streams to tail."""

import logging

from core.errors.exceptions import DiscoveryError, PipelineError
from core.logging.context_managers import log_operation
from logtail.models import LogSource, StreamID
from logtail.source import CloudWatchLogsClient


class StreamDiscoverer:
    """Enumerates log streams once, at startup."""

    def __init__(
        self,
        client: CloudWatchLogsClient,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._client = client
        self._logger = logger or logging.getLogger(__name__)

    async def discover(self, source: LogSource) -> list[StreamID]:
        """
        List every stream in the source's log group whose name starts with
        the source's prefix.

        Paginates until the API stops returning a token. The prefix is
        re-checked locally and duplicates across pages are dropped, keeping
        first-seen order.

        Raises:
            DiscoveryError: Streams could not be enumerated
        """
        streams: list[StreamID] = []
        seen: set[StreamID] = set()

        try:
            with log_operation(
                self._logger,
                "discover_streams",
                level=logging.INFO,
                log_group=source.log_group,
                service=source.service,
            ) as op:
                async for name in self._client.iter_log_streams(
                    source.log_group, source.stream_prefix
                ):
                    if not name.startswith(source.stream_prefix) or name in seen:
                        continue
                    seen.add(name)
                    streams.append(name)
                op.add_context(stream_count=len(streams))
        except PipelineError as e:
            raise DiscoveryError(
                f"Failed to list log streams for {source.log_group}",
                cause=e,
                context={"service": source.service, "log_group": source.log_group},
                category=e.category,
            ) from e

        if not streams:
            self._logger.warning(
                "No log streams matched",
                extra={
                    "service": source.service,
                    "log_group": source.log_group,
                    "stream_count": 0,
                },
            )
        return streams
