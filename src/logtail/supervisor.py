"""
Supervisor: wires configuration into running tailers.

Startup:
    1. Start the offset store (shared by all tailers)
    2. Build the CloudWatch client (and shared rate limiter, if enabled)
    3. Start one sink per service
    4. Discover streams per LogSource; a failure skips only that source
    5. Launch one Tailer task per stream, named ``tail:<log_group>:<stream_id>``

Shutdown sets the shared event, gives tailers shutdown_grace_seconds to
reach a state boundary, cancels whatever is still running, then stops sinks
and closes the store.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from config.config import AppConfig, DestinationConfig, ServiceConfig
from core.errors.exceptions import DiscoveryError
from core.logging.context_managers import LogContext
from core.logging.utilities import log_exception
from core.resilience.rate_limiter import RateLimiter
from logtail.discovery import StreamDiscoverer
from logtail.models import LogSource
from logtail.offsets.base import OffsetStore
from logtail.offsets.factory import create_offset_store
from logtail.sinks import Sink, create_sink
from logtail.source import CloudWatchLogsClient, create_boto_session
from logtail.tailer import Tailer, TailerState

logger = logging.getLogger(__name__)


def iter_log_sources(services: list[ServiceConfig]):
    """Flatten services into LogSources, in configuration order."""
    for service in services:
        for log_config in service.log_configs:
            yield LogSource(
                service=service.name,
                log_group=log_config.log_group_name,
                stream_prefix=log_config.log_stream_prefix,
                kv_namespace=service.consul_kv_path,
            )


class Supervisor:
    """Owns every tailer task and the resources they share."""

    def __init__(
        self,
        config: AppConfig,
        store: OffsetStore | None = None,
        client: CloudWatchLogsClient | None = None,
        sink_factory: Callable[[DestinationConfig], Sink] = create_sink,
        shutdown_event: asyncio.Event | None = None,
    ):
        self.config = config
        self._store = store
        self._client = client
        self._sink_factory = sink_factory
        self._shutdown_event = shutdown_event or asyncio.Event()

        self._rate_limiter: RateLimiter | None = None
        self._sinks: dict[str, Sink] = {}
        self._tailers: dict[str, Tailer] = {}
        self._tasks: list[asyncio.Task] = []
        self._started = False
        self._stopped = False

    @property
    def tailers(self) -> list[Tailer]:
        return list(self._tailers.values())

    @property
    def tasks(self) -> list[asyncio.Task]:
        return list(self._tasks)

    @property
    def stats(self) -> dict[str, Any]:
        tailers = {key: tailer.stats for key, tailer in self._tailers.items()}
        states: dict[str, int] = {}
        for tailer in self._tailers.values():
            states[tailer.state.value] = states.get(tailer.state.value, 0) + 1
        stats: dict[str, Any] = {
            "tailer_count": len(self._tailers),
            "states": states,
            "tailers": tailers,
            "events_written": {
                name: getattr(sink, "events_written", None) for name, sink in self._sinks.items()
            },
        }
        if self._rate_limiter is not None:
            stats["rate_limiter"] = self._rate_limiter.get_stats()
        return stats

    def request_shutdown(self) -> None:
        if not self._shutdown_event.is_set():
            logger.info("Shutdown requested")
            self._shutdown_event.set()

    def force_shutdown(self) -> None:
        """Cancel every tailer without waiting for a state boundary."""
        self._shutdown_event.set()
        for task in self._tasks:
            if not task.done():
                task.cancel()

    async def start(self) -> None:
        if self._started:
            return
        self._started = True

        settings = self.config.tailer

        if self._store is None:
            self._store = create_offset_store(
                self.config.offset_store,
                request_timeout=settings.request_timeout_seconds,
            )
        await self._store.start()

        if self._client is None:
            if settings.rate_limit.enabled:
                self._rate_limiter = RateLimiter(settings.rate_limit)
            self._client = CloudWatchLogsClient(
                create_boto_session(self.config.aws),
                request_timeout=settings.request_timeout_seconds,
                rate_limiter=self._rate_limiter,
                endpoint_url=self.config.aws.endpoint_url or None,
            )

        for service in self.config.services:
            sink = self._sink_factory(service.destination)
            try:
                await sink.start()
            except Exception as e:
                # Same isolation as discovery: other services keep tailing
                log_exception(
                    logger,
                    e,
                    "Sink failed to start, skipping service",
                    include_traceback=False,
                    service=service.name,
                    sink_type=service.destination.type.value,
                )
                continue
            self._sinks[service.name] = sink

        discoverer = StreamDiscoverer(self._client, logger=logger)
        for source in iter_log_sources(self.config.services):
            if source.service not in self._sinks:
                continue
            with LogContext(service=source.service, log_group=source.log_group, stage="discovery"):
                try:
                    streams = await discoverer.discover(source)
                except DiscoveryError as e:
                    log_exception(
                        logger,
                        e,
                        "Stream discovery failed, skipping log source",
                        include_traceback=False,
                        service=source.service,
                        log_group=source.log_group,
                    )
                    continue

            for stream_id in streams:
                self._launch(source, stream_id)

        logger.info(
            "Supervisor started",
            extra={"tailer_count": len(self._tailers), "backend": getattr(self._store, "backend", None)},
        )

    def _launch(self, source: LogSource, stream_id: str) -> None:
        key = source.checkpoint_key(stream_id)
        if key in self._tailers:
            # Two tailers on one key would overwrite each other's cursor
            logger.warning(
                "Stream already tailed under this checkpoint key, skipping",
                extra={
                    "service": source.service,
                    "log_group": source.log_group,
                    "stream_id": stream_id,
                    "checkpoint_key": key,
                },
            )
            return

        tailer = Tailer(
            source=source,
            stream_id=stream_id,
            client=self._client,
            store=self._store,
            sink=self._sinks[source.service],
            settings=self.config.tailer,
            fallback=self.config.fallback_duration,
            shutdown_event=self._shutdown_event,
        )
        self._tailers[key] = tailer
        task = asyncio.create_task(tailer.run(), name=tailer.name)
        task.add_done_callback(self._on_task_done)
        self._tasks.append(task)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Tailer task crashed",
                extra={"operation": task.get_name(), "error_type": type(exc).__name__, "error_message": str(exc)},
                exc_info=exc,
            )

    async def run(self) -> None:
        """Start everything, then block until shutdown is requested or every tailer has ended."""
        try:
            await self.start()
            if not self._tasks:
                logger.error("No streams to tail, exiting")
                return

            shutdown_wait = asyncio.create_task(self._shutdown_event.wait())
            pending = set(self._tasks)
            try:
                while pending and not shutdown_wait.done():
                    _, pending = await asyncio.wait(
                        pending | {shutdown_wait}, return_when=asyncio.FIRST_COMPLETED
                    )
                    pending.discard(shutdown_wait)
            finally:
                shutdown_wait.cancel()
        finally:
            await self.shutdown()

    async def shutdown(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        self._shutdown_event.set()

        grace = self.config.shutdown_grace_seconds
        pending = [task for task in self._tasks if not task.done()]
        if pending:
            logger.info(
                "Waiting for tailers to stop",
                extra={"tailer_count": len(pending), "grace_seconds": grace},
            )
            _, still_running = await asyncio.wait(pending, timeout=grace)
            if still_running:
                logger.warning(
                    "Tailers did not stop within grace period, cancelling",
                    extra={"tailer_count": len(still_running), "grace_seconds": grace},
                )
                for task in still_running:
                    task.cancel()
                await asyncio.gather(*still_running, return_exceptions=True)

        for name, sink in self._sinks.items():
            try:
                await sink.stop()
            except Exception as e:
                log_exception(logger, e, "Failed to stop sink", service=name, sink_type=sink.name)

        if self._store is not None:
            try:
                await self._store.close()
            except Exception as e:
                log_exception(logger, e, "Failed to close offset store")

        failed = sum(1 for tailer in self._tailers.values() if tailer.state is TailerState.FAILED)
        logger.info(
            "Supervisor stopped",
            extra={
                "tailer_count": len(self._tailers),
                "event_count": sum(tailer.stats["events"] for tailer in self._tailers.values()),
                "error_count": failed,
            },
        )
