"""
Tailer: follows one log stream and checkpoints its progress.

State machine, one asyncio task per stream:

    INIT        load the cursor (stored value, or now - fallback)
    POLL        read the next page from the cursor; on error back off and
                poll the same position again; on an empty page wait
                idle_delay and poll again without writing a checkpoint
    EMIT        hand the page to the sink in source order
    CHECKPOINT  save the advanced cursor; a failed save is logged only

Delivery is at least once. A restart resumes from the last saved cursor and
reads it inclusively, so everything after that checkpoint (and the boundary
event itself) is delivered again; nothing after it is skipped.

All waits go through the shutdown event, so idle and backoff pauses end as
soon as shutdown is requested.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import timedelta
from enum import Enum

from config.config import SinkFailurePolicy, TailerSettings
from core.errors.exceptions import OffsetStoreError, wrap_exception
from core.logging.context import set_log_context
from core.logging.utilities import StreamLoggerAdapter, log_exception
from logtail.models import Batch, Cursor, LogSource, StreamID, advance_cursor
from logtail.offsets.base import OffsetStore
from logtail.sinks import Sink
from logtail.source import CloudWatchLogsClient, EventPage


class TailerState(str, Enum):
    INIT = "init"
    POLL = "poll"
    RETRY_BACKOFF = "retry_backoff"
    EMIT = "emit"
    CHECKPOINT = "checkpoint"
    STOPPED = "stopped"
    FAILED = "failed"


@dataclass
class TailerStats:
    polls: int = 0
    events: int = 0
    batches: int = 0
    errors: int = 0
    sink_errors: int = 0
    saves: int = 0
    failed_saves: int = 0


class Tailer:
    """Tails a single stream from its checkpoint onward."""

    def __init__(
        self,
        source: LogSource,
        stream_id: StreamID,
        client: CloudWatchLogsClient,
        store: OffsetStore,
        sink: Sink,
        settings: TailerSettings,
        fallback: timedelta,
        shutdown_event: asyncio.Event | None = None,
        logger: logging.Logger | None = None,
    ):
        self.source = source
        self.stream_id = stream_id
        self.key = source.checkpoint_key(stream_id)
        self._client = client
        self._store = store
        self._sink = sink
        self._settings = settings
        self._fallback = fallback
        self._shutdown = shutdown_event or asyncio.Event()
        self._logger = StreamLoggerAdapter(
            logger or logging.getLogger(__name__),
            {
                "service": source.service,
                "log_group": source.log_group,
                "stream_id": stream_id,
                "checkpoint_key": self.key,
            },
        )

        self.state = TailerState.INIT
        self.cursor: Cursor | None = None
        self._next_token: str | None = None
        self._stats = TailerStats()

    @property
    def name(self) -> str:
        return f"tail:{self.source.log_group}:{self.stream_id}"

    @property
    def stats(self) -> dict:
        return {**asdict(self._stats), "cursor": self.cursor, "state": self.state.value}

    def stop(self) -> None:
        """Ask the tailer to finish at its next state boundary."""
        self._shutdown.set()

    async def run(self) -> None:
        """Run until shutdown. Returns early, in FAILED state, if the cursor cannot be loaded."""
        set_log_context(
            service=self.source.service,
            log_group=self.source.log_group,
            stream_id=self.stream_id,
        )
        try:
            if await self._init():
                await self._loop()
        finally:
            if self.state is not TailerState.FAILED:
                self.state = TailerState.STOPPED
            self._logger.info(
                "Tailer stopped",
                extra={"state": self.state.value, "cursor": self.cursor, "event_count": self._stats.events},
            )

    async def _init(self) -> bool:
        self.state = TailerState.INIT
        try:
            self.cursor = await self._store.load(self.key, self._fallback)
        except OffsetStoreError as e:
            # Guessing a start position would replay or skip an unknown span
            self.state = TailerState.FAILED
            log_exception(
                self._logger,
                e,
                "Failed to load checkpoint, not tailing this stream",
                level=logging.CRITICAL,
            )
            return False

        self._logger.info("Tailer started", extra={"cursor": self.cursor})
        return True

    async def _loop(self) -> None:
        backoff_attempt = 0

        while not self._shutdown.is_set():
            self.state = TailerState.POLL
            try:
                page = await self._poll()
            except Exception as e:
                backoff_attempt += 1
                await self._backoff(e, backoff_attempt)
                continue
            backoff_attempt = 0

            if not page.events:
                await self._sleep(self._settings.idle_delay_seconds)
                continue

            if self._shutdown.is_set():
                # Not emitted and not saved: the next run polls these again
                break

            previous = self.cursor
            self.cursor = advance_cursor(self.cursor, page.events)
            self._logger.debug(
                "Fetched events",
                extra={
                    "event_count": len(page.events),
                    "previous_cursor": previous,
                    "cursor": self.cursor,
                },
            )

            self.state = TailerState.EMIT
            if not await self._emit(page.events):
                break

            self.state = TailerState.CHECKPOINT
            await self._checkpoint()

    async def _poll(self) -> EventPage:
        self._stats.polls += 1
        page = await self._client.get_log_events(
            self.source.log_group,
            self.stream_id,
            start_time=self.cursor,
            limit=self._settings.page_size,
            next_token=self._next_token,
        )
        # In-memory only; a restart resumes from the saved cursor
        self._next_token = page.next_forward_token
        self._stats.events += len(page.events)
        return page

    async def _backoff(self, error: Exception, attempt: int) -> None:
        self.state = TailerState.RETRY_BACKOFF
        self._stats.errors += 1
        wrapped = wrap_exception(error)
        delay = self._settings.retry.get_delay(attempt - 1, wrapped)
        log_exception(
            self._logger,
            wrapped,
            "Error getting log events, retrying",
            level=logging.WARNING,
            include_traceback=False,
            attempt=attempt,
            delay_seconds=round(delay, 2),
            cursor=self.cursor,
        )
        await self._sleep(delay)

    async def _emit(self, batch: Batch) -> bool:
        """Deliver a batch per the sink failure policy.

        Returns False only when the retry policy was interrupted by shutdown
        before the sink accepted the batch; the cursor must not be saved then.
        """
        attempt = 0
        while True:
            try:
                await self._sink.emit(self.stream_id, batch)
            except Exception as e:
                self._stats.sink_errors += 1
                if self._settings.sink_failure_policy is SinkFailurePolicy.ADVANCE:
                    log_exception(
                        self._logger,
                        e,
                        "Sink rejected batch, advancing past it",
                        batch_size=len(batch),
                        cursor=self.cursor,
                        sink_type=getattr(self._sink, "name", None),
                    )
                    return True

                attempt += 1
                delay = self._settings.retry.get_delay(attempt - 1, e)
                log_exception(
                    self._logger,
                    e,
                    "Sink rejected batch, retrying",
                    level=logging.WARNING,
                    include_traceback=False,
                    attempt=attempt,
                    delay_seconds=round(delay, 2),
                    batch_size=len(batch),
                    sink_type=getattr(self._sink, "name", None),
                )
                await self._sleep(delay)
                if self._shutdown.is_set():
                    self._logger.warning(
                        "Shutdown before sink accepted batch, checkpoint not saved",
                        extra={"batch_size": len(batch), "cursor": self.cursor},
                    )
                    return False
                continue

            self._stats.batches += 1
            return True

    async def _checkpoint(self) -> None:
        try:
            await self._store.save(self.key, self.cursor)
        except Exception as e:
            # The in-memory cursor stays advanced; a crash now replays since the last good save
            self._stats.failed_saves += 1
            log_exception(
                self._logger,
                e,
                "Failed to save checkpoint",
                level=logging.WARNING,
                include_traceback=False,
                cursor=self.cursor,
            )
            return
        self._stats.saves += 1

    async def _sleep(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._shutdown.wait(), timeout=seconds)
        except TimeoutError:
            pass
