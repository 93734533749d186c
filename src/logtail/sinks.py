"""
Event sinks: where tailed events go.

A sink receives one ordered batch per call and either accepts all of it or
raises SinkError. Nothing is buffered across calls: when emit() returns,
the batch has been written, flushed or acknowledged. One sink instance is
shared by every tailer of a service, so implementations must tolerate
concurrent emit() calls.
"""

import asyncio
import hashlib
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any, Protocol, TextIO, runtime_checkable

import aiohttp
from aiokafka import AIOKafkaProducer

from config.config import (
    DestinationConfig,
    ElasticsearchDestination,
    FileDestination,
    KafkaDestination,
    StdoutDestination,
)
from core.errors.exceptions import (
    ConfigurationError,
    SinkError,
    classify_exception,
    classify_http_status,
)
from core.utils.json_serializers import json_serializer
from logtail.kafka_config import build_kafka_security_config
from logtail.models import Batch, Event, StreamID

logger = logging.getLogger(__name__)


@runtime_checkable
class Sink(Protocol):
    """Destination for batches of events from one stream."""

    name: str

    async def start(self) -> None:
        """Open files or connections."""
        ...

    async def stop(self) -> None:
        """Flush and close."""
        ...

    async def emit(self, stream_id: StreamID, batch: Batch) -> None:
        """
        Deliver a batch, keeping its order.

        Raises:
            SinkError: The batch was not (fully) accepted
        """
        ...


def _event_record(event: Event) -> dict[str, Any]:
    return event.model_dump()


class StdoutSink:
    """Prints ``[<stream_id>] <message>`` per event."""

    name = "stdout"

    def __init__(self, stream: TextIO | None = None):
        self._stream = stream
        self._lock = asyncio.Lock()
        self.events_written = 0

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def emit(self, stream_id: StreamID, batch: Batch) -> None:
        out = self._stream or sys.stdout
        lines = [f"[{stream_id}] {event.message.rstrip()}" for event in batch]
        text = "\n".join(lines) + "\n"
        async with self._lock:
            try:
                out.write(text)
                out.flush()
            except (OSError, ValueError) as e:
                raise SinkError("Failed to write to stdout", cause=e) from e
        self.events_written += len(batch)


class JsonFileSink:
    """
    Appends events as JSON lines to one file.

    One write per batch, followed by flush and fsync, so a batch is on disk
    before emit() returns.
    """

    name = "file"

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._file = None
        self._lock = asyncio.Lock()
        self.events_written = 0

    async def start(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self.path, "a", encoding="utf-8")
        logger.info("JsonFileSink started", extra={"sink_type": self.name, "path": str(self.path)})

    async def stop(self) -> None:
        async with self._lock:
            if self._file is not None:
                self._file.close()
                self._file = None
        logger.info(
            "JsonFileSink stopped",
            extra={"sink_type": self.name, "path": str(self.path), "event_count": self.events_written},
        )

    async def emit(self, stream_id: StreamID, batch: Batch) -> None:
        if self._file is None:
            raise RuntimeError("JsonFileSink not started. Call start() first.")

        content = "".join(
            json.dumps(_event_record(event), default=json_serializer, ensure_ascii=False) + "\n"
            for event in batch
        )
        async with self._lock:
            try:
                await asyncio.to_thread(self._write, content)
            except OSError as e:
                raise SinkError(
                    f"Failed to write batch to {self.path}",
                    cause=e,
                    context={"path": str(self.path), "stream_id": stream_id},
                    category=classify_exception(e),
                ) from e
        self.events_written += len(batch)

    def _write(self, content: str) -> None:
        self._file.write(content)
        self._file.flush()
        os.fsync(self._file.fileno())


class KafkaSink:
    """
    Produces each event to a Kafka topic, keyed by stream ID.

    Every record of the batch is enqueued first, then all deliveries are
    awaited. Records with the same key land on the same partition, so
    per-stream order is kept.
    """

    name = "kafka"

    def __init__(self, settings: KafkaDestination):
        self.settings = settings
        self.topic = settings.topic
        self._producer: AIOKafkaProducer | None = None
        self.events_written = 0

    async def start(self) -> None:
        if self._producer is not None:
            return
        producer_config: dict[str, Any] = {
            "bootstrap_servers": self.settings.bootstrap_servers,
            "acks": self.settings.acks,
            "value_serializer": lambda v: v,
        }
        if self.settings.compression_type:
            producer_config["compression_type"] = self.settings.compression_type
        producer_config.update(build_kafka_security_config(self.settings))

        self._producer = AIOKafkaProducer(**producer_config)
        await self._producer.start()
        logger.info(
            "KafkaSink started",
            extra={"sink_type": self.name, "topic": self.topic},
        )

    async def stop(self) -> None:
        if self._producer is None:
            return
        try:
            await self._producer.flush()
        finally:
            await self._producer.stop()
            self._producer = None
        logger.info("KafkaSink stopped", extra={"sink_type": self.name, "topic": self.topic})

    async def emit(self, stream_id: StreamID, batch: Batch) -> None:
        if self._producer is None:
            raise RuntimeError("KafkaSink not started. Call start() first.")

        key = stream_id.encode("utf-8")
        try:
            deliveries = [
                await self._producer.send(
                    self.topic, key=key, value=event.model_dump_json().encode("utf-8")
                )
                for event in batch
            ]
            await asyncio.gather(*deliveries)
        except Exception as e:
            raise SinkError(
                f"Failed to produce batch to {self.topic}",
                cause=e,
                context={"topic": self.topic, "stream_id": stream_id},
                category=classify_exception(e),
            ) from e
        self.events_written += len(batch)


class ElasticsearchSink:
    """
    Indexes events through the ``_bulk`` API.

    Document IDs are derived from the event's stream, timestamp and message,
    so a batch redelivered after a restart overwrites rather than duplicates.
    Any per-item error fails the whole batch.
    """

    name = "elasticsearch"

    def __init__(self, settings: ElasticsearchDestination, session: aiohttp.ClientSession | None = None):
        self.settings = settings
        self.index = settings.index
        self._session = session
        self._owns_session = session is None
        self.events_written = 0

    async def start(self) -> None:
        if self._session is not None and not self._session.closed:
            return
        headers = {"Content-Type": "application/x-ndjson"}
        auth = None
        if self.settings.api_key:
            headers["Authorization"] = f"ApiKey {self.settings.api_key}"
        elif self.settings.username:
            auth = aiohttp.BasicAuth(self.settings.username, self.settings.password)

        self._session = aiohttp.ClientSession(
            headers=headers,
            auth=auth,
            timeout=aiohttp.ClientTimeout(total=self.settings.timeout_seconds),
            connector=aiohttp.TCPConnector(ssl=None if self.settings.verify_ssl else False),
        )
        self._owns_session = True
        logger.info(
            "ElasticsearchSink started",
            extra={"sink_type": self.name, "destination": self.index, "address": self.settings.url},
        )

    async def stop(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    @staticmethod
    def document_id(event: Event) -> str:
        digest = hashlib.sha256()
        for part in (event.log_group, event.stream_id, str(event.timestamp), event.message):
            digest.update(part.encode("utf-8"))
            digest.update(b"\x00")
        return digest.hexdigest()[:40]

    def _bulk_body(self, batch: Batch) -> str:
        lines = []
        for event in batch:
            lines.append(json.dumps({"index": {"_index": self.index, "_id": self.document_id(event)}}))
            lines.append(json.dumps(_event_record(event), default=json_serializer, ensure_ascii=False))
        return "\n".join(lines) + "\n"

    async def emit(self, stream_id: StreamID, batch: Batch) -> None:
        if self._session is None:
            raise RuntimeError("ElasticsearchSink not started. Call start() first.")

        url = f"{self.settings.url}/_bulk"
        context = {"destination": self.index, "stream_id": stream_id}
        try:
            async with self._session.post(url, data=self._bulk_body(batch).encode("utf-8")) as response:
                if response.status >= 300:
                    body = (await response.text())[:500]
                    raise SinkError(
                        f"Bulk request returned HTTP {response.status}: {body}",
                        context={**context, "http_status": response.status},
                        category=classify_http_status(response.status),
                    )
                result = await response.json(content_type=None)
        except SinkError:
            raise
        except (aiohttp.ClientError, TimeoutError, ValueError) as e:
            raise SinkError(
                f"Bulk request to {self.settings.url} failed",
                cause=e,
                context=context,
                category=classify_exception(e),
            ) from e

        if result.get("errors"):
            failures = [
                item.get("index", {}).get("error")
                for item in result.get("items", [])
                if item.get("index", {}).get("error")
            ]
            raise SinkError(
                f"{len(failures)} of {len(batch)} documents rejected: {failures[0] if failures else 'unknown'}",
                context=context,
            )
        self.events_written += len(batch)


def create_sink(destination: DestinationConfig) -> Sink:
    """Create (but do not start) the sink for a destination config.

    Raises:
        ConfigurationError: No sink exists for this destination type
    """
    if isinstance(destination, StdoutDestination):
        return StdoutSink()
    if isinstance(destination, FileDestination):
        return JsonFileSink(destination.path)
    if isinstance(destination, KafkaDestination):
        return KafkaSink(destination)
    if isinstance(destination, ElasticsearchDestination):
        return ElasticsearchSink(destination)
    raise ConfigurationError(f"No sink for destination {type(destination).__name__}")


__all__ = [
    "Sink",
    "StdoutSink",
    "JsonFileSink",
    "KafkaSink",
    "ElasticsearchSink",
    "create_sink",
]
