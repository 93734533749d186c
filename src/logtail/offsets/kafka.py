"""Compacted Kafka topic offset store.

Each save produces one record: key = checkpoint key, value = cursor digits.
With ``cleanup.policy=compact`` the topic retains the latest record per key,
so the topic as a whole is the checkpoint table.

Reads are served from an in-memory index. The index is built once, on the
first load, by reading every partition from the beginning up to the end
offsets captured at that moment; later records replace earlier ones and a
record with a null value (tombstone) removes its key. Saves update the index
after the broker acknowledges the write, so a load that follows a save in
this process sees the saved value.

Assumes this process is the only writer for its keys, which holds because
each checkpoint key belongs to exactly one tailer.
"""

import asyncio

from aiokafka import AIOKafkaConsumer, AIOKafkaProducer, TopicPartition

from core.errors.exceptions import OffsetStoreError
from logtail.kafka_config import build_kafka_security_config
from logtail.offsets.base import BaseOffsetStore


class KafkaOffsetStore(BaseOffsetStore):
    """Cursors kept as the latest value per key of a compacted topic."""

    backend = "kafka"

    def __init__(self, settings, poll_timeout_ms: int = 1000, **kwargs):
        """
        Args:
            settings: KafkaStoreConfig (bootstrap servers, topic, security)
            poll_timeout_ms: getmany() wait while building the index
        """
        super().__init__(**kwargs)
        self.settings = settings
        self.topic = settings.topic
        self.poll_timeout_ms = poll_timeout_ms
        self._producer: AIOKafkaProducer | None = None
        self._index: dict[str, bytes] | None = None
        self._index_lock = asyncio.Lock()

    async def start(self) -> None:
        if self._producer is not None:
            return

        producer = AIOKafkaProducer(
            bootstrap_servers=self.settings.bootstrap_servers,
            acks="all",
            request_timeout_ms=int(self.request_timeout * 1000),
            **build_kafka_security_config(self.settings),
        )
        try:
            await self._call("start", self.topic, producer.start())
        except OffsetStoreError:
            await producer.stop()
            raise
        self._producer = producer
        self._logger.info(
            "Kafka offset store ready",
            extra={
                "backend": self.backend,
                "topic": self.topic,
                "address": self.settings.bootstrap_servers,
            },
        )

    async def close(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
        self._producer = None

    async def _read(self, key: str) -> bytes | None:
        index = await self._ensure_index()
        return index.get(key)

    async def _write(self, key: str, data: bytes) -> None:
        if self._producer is None:
            raise RuntimeError("KafkaOffsetStore not started. Call start() first.")
        index = await self._ensure_index()
        await self._producer.send_and_wait(self.topic, key=key.encode("utf-8"), value=data)
        index[key] = data

    async def _ensure_index(self) -> dict[str, bytes]:
        if self._index is not None:
            return self._index
        async with self._index_lock:
            if self._index is None:
                self._index = await self._build_index()
        return self._index

    async def _build_index(self) -> dict[str, bytes]:
        consumer = AIOKafkaConsumer(
            bootstrap_servers=self.settings.bootstrap_servers,
            group_id=None,
            enable_auto_commit=False,
            auto_offset_reset="earliest",
            **build_kafka_security_config(self.settings),
        )
        await consumer.start()
        try:
            await consumer.topics()
            partitions = consumer.partitions_for_topic(self.topic)
            if not partitions:
                raise OffsetStoreError(
                    f"Checkpoint topic '{self.topic}' does not exist",
                    context={"backend": self.backend, "topic": self.topic},
                )

            assigned = [TopicPartition(self.topic, p) for p in sorted(partitions)]
            consumer.assign(assigned)
            await consumer.seek_to_beginning(*assigned)
            end_offsets = await consumer.end_offsets(assigned)

            index: dict[str, bytes] = {}
            pending = {tp for tp in assigned if end_offsets[tp] > 0}
            while pending:
                batches = await consumer.getmany(*pending, timeout_ms=self.poll_timeout_ms)
                for tp, records in batches.items():
                    for record in records:
                        if record.offset >= end_offsets[tp] or record.key is None:
                            continue
                        key = record.key.decode("utf-8")
                        if record.value is None:
                            index.pop(key, None)
                        else:
                            index[key] = record.value
                for tp in list(pending):
                    if await consumer.position(tp) >= end_offsets[tp]:
                        pending.discard(tp)
        finally:
            await consumer.stop()

        self._logger.info(
            "Loaded checkpoint index from topic",
            extra={"backend": self.backend, "topic": self.topic, "stream_count": len(index)},
        )
        return index
