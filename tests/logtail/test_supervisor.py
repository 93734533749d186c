"""
Tests for the supervisor.

Test Coverage:
    - One named task per discovered stream
    - Discovery or sink start failure skips only the affected source or service
    - Duplicate checkpoint keys are tailed once
    - Graceful shutdown, grace-period cancellation and forced shutdown
    - Exit when every tailer has ended
    - Building the client, rate limiter and store from configuration
"""

import asyncio
import logging
from unittest.mock import MagicMock, patch

import pytest

from config.config import (
    AppConfig,
    AWSConfig,
    LogConfig,
    MemoryStoreConfig,
    ServiceConfig,
)
from core.errors.exceptions import PermanentError
from core.resilience.rate_limiter import RateLimiter, RateLimiterConfig
from fakes import FailingStore, FakeCloudWatchClient, RecordingSink, fast_settings, wait_until
from logtail.models import LogSource
from logtail.offsets.memory import MemoryOffsetStore
from logtail.supervisor import Supervisor, iter_log_sources
from logtail.tailer import TailerState


def service(name="billing", kv="logtail/billing", group="/ecs/billing", prefix="api/"):
    return ServiceConfig(
        name=name,
        consul_kv_path=kv,
        log_configs=[LogConfig(log_group_name=group, log_stream_prefix=prefix)],
    )


def app_config(*services, grace=1.0, **tailer_overrides):
    return AppConfig(
        aws=AWSConfig(region="us-east-1", profile="test"),
        offset_store=MemoryStoreConfig(),
        tailer=fast_settings(**tailer_overrides),
        shutdown_grace_seconds=grace,
        services=list(services) or [service()],
    )


def checkpointed_store(*stream_ids):
    """Billing streams already checkpointed at the epoch."""
    return MemoryOffsetStore(initial={f"logtail/billing/{s}": b"0" for s in stream_ids})


class SinkFactory:
    def __init__(self):
        self.sinks = []

    def __call__(self, destination):
        sink = RecordingSink()
        self.sinks.append(sink)
        return sink


class UnreachableSink(RecordingSink):
    async def start(self):
        raise ConnectionError("kafka broker unreachable")


class PartlyBrokenSinkFactory(SinkFactory):
    """Sinks at the listed creation positions fail to start."""

    def __init__(self, broken):
        super().__init__()
        self.broken = set(broken)

    def __call__(self, destination):
        sink = UnreachableSink() if len(self.sinks) in self.broken else RecordingSink()
        self.sinks.append(sink)
        return sink


class PartlyBrokenClient(FakeCloudWatchClient):
    """Discovery fails for the listed log groups only."""

    def __init__(self, broken_groups, **kwargs):
        super().__init__(**kwargs)
        self.broken_groups = set(broken_groups)

    async def iter_log_streams(self, log_group, prefix=""):
        if log_group in self.broken_groups:
            raise PermanentError(f"log group {log_group} does not exist")
        async for name in super().iter_log_streams(log_group, prefix):
            yield name


class HangingClient(FakeCloudWatchClient):
    """Polls never return, so tailers cannot reach a state boundary."""

    async def get_log_events(self, log_group, stream_id, start_time, limit, next_token=None):
        self.calls.append({"stream_id": stream_id})
        await asyncio.sleep(60)


class TestIterLogSources:
    def test_flattens_in_config_order(self):
        services = [
            ServiceConfig(
                name="a",
                consul_kv_path="ns/a",
                log_configs=[LogConfig("/g/1", "x"), LogConfig("/g/2")],
            ),
            service(name="b", kv="ns/b", group="/g/3", prefix=""),
        ]

        sources = list(iter_log_sources(services))

        assert sources == [
            LogSource("a", "/g/1", "x", "ns/a"),
            LogSource("a", "/g/2", "", "ns/a"),
            LogSource("b", "/g/3", "", "ns/b"),
        ]


class TestSupervisorStart:
    @pytest.mark.asyncio
    async def test_one_named_task_per_stream(self):
        client = FakeCloudWatchClient(streams={"/ecs/billing": ["api/1", "api/2"]})
        factory = SinkFactory()
        supervisor = Supervisor(app_config(), store=MemoryOffsetStore(), client=client, sink_factory=factory)

        await supervisor.start()
        try:
            names = sorted(task.get_name() for task in supervisor.tasks)
            assert names == ["tail:/ecs/billing:api/1", "tail:/ecs/billing:api/2"]
            assert len(factory.sinks) == 1
            assert factory.sinks[0].started
        finally:
            await supervisor.shutdown()

        assert factory.sinks[0].stopped

    @pytest.mark.asyncio
    async def test_discovery_failure_skips_only_that_source(self):
        client = PartlyBrokenClient(
            broken_groups={"/ecs/broken"},
            streams={"/ecs/billing": ["api/1"]},
        )
        config = app_config(service(), service(name="other", kv="logtail/other", group="/ecs/broken"))
        supervisor = Supervisor(config, store=MemoryOffsetStore(), client=client, sink_factory=SinkFactory())

        await supervisor.start()
        try:
            assert [t.key for t in supervisor.tailers] == ["logtail/billing/api/1"]
        finally:
            await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_sink_start_failure_skips_only_that_service(self):
        client = FakeCloudWatchClient(streams={"/ecs/billing": ["api/1"], "/ecs/orders": ["web/1"]})
        config = app_config(
            service(),
            service(name="orders", kv="logtail/orders", group="/ecs/orders", prefix="web/"),
        )
        factory = PartlyBrokenSinkFactory(broken={1})
        supervisor = Supervisor(config, store=MemoryOffsetStore(), client=client, sink_factory=factory)

        await supervisor.start()
        try:
            assert [t.key for t in supervisor.tailers] == ["logtail/billing/api/1"]
            assert ("/ecs/orders", "web/") not in client.describe_calls
        finally:
            await supervisor.shutdown()

        assert factory.sinks[0].stopped
        assert not factory.sinks[1].stopped

    @pytest.mark.asyncio
    async def test_duplicate_checkpoint_key_tailed_once(self, caplog):
        client = FakeCloudWatchClient(streams={"/ecs/a": ["api/1"], "/ecs/b": ["api/1"]})
        config = app_config(
            service(name="a", kv="shared", group="/ecs/a"),
            service(name="b", kv="shared", group="/ecs/b"),
        )
        supervisor = Supervisor(config, store=MemoryOffsetStore(), client=client, sink_factory=SinkFactory())

        with caplog.at_level(logging.WARNING, logger="logtail.supervisor"):
            await supervisor.start()
        try:
            assert len(supervisor.tasks) == 1
            assert supervisor.tailers[0].source.log_group == "/ecs/a"
            skipped = [r for r in caplog.records if "already tailed" in r.getMessage()]
            assert [r.log_group for r in skipped] == ["/ecs/b"]
        finally:
            await supervisor.shutdown()

    @pytest.mark.asyncio
    async def test_builds_client_with_shared_rate_limiter(self):
        config = app_config(rate_limit=RateLimiterConfig(enabled=True, calls_per_second=4.0))

        async def no_streams(*args, **kwargs):
            return
            yield

        with patch("logtail.supervisor.create_boto_session") as session_factory, patch(
            "logtail.supervisor.CloudWatchLogsClient"
        ) as client_cls:
            client_cls.return_value.iter_log_streams = MagicMock(side_effect=no_streams)
            supervisor = Supervisor(config, sink_factory=SinkFactory())
            await supervisor.start()
            await supervisor.shutdown()

        session_factory.assert_called_once_with(config.aws)
        kwargs = client_cls.call_args.kwargs
        assert isinstance(kwargs["rate_limiter"], RateLimiter)
        assert kwargs["request_timeout"] == config.tailer.request_timeout_seconds
        assert supervisor.stats["rate_limiter"]["calls_per_second"] == 4.0


class TestSupervisorRun:
    @pytest.mark.asyncio
    async def test_runs_until_shutdown_requested(self):
        store = checkpointed_store("api/1", "api/2")
        client = FakeCloudWatchClient(
            streams={"/ecs/billing": ["api/1", "api/2"]},
            pages={"api/1": [[100]], "api/2": [[200]]},
        )
        factory = SinkFactory()
        supervisor = Supervisor(app_config(), store=store, client=client, sink_factory=factory)

        run_task = asyncio.create_task(supervisor.run())
        await wait_until(lambda: b"0" not in store.snapshot().values())
        assert not run_task.done()

        supervisor.request_shutdown()
        await asyncio.wait_for(run_task, 1.0)

        assert store.snapshot() == {
            "logtail/billing/api/1": b"100",
            "logtail/billing/api/2": b"200",
        }
        assert sorted(factory.sinks[0].timestamps()) == [100, 200]
        assert all(t.state is TailerState.STOPPED for t in supervisor.tailers)
        assert factory.sinks[0].stopped

    @pytest.mark.asyncio
    async def test_external_shutdown_event(self):
        event = asyncio.Event()
        client = FakeCloudWatchClient(streams={"/ecs/billing": ["api/1"]})
        supervisor = Supervisor(
            app_config(),
            store=MemoryOffsetStore(),
            client=client,
            sink_factory=SinkFactory(),
            shutdown_event=event,
        )

        run_task = asyncio.create_task(supervisor.run())
        await wait_until(lambda: client.calls)
        event.set()

        await asyncio.wait_for(run_task, 1.0)

    @pytest.mark.asyncio
    async def test_no_streams_returns(self):
        client = FakeCloudWatchClient(streams={})
        factory = SinkFactory()
        supervisor = Supervisor(app_config(), store=MemoryOffsetStore(), client=client, sink_factory=factory)

        await asyncio.wait_for(supervisor.run(), 1.0)

        assert supervisor.tasks == []
        assert factory.sinks[0].stopped

    @pytest.mark.asyncio
    async def test_returns_when_every_tailer_failed(self):
        store = FailingStore(fail_read_keys={"logtail/billing/api/1", "logtail/billing/api/2"})
        client = FakeCloudWatchClient(streams={"/ecs/billing": ["api/1", "api/2"]})
        supervisor = Supervisor(app_config(), store=store, client=client, sink_factory=SinkFactory())

        await asyncio.wait_for(supervisor.run(), 1.0)

        assert supervisor.stats["states"] == {"failed": 2}
        assert client.calls == []

    @pytest.mark.asyncio
    async def test_stragglers_cancelled_after_grace(self):
        client = HangingClient(streams={"/ecs/billing": ["api/1"]})
        supervisor = Supervisor(
            app_config(grace=0.05), store=MemoryOffsetStore(), client=client, sink_factory=SinkFactory()
        )

        run_task = asyncio.create_task(supervisor.run())
        await wait_until(lambda: client.calls)
        supervisor.request_shutdown()
        await asyncio.wait_for(run_task, 1.0)

        assert all(task.cancelled() for task in supervisor.tasks)
        assert supervisor.tailers[0].state is TailerState.STOPPED

    @pytest.mark.asyncio
    async def test_force_shutdown_cancels_immediately(self):
        client = HangingClient(streams={"/ecs/billing": ["api/1"]})
        supervisor = Supervisor(
            app_config(grace=30), store=MemoryOffsetStore(), client=client, sink_factory=SinkFactory()
        )

        run_task = asyncio.create_task(supervisor.run())
        await wait_until(lambda: client.calls)
        supervisor.force_shutdown()
        await asyncio.wait_for(run_task, 1.0)

        assert all(task.cancelled() for task in supervisor.tasks)

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self):
        factory = SinkFactory()
        supervisor = Supervisor(
            app_config(), store=MemoryOffsetStore(), client=FakeCloudWatchClient(), sink_factory=factory
        )
        await supervisor.start()

        await supervisor.shutdown()
        await supervisor.shutdown()

        assert factory.sinks[0].stopped


class TestSupervisorStats:
    @pytest.mark.asyncio
    async def test_stats(self):
        store = checkpointed_store("api/1")
        client = FakeCloudWatchClient(streams={"/ecs/billing": ["api/1"]}, pages={"api/1": [[100, 200]]})
        supervisor = Supervisor(app_config(), store=store, client=client, sink_factory=SinkFactory())

        await supervisor.start()
        await wait_until(lambda: store.snapshot()["logtail/billing/api/1"] == b"200")
        stats = supervisor.stats
        await supervisor.shutdown()

        assert stats["tailer_count"] == 1
        assert stats["events_written"] == {"billing": 2}
        tailer_stats = stats["tailers"]["logtail/billing/api/1"]
        assert tailer_stats["events"] == 2
        assert tailer_stats["cursor"] == 200
        assert "rate_limiter" not in stats
