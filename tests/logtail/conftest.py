"""Fixtures shared by the logtail tests."""

from datetime import timedelta

import pytest

from fakes import RecordingSink
from logtail.models import LogSource
from logtail.offsets.memory import MemoryOffsetStore


@pytest.fixture
def source():
    return LogSource(
        service="billing",
        log_group="/ecs/billing",
        stream_prefix="api/",
        kv_namespace="logtail/billing",
    )


@pytest.fixture
def fallback():
    return timedelta(hours=1)


@pytest.fixture
def store():
    """Both test streams checkpointed at the epoch, so scripted timestamps advance the cursor."""
    return MemoryOffsetStore(
        initial={"logtail/billing/api/1": b"0", "logtail/billing/api/2": b"0"}
    )


@pytest.fixture
def empty_store():
    return MemoryOffsetStore()


@pytest.fixture
def sink():
    return RecordingSink()
