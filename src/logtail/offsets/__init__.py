"""
Offset stores: durable cursor per checkpoint key.

Backends:
    - consul: Consul KV over HTTP (aiohttp)
    - file: one file per key, atomic replace
    - blob: Azure Blob Storage
    - kafka: compacted topic with an in-memory index
    - memory: process-local, for tests and dry runs

Backend modules import their client libraries, so import them directly
(or go through create_offset_store) rather than from this package.
"""

from logtail.offsets.base import (
    DEFAULT_REQUEST_TIMEOUT_SECONDS,
    BaseOffsetStore,
    OffsetStore,
)
from logtail.offsets.factory import create_offset_store
from logtail.offsets.memory import MemoryOffsetStore

__all__ = [
    "OffsetStore",
    "BaseOffsetStore",
    "MemoryOffsetStore",
    "create_offset_store",
    "DEFAULT_REQUEST_TIMEOUT_SECONDS",
]
