"""In-process offset store for dry runs and tests."""

from logtail.offsets.base import BaseOffsetStore


class MemoryOffsetStore(BaseOffsetStore):
    """Cursors kept in a dict; lost when the process exits."""

    backend = "memory"

    def __init__(self, initial: dict[str, bytes] | None = None, **kwargs):
        super().__init__(**kwargs)
        self._data: dict[str, bytes] = dict(initial or {})

    async def _read(self, key: str) -> bytes | None:
        return self._data.get(key)

    async def _write(self, key: str, data: bytes) -> None:
        self._data[key] = data

    def snapshot(self) -> dict[str, bytes]:
        return dict(self._data)
