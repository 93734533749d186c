"""Local filesystem offset store.

One file per checkpoint key. Key segments separated by ``/`` become
directories, so ``logtail/billing/api/i-123`` is stored at
``<base_dir>/logtail/billing/api/i-123.offset``.

Writes go to a temp file in the same directory followed by os.replace(),
so a crash never leaves a half-written cursor behind.
"""

import asyncio
import os
import tempfile
from pathlib import Path

from core.errors.exceptions import OffsetStoreError
from logtail.offsets.base import BaseOffsetStore

SUFFIX = ".offset"


class FileOffsetStore(BaseOffsetStore):
    """Checkpoint files under a base directory."""

    backend = "file"

    def __init__(self, base_dir: str | Path, **kwargs):
        super().__init__(**kwargs)
        self._base_path = Path(base_dir)

    async def start(self) -> None:
        self._base_path.mkdir(parents=True, exist_ok=True)
        self._logger.info(
            "File offset store ready",
            extra={"backend": self.backend, "path": str(self._base_path)},
        )

    def path_for(self, key: str) -> Path:
        """Map a checkpoint key to its file, refusing keys that escape base_dir."""
        parts = [part for part in key.split("/") if part]
        if not parts or any(part in (".", "..") for part in parts):
            raise OffsetStoreError(
                f"Checkpoint key '{key}' cannot be mapped to a file",
                context={"backend": self.backend, "checkpoint_key": key},
            )
        return self._base_path.joinpath(*parts[:-1], parts[-1] + SUFFIX)

    async def _read(self, key: str) -> bytes | None:
        path = self.path_for(key)
        return await asyncio.to_thread(_read_file, path)

    async def _write(self, key: str, data: bytes) -> None:
        path = self.path_for(key)
        await asyncio.to_thread(_atomic_write, path, data)


def _read_file(path: Path) -> bytes | None:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return None


def _atomic_write(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_name, path)
    except BaseException:
        # Keep the directory free of orphaned temp files
        try:
            os.unlink(temp_name)
        except FileNotFoundError:
            pass
        raise
