"""Context variables for structured logging.

asyncio tasks copy the current context when they are created, so a value set
inside a tailer task is visible only to log records emitted by that task.
"""

from contextvars import ContextVar
from typing import Dict, Optional

_service: ContextVar[str] = ContextVar("service", default="")
_log_group: ContextVar[str] = ContextVar("log_group", default="")
_stream_id: ContextVar[str] = ContextVar("stream_id", default="")
_stage_name: ContextVar[str] = ContextVar("stage_name", default="")
_worker_id: ContextVar[str] = ContextVar("worker_id", default="")


def set_log_context(
    service: Optional[str] = None,
    log_group: Optional[str] = None,
    stream_id: Optional[str] = None,
    stage: Optional[str] = None,
    worker_id: Optional[str] = None,
) -> None:
    if service is not None:
        _service.set(service)
    if log_group is not None:
        _log_group.set(log_group)
    if stream_id is not None:
        _stream_id.set(stream_id)
    if stage is not None:
        _stage_name.set(stage)
    if worker_id is not None:
        _worker_id.set(worker_id)


def get_log_context() -> Dict[str, str]:
    return {
        "service": _service.get(),
        "log_group": _log_group.get(),
        "stream_id": _stream_id.get(),
        "stage": _stage_name.get(),
        "worker_id": _worker_id.get(),
    }


def clear_log_context() -> None:
    _service.set("")
    _log_group.set("")
    _stream_id.set("")
    _stage_name.set("")
    _worker_id.set("")
