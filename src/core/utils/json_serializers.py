"""Shared JSON serialization helpers for log records and sink output."""

from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any

# Checked in order; datetime is a date subclass and both use isoformat
_CONVERTERS: tuple[tuple[type | tuple[type, ...], Callable[[Any], Any]], ...] = (
    ((datetime, date), lambda obj: obj.isoformat()),
    (Decimal, float),
    (Path, str),
    (Enum, lambda obj: obj.value),
    ((set, frozenset), lambda obj: sorted(obj, key=str)),
)


def json_serializer(obj: Any) -> Any:
    """
    ``default=`` hook for json.dumps.

    Numbers stay numeric so log search can aggregate on them. Pydantic
    models (sink events) are dumped to dicts, plain objects fall back to
    their ``__dict__`` and anything else to ``str``.
    """
    for types, convert in _CONVERTERS:
        if isinstance(obj, types):
            return convert(obj)
    if hasattr(obj, "model_dump"):
        return obj.model_dump()
    if hasattr(obj, "__dict__"):
        return obj.__dict__
    return str(obj)


__all__ = ["json_serializer"]
