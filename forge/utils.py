"""Shared helpers used across forge modules."""
from __future__ import annotations

import asyncio
import json
import weakref
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Decode a ``*_json`` column, returning *default* (``{}`` if omitted) on bad input."""
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class AsyncKeyedLocks:
    """asyncio locks keyed by id, so work on one key runs one at a time.

    Locks are kept per event loop; an asyncio.Lock cannot be shared across loops.
    A key's lock is dropped once no task holds or waits on it.
    """

    def __init__(self) -> None:
        # loop -> key -> (lock, number of tasks holding or waiting on it)
        self._locks: weakref.WeakKeyDictionary[asyncio.AbstractEventLoop, dict[int, list[Any]]] = (
            weakref.WeakKeyDictionary()
        )

    def __len__(self) -> int:
        return sum(len(per_loop) for per_loop in self._locks.values())

    @asynccontextmanager
    async def hold(self, key: int) -> AsyncIterator[None]:
        per_loop = self._locks.setdefault(asyncio.get_running_loop(), {})
        entry = per_loop.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if not entry[1]:
                del per_loop[key]
