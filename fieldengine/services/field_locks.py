"""Mutual exclusion for field mutations."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class FieldLockManager:
    """
    In-process locks keyed by field name.

    Mutations on different field names run concurrently; two mutations on
    the same name (for example two renames of one field) are serialized
    around the registry update and the bulk write. Locks for several names
    are always taken in sorted order.

    Collection-wide mutations (flattening every attribute) hold the whole
    collection: they wait for running field mutations to finish and block
    new ones until they are done.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}
        self._active_field_holds = 0
        self._collection_held = False
        self._condition = asyncio.Condition()

    def _lock_for(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[name] = lock
        return lock

    def is_locked(self, name: str) -> bool:
        lock = self._locks.get(name)
        return lock is not None and lock.locked()

    @property
    def collection_locked(self) -> bool:
        return self._collection_held

    @asynccontextmanager
    async def hold(self, *names: str) -> AsyncIterator[None]:
        """Hold the locks for the given field names."""
        async with self._condition:
            await self._condition.wait_for(lambda: not self._collection_held)
            self._active_field_holds += 1

        ordered = sorted(set(names))
        registered: list[str] = []
        acquired: list[str] = []
        try:
            for name in ordered:
                self._holders[name] = self._holders.get(name, 0) + 1
                registered.append(name)
                await self._lock_for(name).acquire()
                acquired.append(name)
            yield
        finally:
            for name in reversed(acquired):
                self._locks[name].release()
            for name in registered:
                self._holders[name] -= 1
                if self._holders[name] == 0:
                    # No holder or waiter left
                    del self._holders[name]
                    del self._locks[name]
            async with self._condition:
                self._active_field_holds -= 1
                self._condition.notify_all()

    @asynccontextmanager
    async def hold_collection(self) -> AsyncIterator[None]:
        """Hold the whole collection against any field mutation."""
        async with self._condition:
            await self._condition.wait_for(
                lambda: not self._collection_held and self._active_field_holds == 0
            )
            self._collection_held = True
        try:
            yield
        finally:
            async with self._condition:
                self._collection_held = False
                self._condition.notify_all()
