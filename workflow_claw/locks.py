"""Per-path mutual exclusion for shared documents."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")

Mutation = Callable[[], Union[T, Awaitable[T]]]


class ResourceSerializer:
    """Keyed mutex: one ``asyncio.Lock`` per path.

    ``asyncio.Lock`` wakes waiters in FIFO order, so mutations on the same
    path run one at a time in submission order. Locks for different paths
    are independent. A path's lock is dropped once nobody holds or awaits it.
    """

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def hold(self, path: str) -> AsyncIterator[None]:
        lock = self._locks.get(path)
        if lock is None:
            lock = self._locks[path] = asyncio.Lock()
        self._users[path] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[path] -= 1
            if self._users[path] == 0:
                del self._users[path]
                del self._locks[path]

    async def with_lock(self, path: str, mutation: Mutation[T]) -> T:
        """Run ``mutation`` while holding the lock for ``path``."""
        async with self.hold(path):
            logger.debug(f"Acquired lock for {path}")
            result = mutation()
            if inspect.isawaitable(result):
                result = await result
            return result

    def active_paths(self) -> int:
        return len(self._locks)
