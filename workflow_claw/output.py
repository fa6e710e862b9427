"""Coalesced persistence of streamed CLI output."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from .config import OutputConfig

logger = logging.getLogger(__name__)

FlushFn = Callable[[str], Awaitable[None]]


class OutputRecorder:
    """Drains output chunks from a bounded queue and flushes them in batches.

    A flush hands the whole output captured so far to ``flush`` once at least
    ``flush_bytes`` are pending or ``flush_interval`` seconds have passed
    since the previous flush. Leaving the context performs a final flush
    unconditionally.

    Usage::

        async with OutputRecorder(save) as recorder:
            await runner.run(request, on_data=recorder.feed)
    """

    def __init__(self, flush: FlushFn, config: Optional[OutputConfig] = None) -> None:
        self._flush = flush
        self._config = config or OutputConfig()
        self._queue: asyncio.Queue[Optional[str]] = asyncio.Queue(
            maxsize=self._config.queue_size
        )
        self._chunks: List[str] = []
        self._pending = 0
        self._task: Optional[asyncio.Task[None]] = None
        self.flushes = 0

    @property
    def text(self) -> str:
        return "".join(self._chunks)

    async def __aenter__(self) -> "OutputRecorder":
        self._task = asyncio.create_task(self._drain())
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self._queue.put(None)
        if self._task is not None:
            await self._task

    async def feed(self, chunk: str) -> None:
        await self._queue.put(chunk)

    async def _flush_now(self) -> None:
        await self._flush(self.text)
        self._pending = 0
        self.flushes += 1

    async def _drain(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self._config.flush_interval
        last_flush = loop.time()
        while True:
            timeout = None
            if self._pending:
                timeout = max(0.0, interval - (loop.time() - last_flush))
            try:
                chunk = await asyncio.wait_for(self._queue.get(), timeout)
            except asyncio.TimeoutError:
                await self._flush_now()
                last_flush = loop.time()
                continue
            if chunk is None:
                break
            self._chunks.append(chunk)
            self._pending += len(chunk.encode("utf-8"))
            if (
                self._pending >= self._config.flush_bytes
                or loop.time() - last_flush >= interval
            ):
                await self._flush_now()
                last_flush = loop.time()

        await self._flush_now()
        logger.debug(f"Output recorder finished after {self.flushes} flushes")
