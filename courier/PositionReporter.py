from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional, Protocol, Set

import aiohttp

from RouteBase import PositionSample

logger = logging.getLogger(__name__)


class PositionSink(Protocol):
    """Receives every tracked position. Must not raise and must not block."""

    def report(self, sample: PositionSample) -> None: ...


class HttpPositionReporter:
    """
    POSTs {latitude, longitude, timestamp} per sample in the background.
    Failed posts are logged and dropped; nothing is queued for retry.
    """

    def __init__(self,
                 url: str,
                 headers: Optional[Dict[str, str]] = None,
                 session: Optional[aiohttp.ClientSession] = None,
                 timeout_s: float = 10.0):
        self.url = url
        self.headers = headers or {}
        self.session = session
        self._owns_session = session is None
        self.timeout = aiohttp.ClientTimeout(total=timeout_s)
        self._tasks: Set[asyncio.Task] = set()

    def _get_session(self) -> aiohttp.ClientSession:
        if self.session is None:
            self.session = aiohttp.ClientSession()
        return self.session

    async def _post(self, body: Dict[str, Any]) -> None:
        async with self._get_session().post(self.url, json=body, headers=self.headers,
                                            timeout=self.timeout) as resp:
            if resp.status >= 400:
                logger.warning("position report rejected: HTTP %d", resp.status)

    def _done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.warning("position report failed: %s", exc)

    def report(self, sample: PositionSample) -> None:
        task = asyncio.get_running_loop().create_task(self._post(sample.as_report()))
        self._tasks.add(task)
        task.add_done_callback(self._done)

    async def aclose(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._owns_session and self.session is not None:
            await self.session.close()
            self.session = None


class LatestPositionQueue:
    """In-process sink for a single consumer (e.g. a websocket feed); keeps only the newest sample."""

    def __init__(self, maxsize: int = 1):
        self.queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)

    def report(self, sample: PositionSample) -> None:
        # keep only latest event if queue is full
        if self.queue.full():
            try:
                self.queue.get_nowait()
                self.queue.task_done()
            except asyncio.QueueEmpty:
                pass
        self.queue.put_nowait(sample)

    async def next(self) -> PositionSample:
        sample = await self.queue.get()
        self.queue.task_done()
        return sample
