"""Fire-and-forget background work for asyncio coroutines."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, Set

logger = logging.getLogger(__name__)


class BackgroundWork:
    """
    Runs coroutines detached from the caller.

    Submitted work gets no back-pressure and its errors never propagate: a
    failure is logged and dropped. Tasks are tracked so they are not garbage
    collected mid-flight and so a process can ``drain()`` them before its
    event loop closes.
    """

    def __init__(self) -> None:
        self._tasks: Set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def submit(self, coro: Awaitable[object], *, label: str = "background work") -> asyncio.Task:
        task = asyncio.ensure_future(self._run(coro, label))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _run(self, coro: Awaitable[object], label: str) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.warning("%s cancelled", label)
        except Exception as exc:
            logger.exception("%s failed: %s", label, exc)

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for submitted work; anything still running after ``timeout`` is cancelled."""
        if not self._tasks:
            return
        pending = list(self._tasks)
        done, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("Cancelled %s background task(s) still running at drain", len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)
