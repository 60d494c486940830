"""
core/background.py
------------------
Fire-and-forget execution of best-effort writes.

Writes the response does not depend on (saving the inbound user message,
bumping a thread timestamp, storing a freshly generated persona summary) are
scheduled here instead of awaited by the request handler. A failure is logged
as persistence degradation and never reaches the caller.

The registry holds strong references to running tasks so they are not
garbage collected mid-flight, and drain() lets shutdown (and tests) wait for
whatever is still pending.
"""

import asyncio
from typing import Awaitable

from bubblechat.core.logging import get_logger

logger = get_logger(__name__)


class BackgroundWriter:

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def spawn(self, coro: Awaitable, description: str, **context) -> asyncio.Task:
        task = asyncio.ensure_future(self._guard(coro, description, context))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _guard(self, coro: Awaitable, description: str, context: dict) -> None:
        try:
            await coro
        except Exception as exc:
            logger.warning(
                "Background write failed (persistence degraded)",
                task=description,
                error=str(exc),
                **context,
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait until every scheduled task (including ones spawned meanwhile) is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


# One writer per process
background = BackgroundWriter()
