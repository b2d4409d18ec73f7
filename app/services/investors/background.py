"""Tracked fire-and-forget tasks whose failures are logged, not dropped."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable

from app.observability.metrics import metrics

logger = logging.getLogger(__name__)


class BackgroundTasks:
    def __init__(self, owner: str) -> None:
        self._owner = owner
        self._tasks: set[asyncio.Future[None]] = set()

    def __len__(self) -> int:
        return len(self._tasks)

    def spawn(self, work: Awaitable[None], name: str) -> None:
        task = asyncio.ensure_future(work)
        self._tasks.add(task)

        def _done(finished: asyncio.Future[None]) -> None:
            self._tasks.discard(finished)
            if finished.cancelled():
                return
            exc = finished.exception()
            if exc is not None:
                metrics.increment(f"{self._owner}.background_errors", tags={"task": name})
                logger.error(
                    f"{self._owner}.background_failed",
                    extra={"task": name, "error": str(exc)},
                )

        task.add_done_callback(_done)

    async def drain(self) -> None:
        """Wait until every spawned task, including ones spawned meanwhile, is done."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
