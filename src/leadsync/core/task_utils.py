"""Background task bookkeeping for the poller loop and SSE reader tasks."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

from leadsync.core.logging import LeadsyncLogger


def spawn_logged(
    coro: Coroutine[Any, Any, None],
    logger: LeadsyncLogger,
    *,
    name: str,
    died_event: str,
) -> asyncio.Task[None]:
    """Start ``coro`` as a task that logs ``died_event`` if it raises.

    Cancellation is how the poller and channels are stopped, so a cancelled
    task is not logged.
    """
    task: asyncio.Task[None] = asyncio.create_task(coro, name=name)

    def _on_done(done: asyncio.Task[None]) -> None:
        if done.cancelled():
            return
        exc = done.exception()
        if exc is not None:
            logger.error(
                died_event,
                task_name=name,
                error_type=type(exc).__name__,
                error=str(exc),
            )

    task.add_done_callback(_on_done)
    return task


__all__ = ["spawn_logged"]
