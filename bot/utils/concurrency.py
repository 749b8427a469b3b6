from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from typing import Any

LOGGER = logging.getLogger(__name__)

_background_tasks: set[asyncio.Task[Any]] = set()


async def join_all(*aws: Coroutine[Any, Any, Any]) -> list[Any]:
    """Run coroutines in one task group; the first failure cancels the rest and is re-raised."""
    try:
        async with asyncio.TaskGroup() as group:
            tasks = [group.create_task(aw) for aw in aws]
    except ExceptionGroup as exc_group:
        raise exc_group.exceptions[0] from None
    return [task.result() for task in tasks]


def spawn_detached(
    coro: Coroutine[Any, Any, Any],
    *,
    name: str,
    on_error: Callable[[BaseException], Awaitable[None]] | None = None,
) -> asyncio.Task[Any]:
    """Schedule fire-and-forget work; failures are logged and never propagate."""

    async def _runner() -> None:
        try:
            await coro
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            LOGGER.exception("Background task %s failed", name)
            if on_error is not None:
                await on_error(exc)

    task = asyncio.create_task(_runner(), name=name)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task


def pending_background_tasks() -> set[asyncio.Task[Any]]:
    return set(_background_tasks)
