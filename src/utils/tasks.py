"""Helpers for component-owned asyncio tasks."""

from __future__ import annotations

import asyncio

import structlog

log = structlog.get_logger()


async def cancel_task(task: asyncio.Task[None] | None) -> None:
    """Cancel ``task`` and wait for it to finish.

    A task that already died with an error is logged, not re-raised, so that
    ``stop()`` can always release every handle it owns.
    """
    if task is None:
        return
    if not task.done():
        task.cancel()
    try:
        await task
    except asyncio.CancelledError:
        pass
    except Exception:
        log.exception("task.failed", task=task.get_name())
