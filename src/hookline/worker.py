"""Periodic background jobs.

Usage::

    from hookline.worker import BackgroundWorker, WorkerTask

    async def cleanup(now: datetime) -> str | None:
        removed = store.cleanup(now)
        return f"removed={removed}" if removed else None

    worker = BackgroundWorker(
        tasks=[WorkerTask(name="delivery_cleanup", interval_seconds=300, fn=cleanup)],
    )
    await worker.start()
    ...
    await worker.stop()

Each task runs on its own loop: it sleeps for its interval, runs, and only
then sleeps again, so a slow run delays the next tick instead of stacking a
second run on top of it.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from hookline.models import utc_now

logger = structlog.get_logger(__name__)

# Receives the current UTC time, returns an optional summary (logged when non-empty)
TaskFn = Callable[[datetime], Awaitable[str | None]]


@dataclass
class WorkerTask:
    """A named periodic task executed by :class:`BackgroundWorker`."""

    name: str
    interval_seconds: float
    fn: TaskFn


@dataclass
class BackgroundWorker:
    """In-process async worker running each task on its own interval.

    A failing task is logged and retried on its next tick; it never stops
    the other tasks.
    """

    tasks: Sequence[WorkerTask] = field(default_factory=list)
    clock: Callable[[], datetime] = field(default=utc_now)
    _running: dict[str, asyncio.Task[None]] = field(default_factory=dict, init=False, repr=False)

    @property
    def is_running(self) -> bool:
        return any(not t.done() for t in self._running.values())

    async def start(self) -> None:
        """Start one asyncio task per worker task. Idempotent."""
        if self.is_running:
            return
        self._running = {
            task.name: asyncio.create_task(self._loop(task), name=f"hookline:{task.name}")
            for task in self.tasks
        }
        logger.info(
            "background_worker started",
            tasks={t.name: t.interval_seconds for t in self.tasks},
        )

    async def stop(self) -> None:
        """Cancel all running tasks and wait for them to finish."""
        running = list(self._running.values())
        self._running = {}
        for task in running:
            task.cancel()
        for task in running:
            try:
                await task
            except asyncio.CancelledError:
                pass
        if running:
            logger.info("background_worker stopped")

    async def run_once(self, name: str) -> str | None:
        """Run one task immediately, outside its schedule."""
        for task in self.tasks:
            if task.name == name:
                return await task.fn(self.clock())
        raise KeyError(name)

    async def _loop(self, task: WorkerTask) -> None:
        while True:
            await asyncio.sleep(task.interval_seconds)
            try:
                summary = await task.fn(self.clock())
                if summary:
                    logger.info(
                        "background_task completed",
                        task=task.name,
                        summary=summary,
                    )
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception(
                    "background_task failed",
                    task=task.name,
                )


__all__ = ["BackgroundWorker", "TaskFn", "WorkerTask"]
