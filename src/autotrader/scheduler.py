"""Fixed-interval background cycle with no overlapping runs."""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable

import structlog

logger = structlog.get_logger()


class PeriodicTask:
    """Runs `func` every `interval` seconds until stopped.

    Ticks execute sequentially inside one asyncio task, and an in-flight
    guard turns any concurrent `run_once` into a no-op.
    """

    def __init__(
        self,
        name: str,
        interval: float,
        func: Callable[[], Awaitable[None]],
        run_immediately: bool = False,
    ) -> None:
        self.name = name
        self.interval = interval
        self.func = func
        self.run_immediately = run_immediately
        self.ticks = 0
        self.skipped = 0
        self._task: asyncio.Task | None = None
        self._running = False
        self._in_flight = False

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def start(self) -> None:
        """Start the background task. A second call while running is ignored."""
        if self.is_running:
            logger.warning("periodic_task_already_running", task=self.name)
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop(), name=f"periodic:{self.name}")
        logger.info("periodic_task_started", task=self.name, interval=self.interval)

    async def stop(self, grace: float = 0.0) -> None:
        """Stop scheduling ticks; an in-flight tick gets `grace` seconds before cancel."""
        self._running = False
        task = self._task
        self._task = None
        if task and not task.done():
            if self._in_flight and grace > 0:
                try:
                    await asyncio.wait_for(asyncio.shield(task), grace)
                except asyncio.TimeoutError:
                    logger.warning("periodic_task_grace_expired", task=self.name, grace=grace)
        if task and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        logger.info("periodic_task_stopped", task=self.name, ticks=self.ticks)

    async def run_once(self) -> bool:
        """Run one tick. Returns False when a tick was already in flight."""
        if self._in_flight:
            self.skipped += 1
            logger.warning("periodic_tick_skipped", task=self.name)
            return False
        self._in_flight = True
        try:
            await self.func()
            self.ticks += 1
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("periodic_tick_error", task=self.name)
        finally:
            self._in_flight = False
        return True

    async def _run_loop(self) -> None:
        if not self.run_immediately:
            await asyncio.sleep(self.interval)
        while self._running:
            await self.run_once()
            if self._running:
                await asyncio.sleep(self.interval)
