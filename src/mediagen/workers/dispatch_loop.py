"""Periodic dispatcher launching one task per pending generation."""

from __future__ import annotations

import asyncio
import contextlib
import threading
from collections.abc import Awaitable, Callable

import structlog

from ..domain.models import Generation
from ..repositories.interfaces import GenerationRepository

logger = structlog.get_logger(__name__)


class InFlightGuard:
    """Set of generation ids currently owned by a running task."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._ids: set[str] = set()

    def try_add(self, generation_id: str) -> bool:
        """Claim ``generation_id``; ``False`` when it is already in flight."""

        with self._lock:
            if generation_id in self._ids:
                return False
            self._ids.add(generation_id)
            return True

    def discard(self, generation_id: str) -> None:
        with self._lock:
            self._ids.discard(generation_id)

    def __contains__(self, generation_id: object) -> bool:
        with self._lock:
            return generation_id in self._ids

    def __len__(self) -> int:
        with self._lock:
            return len(self._ids)


class DispatchLoop:
    """Lists pending generations on every tick and starts the missing runners.

    ``runner`` is usually :meth:`GenerationWorker.run`. A tick never waits for
    the runners it starts.
    """

    def __init__(
        self,
        *,
        generations: GenerationRepository,
        runner: Callable[[Generation], Awaitable[None]],
        interval_seconds: float = 3.0,
        guard: InFlightGuard | None = None,
    ) -> None:
        self.generations = generations
        self._runner = runner
        self._interval = max(0.01, float(interval_seconds))
        self.guard = guard or InFlightGuard()
        self._tasks: set[asyncio.Task[None]] = set()

    @property
    def in_flight(self) -> int:
        return len(self.guard)

    async def tick(self) -> list[asyncio.Task[None]]:
        """Start a runner for every pending generation not already in flight."""

        try:
            pending = await asyncio.to_thread(self.generations.list_pending)
        except Exception:
            logger.exception("dispatch.list_pending_failed")
            return []

        started: list[asyncio.Task[None]] = []
        for generation in pending:
            if not self.guard.try_add(generation.id):
                continue
            task = asyncio.create_task(
                self._guarded_run(generation), name=f"generation-{generation.id}"
            )
            self._tasks.add(task)
            # Released on completion, also when cancelled before the first step.
            task.add_done_callback(lambda _task, gid=generation.id: self.guard.discard(gid))
            task.add_done_callback(self._tasks.discard)
            started.append(task)
        if started:
            logger.info("dispatch.tick", started=len(started), in_flight=self.in_flight)
        return started

    async def _guarded_run(self, generation: Generation) -> None:
        structlog.contextvars.bind_contextvars(generation_id=generation.id)
        try:
            await self._runner(generation)
        except asyncio.CancelledError:
            logger.info("dispatch.generation_cancelled")
            raise
        except Exception:
            logger.exception("dispatch.generation_crashed")

    async def run_forever(self, shutdown_event: asyncio.Event) -> None:
        """Tick immediately and then every interval until ``shutdown_event`` is set."""

        logger.info("dispatch.started", interval_seconds=self._interval)
        while not shutdown_event.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=self._interval)
            except asyncio.TimeoutError:
                continue
        logger.info("dispatch.stopped")

    async def aclose(self) -> None:
        """Cancel in-flight runners; their rows stay ``running`` until the next start."""

        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task


__all__ = ["DispatchLoop", "InFlightGuard"]
