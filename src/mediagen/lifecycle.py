"""Lifecycle helpers wiring the dispatcher as a background task."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from .config import AppConfig
from .media.file_storage import LocalFileStorage
from .repositories import (
    SqlAlchemyFileRepository,
    SqlAlchemyGenerationRepository,
    SqlAlchemySettingsRepository,
    SqlAlchemyUserProviderRepository,
)
from .security.credentials import AesGcmCredentialCipher
from .workers.dispatch_loop import DispatchLoop
from .workers.generation_worker import GenerationWorker

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class DispatcherHandle:
    """Running dispatcher returned by :func:`start_generation_dispatcher`."""

    loop: DispatchLoop
    task: asyncio.Task[None]
    shutdown_event: asyncio.Event

    @property
    def in_flight(self) -> int:
        return self.loop.in_flight

    async def stop(self) -> None:
        """Stop scheduling new runs and cancel the ones in flight."""

        self.shutdown_event.set()
        try:
            await self.task
        except asyncio.CancelledError:  # pragma: no cover - shutdown path
            pass
        await self.loop.aclose()
        logger.info("dispatcher.stopped")


def build_worker(config: AppConfig) -> GenerationWorker:
    files = SqlAlchemyFileRepository(config.session_factory)
    return GenerationWorker(
        generations=SqlAlchemyGenerationRepository(config.session_factory),
        settings=SqlAlchemySettingsRepository(config.session_factory),
        user_providers=SqlAlchemyUserProviderRepository(config.session_factory),
        files=files,
        storage=LocalFileStorage(config.storage_dir, files),
        decryptor=AesGcmCredentialCipher(),
        provider_defaults=config.provider_defaults,
        encryption_secret=config.encryption_secret,
        dispatch=config.dispatch,
    )


def build_dispatch_loop(config: AppConfig, worker: GenerationWorker | None = None) -> DispatchLoop:
    runner = worker or build_worker(config)
    return DispatchLoop(
        generations=runner.generations,
        runner=runner.run,
        interval_seconds=config.dispatch.dispatch_interval_seconds,
    )


def start_generation_dispatcher(
    config: AppConfig,
    *,
    loop: DispatchLoop | None = None,
) -> DispatcherHandle:
    """Start the dispatch loop on the running event loop.

    Generations left ``running`` by a previous process are picked up again by
    the first tick.
    """

    dispatch_loop = loop or build_dispatch_loop(config)
    shutdown_event = asyncio.Event()
    task = asyncio.create_task(
        dispatch_loop.run_forever(shutdown_event), name="generation-dispatcher"
    )
    logger.info(
        "dispatcher.started",
        extra={"interval_seconds": config.dispatch.dispatch_interval_seconds},
    )
    return DispatcherHandle(loop=dispatch_loop, task=task, shutdown_event=shutdown_event)


async def stop_generation_dispatcher(handle: DispatcherHandle | None) -> None:
    if handle is None:
        return
    await handle.stop()


__all__ = [
    "DispatcherHandle",
    "build_dispatch_loop",
    "build_worker",
    "start_generation_dispatcher",
    "stop_generation_dispatcher",
]
