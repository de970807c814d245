"""Submit/poll engine driving one generation to a terminal state."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

from ..config import DispatchSettings, ProviderDefaults
from ..domain import state_machine
from ..domain.models import (
    Generation,
    GenerationErrorCode,
    GenerationPatch,
    ProviderCredentials,
    now_ms,
)
from ..domain.timeouts import max_poll_attempts, resolve_timeout_seconds
from ..exceptions import (
    CredentialError,
    InvalidTransitionError,
    MaterializationError,
    ProviderError,
)
from ..media.references import build_reference_data_urls
from ..media.result_materializer import ResultMaterializer
from ..providers.providers_base import (
    GenerationRequest,
    ProviderDriver,
    ProviderResult,
    SubmitOutcome,
)
from ..providers.providers_factory import create_driver, resolve_provider_kind
from ..repositories.interfaces import (
    CredentialDecryptor,
    FileRepository,
    FileStorage,
    GenerationRepository,
    SettingsRepository,
    UserProviderRepository,
)

T = TypeVar("T")

MISSING_KEY_MESSAGE = "no API key configured; set one in the provider settings"
MISSING_TASK_MESSAGE = "provider task id is missing"
POLL_TIMEOUT_MESSAGE = "timed out waiting for provider result"
TASK_FAILED_MESSAGE = "task failed"
NO_RESULT_MESSAGE = "API error: provider returned neither a task id nor a result"
TRANSIENT_LOG_EVERY = 10

DriverFactory = Callable[..., ProviderDriver]


class GenerationWorker:
    """Runs the lifecycle of a single generation against its provider."""

    def __init__(
        self,
        *,
        generations: GenerationRepository,
        settings: SettingsRepository,
        user_providers: UserProviderRepository,
        files: FileRepository,
        storage: FileStorage,
        decryptor: CredentialDecryptor,
        provider_defaults: ProviderDefaults,
        encryption_secret: str,
        dispatch: DispatchSettings | None = None,
        driver_factory: DriverFactory = create_driver,
        materializer: ResultMaterializer | None = None,
        sleep: Callable[[float], Any] | None = None,
        clock: Callable[[], int] | None = None,
    ) -> None:
        self.generations = generations
        self.settings = settings
        self.user_providers = user_providers
        self.files = files
        self.decryptor = decryptor
        self.provider_defaults = provider_defaults
        self._secret = encryption_secret
        self._dispatch = dispatch or DispatchSettings()
        self._driver_factory = driver_factory
        self._materializer = materializer or ResultMaterializer(
            storage, timeout_seconds=self._dispatch.result_download_timeout_seconds
        )
        self._sleep = self._wrap_sleep(sleep)
        self._clock = clock or now_ms
        self._logger = logging.getLogger(__name__)

    @staticmethod
    def _wrap_sleep(
        sleep: Callable[[float], Any] | None,
    ) -> Callable[[float], Awaitable[None]]:
        if sleep is None:
            return asyncio.sleep

        async def _async_sleep(seconds: float) -> None:
            result = sleep(seconds)
            if inspect.isawaitable(result):
                await result

        return _async_sleep

    @staticmethod
    async def _run_sync(func: Callable[..., T], /, *args: Any, **kwargs: Any) -> T:
        """Execute ``func`` in a worker thread to avoid blocking the event loop."""

        return await asyncio.to_thread(func, *args, **kwargs)

    # ------------------------------------------------------------------
    # High-level control flow
    # ------------------------------------------------------------------
    async def run(self, generation: Generation) -> None:
        """Drive ``generation`` until it succeeds, fails or vanishes.

        The stored row wins over the snapshot handed in by the dispatcher, so
        a generation finished in the meantime is never started again.
        """

        if generation.status.is_terminal:
            return
        latest = await self._run_sync(self.generations.get, generation.id)
        if latest is None or latest.status.is_terminal:
            self._logger.info(
                "generation.skipped",
                extra={
                    "generation_id": generation.id,
                    "status": latest.status.value if latest is not None else None,
                },
            )
            return
        generation = latest

        self._logger.info(
            "generation.start",
            extra={
                "generation_id": generation.id,
                "kind": generation.kind.value,
                "model": generation.model,
            },
        )
        try:
            await self._persist(generation, state_machine.start(generation, now=self._clock()))
        except InvalidTransitionError:
            self._log_already_terminal(generation)
            return

        try:
            await self._drive(generation)
        except InvalidTransitionError:
            self._log_already_terminal(generation)
        except Exception as exc:
            await self._fail_unexpected(generation, exc)

    async def _drive(self, generation: Generation) -> None:
        credentials = await self.resolve_credentials(generation.user_id)
        if credentials is None:
            await self._fail(generation, MISSING_KEY_MESSAGE, code=GenerationErrorCode.API_ERROR)
            return

        settings = await self._run_sync(self.settings.get_settings)
        timeout = resolve_timeout_seconds(
            generation.kind,
            settings,
            floor_seconds=self._dispatch.timeout_floor_seconds,
            default_seconds=self._dispatch.timeout_default_seconds,
        )
        self._logger.info(
            "generation.provider.selected",
            extra={
                "generation_id": generation.id,
                "provider": credentials.kind.value,
                "timeout_seconds": timeout,
            },
        )

        driver = self._driver_factory(credentials, timeout_seconds=timeout)
        try:
            await self._execute(generation, driver, timeout)
        finally:
            await driver.aclose()

    async def _execute(self, generation: Generation, driver: ProviderDriver, timeout: int) -> None:
        if not generation.provider_task_id:
            references = await self._run_sync(
                build_reference_data_urls,
                self.files,
                generation.reference_file_ids,
                generation.kind,
                generation_id=generation.id,
            )
            try:
                outcome = await driver.submit(self._build_request(generation, references))
            except ProviderError as exc:
                await self._fail(generation, exc.message, code=exc.code)
                return

            if outcome.finished:
                await self._finish_immediate(generation, outcome, timeout)
                return
            if not outcome.task_id:
                await self._fail(
                    generation,
                    NO_RESULT_MESSAGE,
                    code=GenerationErrorCode.API_ERROR,
                )
                return
            await self._persist(
                generation, state_machine.record_submission(generation, outcome.task_id)
            )
            self._logger.info(
                "generation.submitted",
                extra={"generation_id": generation.id, "task_id": outcome.task_id},
            )

        await self._poll(generation, driver, timeout)

    async def _finish_immediate(
        self, generation: Generation, outcome: SubmitOutcome, timeout: int
    ) -> None:
        if outcome.result is not None:
            await self._succeed(generation, outcome.result, timeout)
            return
        status = outcome.immediate
        if status is None:
            await self._fail(
                generation,
                NO_RESULT_MESSAGE,
                code=GenerationErrorCode.API_ERROR,
            )
            return
        if status.failed:
            await self._fail(generation, status.failure_message(TASK_FAILED_MESSAGE))
            return
        await self._succeed(generation, status.to_result(), timeout)

    async def _poll(self, generation: Generation, driver: ProviderDriver, timeout: int) -> None:
        interval = self._dispatch.poll_interval_seconds
        attempts = max_poll_attempts(timeout, poll_interval_seconds=interval)
        for attempt in range(attempts):
            latest = await self._run_sync(self.generations.get, generation.id)
            if latest is None or latest.status.is_terminal:
                return
            if not latest.provider_task_id:
                await self._fail(
                    latest, MISSING_TASK_MESSAGE, code=GenerationErrorCode.INVALID_REQUEST
                )
                return

            try:
                status = await driver.fetch_result(latest.provider_task_id)
            except ProviderError as exc:
                if attempt % TRANSIENT_LOG_EVERY == 0:
                    self._logger.warning(
                        "generation.poll.error",
                        extra={
                            "generation_id": latest.id,
                            "attempt": attempt,
                            "error": exc.message,
                        },
                    )
                    await self._persist(
                        latest, state_machine.record_transient_error(latest, exc.message)
                    )
                await self._sleep(interval)
                continue

            if status.progress > 0:
                await self._persist(latest, state_machine.record_progress(latest, status.progress))
            if status.succeeded:
                await self._succeed(latest, status.to_result(), timeout)
                return
            if status.failed:
                await self._fail(latest, status.failure_message(TASK_FAILED_MESSAGE))
                return
            await self._sleep(interval)

        latest = await self._run_sync(self.generations.get, generation.id)
        if latest is None or latest.status.is_terminal:
            return
        await self._fail(latest, POLL_TIMEOUT_MESSAGE, code=GenerationErrorCode.TIMEOUT)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------
    async def resolve_credentials(self, user_id: str) -> ProviderCredentials | None:
        """Return the effective provider for ``user_id`` or ``None`` without a key."""

        defaults = self.provider_defaults
        host = defaults.host
        api_key = defaults.api_key
        explicit_kind = defaults.kind

        override = await self._run_sync(self.user_providers.get_user_provider, user_id)
        if override is not None:
            host = override.provider_host or host
            if override.provider_kind is not None:
                explicit_kind = override.provider_kind
            if override.api_key_enc:
                try:
                    decrypted = self.decryptor.decrypt(override.api_key_enc, self._secret)
                except CredentialError as exc:
                    self._logger.warning(
                        "generation.credentials.decrypt_failed",
                        extra={"user_id": user_id, "error": str(exc)},
                    )
                else:
                    if decrypted:
                        api_key = decrypted

        if not api_key:
            return None
        return ProviderCredentials(
            host=host,
            api_key=api_key,
            kind=resolve_provider_kind(host, explicit_kind),
        )

    @staticmethod
    def _build_request(generation: Generation, references: list[str]) -> GenerationRequest:
        return GenerationRequest(
            kind=generation.kind,
            model=generation.model,
            prompt=generation.prompt,
            references=references,
            aspect_ratio=generation.aspect_ratio,
            image_size=generation.image_size,
            duration=generation.duration,
            video_size=generation.video_size,
            generation_id=generation.id,
        )

    async def _succeed(
        self, generation: Generation, result: ProviderResult | None, timeout: int
    ) -> None:
        if result is None:
            await self._fail(
                generation, "provider returned no result url", code=GenerationErrorCode.API_ERROR
            )
            return
        try:
            stored = await self._materializer.materialize(
                generation.user_id, result, timeout_seconds=timeout
            )
        except MaterializationError as exc:
            await self._fail(generation, exc.message, code=exc.code)
            return
        patch = state_machine.succeed(
            generation,
            output_file_id=stored.id,
            result_url=result.diagnostic_url,
            now=self._clock(),
        )
        await self._persist(generation, patch)
        self._logger.info(
            "generation.succeeded",
            extra={"generation_id": generation.id, "output_file_id": stored.id},
        )

    async def _fail(
        self,
        generation: Generation,
        message: str,
        *,
        code: GenerationErrorCode | None = None,
    ) -> None:
        patch = state_machine.fail(generation, message, code=code, now=self._clock())
        await self._persist(generation, patch)
        self._logger.warning(
            "generation.failed",
            extra={
                "generation_id": generation.id,
                "error": patch.error,
                "error_code": patch.error_code.value,
            },
        )

    async def _fail_unexpected(self, generation: Generation, exc: Exception) -> None:
        self._logger.exception(
            "generation.unexpected_error", extra={"generation_id": generation.id}
        )
        if generation.status.is_terminal:
            return
        detail = str(exc) or type(exc).__name__
        try:
            await self._fail(
                generation, f"unexpected error: {detail}", code=GenerationErrorCode.API_ERROR
            )
        except InvalidTransitionError:
            self._log_already_terminal(generation)

    def _log_already_terminal(self, generation: Generation) -> None:
        self._logger.info("generation.already_terminal", extra={"generation_id": generation.id})

    async def _persist(self, generation: Generation, patch: GenerationPatch) -> None:
        await self._run_sync(self.generations.update, generation.id, patch)
        generation.apply(patch)


__all__ = ["GenerationWorker"]
