from __future__ import annotations

from typing import Any

import pytest

from src.mediagen.config import DispatchSettings, ProviderDefaults
from src.mediagen.domain.models import ProviderKind
from src.mediagen.providers.providers_factory import create_driver
from src.mediagen.repositories import SqlAlchemyGenerationRepository
from src.mediagen.security.credentials import AesGcmCredentialCipher
from src.mediagen.workers.generation_worker import GenerationWorker

SECRET = "integration-secret"


class RecordingGenerationRepository(SqlAlchemyGenerationRepository):
    """SQLite repository that also keeps every patch it writes."""

    def __init__(self, session_factory) -> None:
        super().__init__(session_factory)
        self.patches: list[tuple[str, dict[str, Any]]] = []

    def update(self, generation_id, patch) -> None:
        self.patches.append((generation_id, patch.changes()))
        super().update(generation_id, patch)


@pytest.fixture
def generation_repo(session_factory) -> RecordingGenerationRepository:
    return RecordingGenerationRepository(session_factory)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_worker(generation_repo, settings_repo, user_provider_repo, file_repo, storage, sleeps):
    def _make(
        driver=None,
        *,
        host: str = "https://grsai.dakka.com.cn",
        api_key: str = "default-key",
        kind: ProviderKind | None = None,
    ) -> GenerationWorker:
        factory_calls: list[tuple[Any, float]] = []

        def factory(credentials, *, timeout_seconds):
            factory_calls.append((credentials, timeout_seconds))
            if driver is None:
                return create_driver(credentials, timeout_seconds=timeout_seconds)
            return driver

        worker = GenerationWorker(
            generations=generation_repo,
            settings=settings_repo,
            user_providers=user_provider_repo,
            files=file_repo,
            storage=storage,
            decryptor=AesGcmCredentialCipher(),
            provider_defaults=ProviderDefaults(host=host, api_key=api_key, kind=kind),
            encryption_secret=SECRET,
            dispatch=DispatchSettings(),
            driver_factory=factory,
            sleep=sleeps.append,
        )
        worker.factory_calls = factory_calls
        return worker

    return _make
