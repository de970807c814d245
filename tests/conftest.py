from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from src.mediagen.db.db_init import init_db
from src.mediagen.media.file_storage import LocalFileStorage
from src.mediagen.repositories import (
    SqlAlchemyFileRepository,
    SqlAlchemyGenerationRepository,
    SqlAlchemySettingsRepository,
    SqlAlchemyUserProviderRepository,
)


@pytest.fixture
def session_factory(tmp_path: Path):
    # File backed so that worker threads share one database.
    engine = create_engine(f"sqlite:///{tmp_path / 'mediagen.db'}", future=True)
    Session = sessionmaker(bind=engine, expire_on_commit=False)
    init_db(engine, Session)
    yield Session
    engine.dispose()


@pytest.fixture
def generation_repo(session_factory) -> SqlAlchemyGenerationRepository:
    return SqlAlchemyGenerationRepository(session_factory)


@pytest.fixture
def settings_repo(session_factory) -> SqlAlchemySettingsRepository:
    return SqlAlchemySettingsRepository(session_factory)


@pytest.fixture
def user_provider_repo(session_factory) -> SqlAlchemyUserProviderRepository:
    return SqlAlchemyUserProviderRepository(session_factory)


@pytest.fixture
def file_repo(session_factory) -> SqlAlchemyFileRepository:
    return SqlAlchemyFileRepository(session_factory)


@pytest.fixture
def storage(tmp_path: Path, file_repo) -> LocalFileStorage:
    return LocalFileStorage(tmp_path / "storage", file_repo)
