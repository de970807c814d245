"""Application configuration builder."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .db.db_init import init_db
from .domain.models import ProviderKind
from .domain.timeouts import (
    DEFAULT_TIMEOUT_SECONDS,
    POLL_INTERVAL_SECONDS,
    TIMEOUT_FLOOR_SECONDS,
)

DEFAULT_ENCRYPTION_SECRET = "PLEASE_CHANGE_THIS_SECRET_32BYTES"


@dataclass(slots=True)
class ProviderDefaults:
    """System-wide provider used when a user has no override."""

    host: str = "https://grsai.dakka.com.cn"
    api_key: str = ""
    kind: ProviderKind | None = None


@dataclass(slots=True)
class DispatchSettings:
    dispatch_interval_seconds: float = 3.0
    poll_interval_seconds: float = float(POLL_INTERVAL_SECONDS)
    timeout_floor_seconds: int = TIMEOUT_FLOOR_SECONDS
    timeout_default_seconds: int = DEFAULT_TIMEOUT_SECONDS
    result_download_timeout_seconds: float = 120.0


@dataclass(slots=True)
class AppConfig:
    database_url: str
    engine: Engine
    session_factory: sessionmaker[Session]
    storage_dir: Path
    encryption_secret: str = DEFAULT_ENCRYPTION_SECRET
    provider_defaults: ProviderDefaults = field(default_factory=ProviderDefaults)
    dispatch: DispatchSettings = field(default_factory=DispatchSettings)


def _provider_kind_from_env(value: str | None) -> ProviderKind | None:
    if not value or not value.strip():
        return None
    return ProviderKind(value.strip().lower())


def load_config() -> AppConfig:
    """Load configuration from environment (SQLite by default)."""
    storage_dir = Path(os.getenv("STORAGE_DIR", "storage"))
    storage_dir.mkdir(parents=True, exist_ok=True)

    provider_defaults = ProviderDefaults(
        host=os.getenv("DEFAULT_PROVIDER_HOST", "https://grsai.dakka.com.cn"),
        api_key=os.getenv("DEFAULT_PROVIDER_API_KEY", ""),
        kind=_provider_kind_from_env(os.getenv("DEFAULT_PROVIDER_KIND")),
    )
    dispatch = DispatchSettings(
        dispatch_interval_seconds=float(os.getenv("DISPATCH_INTERVAL_SECONDS", 3)),
        poll_interval_seconds=float(os.getenv("POLL_INTERVAL_SECONDS", POLL_INTERVAL_SECONDS)),
        timeout_floor_seconds=int(os.getenv("JOB_TIMEOUT_FLOOR_SECONDS", TIMEOUT_FLOOR_SECONDS)),
        timeout_default_seconds=int(
            os.getenv("JOB_TIMEOUT_DEFAULT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
        ),
        result_download_timeout_seconds=float(
            os.getenv("RESULT_DOWNLOAD_TIMEOUT_SECONDS", 120)
        ),
    )

    database_url = os.getenv("DATABASE_URL", "sqlite:///mediagen.db")
    engine = create_engine(database_url, future=True)
    session_factory: sessionmaker[Session] = sessionmaker(bind=engine, expire_on_commit=False)

    init_db(engine, session_factory)

    return AppConfig(
        database_url=database_url,
        engine=engine,
        session_factory=session_factory,
        storage_dir=storage_dir,
        encryption_secret=os.getenv("API_KEY_ENCRYPTION_SECRET", DEFAULT_ENCRYPTION_SECRET),
        provider_defaults=provider_defaults,
        dispatch=dispatch,
    )


__all__ = ["AppConfig", "DispatchSettings", "ProviderDefaults", "load_config"]
