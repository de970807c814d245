"""Database initialization helpers."""

from __future__ import annotations

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from .db_models import Base, SettingsModel

SETTINGS_ROW_ID = 1
DEFAULT_SETTINGS = {
    "image_timeout_seconds": 600,
    "video_timeout_seconds": 600,
}


def init_db(engine: Engine, session_factory: sessionmaker[Session]) -> None:
    """Create tables and seed the settings row if the database is empty."""
    Base.metadata.create_all(engine)

    with session_factory() as session:
        _seed_settings(session)
        session.commit()


def _seed_settings(session: Session) -> None:
    if session.get(SettingsModel, SETTINGS_ROW_ID) is not None:
        return
    session.add(SettingsModel(id=SETTINGS_ROW_ID, **DEFAULT_SETTINGS))
