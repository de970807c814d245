"""Read access to the single-row settings table and per-user providers."""

from __future__ import annotations

from collections.abc import Callable

from sqlalchemy.orm import Session

from ..db.db_init import DEFAULT_SETTINGS, SETTINGS_ROW_ID
from ..db.db_models import SettingsModel, UserProviderModel
from ..domain.models import GenerationSettings, ProviderKind, UserProvider, now_ms
from ..domain.timeouts import TIMEOUT_FLOOR_SECONDS
from ..exceptions import handle_sqlalchemy_errors


class SqlAlchemySettingsRepository:
    """Return generation timeouts, repairing corrupt stored values."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get_settings(self) -> GenerationSettings:
        with handle_sqlalchemy_errors(entity="settings"), self._session_factory() as session:
            row = session.get(SettingsModel, SETTINGS_ROW_ID)
            if row is None:
                return GenerationSettings(**DEFAULT_SETTINGS)
            return GenerationSettings(
                image_timeout_seconds=_sanitize(
                    row.image_timeout_seconds, DEFAULT_SETTINGS["image_timeout_seconds"]
                ),
                video_timeout_seconds=_sanitize(
                    row.video_timeout_seconds, DEFAULT_SETTINGS["video_timeout_seconds"]
                ),
            )

    def update_timeouts(self, *, image_timeout_seconds: int, video_timeout_seconds: int) -> None:
        with handle_sqlalchemy_errors(entity="settings"), self._session_factory() as session:
            row = session.get(SettingsModel, SETTINGS_ROW_ID)
            if row is None:
                row = SettingsModel(id=SETTINGS_ROW_ID)
                session.add(row)
            row.image_timeout_seconds = image_timeout_seconds
            row.video_timeout_seconds = video_timeout_seconds
            session.commit()


class SqlAlchemyUserProviderRepository:
    """Per-user provider host and encrypted key."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def get_user_provider(self, user_id: str) -> UserProvider | None:
        with handle_sqlalchemy_errors(entity="user_provider"), self._session_factory() as session:
            row = session.get(UserProviderModel, user_id)
            if row is None:
                return None
            return UserProvider(
                user_id=row.user_id,
                provider_host=row.provider_host,
                api_key_enc=row.api_key_enc,
                provider_kind=ProviderKind(row.provider_kind) if row.provider_kind else None,
            )

    def set_user_provider(
        self,
        *,
        user_id: str,
        provider_host: str,
        api_key_enc: str | None,
        provider_kind: ProviderKind | None = None,
    ) -> None:
        with handle_sqlalchemy_errors(entity="user_provider"), self._session_factory() as session:
            row = session.get(UserProviderModel, user_id)
            if row is None:
                row = UserProviderModel(user_id=user_id)
                session.add(row)
            row.provider_host = provider_host
            row.api_key_enc = api_key_enc
            row.provider_kind = provider_kind.value if provider_kind else None
            row.updated_at = now_ms()
            session.commit()


def _sanitize(value: int | None, default: int) -> int:
    if value is None or value < TIMEOUT_FLOOR_SECONDS:
        return default
    return value


__all__ = ["SqlAlchemySettingsRepository", "SqlAlchemyUserProviderRepository"]
