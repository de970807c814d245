"""Persistence layer for stored files."""

from __future__ import annotations

import secrets
from collections.abc import Callable
from uuid import uuid4

from sqlalchemy.orm import Session

from ..db.db_models import FileModel
from ..domain.models import StoredFile, now_ms
from ..exceptions import handle_sqlalchemy_errors


class SqlAlchemyFileRepository:
    """Manage ``files`` rows."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create_file(
        self,
        *,
        user_id: str,
        purpose: str,
        mime_type: str,
        path: str,
        persistent: bool = False,
        original_name: str | None = None,
        file_id: str | None = None,
    ) -> StoredFile:
        row = FileModel(
            id=file_id or str(uuid4()),
            user_id=user_id,
            purpose=purpose,
            mime_type=mime_type,
            original_name=original_name or None,
            path=path,
            persistent=persistent,
            public_token=secrets.token_urlsafe(24),
            created_at=now_ms(),
        )
        with handle_sqlalchemy_errors(entity="file"), self._session_factory() as session:
            session.add(row)
            session.commit()
            return _to_domain(row)

    def get_file(self, file_id: str) -> StoredFile | None:
        with handle_sqlalchemy_errors(entity="file"), self._session_factory() as session:
            row = session.get(FileModel, file_id)
            return _to_domain(row) if row is not None else None


def _to_domain(row: FileModel) -> StoredFile:
    return StoredFile(
        id=row.id,
        user_id=row.user_id,
        purpose=row.purpose,
        mime_type=row.mime_type,
        path=row.path,
        persistent=row.persistent,
        original_name=row.original_name,
        created_at=row.created_at,
    )


__all__ = ["SqlAlchemyFileRepository"]
