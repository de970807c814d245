"""Persistence layer for generations."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from uuid import uuid4

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ..db.db_models import GenerationModel
from ..domain.models import (
    PENDING_STATUSES,
    Generation,
    GenerationErrorCode,
    GenerationKind,
    GenerationPatch,
    GenerationStatus,
    now_ms,
)
from ..exceptions import InvalidTransitionError, NotFoundError, handle_sqlalchemy_errors

MAX_REFERENCE_FILES = 14
_TERMINAL_STATUSES = [
    status.value for status in GenerationStatus if status.is_terminal
]


class SqlAlchemyGenerationRepository:
    """Manage ``generations`` rows."""

    def __init__(self, session_factory: Callable[[], Session]) -> None:
        self._session_factory = session_factory

    def create_queued(
        self,
        *,
        user_id: str,
        kind: GenerationKind,
        model: str,
        prompt: str,
        reference_file_ids: Sequence[str] = (),
        aspect_ratio: str | None = None,
        image_size: str | None = None,
        duration: int | None = None,
        video_size: str | None = None,
        generation_id: str | None = None,
    ) -> Generation:
        """Insert a ``queued`` row, the way the external submission path does."""

        if not prompt or not prompt.strip():
            raise ValueError("prompt must not be empty")
        created = now_ms()
        model_row = GenerationModel(
            id=generation_id or str(uuid4()),
            user_id=user_id,
            kind=GenerationKind(kind).value,
            model=model,
            prompt=prompt,
            status=GenerationStatus.QUEUED.value,
            reference_file_ids=list(reference_file_ids)[:MAX_REFERENCE_FILES],
            aspect_ratio=aspect_ratio,
            image_size=image_size,
            duration=duration,
            video_size=video_size,
            created_at=created,
            updated_at=created,
        )
        with handle_sqlalchemy_errors(entity="generation"), self._session_factory() as session:
            session.add(model_row)
            session.commit()
            return _to_domain(model_row)

    def list_pending(self) -> list[Generation]:
        statuses = [status.value for status in PENDING_STATUSES]
        stmt = (
            select(GenerationModel)
            .where(GenerationModel.status.in_(statuses))
            .order_by(GenerationModel.created_at)
        )
        with handle_sqlalchemy_errors(entity="generation"), self._session_factory() as session:
            return [_to_domain(row) for row in session.scalars(stmt)]

    def get(self, generation_id: str) -> Generation | None:
        with handle_sqlalchemy_errors(entity="generation"), self._session_factory() as session:
            row = session.get(GenerationModel, generation_id)
            return _to_domain(row) if row is not None else None

    def update(self, generation_id: str, patch: GenerationPatch) -> None:
        """Apply ``patch`` in one statement; terminal rows are never rewritten.

        Raises:
            NotFoundError: when the row does not exist.
            InvalidTransitionError: when the row is already ``succeeded`` or
                ``failed``.
        """

        changes = patch.changes()
        if not changes:
            return
        values = {name: getattr(value, "value", value) for name, value in changes.items()}
        values["updated_at"] = now_ms()
        stmt = (
            update(GenerationModel)
            .where(GenerationModel.id == generation_id)
            .where(GenerationModel.status.not_in(_TERMINAL_STATUSES))
            .values(**values)
        )
        with handle_sqlalchemy_errors(entity="generation"), self._session_factory() as session:
            result = session.execute(stmt)
            session.commit()
            if result.rowcount:
                return
            row = session.get(GenerationModel, generation_id)
            if row is None:
                raise NotFoundError(f"generation '{generation_id}' not found")
            raise InvalidTransitionError(f"generation '{generation_id}' is already {row.status}")


def _to_domain(row: GenerationModel) -> Generation:
    return Generation(
        id=row.id,
        user_id=row.user_id,
        kind=GenerationKind(row.kind),
        model=row.model,
        prompt=row.prompt,
        status=GenerationStatus(row.status),
        reference_file_ids=list(row.reference_file_ids or []),
        aspect_ratio=row.aspect_ratio,
        image_size=row.image_size,
        duration=row.duration,
        video_size=row.video_size,
        progress=row.progress,
        started_at=row.started_at,
        elapsed_seconds=row.elapsed_seconds,
        error=row.error,
        error_code=GenerationErrorCode(row.error_code) if row.error_code else None,
        provider_task_id=row.provider_task_id,
        provider_result_url=row.provider_result_url,
        output_file_id=row.output_file_id,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


__all__ = ["MAX_REFERENCE_FILES", "SqlAlchemyGenerationRepository"]
