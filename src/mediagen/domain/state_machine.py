"""Legal status transitions for a generation and the fields they carry.

Every function takes the latest known :class:`Generation` snapshot and returns
the :class:`GenerationPatch` that the caller persists. Nothing here performs
I/O, which keeps the transition rules testable in isolation.
"""

from __future__ import annotations

from .error_classifier import classify_error
from .models import (
    Generation,
    GenerationErrorCode,
    GenerationPatch,
    GenerationStatus,
    now_ms,
)
from .timeouts import elapsed_seconds
from ..exceptions import InvalidTransitionError

_TRANSITIONS: dict[GenerationStatus, frozenset[GenerationStatus]] = {
    GenerationStatus.QUEUED: frozenset({GenerationStatus.RUNNING}),
    GenerationStatus.RUNNING: frozenset(
        {GenerationStatus.RUNNING, GenerationStatus.SUCCEEDED, GenerationStatus.FAILED}
    ),
    GenerationStatus.SUCCEEDED: frozenset(),
    GenerationStatus.FAILED: frozenset(),
}


def can_transition(source: GenerationStatus, target: GenerationStatus) -> bool:
    """Return ``True`` when ``source -> target`` is allowed."""

    return target in _TRANSITIONS[source]


def _ensure_transition(generation: Generation, target: GenerationStatus) -> None:
    if not can_transition(generation.status, target):
        raise InvalidTransitionError(
            f"generation {generation.id}: {generation.status.value} -> {target.value} is not allowed"
        )


def _ensure_active(generation: Generation) -> None:
    if generation.status.is_terminal:
        raise InvalidTransitionError(
            f"generation {generation.id} is already {generation.status.value}"
        )


def start(generation: Generation, *, now: int | None = None) -> GenerationPatch:
    """Enter ``running``; stamps ``started_at`` only the first time."""

    _ensure_transition(generation, GenerationStatus.RUNNING)
    if generation.started_at:
        return GenerationPatch(status=GenerationStatus.RUNNING)
    return GenerationPatch(
        status=GenerationStatus.RUNNING,
        started_at=now if now is not None else now_ms(),
    )


def succeed(
    generation: Generation,
    *,
    output_file_id: str,
    result_url: str | None,
    now: int | None = None,
) -> GenerationPatch:
    """Enter ``succeeded`` with the materialised output file."""

    _ensure_transition(generation, GenerationStatus.SUCCEEDED)
    current = now if now is not None else now_ms()
    patch = GenerationPatch(
        status=GenerationStatus.SUCCEEDED,
        progress=100.0,
        output_file_id=output_file_id,
        provider_result_url=result_url,
        error=None,
        error_code=None,
    )
    elapsed = elapsed_seconds(generation.started_at, current)
    if elapsed is not None:
        patch.elapsed_seconds = elapsed
    return patch


def fail(
    generation: Generation,
    message: str,
    *,
    code: GenerationErrorCode | None = None,
    now: int | None = None,
) -> GenerationPatch:
    """Enter ``failed``; the code is classified from ``message`` when not given."""

    _ensure_transition(generation, GenerationStatus.FAILED)
    current = now if now is not None else now_ms()
    text = message.strip() if message and message.strip() else "generation failed"
    patch = GenerationPatch(
        status=GenerationStatus.FAILED,
        error=text,
        error_code=code or classify_error(text),
    )
    elapsed = elapsed_seconds(generation.started_at, current)
    if elapsed is not None:
        patch.elapsed_seconds = elapsed
    return patch


def record_submission(generation: Generation, task_id: str) -> GenerationPatch:
    """Persist the provider task id; a generation gets at most one."""

    _ensure_active(generation)
    if generation.provider_task_id:
        raise InvalidTransitionError(
            f"generation {generation.id} already has provider task {generation.provider_task_id}"
        )
    return GenerationPatch(provider_task_id=task_id, progress=0.0)


def record_progress(generation: Generation, progress: float) -> GenerationPatch:
    _ensure_active(generation)
    return GenerationPatch(progress=min(100.0, max(0.0, float(progress))))


def record_transient_error(generation: Generation, message: str) -> GenerationPatch:
    """Keep the last poll error as a diagnostic without failing the job."""

    _ensure_active(generation)
    return GenerationPatch(error=message)


__all__ = [
    "can_transition",
    "fail",
    "record_progress",
    "record_submission",
    "record_transient_error",
    "start",
    "succeed",
]
