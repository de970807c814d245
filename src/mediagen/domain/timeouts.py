"""Timeout and elapsed-time arithmetic shared by the worker and state machine."""

from __future__ import annotations

import math

from .models import GenerationKind, GenerationSettings

DEFAULT_TIMEOUT_SECONDS = 600
TIMEOUT_FLOOR_SECONDS = 30
POLL_INTERVAL_SECONDS = 2


def resolve_timeout_seconds(
    kind: GenerationKind,
    settings: GenerationSettings | None,
    *,
    floor_seconds: int = TIMEOUT_FLOOR_SECONDS,
    default_seconds: int = DEFAULT_TIMEOUT_SECONDS,
) -> int:
    """Pick the kind-specific timeout, falling back to the default below the floor.

    A value below ``floor_seconds`` is treated as corrupt rather than clamped
    up to the floor.
    """

    timeout = default_seconds
    if settings is not None:
        if kind is GenerationKind.VIDEO:
            timeout = settings.video_timeout_seconds
        else:
            timeout = settings.image_timeout_seconds
    if timeout is None or timeout < floor_seconds:
        return default_seconds
    return int(timeout)


def max_poll_attempts(
    timeout_seconds: int, *, poll_interval_seconds: int = POLL_INTERVAL_SECONDS
) -> int:
    """Return ``ceil(timeout / interval)`` with a minimum of one attempt."""

    if poll_interval_seconds <= 0:
        raise ValueError("poll_interval_seconds must be positive")
    return max(1, math.ceil(timeout_seconds / poll_interval_seconds))


def elapsed_seconds(started_at_ms: int | None, now_ms: int) -> int | None:
    """Whole seconds since ``started_at_ms``; ``None`` when the start is unknown."""

    if not started_at_ms:
        return None
    return max(0, (now_ms - started_at_ms) // 1000)


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "POLL_INTERVAL_SECONDS",
    "TIMEOUT_FLOOR_SECONDS",
    "elapsed_seconds",
    "max_poll_attempts",
    "resolve_timeout_seconds",
]
