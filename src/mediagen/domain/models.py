"""Domain models for the generation orchestrator.

A :class:`Generation` is one unit of user-requested work. Its input fields are
written once by the submission path; the orchestrator only touches lifecycle
fields, always through a :class:`GenerationPatch` so that every write is a
typed, validated partial update instead of an ad-hoc column map.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any


def now_ms() -> int:
    """Return the current wall-clock time in epoch milliseconds."""

    return int(time.time() * 1000)


class GenerationKind(str, Enum):
    """Kind of media requested by the user."""

    IMAGE = "image"
    VIDEO = "video"


class GenerationStatus(str, Enum):
    """Lifecycle states: ``queued`` -> ``running`` -> ``succeeded``/``failed``."""

    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (GenerationStatus.SUCCEEDED, GenerationStatus.FAILED)


PENDING_STATUSES = (GenerationStatus.QUEUED, GenerationStatus.RUNNING)


class GenerationErrorCode(str, Enum):
    """Closed taxonomy attached to every failed generation."""

    INSUFFICIENT_QUOTA = "insufficient_quota"
    INVALID_API_KEY = "invalid_api_key"
    TIMEOUT = "timeout"
    NETWORK_ERROR = "network_error"
    INVALID_REQUEST = "invalid_request"
    API_ERROR = "api_error"
    UNSUPPORTED_FEATURE = "unsupported_feature"
    UNKNOWN = "unknown"


class ProviderKind(str, Enum):
    """Wire protocol family used to talk to a provider host."""

    GEMINI = "gemini"
    GRSAI = "grsai"


@dataclass(slots=True)
class Generation:
    """Persisted generation row as seen by the orchestrator."""

    id: str
    user_id: str
    kind: GenerationKind
    model: str
    prompt: str
    status: GenerationStatus = GenerationStatus.QUEUED
    reference_file_ids: list[str] = field(default_factory=list)
    aspect_ratio: str | None = None
    image_size: str | None = None
    duration: int | None = None
    video_size: str | None = None
    progress: float | None = None
    started_at: int | None = None
    elapsed_seconds: int | None = None
    error: str | None = None
    error_code: GenerationErrorCode | None = None
    provider_task_id: str | None = None
    provider_result_url: str | None = None
    output_file_id: str | None = None
    created_at: int = 0
    updated_at: int = 0

    def apply(self, patch: "GenerationPatch") -> "Generation":
        """Return ``self`` with ``patch`` applied in place (local mirror of a write)."""

        for name, value in patch.changes().items():
            setattr(self, name, value)
        return self


_UNSET: Any = object()


@dataclass(slots=True)
class GenerationPatch:
    """Typed partial update for the lifecycle fields of a generation.

    Fields left at the sentinel are not written. ``None`` is a real value and
    clears the column.
    """

    status: GenerationStatus = _UNSET
    progress: float | None = _UNSET
    started_at: int | None = _UNSET
    elapsed_seconds: int | None = _UNSET
    error: str | None = _UNSET
    error_code: GenerationErrorCode | None = _UNSET
    provider_task_id: str | None = _UNSET
    provider_result_url: str | None = _UNSET
    output_file_id: str | None = _UNSET

    def __post_init__(self) -> None:
        if self.status is not _UNSET and not isinstance(self.status, GenerationStatus):
            self.status = GenerationStatus(self.status)
        if self.error_code not in (_UNSET, None) and not isinstance(
            self.error_code, GenerationErrorCode
        ):
            self.error_code = GenerationErrorCode(self.error_code)
        if self.progress not in (_UNSET, None) and not 0 <= self.progress <= 100:
            raise ValueError(f"progress must be within 0..100, got {self.progress}")
        if self.elapsed_seconds not in (_UNSET, None) and self.elapsed_seconds < 0:
            raise ValueError("elapsed_seconds must not be negative")
        if self.provider_task_id is not _UNSET and not self.provider_task_id:
            raise ValueError("provider_task_id must be a non-empty string")
        if self.status is GenerationStatus.FAILED:
            if not self.error or self.error_code in (_UNSET, None):
                raise ValueError("failed patch requires error and error_code")
        if self.status is GenerationStatus.SUCCEEDED and not self.output_file_id:
            raise ValueError("succeeded patch requires output_file_id")

    def changes(self) -> dict[str, Any]:
        """Return only the explicitly set fields."""

        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not _UNSET
        }

    def is_empty(self) -> bool:
        return not self.changes()


@dataclass(slots=True)
class GenerationSettings:
    """System-wide timeouts read from the settings row."""

    image_timeout_seconds: int = 600
    video_timeout_seconds: int = 600


@dataclass(slots=True)
class UserProvider:
    """Per-user provider override with an encrypted API key."""

    user_id: str
    provider_host: str
    api_key_enc: str | None = None
    provider_kind: ProviderKind | None = None


@dataclass(slots=True)
class ProviderCredentials:
    """Resolved host, plaintext key and wire protocol for one job."""

    host: str
    api_key: str
    kind: ProviderKind


@dataclass(slots=True)
class StoredFile:
    """Reference to a file registered with the storage collaborator."""

    id: str
    user_id: str
    purpose: str
    mime_type: str
    path: str
    persistent: bool = False
    original_name: str | None = None
    created_at: int = 0


__all__ = [
    "PENDING_STATUSES",
    "Generation",
    "GenerationErrorCode",
    "GenerationKind",
    "GenerationPatch",
    "GenerationSettings",
    "GenerationStatus",
    "ProviderCredentials",
    "ProviderKind",
    "StoredFile",
    "UserProvider",
    "now_ms",
]
