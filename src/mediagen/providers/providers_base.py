"""Abstract provider driver definition."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Mapping

from ..domain.models import GenerationKind


@dataclass(slots=True)
class GenerationRequest:
    """Provider-neutral description of one generation call."""

    kind: GenerationKind
    model: str
    prompt: str
    references: list[str] = field(default_factory=list)
    aspect_ratio: str | None = None
    image_size: str | None = None
    duration: int | None = None
    video_size: str | None = None
    generation_id: str | None = None


@dataclass(slots=True)
class ProviderResult:
    """Terminal output of a provider: a remote URL or an inline data URL."""

    url: str | None = None
    data_url: str | None = None

    @classmethod
    def remote(cls, url: str) -> "ProviderResult":
        return cls(url=url)

    @classmethod
    def inline(cls, data_url: str) -> "ProviderResult":
        return cls(data_url=data_url)

    @property
    def is_inline(self) -> bool:
        return self.data_url is not None

    @property
    def diagnostic_url(self) -> str | None:
        """Value stored as ``provider_result_url``."""

        return self.url if self.url is not None else self.data_url


@dataclass(slots=True)
class TaskStatus:
    """Structured result of ``fetch_result``."""

    task_id: str | None = None
    status: str = ""
    progress: float = 0.0
    results: list[Mapping[str, Any]] = field(default_factory=list)
    error: str = ""
    message: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == "succeeded"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    def first_result_url(self) -> str | None:
        """Return ``results[0].url``; later entries are ignored."""

        if not self.results:
            return None
        url = self.results[0].get("url")
        return str(url) if url else None

    def failure_message(self, default: str = "task failed") -> str:
        return self.error or self.message or default

    def to_result(self) -> ProviderResult | None:
        url = self.first_result_url()
        return ProviderResult.remote(url) if url else None


@dataclass(slots=True)
class SubmitOutcome:
    """Either a task id to poll, an immediate result, or both."""

    task_id: str | None = None
    immediate: TaskStatus | None = None
    result: ProviderResult | None = None

    @property
    def finished(self) -> bool:
        return self.immediate is not None or self.result is not None


class ProviderDriver(ABC):
    """Base interface for provider drivers.

    Drivers surface every failure as :class:`~src.mediagen.exceptions.ProviderError`.
    """

    name: str = ""

    def supports(self, kind: GenerationKind) -> bool:
        return True

    @abstractmethod
    async def submit(self, request: GenerationRequest) -> SubmitOutcome:
        """Submit ``request`` and return a task id or an immediate result."""

    @abstractmethod
    async def fetch_result(self, task_id: str) -> TaskStatus:
        """Return the current status of ``task_id``."""

    async def aclose(self) -> None:
        return None


__all__ = [
    "GenerationRequest",
    "ProviderDriver",
    "ProviderResult",
    "SubmitOutcome",
    "TaskStatus",
]
