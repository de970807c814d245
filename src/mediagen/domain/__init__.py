"""Domain models and pure rules of the generation orchestrator."""

from .error_classifier import classify_error
from .models import (
    PENDING_STATUSES,
    Generation,
    GenerationErrorCode,
    GenerationKind,
    GenerationPatch,
    GenerationSettings,
    GenerationStatus,
    ProviderCredentials,
    ProviderKind,
    StoredFile,
    UserProvider,
    now_ms,
)
from .timeouts import elapsed_seconds, max_poll_attempts, resolve_timeout_seconds

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
    "classify_error",
    "elapsed_seconds",
    "max_poll_attempts",
    "now_ms",
    "resolve_timeout_seconds",
]
