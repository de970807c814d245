"""Provider drivers for the generation orchestrator."""

from .providers_base import (
    GenerationRequest,
    ProviderDriver,
    ProviderResult,
    SubmitOutcome,
    TaskStatus,
)
from .providers_factory import create_driver, resolve_provider_kind
from .providers_gemini import GeminiDriver
from .providers_grsai import GrsaiDriver

__all__ = [
    "GenerationRequest",
    "GeminiDriver",
    "GrsaiDriver",
    "ProviderDriver",
    "ProviderResult",
    "SubmitOutcome",
    "TaskStatus",
    "create_driver",
    "resolve_provider_kind",
]
