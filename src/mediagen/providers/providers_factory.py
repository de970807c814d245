"""Factory for provider drivers."""

from __future__ import annotations

from ..domain.models import ProviderCredentials, ProviderKind
from .providers_base import ProviderDriver
from .providers_gemini import GeminiDriver
from .providers_grsai import GrsaiDriver

# Hosts that speak the Gemini ``generateContent`` protocol.
GEMINI_HOST_MARKERS = ("yunwu.ai", "gemini", "google", "modelverse.cn")


def resolve_provider_kind(host: str, explicit: ProviderKind | str | None = None) -> ProviderKind:
    """Return ``explicit`` when configured, otherwise infer the kind from ``host``."""

    if explicit:
        return ProviderKind(str(getattr(explicit, "value", explicit)).lower())
    lowered = (host or "").lower()
    if any(marker in lowered for marker in GEMINI_HOST_MARKERS):
        return ProviderKind.GEMINI
    return ProviderKind.GRSAI


def create_driver(credentials: ProviderCredentials, *, timeout_seconds: float) -> ProviderDriver:
    """Instantiate the driver matching ``credentials.kind``."""
    if credentials.kind is ProviderKind.GEMINI:
        return GeminiDriver(
            host=credentials.host,
            api_key=credentials.api_key,
            timeout_seconds=timeout_seconds,
        )
    if credentials.kind is ProviderKind.GRSAI:
        return GrsaiDriver(
            host=credentials.host,
            api_key=credentials.api_key,
            timeout_seconds=timeout_seconds,
        )
    raise ValueError(f"Unsupported provider '{credentials.kind}'")
