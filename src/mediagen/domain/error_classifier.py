"""Map free-text provider errors to :class:`GenerationErrorCode`."""

from __future__ import annotations

from .models import GenerationErrorCode

# Evaluated in order; the first category with a matching needle wins.
ERROR_PATTERNS: tuple[tuple[GenerationErrorCode, tuple[str, ...]], ...] = (
    (
        GenerationErrorCode.INSUFFICIENT_QUOTA,
        ("insufficient quota", "quota failed", "insufficient balance", "余额不足", "配额"),
    ),
    (
        GenerationErrorCode.INVALID_API_KEY,
        ("invalid api key", "unauthorized", "401", "authentication failed"),
    ),
    (
        GenerationErrorCode.TIMEOUT,
        ("timeout", "timed out", "超时"),
    ),
    (
        GenerationErrorCode.NETWORK_ERROR,
        ("network", "connection", "dns", "dial"),
    ),
    (
        GenerationErrorCode.INVALID_REQUEST,
        ("invalid request", "invalid url", "bad request", "400"),
    ),
    (
        GenerationErrorCode.API_ERROR,
        ("api调用失败", "api error", "api call failed", "internal error", "500", "502", "503"),
    ),
    (
        GenerationErrorCode.UNSUPPORTED_FEATURE,
        ("不支持", "not supported", "unsupported"),
    ),
)


def classify_error(message: str | None) -> GenerationErrorCode:
    """Return the error code for ``message``; unknown phrasing maps to ``UNKNOWN``."""

    lowered = (message or "").lower()
    for code, needles in ERROR_PATTERNS:
        if any(needle in lowered for needle in needles):
            return code
    return GenerationErrorCode.UNKNOWN


__all__ = ["ERROR_PATTERNS", "classify_error"]
