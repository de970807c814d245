"""Gemini provider driver implementation (synchronous, image only)."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..domain.models import GenerationErrorCode, GenerationKind
from ..exceptions import ProviderError, UnsupportedFeatureError
from .providers_base import (
    GenerationRequest,
    ProviderDriver,
    ProviderResult,
    SubmitOutcome,
    TaskStatus,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-3-pro-image-preview"
DEFAULT_ASPECT_RATIO = "16:9"
DEFAULT_IMAGE_SIZE = "1K"
UNEXPECTED_FORMAT_MESSAGE = "API error: Gemini response has unexpected format"


@dataclass(slots=True)
class GeminiDriver(ProviderDriver):
    """Call the Gemini ``generateContent`` endpoint and return the first image."""

    host: str
    api_key: str
    timeout_seconds: float = 180.0
    log: logging.Logger = field(default_factory=lambda: logger)

    name = "gemini"

    def __post_init__(self) -> None:
        self.host = self.host.rstrip("/")

    def supports(self, kind: GenerationKind) -> bool:
        return kind is GenerationKind.IMAGE

    async def submit(self, request: GenerationRequest) -> SubmitOutcome:
        if not self.supports(request.kind):
            raise UnsupportedFeatureError("Gemini API does not support video generation")

        aspect_ratio = request.aspect_ratio
        if not aspect_ratio or aspect_ratio == "auto":
            aspect_ratio = DEFAULT_ASPECT_RATIO
        image_size = request.image_size or DEFAULT_IMAGE_SIZE
        model = request.model if request.model.startswith("gemini") else DEFAULT_MODEL

        parts: list[dict[str, Any]] = [{"text": request.prompt}]
        for reference in request.references:
            mime_type, data = _split_data_url(reference)
            if data:
                parts.append({"inline_data": {"mime_type": mime_type, "data": data}})

        body: dict[str, Any] = {
            "contents": [{"role": "user", "parts": parts}],
            "generationConfig": {
                "responseModalities": ["TEXT", "IMAGE"],
                "imageConfig": {"aspectRatio": aspect_ratio, "imageSize": image_size},
            },
        }
        url = f"{self.host}/v1beta/models/{model}:generateContent"

        self.log.info(
            "gemini.request.start generation_id=%s model=%s aspect_ratio=%s image_size=%s refs=%d",
            request.generation_id,
            model,
            aspect_ratio,
            image_size,
            len(parts) - 1,
        )

        try:
            response = await self._post(url, params={"key": self.api_key}, json=body)
        except httpx.HTTPError as exc:
            raise ProviderError(f"Gemini request failed: network error: {exc}") from exc

        if response.status_code < 200 or response.status_code >= 300:
            detail = _extract_error(response)
            self.log.error(
                "gemini.response.error status=%s detail=%s",
                response.status_code,
                detail,
                extra={"generation_id": request.generation_id},
            )
            raise ProviderError(f"API call failed (HTTP {response.status_code}): {detail}")

        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError("Gemini response is not valid JSON") from exc
        if not isinstance(data, dict):
            raise ProviderError(UNEXPECTED_FORMAT_MESSAGE, code=GenerationErrorCode.API_ERROR)

        data_urls = extract_image_data_urls(data)
        self.log.info("gemini.response.received %s", _response_summary(data))
        if not data_urls:
            body_preview = json.dumps(_mask_inline_data(data), ensure_ascii=False)[:4000]
            self.log.warning(
                "gemini.response.no_inline_data %s",
                body_preview,
                extra={"generation_id": request.generation_id},
            )
            raise ProviderError(_no_image_message(data), code=GenerationErrorCode.API_ERROR)

        data_url = first_decodable(data_urls)
        if data_url is None:
            raise ProviderError(
                "API error: Gemini image data could not be decoded",
                code=GenerationErrorCode.API_ERROR,
            )
        return SubmitOutcome(result=ProviderResult.inline(data_url))

    async def fetch_result(self, task_id: str) -> TaskStatus:
        raise UnsupportedFeatureError("Gemini API does not support task polling")

    async def _post(
        self, url: str, *, params: dict[str, str], json: dict[str, Any]
    ) -> httpx.Response:
        headers = {"Content-Type": "application/json"}
        async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
            return await client.post(url, headers=headers, params=params, json=json)


def extract_image_data_urls(data: dict[str, Any]) -> list[str]:
    """Return every inline image part as a ``data:<mime>;base64,<payload>`` string.

    Raises:
        ProviderError: when the candidates do not have the documented shape.
    """

    urls: list[str] = []
    try:
        for candidate in data.get("candidates") or []:
            content = (candidate or {}).get("content") or {}
            for part in content.get("parts") or []:
                inline = part.get("inline_data") or part.get("inlineData")
                if not inline or not inline.get("data"):
                    continue
                mime = inline.get("mime_type") or inline.get("mimeType") or "image/png"
                urls.append(f"data:{mime};base64,{inline['data']}")
    except (AttributeError, TypeError) as exc:
        raise ProviderError(UNEXPECTED_FORMAT_MESSAGE, code=GenerationErrorCode.API_ERROR) from exc
    return urls


def first_decodable(data_urls: list[str]) -> str | None:
    """Return the first data URL whose payload is valid base64."""

    for value in data_urls:
        _, payload = _split_data_url(value)
        try:
            base64.b64decode(payload.strip(), validate=True)
        except (binascii.Error, ValueError):
            continue
        return value
    return None


def _split_data_url(value: str) -> tuple[str, str]:
    if value.startswith("data:") and "," in value:
        header, payload = value.split(",", 1)
        mime = header[len("data:") :].removesuffix(";base64")
        return mime or "image/png", payload
    return "image/png", value


def _no_image_message(data: dict[str, Any]) -> str:
    candidates = data.get("candidates")
    first = candidates[0] if isinstance(candidates, list) and candidates else None
    if not isinstance(first, dict):
        return "API error: Gemini response does not contain inline data"
    finish_message = first.get("finishMessage") or first.get("finish_message")
    if finish_message:
        return str(finish_message)
    finish_reason = first.get("finishReason") or first.get("finish_reason")
    if finish_reason:
        return f"API error: Gemini response has no image (finish_reason={finish_reason})"
    return "API error: Gemini response does not contain inline data"


def _extract_error(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        message = str(error.get("message") or "").strip()
        status = str(error.get("status") or "").strip()
        return " ".join(part for part in (status, message) if part)
    return str(data)


def _mask_inline_data(obj: Any) -> Any:
    """Remove inline_data payloads to avoid logging base64 blobs."""
    if isinstance(obj, dict):
        result = {}
        for key, value in obj.items():
            if key in {"inline_data", "inlineData"} and isinstance(value, dict):
                result[key] = {k: v for k, v in value.items() if k != "data"}
            else:
                result[key] = _mask_inline_data(value)
        return result
    if isinstance(obj, list):
        return [_mask_inline_data(item) for item in obj]
    return obj


def _response_summary(data: dict[str, Any]) -> str:
    candidates = data.get("candidates") or []
    part_types: list[str] = []
    for candidate in candidates:
        content = candidate.get("content") if isinstance(candidate, dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        for part in parts or []:
            if not isinstance(part, dict):
                continue
            if "inline_data" in part or "inlineData" in part:
                part_types.append("inline_data")
            if "text" in part:
                part_types.append("text")
    return f"candidates={len(candidates)} part_types={part_types}"
