"""GRS AI provider driver implementation (asynchronous task queue)."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx

from ..domain.models import GenerationKind
from ..exceptions import ProviderError
from .providers_base import (
    GenerationRequest,
    ProviderDriver,
    SubmitOutcome,
    TaskStatus,
)

logger = logging.getLogger(__name__)

IMAGE_ENDPOINT = "/v1/draw/nano-banana"
VIDEO_ENDPOINT = "/v1/video/sora-video"
RESULT_ENDPOINT = "/v1/draw/result"
TERMINAL_STATUSES = frozenset({"succeeded", "failed"})
GENERIC_FAILURE = "API call failed"


@dataclass(slots=True)
class GrsaiDriver(ProviderDriver):
    """Submit draw/video tasks and poll ``/v1/draw/result`` for completion."""

    host: str
    api_key: str
    timeout_seconds: float = 180.0
    log: logging.Logger = field(default_factory=lambda: logger)

    name = "grsai"

    def __post_init__(self) -> None:
        self.host = self.host.rstrip("/")

    async def submit(self, request: GenerationRequest) -> SubmitOutcome:
        if request.kind is GenerationKind.VIDEO:
            endpoint = VIDEO_ENDPOINT
            body: dict[str, Any] = {
                "model": request.model,
                "prompt": request.prompt,
                "aspectRatio": request.aspect_ratio or "9:16",
                "duration": request.duration or 10,
                "size": request.video_size or "small",
                "shutProgress": False,
            }
            if request.references:
                body["url"] = request.references[0]
        else:
            endpoint = IMAGE_ENDPOINT
            body = {
                "model": request.model,
                "prompt": request.prompt,
                "aspectRatio": request.aspect_ratio or "auto",
                "urls": list(request.references),
                # "-1" switches the API to polling mode and returns the id immediately.
                "webHook": "-1",
                "shutProgress": False,
            }
            if request.image_size:
                body["imageSize"] = request.image_size

        self.log.info(
            "grsai.task.submit generation_id=%s kind=%s model=%s refs=%d",
            request.generation_id,
            request.kind.value,
            request.model,
            len(request.references),
        )
        result = await self._post_json(endpoint, body)
        _raise_for_error_code(result)

        task_id = _extract_task_id(result)
        status = result.get("status")
        results = result.get("results")
        if isinstance(status, str) and status and isinstance(results, list) and results:
            self.log.info("grsai.task.finished_immediately task_id=%s status=%s", task_id, status)
            return SubmitOutcome(task_id=task_id, immediate=parse_task_status(result))

        if not task_id:
            self.log.warning("grsai.task.unexpected_response keys=%s", sorted(result))
            raise ProviderError("API error: provider returned a malformed payload")

        self.log.info("grsai.task.created task_id=%s", task_id)
        return SubmitOutcome(task_id=task_id)

    async def fetch_result(self, task_id: str) -> TaskStatus:
        result = await self._post_json(RESULT_ENDPOINT, {"id": task_id})
        data = result.get("data")
        if isinstance(data, Mapping):
            return parse_task_status(data)
        return parse_task_status(result)

    async def _post_json(self, endpoint: str, body: Mapping[str, Any]) -> dict[str, Any]:
        url = f"{self.host}{endpoint}"
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_seconds) as client:
                response = await client.post(url, headers=headers, json=body)
        except httpx.HTTPError as exc:
            self.log.warning("grsai.request.failed url=%s error=%s", url, exc)
            raise ProviderError(f"request failed: network error: {exc}") from exc

        payload = decode_body(response.text)
        if response.status_code < 200 or response.status_code >= 300:
            message = _first_message(payload, ("message", "error", "msg")) or GENERIC_FAILURE
            raise ProviderError(f"{message} (HTTP {response.status_code})")
        if payload is None:
            raise ProviderError("API error: provider returned a malformed payload")
        return payload


def decode_body(text: str) -> dict[str, Any] | None:
    """Decode a JSON body or an event stream of ``data: <json>`` lines."""

    stripped = (text or "").strip()
    if not stripped:
        return None
    if stripped.startswith("data:"):
        return parse_event_stream(stripped)
    try:
        decoded = json.loads(stripped)
    except ValueError:
        logger.warning("grsai.response.invalid_json length=%d", len(stripped))
        return None
    return decoded if isinstance(decoded, dict) else None


def parse_event_stream(text: str) -> dict[str, Any] | None:
    """Replay ``data:`` records; the last terminal one wins, else the last one."""

    last: dict[str, Any] | None = None
    terminal: dict[str, Any] | None = None
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line.startswith("data:"):
            continue
        chunk = line[len("data:") :].strip()
        if not chunk:
            continue
        try:
            record = json.loads(chunk)
        except ValueError:
            logger.debug("grsai.stream.skip_line %s", chunk[:120])
            continue
        if not isinstance(record, dict):
            continue
        last = record
        if record.get("status") in TERMINAL_STATUSES:
            terminal = record
    return terminal if terminal is not None else last


def parse_task_status(data: Mapping[str, Any]) -> TaskStatus:
    progress = data.get("progress")
    results = [item for item in data.get("results") or [] if isinstance(item, Mapping)]
    return TaskStatus(
        task_id=_as_str(data.get("id")) or None,
        status=_as_str(data.get("status")),
        progress=float(progress) if isinstance(progress, (int, float)) else 0.0,
        results=results,
        error=_as_str(data.get("error")),
        message=_as_str(data.get("message")),
    )


def _raise_for_error_code(result: Mapping[str, Any]) -> None:
    code = result.get("code")
    if isinstance(code, (int, float)) and code != 0:
        message = _first_message(result, ("msg", "message")) or GENERIC_FAILURE
        raise ProviderError(message)


def _extract_task_id(result: Mapping[str, Any]) -> str | None:
    data = result.get("data")
    if isinstance(data, Mapping) and _as_str(data.get("id")):
        return _as_str(data.get("id"))
    return _as_str(result.get("id")) or None


def _first_message(payload: Mapping[str, Any] | None, keys: tuple[str, ...]) -> str | None:
    if not payload:
        return None
    for key in keys:
        value = payload.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _as_str(value: Any) -> str:
    return value if isinstance(value, str) else ""
