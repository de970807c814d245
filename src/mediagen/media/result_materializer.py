"""Turn provider results into stored files."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass, field

import httpx

from ..domain.models import GenerationErrorCode, StoredFile
from ..exceptions import MaterializationError, RepositoryError
from ..providers.providers_base import ProviderResult
from ..repositories.interfaces import FileStorage

logger = logging.getLogger(__name__)

OUTPUT_PURPOSE = "generation-output"
DEFAULT_MIME = "application/octet-stream"


@dataclass(slots=True)
class ResultMaterializer:
    """Fetch or decode a provider result and hand the bytes to ``storage``."""

    storage: FileStorage
    timeout_seconds: float = 120.0
    log: logging.Logger = field(default_factory=lambda: logger)

    async def materialize(
        self,
        user_id: str,
        result: ProviderResult,
        *,
        timeout_seconds: float | None = None,
    ) -> StoredFile:
        """Store ``result`` for ``user_id`` and return the file reference.

        Raises:
            MaterializationError: with ``network_error`` when the download
                fails, ``invalid_request`` for a malformed data URL and
                ``api_error`` when the payload does not decode or there is
                nothing to store.
        """

        if result.data_url is not None:
            try:
                mime, data = decode_data_url(result.data_url)
            except binascii.Error as exc:
                raise MaterializationError(
                    f"failed to decode image data: {exc}",
                    code=GenerationErrorCode.API_ERROR,
                ) from exc
            except ValueError as exc:
                raise MaterializationError(
                    f"invalid inline image data: {exc}",
                    code=GenerationErrorCode.INVALID_REQUEST,
                ) from exc
        elif result.url:
            data, mime = await self.fetch_remote(result.url, timeout_seconds=timeout_seconds)
        else:
            raise MaterializationError(
                "provider returned no result url", code=GenerationErrorCode.API_ERROR
            )

        self.log.info(
            "materializer.store user_id=%s bytes=%d mime=%s", user_id, len(data), mime
        )
        try:
            return await asyncio.to_thread(
                self.storage.save_bytes,
                user_id=user_id,
                purpose=OUTPUT_PURPOSE,
                mime_type=mime,
                original_name="",
                data=data,
                persistent=False,
            )
        except (OSError, RepositoryError) as exc:
            raise MaterializationError(
                f"failed to store result: {exc}", code=GenerationErrorCode.API_ERROR
            ) from exc

    async def fetch_remote(
        self, url: str, *, timeout_seconds: float | None = None
    ) -> tuple[bytes, str]:
        timeout = timeout_seconds if timeout_seconds and timeout_seconds > 0 else self.timeout_seconds
        self.log.info("materializer.download url=%s timeout=%s", url, timeout)
        try:
            async with httpx.AsyncClient(timeout=timeout) as client:
                response = await client.get(url)
        except httpx.HTTPError as exc:
            raise MaterializationError(
                f"download failed: {exc}", code=GenerationErrorCode.NETWORK_ERROR
            ) from exc
        if response.status_code < 200 or response.status_code >= 300:
            raise MaterializationError(
                f"download failed: HTTP {response.status_code}",
                code=GenerationErrorCode.NETWORK_ERROR,
            )
        mime = response.headers.get("Content-Type") or DEFAULT_MIME
        return response.content, mime


def decode_data_url(value: str) -> tuple[str, bytes]:
    """Split ``data:<mime>;base64,<payload>`` and decode the payload.

    A bare base64 string is accepted and treated as PNG. When the header
    carries no mime type it is sniffed from the decoded bytes. Raises
    ``ValueError`` for a data URL without payload and ``binascii.Error`` (a
    ``ValueError`` subclass) when the payload is not valid base64.
    """

    if value.startswith("data:"):
        header, sep, payload = value.partition(",")
        if not sep:
            raise ValueError("data URL has no payload separator")
        mime = header[len("data:") :].split(";", 1)[0].strip()
    else:
        mime, payload = "image/png", value
    try:
        data = base64.b64decode(payload.strip(), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise binascii.Error(f"base64 decode failed: {exc}") from exc
    return mime or sniff_mime_type(data), data


def sniff_mime_type(data: bytes) -> str:
    if data.startswith(b"\x89PNG"):
        return "image/png"
    if data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if data.startswith(b"GIF"):
        return "image/gif"
    if len(data) >= 12 and data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return DEFAULT_MIME


__all__ = [
    "OUTPUT_PURPOSE",
    "ResultMaterializer",
    "decode_data_url",
    "sniff_mime_type",
]
