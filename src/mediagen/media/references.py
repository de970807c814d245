"""Load reference files and encode them as data URLs for provider requests."""

from __future__ import annotations

import base64
import logging
from collections.abc import Sequence
from pathlib import Path

from ..domain.models import GenerationKind
from ..repositories.interfaces import FileRepository

logger = logging.getLogger(__name__)

MAX_IMAGE_REFERENCES = 14
MAX_VIDEO_REFERENCES = 1


def reference_limit(kind: GenerationKind) -> int:
    return MAX_VIDEO_REFERENCES if kind is GenerationKind.VIDEO else MAX_IMAGE_REFERENCES


def encode_data_url(mime_type: str, data: bytes) -> str:
    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{mime_type or 'application/octet-stream'};base64,{encoded}"


def build_reference_data_urls(
    files: FileRepository,
    file_ids: Sequence[str],
    kind: GenerationKind,
    *,
    generation_id: str | None = None,
) -> list[str]:
    """Return data URLs for ``file_ids`` in order, capped by ``kind``.

    Missing rows and unreadable files are skipped with a warning so that a
    deleted upload does not fail the whole generation.
    """

    limit = reference_limit(kind)
    urls: list[str] = []
    for file_id in file_ids:
        if len(urls) >= limit:
            break
        stored = files.get_file(file_id)
        if stored is None:
            logger.warning(
                "generation.reference.missing",
                extra={"generation_id": generation_id, "file_id": file_id},
            )
            continue
        try:
            data = Path(stored.path).read_bytes()
        except OSError as exc:
            logger.warning(
                "generation.reference.unreadable",
                extra={
                    "generation_id": generation_id,
                    "file_id": file_id,
                    "error": str(exc),
                },
            )
            continue
        urls.append(encode_data_url(stored.mime_type, data))
    return urls


__all__ = [
    "MAX_IMAGE_REFERENCES",
    "MAX_VIDEO_REFERENCES",
    "build_reference_data_urls",
    "encode_data_url",
    "reference_limit",
]
