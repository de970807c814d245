"""Local disk storage for generated and uploaded files."""

from __future__ import annotations

import contextlib
import mimetypes
from dataclasses import dataclass
from pathlib import Path
from uuid import uuid4

from ..domain.models import StoredFile
from ..repositories.file_repository import SqlAlchemyFileRepository

_EXTENSION_OVERRIDES = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
    "video/mp4": "mp4",
}


@dataclass(slots=True)
class LocalFileStorage:
    """Write bytes under ``root/u_<user>/<purpose>/`` and register a file row."""

    root: Path
    files: SqlAlchemyFileRepository

    def user_dir(self, user_id: str, purpose: str) -> Path:
        return self.root / f"u_{user_id}" / purpose

    def save_bytes(
        self,
        *,
        user_id: str,
        purpose: str,
        mime_type: str,
        original_name: str,
        data: bytes,
        persistent: bool = False,
    ) -> StoredFile:
        directory = self.user_dir(user_id, purpose)
        directory.mkdir(parents=True, exist_ok=True)
        file_id = str(uuid4())
        path = directory / f"{file_id}.{guess_extension(mime_type)}"
        path.write_bytes(data)
        try:
            return self.files.create_file(
                file_id=file_id,
                user_id=user_id,
                purpose=purpose,
                mime_type=mime_type,
                path=str(path),
                persistent=persistent,
                original_name=original_name,
            )
        except Exception:
            with contextlib.suppress(OSError):
                path.unlink()
            raise


def guess_extension(mime_type: str) -> str:
    base = (mime_type or "").split(";", 1)[0].strip().lower()
    if base in _EXTENSION_OVERRIDES:
        return _EXTENSION_OVERRIDES[base]
    extension = mimetypes.guess_extension(base) if base else None
    return extension.lstrip(".") if extension else "bin"


__all__ = ["LocalFileStorage", "guess_extension"]
