"""Repository interfaces consumed by the orchestrator.

Implementations are synchronous; the worker runs them in a thread via
``asyncio.to_thread`` so that database I/O never blocks the event loop.
"""

from __future__ import annotations

from typing import Protocol

from ..domain.models import (
    Generation,
    GenerationPatch,
    GenerationSettings,
    StoredFile,
    UserProvider,
)


class GenerationRepository(Protocol):
    """Persistence operations for generation rows."""

    def list_pending(self) -> list[Generation]:
        """Return generations whose status is ``queued`` or ``running``."""

    def get(self, generation_id: str) -> Generation | None:
        """Return a generation or ``None`` when it no longer exists."""

    def update(self, generation_id: str, patch: GenerationPatch) -> None:
        """Atomically write the fields set in ``patch``."""


class SettingsRepository(Protocol):
    def get_settings(self) -> GenerationSettings:
        """Return the system-wide generation timeouts."""


class UserProviderRepository(Protocol):
    def get_user_provider(self, user_id: str) -> UserProvider | None:
        """Return the per-user provider override, if any."""


class FileRepository(Protocol):
    def get_file(self, file_id: str) -> StoredFile | None:
        """Return file metadata (path and mime type)."""


class FileStorage(Protocol):
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
        """Persist ``data`` and register it, returning a durable reference."""


class CredentialDecryptor(Protocol):
    def decrypt(self, ciphertext: str, secret: str) -> str:
        """Return the plaintext for ``ciphertext``."""


__all__ = [
    "CredentialDecryptor",
    "FileRepository",
    "FileStorage",
    "GenerationRepository",
    "SettingsRepository",
    "UserProviderRepository",
]
