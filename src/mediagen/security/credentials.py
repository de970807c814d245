"""AES-256-GCM encryption for provider API keys stored at rest.

Stored values look like ``aes256gcm:<b64 nonce>:<b64 ciphertext>``. The key is
the SHA-256 digest of the configured secret.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import CredentialError

ALGORITHM = "aes256gcm"
NONCE_SIZE = 12


def derive_key(secret: str) -> bytes:
    return hashlib.sha256(secret.encode("utf-8")).digest()


class AesGcmCredentialCipher:
    """Encrypt and decrypt provider keys."""

    def encrypt(self, plaintext: str, secret: str) -> str:
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = AESGCM(derive_key(secret)).encrypt(nonce, plaintext.encode("utf-8"), None)
        return ":".join(
            (
                ALGORITHM,
                base64.b64encode(nonce).decode("ascii"),
                base64.b64encode(ciphertext).decode("ascii"),
            )
        )

    def decrypt(self, ciphertext: str, secret: str) -> str:
        """Return the plaintext key.

        Raises:
            CredentialError: if the value has an unknown format or fails
                authentication with ``secret``.
        """

        parts = (ciphertext or "").split(":")
        if len(parts) != 3 or parts[0] != ALGORITHM:
            raise CredentialError("unsupported encryption algorithm")
        try:
            nonce = base64.b64decode(parts[1], validate=True)
            sealed = base64.b64decode(parts[2], validate=True)
        except (binascii.Error, ValueError) as exc:
            raise CredentialError("malformed encrypted value") from exc
        if len(nonce) != NONCE_SIZE:
            raise CredentialError("malformed encrypted value")
        try:
            plain = AESGCM(derive_key(secret)).decrypt(nonce, sealed, None)
        except InvalidTag as exc:
            raise CredentialError("decryption failed") from exc
        return plain.decode("utf-8")


__all__ = ["ALGORITHM", "AesGcmCredentialCipher", "derive_key"]
