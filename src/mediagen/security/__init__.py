"""Security helpers."""

from .credentials import AesGcmCredentialCipher

__all__ = ["AesGcmCredentialCipher"]
