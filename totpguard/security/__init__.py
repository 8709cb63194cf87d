"""
Security utilities for TOTPGUARD.

This package provides:
- Field-level AES-256-GCM encryption for secrets at rest
- Key derivation from operator key material
"""
from .field_cipher import (
    EncryptionConfig,
    FieldCipher,
    Decrypted,
    Plaintext,
    derive_key,
    is_encrypted,
)

__all__ = [
    "EncryptionConfig",
    "FieldCipher",
    "Decrypted",
    "Plaintext",
    "derive_key",
    "is_encrypted",
]
