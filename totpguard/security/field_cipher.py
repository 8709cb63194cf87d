"""
Field-level encryption for sensitive values (TOTP secrets).

Uses AES-256-GCM (authenticated encryption) from the ``cryptography``
package. Ciphertext layout:

    "enc:" + base64(IV[12] || ciphertext || tag[16])

Key material comes from an explicit EncryptionConfig built once at startup.
If the material base64-decodes to exactly 32 bytes it is used directly as
the AES key; anything else is treated as a passphrase and stretched with
PBKDF2-HMAC-SHA256. The derived key is recomputed on every call and never
kept on the instance.

Values without the "enc:" prefix are legacy plaintext. ``open()`` reports
them as Plaintext so callers can tell them apart from verified ciphertext;
``decrypt()`` returns them unchanged.
"""
import os
import base64
import binascii
import re
import logging
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from ..errors import ConfigurationError, IntegrityError
from ..utils.secrets import get_secret

logger = logging.getLogger(__name__)

ENCRYPTED_PREFIX = "enc:"
KEY_ENV_VAR = "DATA_ENCRYPTION_KEY"

IV_LENGTH = 12       # 96-bit nonce for AES-GCM
TAG_LENGTH = 16      # 128-bit authentication tag
KEY_LENGTH = 32      # AES-256

PBKDF2_SALT = b"casa-field-encryption-v1"
PBKDF2_ITERATIONS = 100_000

ASCII_WHITESPACE = re.compile(rb"[\t\n\f\r ]")


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass(frozen=True)
class EncryptionConfig:
    """Operator-supplied key material for field encryption."""
    key_material: bytes

    def __repr__(self) -> str:
        return "EncryptionConfig(key_material=<redacted>)"

    @classmethod
    def from_env(cls) -> "EncryptionConfig":
        """
        Load key material from DATA_ENCRYPTION_KEY (or DATA_ENCRYPTION_KEY_FILE).

        Raises:
            ConfigurationError: If the key is not set.
        """
        raw = get_secret(KEY_ENV_VAR)
        if not raw:
            raise ConfigurationError(
                f"{KEY_ENV_VAR} not set. Generate with: python scripts/generate_key.py"
            )
        return cls(key_material=raw.encode("utf-8"))


def derive_key(key_material: bytes) -> bytes:
    """
    Turn operator key material into a 256-bit AES key.

    ASCII whitespace is ignored when checking for a base64 key, so a pasted
    key with a trailing newline still decodes. A passphrase goes to PBKDF2
    byte for byte.

    Args:
        key_material: Raw configured value (base64 key or passphrase).

    Returns:
        32-byte key.
    """
    try:
        decoded = base64.b64decode(ASCII_WHITESPACE.sub(b"", key_material), validate=True)
    except (binascii.Error, ValueError):
        decoded = b""

    if len(decoded) == KEY_LENGTH:
        return decoded

    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=PBKDF2_SALT,
        iterations=PBKDF2_ITERATIONS,
    )
    return kdf.derive(key_material)


# =============================================================================
# DECRYPTION RESULTS
# =============================================================================

@dataclass(frozen=True)
class Decrypted:
    """Value recovered from authenticated ciphertext."""
    value: str


@dataclass(frozen=True)
class Plaintext:
    """Value stored without encryption (legacy data, passed through)."""
    value: str


OpenResult = Union[Decrypted, Plaintext]


def is_encrypted(value: str) -> bool:
    """Check if a value carries the encrypted-field prefix."""
    return value.startswith(ENCRYPTED_PREFIX)


# =============================================================================
# CIPHER
# =============================================================================

class FieldCipher:
    """
    Encrypts and decrypts short string fields with AES-256-GCM.

    Example usage:
        cipher = FieldCipher(EncryptionConfig.from_env())
        stored = cipher.encrypt("JBSWY3DPEHPK3PXP")
        secret = cipher.decrypt(stored)
    """

    def __init__(self, config: EncryptionConfig):
        if not config or not config.key_material:
            raise ConfigurationError(f"{KEY_ENV_VAR} is empty")
        self._config = config

    def _aesgcm(self) -> AESGCM:
        return AESGCM(derive_key(self._config.key_material))

    def encrypt(self, plaintext: str) -> str:
        """
        Encrypt a plaintext string.

        Args:
            plaintext: String to encrypt.

        Returns:
            "enc:"-prefixed base64 blob.
        """
        iv = os.urandom(IV_LENGTH)
        ciphertext = self._aesgcm().encrypt(iv, plaintext.encode("utf-8"), None)
        return ENCRYPTED_PREFIX + base64.b64encode(iv + ciphertext).decode("ascii")

    def open(self, blob: str) -> OpenResult:
        """
        Decrypt a stored value and report whether it was actually encrypted.

        Raises:
            IntegrityError: If the blob is malformed or fails authentication.
        """
        if not is_encrypted(blob):
            return Plaintext(blob)

        try:
            data = base64.b64decode(blob[len(ENCRYPTED_PREFIX):], validate=True)
        except (binascii.Error, ValueError) as e:
            raise IntegrityError(f"Encrypted field is not valid base64: {e}") from e

        if len(data) < IV_LENGTH + TAG_LENGTH:
            raise IntegrityError("Encrypted field is truncated")

        iv, ciphertext = data[:IV_LENGTH], data[IV_LENGTH:]
        try:
            plaintext = self._aesgcm().decrypt(iv, ciphertext, None)
        except InvalidTag as e:
            raise IntegrityError("Authentication tag mismatch (tampered data or wrong key)") from e

        try:
            return Decrypted(plaintext.decode("utf-8"))
        except UnicodeDecodeError as e:
            raise IntegrityError("Decrypted field is not valid UTF-8") from e

    def decrypt(self, blob: str) -> str:
        """
        Decrypt a stored value, passing unencrypted legacy values through.

        Args:
            blob: Value as read from storage.

        Returns:
            Plaintext string.
        """
        return self.open(blob).value
