"""
Tests for field-level encryption.

Covers:
- Encrypt/decrypt round trip and ciphertext layout
- Tamper and truncation detection
- Legacy plaintext passthrough
- Key derivation (direct base64 key vs PBKDF2 passphrase)
- Missing key configuration
"""
import base64
import pytest

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from totpguard.errors import ConfigurationError, IntegrityError
from totpguard.security.field_cipher import (
    ENCRYPTED_PREFIX,
    IV_LENGTH,
    TAG_LENGTH,
    EncryptionConfig,
    FieldCipher,
    Decrypted,
    Plaintext,
    derive_key,
    is_encrypted,
)


def _flip_byte(blob: str, index: int) -> str:
    """Flip one bit inside the base64 payload of an "enc:" blob."""
    data = bytearray(base64.b64decode(blob[len(ENCRYPTED_PREFIX):]))
    data[index] ^= 0x01
    return ENCRYPTED_PREFIX + base64.b64encode(bytes(data)).decode("ascii")


# ============================================
# Round Trip
# ============================================

class TestRoundTrip:
    """Test encrypt followed by decrypt."""

    @pytest.mark.parametrize("value", [
        "JBSWY3DPEHPK3PXP",
        "",
        "päss wörd ✓",
        "x" * 1000,
    ])
    def test_round_trip(self, cipher, value):
        """Decrypting an encrypted value returns the original."""
        assert cipher.decrypt(cipher.encrypt(value)) == value

    def test_output_has_prefix(self, cipher):
        blob = cipher.encrypt("secret")
        assert blob.startswith("enc:")
        assert is_encrypted(blob)

    def test_payload_layout(self, cipher):
        """Payload is IV || ciphertext || tag."""
        blob = cipher.encrypt("abc")
        data = base64.b64decode(blob[len(ENCRYPTED_PREFIX):])
        assert len(data) == IV_LENGTH + len("abc") + TAG_LENGTH

    def test_fresh_iv_per_encryption(self, cipher):
        """Same plaintext encrypts differently each time."""
        assert cipher.encrypt("same") != cipher.encrypt("same")

    def test_open_reports_decrypted(self, cipher):
        result = cipher.open(cipher.encrypt("secret"))
        assert result == Decrypted("secret")


# ============================================
# Tamper Detection
# ============================================

class TestTamperDetection:
    """Test that modified ciphertext is rejected."""

    @pytest.mark.parametrize("index", [0, IV_LENGTH, -1])
    def test_flipped_byte_rejected(self, cipher, index):
        """Flipping a bit in IV, ciphertext or tag fails authentication."""
        blob = _flip_byte(cipher.encrypt("JBSWY3DPEHPK3PXP"), index)

        with pytest.raises(IntegrityError):
            cipher.decrypt(blob)

    def test_truncated_payload_rejected(self, cipher):
        short = ENCRYPTED_PREFIX + base64.b64encode(b"\x00" * (IV_LENGTH + TAG_LENGTH - 1)).decode()

        with pytest.raises(IntegrityError):
            cipher.decrypt(short)

    def test_invalid_base64_rejected(self, cipher):
        with pytest.raises(IntegrityError):
            cipher.decrypt("enc:!!!not-base64!!!")

    def test_wrong_key_rejected(self, cipher):
        """Ciphertext from one key does not open under another."""
        other = FieldCipher(EncryptionConfig(key_material=b"a different passphrase"))
        blob = cipher.encrypt("secret")

        with pytest.raises(IntegrityError):
            other.decrypt(blob)

    def test_integrity_error_maps_to_500(self):
        assert IntegrityError.status_code == 500


# ============================================
# Plaintext Passthrough
# ============================================

class TestPlaintextPassthrough:
    """Test handling of values stored before encryption was enabled."""

    def test_decrypt_returns_unprefixed_value(self, cipher):
        assert cipher.decrypt("JBSWY3DPEHPK3PXP") == "JBSWY3DPEHPK3PXP"

    def test_open_tags_plaintext(self, cipher):
        result = cipher.open("JBSWY3DPEHPK3PXP")
        assert isinstance(result, Plaintext)
        assert result.value == "JBSWY3DPEHPK3PXP"

    def test_prefix_is_case_sensitive(self, cipher):
        assert isinstance(cipher.open("ENC:abc"), Plaintext)


# ============================================
# Key Derivation
# ============================================

class TestKeyDerivation:
    """Test the direct-key and PBKDF2 paths."""

    def test_base64_32_bytes_used_directly(self, raw_key, b64_key):
        assert derive_key(b64_key.encode()) == raw_key

    def test_base64_key_with_trailing_newline(self, raw_key, b64_key):
        """A key read from a file or pasted from a terminal keeps its newline."""
        assert derive_key((b64_key + "\n").encode()) == raw_key

    def test_base64_key_with_inner_whitespace(self, raw_key, b64_key):
        wrapped = " " + b64_key[:20] + "\r\n" + b64_key[20:] + "\t"
        assert derive_key(wrapped.encode()) == raw_key

    def test_passphrase_whitespace_is_significant(self):
        assert derive_key(b"open sesame") != derive_key(b"opensesame")

    def test_passphrase_uses_pbkdf2(self):
        material = b"correct horse battery staple"
        expected = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b"casa-field-encryption-v1",
            iterations=100_000,
        ).derive(material)

        assert derive_key(material) == expected

    def test_base64_of_wrong_length_uses_pbkdf2(self):
        """16 valid base64 bytes are not an AES-256 key; treat as passphrase."""
        material = base64.b64encode(b"\x01" * 16)
        key = derive_key(material)

        assert len(key) == 32
        assert key != b"\x01" * 16

    def test_derivation_is_deterministic(self):
        assert derive_key(b"passphrase") == derive_key(b"passphrase")

    def test_passphrase_cipher_round_trip(self):
        passphrase_cipher = FieldCipher(EncryptionConfig(key_material=b"operator passphrase"))
        assert passphrase_cipher.decrypt(passphrase_cipher.encrypt("secret")) == "secret"


# ============================================
# Configuration
# ============================================

class TestConfiguration:
    """Test key loading from the environment."""

    @pytest.fixture(autouse=True)
    def isolated_env(self, monkeypatch, tmp_path):
        monkeypatch.delenv("DATA_ENCRYPTION_KEY", raising=False)
        monkeypatch.delenv("DATA_ENCRYPTION_KEY_FILE", raising=False)
        monkeypatch.setattr("totpguard.utils.secrets.DOCKER_SECRETS_DIR", str(tmp_path))

    def test_missing_key_raises(self):
        with pytest.raises(ConfigurationError):
            EncryptionConfig.from_env()

    def test_key_from_env(self, monkeypatch, b64_key):
        monkeypatch.setenv("DATA_ENCRYPTION_KEY", b64_key)
        assert EncryptionConfig.from_env().key_material == b64_key.encode()

    def test_key_from_file(self, monkeypatch, tmp_path, b64_key):
        key_file = tmp_path / "key.txt"
        key_file.write_text(b64_key + "\n")
        monkeypatch.setenv("DATA_ENCRYPTION_KEY_FILE", str(key_file))

        assert EncryptionConfig.from_env().key_material == b64_key.encode()

    def test_empty_key_material_rejected(self):
        with pytest.raises(ConfigurationError):
            FieldCipher(EncryptionConfig(key_material=b""))

    def test_repr_hides_key(self, b64_key):
        config = EncryptionConfig(key_material=b64_key.encode())
        assert b64_key not in repr(config)
