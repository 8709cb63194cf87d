"""
Pytest configuration and shared fixtures for TOTPGUARD tests.

This module provides common test fixtures for:
- Encryption key material and field ciphers
- A throwaway SQLite-backed MFA store
- A fixed clock and a ready-made MFA service
"""
import base64
import pytest
from datetime import datetime, timezone
from pathlib import Path

# Add project root to Python path for imports
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from totpguard.auth.mfa import MFAService
from totpguard.database.mfa_db import MFADB
from totpguard.security.field_cipher import EncryptionConfig, FieldCipher
from totpguard.utils.config import MFASettings


# ============================================
# Encryption Fixtures
# ============================================

@pytest.fixture
def raw_key():
    """32 fixed key bytes (deterministic across runs)."""
    return bytes(range(32))


@pytest.fixture
def b64_key(raw_key):
    """Base64 form of raw_key, as it would appear in DATA_ENCRYPTION_KEY."""
    return base64.b64encode(raw_key).decode("ascii")


@pytest.fixture
def cipher(b64_key):
    """Field cipher using the direct (non-PBKDF2) key path."""
    return FieldCipher(EncryptionConfig(key_material=b64_key.encode("ascii")))


# ============================================
# Database Fixtures
# ============================================

@pytest.fixture
def db(tmp_path):
    """
    MFA store on a temporary SQLite file.
    Automatically cleaned up after test completes.
    """
    store = MFADB(f"sqlite:///{tmp_path / 'mfa.db'}")
    store.init_schema()
    yield store
    store.engine.dispose()


# ============================================
# Service Fixtures
# ============================================

@pytest.fixture
def fixed_now():
    """A point in time 15 seconds into a TOTP step."""
    return datetime(2024, 3, 1, 12, 0, 15, tzinfo=timezone.utc)


@pytest.fixture
def clock(fixed_now):
    """Mutable clock: set clock.now to move time."""
    class Clock:
        def __init__(self, now):
            self.now = now

        def __call__(self):
            return self.now

    return Clock(fixed_now)


@pytest.fixture
def settings():
    return MFASettings()


@pytest.fixture
def service(db, cipher, settings, clock):
    """MFA service wired to the SQLite store and fixed clock."""
    return MFAService(db, cipher, settings, clock=clock)


@pytest.fixture
def user_id():
    return "550e8400-e29b-41d4-a716-446655440000"
