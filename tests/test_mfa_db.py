"""
Tests for the SQLAlchemy MFA store (SQLite).

Covers:
- MFA record upsert and state flags
- Monotonic last_used_at
- Profile flag mirroring
- Atomic recovery code replacement
- Session token validation
"""
import pytest
from datetime import datetime, timedelta, timezone

from totpguard.database.mfa_db import MFADB, ProfileRow, SessionRow
from totpguard.errors import StorageError


T0 = datetime(2024, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


# ============================================
# MFA Records
# ============================================

class TestMFARecords:
    """Test per-user MFA rows."""

    def test_missing_record(self, db, user_id):
        assert db.get_mfa_record(user_id) is None

    def test_upsert_creates_disabled_record(self, db, user_id):
        db.upsert_mfa_record(user_id, "enc:abc", T0)
        record = db.get_mfa_record(user_id)

        assert record.totp_secret == "enc:abc"
        assert record.is_enabled is False
        assert record.verified_at is None
        assert record.created_at == T0

    def test_upsert_replaces_pending_secret(self, db, user_id):
        db.upsert_mfa_record(user_id, "enc:first", T0)
        db.upsert_mfa_record(user_id, "enc:second", T0 + timedelta(minutes=1))
        record = db.get_mfa_record(user_id)

        assert record.totp_secret == "enc:second"
        assert record.created_at == T0
        assert record.updated_at == T0 + timedelta(minutes=1)

    def test_mark_enabled(self, db, user_id):
        db.upsert_mfa_record(user_id, "enc:abc", T0)
        db.mark_enabled(user_id, T0 + timedelta(seconds=30))
        record = db.get_mfa_record(user_id)

        assert record.is_enabled is True
        assert record.verified_at == T0 + timedelta(seconds=30)
        assert record.last_used_at == T0 + timedelta(seconds=30)

    def test_verified_at_set_once(self, db, user_id):
        db.upsert_mfa_record(user_id, "enc:abc", T0)
        db.mark_enabled(user_id, T0 + timedelta(seconds=30))
        db.mark_enabled(user_id, T0 + timedelta(hours=1))

        assert db.get_mfa_record(user_id).verified_at == T0 + timedelta(seconds=30)

    def test_mark_enabled_without_record(self, db, user_id):
        with pytest.raises(StorageError):
            db.mark_enabled(user_id, T0)

    def test_timestamps_are_utc(self, db, user_id):
        db.upsert_mfa_record(user_id, "enc:abc", T0)
        assert db.get_mfa_record(user_id).created_at.tzinfo is not None


# ============================================
# last_used_at
# ============================================

class TestLastUsed:
    """Test that last_used_at only moves forward."""

    def test_touch_advances(self, db, user_id):
        db.upsert_mfa_record(user_id, "enc:abc", T0)
        db.touch_last_used(user_id, T0 + timedelta(minutes=5))

        assert db.get_mfa_record(user_id).last_used_at == T0 + timedelta(minutes=5)

    def test_touch_never_goes_back(self, db, user_id):
        db.upsert_mfa_record(user_id, "enc:abc", T0)
        db.touch_last_used(user_id, T0 + timedelta(minutes=5))
        db.touch_last_used(user_id, T0 + timedelta(minutes=1))

        assert db.get_mfa_record(user_id).last_used_at == T0 + timedelta(minutes=5)

    def test_touch_unknown_user_is_noop(self, db, user_id):
        db.touch_last_used(user_id, T0)
        assert db.get_mfa_record(user_id) is None


# ============================================
# Profile Flag
# ============================================

class TestProfileFlag:
    """Test mirroring of the MFA flag onto profiles."""

    def test_flag_mirrored(self, db, user_id):
        with db.get_session() as session:
            session.add(ProfileRow(id=user_id, mfa_enabled=False))

        db.set_profile_mfa_enabled(user_id, True)

        with db.get_session() as session:
            assert session.get(ProfileRow, user_id).mfa_enabled is True

    def test_missing_profile_is_not_an_error(self, db, user_id):
        db.set_profile_mfa_enabled(user_id, True)


# ============================================
# Recovery Codes
# ============================================

class TestRecoveryCodeStorage:
    """Test batch replacement and consumption."""

    def test_replace_and_count(self, db, user_id):
        db.replace_recovery_codes(user_id, ["a" * 64, "b" * 64])
        assert db.count_recovery_codes(user_id) == 2

    def test_replace_discards_previous_batch(self, db, user_id):
        db.replace_recovery_codes(user_id, ["a" * 64, "b" * 64])
        db.replace_recovery_codes(user_id, ["c" * 64])

        assert db.count_recovery_codes(user_id) == 1
        assert db.consume_recovery_code(user_id, "a" * 64) is False

    def test_failed_replace_keeps_old_batch(self, db, user_id):
        """A failing insert rolls back the delete as well."""
        db.replace_recovery_codes(user_id, ["a" * 64, "b" * 64])

        # Duplicate hashes violate the (user_id, code_hash) constraint
        with pytest.raises(StorageError):
            db.replace_recovery_codes(user_id, ["c" * 64, "c" * 64])

        assert db.count_recovery_codes(user_id) == 2
        assert db.consume_recovery_code(user_id, "a" * 64) is True

    def test_consume_once(self, db, user_id):
        db.replace_recovery_codes(user_id, ["a" * 64])

        assert db.consume_recovery_code(user_id, "a" * 64) is True
        assert db.consume_recovery_code(user_id, "a" * 64) is False
        assert db.count_recovery_codes(user_id) == 0

    def test_batches_are_per_user(self, db, user_id):
        db.replace_recovery_codes(user_id, ["a" * 64])
        db.replace_recovery_codes("other-user", ["a" * 64])

        assert db.count_recovery_codes(user_id) == 1
        assert db.count_recovery_codes("other-user") == 1


# ============================================
# Sessions
# ============================================

class TestSessions:
    """Test bearer token resolution."""

    @pytest.fixture
    def add_session(self, db):
        def _add(token, user_id, expires_at, is_active=True):
            with db.get_session() as session:
                session.add(SessionRow(
                    session_token=token,
                    user_id=user_id,
                    is_active=is_active,
                    expires_at=expires_at,
                ))
        return _add

    def test_valid_session(self, db, add_session, user_id):
        add_session("tok-valid", user_id, datetime.now(timezone.utc) + timedelta(hours=1))

        user = db.validate_session("tok-valid")
        assert user["user_id"] == user_id

    def test_expired_session(self, db, add_session, user_id):
        add_session("tok-expired", user_id, datetime.now(timezone.utc) - timedelta(minutes=1))
        assert db.validate_session("tok-expired") is None

    def test_inactive_session(self, db, add_session, user_id):
        add_session("tok-off", user_id, datetime.now(timezone.utc) + timedelta(hours=1), is_active=False)
        assert db.validate_session("tok-off") is None

    def test_unknown_token(self, db):
        assert db.validate_session("nope") is None


class TestConnection:
    """Test engine configuration."""

    def test_database_url_from_env(self, monkeypatch, tmp_path):
        monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'env.db'}")
        store = MFADB()
        assert store.engine.url.get_backend_name() == "sqlite"
        store.engine.dispose()
