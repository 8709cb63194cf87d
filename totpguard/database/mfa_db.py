"""
SQLAlchemy-backed storage for MFA records and recovery codes.

Tables owned by this service:
- mfa_records: one row per user, encrypted TOTP secret and state flags
- recovery_codes: SHA-256 hashes of unused recovery codes

Tables owned by the surrounding platform (read, or flag-mirrored only):
- profiles: mfa_enabled flag mirrored on setup
- sessions: bearer tokens resolved to user ids

init_schema() creates any of these that are missing so a standalone
deployment (and the test suite, on SQLite) works out of the box.

SECURITY NOTE: totp_secret holds "enc:"-prefixed ciphertext produced by
FieldCipher. This module never sees plaintext secrets or recovery codes.
"""
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, List, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    delete,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from ..errors import StorageError
from ..utils.config import get_database_url
from .base import MFARecord, MFAStore

logger = logging.getLogger(__name__)

Base = declarative_base()


# =============================================================================
# DATABASE MODELS
# =============================================================================

class MFARecordRow(Base):
    """Per-user TOTP enrollment."""
    __tablename__ = "mfa_records"

    user_id = Column(String(64), primary_key=True)
    totp_secret = Column(Text, nullable=False)  # "enc:" ciphertext
    is_enabled = Column(Boolean, nullable=False, default=False)
    verified_at = Column(DateTime(timezone=True), nullable=True)
    last_used_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class RecoveryCodeRow(Base):
    """One unused recovery code (hash only)."""
    __tablename__ = "recovery_codes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    code_hash = Column(String(64), nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "code_hash", name="uq_recovery_codes_user_hash"),
    )


class ProfileRow(Base):
    """Platform user profile; only the MFA flag is touched here."""
    __tablename__ = "profiles"

    id = Column(String(64), primary_key=True)
    mfa_enabled = Column(Boolean, nullable=False, default=False)


class SessionRow(Base):
    """Platform session token (read-only for this service)."""
    __tablename__ = "sessions"

    session_token = Column(String(128), primary_key=True)
    user_id = Column(String(64), nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime(timezone=True), nullable=False)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo; stored values are always UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_record(row: MFARecordRow) -> MFARecord:
    return MFARecord(
        user_id=row.user_id,
        totp_secret=row.totp_secret,
        is_enabled=bool(row.is_enabled),
        verified_at=_as_utc(row.verified_at),
        last_used_at=_as_utc(row.last_used_at),
        created_at=_as_utc(row.created_at),
        updated_at=_as_utc(row.updated_at),
    )


# =============================================================================
# STORE
# =============================================================================

class MFADB(MFAStore):
    """
    Relational store for MFA state.

    Example usage:
        db = MFADB()
        db.init_schema()

        db.upsert_mfa_record(user_id, cipher.encrypt(secret), now)
        record = db.get_mfa_record(user_id)
    """

    def __init__(self, connection_string: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            connection_string: SQLAlchemy URL. Uses DATABASE_URL or the
                POSTGRES_* environment variables if not provided.
        """
        connection_string = get_database_url(connection_string)

        engine_options = {"pool_pre_ping": True}
        if make_url(connection_string).get_backend_name() != "sqlite":
            engine_options.update(
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
                pool_recycle=300,  # Recycle connections every 5 minutes
            )

        self.engine = create_engine(connection_string, **engine_options)
        self.Session = sessionmaker(bind=self.engine, expire_on_commit=False)

    @contextmanager
    def get_session(self):
        """
        Get a database session; commits on success, rolls back on any error.

        Database failures surface as StorageError.

        Usage:
            with db.get_session() as session:
                session.execute(query)
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database operation failed: {e}")
            raise StorageError(str(e)) from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_schema(self) -> None:
        """
        Create tables that do not exist yet.

        Call this once during application setup.
        """
        try:
            Base.metadata.create_all(self.engine)
        except SQLAlchemyError as e:
            raise StorageError(str(e)) from e
        logger.info("MFA database schema initialized")

    # ==========================================
    # MFA Records
    # ==========================================

    def get_mfa_record(self, user_id: str) -> Optional[MFARecord]:
        with self.get_session() as session:
            row = session.get(MFARecordRow, user_id)
            return _to_record(row) if row else None

    def upsert_mfa_record(self, user_id: str, encrypted_secret: str, now: datetime) -> MFARecord:
        with self.get_session() as session:
            row = session.get(MFARecordRow, user_id)
            if row is None:
                row = MFARecordRow(user_id=user_id, created_at=now)
                session.add(row)
            row.totp_secret = encrypted_secret
            row.is_enabled = False
            row.verified_at = None
            row.last_used_at = None
            row.updated_at = now
            session.flush()
            record = _to_record(row)

        logger.info(f"Provisioned MFA secret for user {user_id}")
        return record

    def mark_enabled(self, user_id: str, now: datetime) -> None:
        with self.get_session() as session:
            row = session.get(MFARecordRow, user_id)
            if row is None:
                raise StorageError(f"No MFA record for user {user_id}")
            row.is_enabled = True
            if row.verified_at is None:
                row.verified_at = now
            current = _as_utc(row.last_used_at)
            if current is None or current < now:
                row.last_used_at = now
            row.updated_at = now
        logger.info(f"MFA enabled for user {user_id}")

    def touch_last_used(self, user_id: str, now: datetime) -> None:
        with self.get_session() as session:
            session.execute(
                update(MFARecordRow)
                .where(MFARecordRow.user_id == user_id)
                .where(or_(MFARecordRow.last_used_at.is_(None), MFARecordRow.last_used_at < now))
                .values(last_used_at=now, updated_at=now)
            )

    def set_profile_mfa_enabled(self, user_id: str, enabled: bool) -> None:
        with self.get_session() as session:
            result = session.execute(
                update(ProfileRow)
                .where(ProfileRow.id == user_id)
                .values(mfa_enabled=enabled)
            )
            if result.rowcount == 0:
                logger.debug(f"No profile row to mirror MFA flag for user {user_id}")

    # ==========================================
    # Recovery Codes
    # ==========================================

    def replace_recovery_codes(self, user_id: str, code_hashes: List[str]) -> None:
        now = datetime.now(timezone.utc)
        with self.get_session() as session:
            session.execute(
                delete(RecoveryCodeRow).where(RecoveryCodeRow.user_id == user_id)
            )
            session.add_all(
                RecoveryCodeRow(user_id=user_id, code_hash=code_hash, created_at=now)
                for code_hash in code_hashes
            )
        logger.info(f"Stored {len(code_hashes)} recovery code hashes for user {user_id}")

    def consume_recovery_code(self, user_id: str, code_hash: str) -> bool:
        with self.get_session() as session:
            result = session.execute(
                delete(RecoveryCodeRow)
                .where(RecoveryCodeRow.user_id == user_id)
                .where(RecoveryCodeRow.code_hash == code_hash)
            )
            return result.rowcount > 0

    def count_recovery_codes(self, user_id: str) -> int:
        with self.get_session() as session:
            return session.execute(
                select(func.count())
                .select_from(RecoveryCodeRow)
                .where(RecoveryCodeRow.user_id == user_id)
            ).scalar_one()

    # ==========================================
    # Sessions (external, read-only)
    # ==========================================

    def validate_session(self, session_token: str) -> Optional[Dict]:
        """
        Validate a session token.

        Args:
            session_token: The session token to validate.

        Returns:
            User dict if valid, None if invalid/expired.
        """
        now = datetime.now(timezone.utc)

        with self.get_session() as session:
            row = session.execute(
                select(SessionRow.user_id, SessionRow.expires_at)
                .where(SessionRow.session_token == session_token)
                .where(SessionRow.is_active.is_(True))
            ).first()

            if not row or _as_utc(row.expires_at) <= now:
                return None

            return {
                "user_id": row.user_id,
                "session_expires_at": _as_utc(row.expires_at),
            }


# Singleton instance
_mfa_db_instance: Optional[MFADB] = None


def get_mfa_db() -> MFADB:
    """
    Get singleton MFADB instance.

    Returns:
        MFADB instance.
    """
    global _mfa_db_instance
    if _mfa_db_instance is None:
        _mfa_db_instance = MFADB()
    return _mfa_db_instance
