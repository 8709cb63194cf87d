"""
MFA orchestration: enrollment, verification and recovery codes.

Per-user state machine:

    NoMfa --provision()--> Provisioned --verify(setup)--> Enabled
                                                     Enabled --verify(login)--> Enabled

- provision(): generate a secret, encrypt it, store it with is_enabled=False
- verify(action="setup"): on success set is_enabled, verified_at, last_used_at
  and mirror the flag onto the user's profile
- verify(action="login"): on success advance last_used_at only
- generate_recovery_codes(): only from Enabled

A wrong code is an expected outcome and returns False; it never raises.
Attempt limiting is not done here (see totpguard.api.deps).
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, List, Optional

from ..database.base import MFARecord, MFAStore
from ..errors import (
    IntegrityError,
    MFAAlreadyEnabled,
    MFANotConfigured,
    MFANotEnabled,
    Unauthorized,
)
from ..security.field_cipher import FieldCipher, Plaintext
from ..utils.config import MFASettings
from . import totp
from .recovery import RecoveryCodeManager

logger = logging.getLogger(__name__)


class VerifyAction(str, Enum):
    SETUP = "setup"
    LOGIN = "login"


@dataclass(frozen=True)
class ProvisionResult:
    """Secret material shown to the user once, during enrollment."""
    secret: str
    provisioning_uri: str


@dataclass(frozen=True)
class MFAStatus:
    is_enabled: bool
    is_setup: bool
    recovery_codes_remaining: int


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class MFAService:
    """
    Ties the field cipher, TOTP engine and recovery codes to the MFA store.

    Example usage:
        service = MFAService(store, FieldCipher(EncryptionConfig.from_env()))
        result = service.provision(user_id)
        ...
        if service.verify(user_id, "123456", "setup"):
            codes = service.generate_recovery_codes(user_id)
    """

    def __init__(
        self,
        store: MFAStore,
        cipher: FieldCipher,
        settings: Optional[MFASettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.cipher = cipher
        self.settings = settings or MFASettings()
        self.clock = clock
        self.recovery = RecoveryCodeManager(
            store,
            count=self.settings.recovery_code_count,
            length=self.settings.recovery_code_length,
        )

    # ==========================================
    # Helpers
    # ==========================================

    @staticmethod
    def _require_identity(user_id: Optional[str]) -> str:
        if not user_id or not str(user_id).strip():
            raise Unauthorized("Missing caller identity")
        return str(user_id)

    def _load_record(self, user_id: str) -> MFARecord:
        record = self.store.get_mfa_record(user_id)
        if record is None:
            raise MFANotConfigured(f"No MFA record for user {user_id}")
        return record

    def _require_enabled(self, user_id: str) -> MFARecord:
        record = self._load_record(user_id)
        if not record.is_enabled:
            raise MFANotEnabled(f"MFA for user {user_id} is provisioned but not enabled")
        return record

    def _secret_for(self, record: MFARecord) -> str:
        try:
            opened = self.cipher.open(record.totp_secret)
        except IntegrityError:
            logger.error(f"Stored TOTP secret for user {record.user_id} failed decryption")
            raise

        if isinstance(opened, Plaintext):
            logger.warning(f"TOTP secret for user {record.user_id} is stored unencrypted")
        return opened.value

    # ==========================================
    # Enrollment
    # ==========================================

    def provision(self, user_id: Optional[str], account_label: Optional[str] = None) -> ProvisionResult:
        """
        Start (or restart) MFA enrollment for a user.

        Args:
            user_id: Authenticated caller.
            account_label: Name shown in the authenticator app (defaults to user_id).

        Returns:
            ProvisionResult with the base32 secret and otpauth:// URI.

        Raises:
            MFAAlreadyEnabled: If the user already has an active factor.
        """
        user_id = self._require_identity(user_id)

        existing = self.store.get_mfa_record(user_id)
        if existing is not None and existing.is_enabled:
            raise MFAAlreadyEnabled(f"User {user_id} already has MFA enabled")

        secret = totp.generate_secret()
        self.store.upsert_mfa_record(user_id, self.cipher.encrypt(secret), self.clock())

        uri = totp.provisioning_uri(secret, account_label or user_id, self.settings.issuer)
        return ProvisionResult(secret=secret, provisioning_uri=uri)

    # ==========================================
    # Verification
    # ==========================================

    def verify(self, user_id: Optional[str], code: str, action) -> bool:
        """
        Verify a TOTP code for setup confirmation or login.

        Args:
            user_id: Authenticated caller.
            code: 6-digit code from the authenticator app.
            action: "setup" or "login" (or a VerifyAction).

        Returns:
            True if the code was accepted and state was updated.

        Raises:
            ValueError: Unknown action.
            Unauthorized: Missing identity.
            MFANotConfigured: No MFA record.
            IntegrityError: Stored secret could not be decrypted.
        """
        user_id = self._require_identity(user_id)
        action = VerifyAction(action)
        record = self._load_record(user_id)

        if action is VerifyAction.LOGIN and not record.is_enabled:
            logger.info(f"Login verification for user {user_id} rejected: MFA not enabled")
            return False

        secret = self._secret_for(record)
        now = self.clock()
        if not totp.verify(secret, code, timestamp=now.timestamp(), window=self.settings.verify_window):
            logger.info(f"MFA {action.value} verification failed for user {user_id}")
            return False

        if action is VerifyAction.SETUP:
            self.store.mark_enabled(user_id, now)
            self.store.set_profile_mfa_enabled(user_id, True)
        else:
            self.store.touch_last_used(user_id, now)

        logger.info(f"MFA {action.value} verification succeeded for user {user_id}")
        return True

    # ==========================================
    # Recovery codes
    # ==========================================

    def generate_recovery_codes(self, user_id: Optional[str]) -> List[str]:
        """
        Issue a new batch of recovery codes, invalidating the previous one.

        Raises:
            Unauthorized, MFANotConfigured, MFANotEnabled, StorageError
        """
        user_id = self._require_identity(user_id)
        self._require_enabled(user_id)
        return self.recovery.generate_batch(user_id)

    def verify_recovery_code(self, user_id: Optional[str], code: str) -> bool:
        """Redeem a recovery code in place of a TOTP code."""
        user_id = self._require_identity(user_id)
        self._require_enabled(user_id)

        if not self.recovery.verify(user_id, code):
            return False

        self.store.touch_last_used(user_id, self.clock())
        return True

    def status(self, user_id: Optional[str]) -> MFAStatus:
        user_id = self._require_identity(user_id)
        record = self.store.get_mfa_record(user_id)
        if record is None:
            return MFAStatus(is_enabled=False, is_setup=False, recovery_codes_remaining=0)

        return MFAStatus(
            is_enabled=record.is_enabled,
            is_setup=record.verified_at is not None,
            recovery_codes_remaining=self.recovery.remaining(user_id) if record.is_enabled else 0,
        )
