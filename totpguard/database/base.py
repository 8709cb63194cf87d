"""
Storage contract for the MFA subsystem.

The orchestrator and recovery-code manager only talk to this interface.
Implementations own atomicity: replace_recovery_codes() must delete the
old batch and insert the new one as a single unit, and must raise
StorageError (leaving the old batch intact) if any part fails.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


@dataclass
class MFARecord:
    """Per-user MFA state. ``totp_secret`` holds ciphertext, never a plain secret."""
    user_id: str
    totp_secret: str
    is_enabled: bool = False
    verified_at: Optional[datetime] = None
    last_used_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class MFAStore(ABC):
    """
    Abstract Base Class for MFA persistence.
    """

    @abstractmethod
    def get_mfa_record(self, user_id: str) -> Optional[MFARecord]:
        """Return the user's MFA record, or None if MFA was never provisioned."""

    @abstractmethod
    def upsert_mfa_record(self, user_id: str, encrypted_secret: str, now: datetime) -> MFARecord:
        """
        Insert or replace the user's record with a fresh, not-yet-enabled secret.

        Resets is_enabled, verified_at and last_used_at.
        """

    @abstractmethod
    def mark_enabled(self, user_id: str, now: datetime) -> None:
        """Set is_enabled, verified_at and last_used_at after a successful setup."""

    @abstractmethod
    def touch_last_used(self, user_id: str, now: datetime) -> None:
        """Advance last_used_at to ``now`` unless it already holds a later value."""

    @abstractmethod
    def set_profile_mfa_enabled(self, user_id: str, enabled: bool) -> None:
        """Mirror the enabled flag onto the user's profile row, if one exists."""

    @abstractmethod
    def replace_recovery_codes(self, user_id: str, code_hashes: List[str]) -> None:
        """Atomically swap the user's recovery-code hashes for a new batch."""

    @abstractmethod
    def consume_recovery_code(self, user_id: str, code_hash: str) -> bool:
        """Delete the matching hash. Returns True iff a row was removed."""

    @abstractmethod
    def count_recovery_codes(self, user_id: str) -> int:
        """Number of unused recovery codes left for the user."""

    def validate_session(self, session_token: str) -> Optional[Dict]:
        """
        Resolve a bearer token to a user dict.

        Session issuance lives outside this service; stores that can see the
        session table override this.
        """
        return None
