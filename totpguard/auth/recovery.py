"""
Recovery codes for MFA account recovery.

Codes are 8 characters from a-z0-9, generated with the ``secrets`` CSPRNG.
Only SHA-256 hex digests are persisted; the plaintext batch is returned to
the caller once and cannot be read back.
"""
import hashlib
import logging
import secrets
import string
from typing import List

from ..database.base import MFAStore

logger = logging.getLogger(__name__)

CODE_COUNT = 10
CODE_LENGTH = 8
CODE_ALPHABET = string.ascii_lowercase + string.digits


def generate_code(length: int = CODE_LENGTH) -> str:
    """Generate one recovery code drawn uniformly from a-z0-9."""
    return "".join(secrets.choice(CODE_ALPHABET) for _ in range(length))


def generate_codes(count: int = CODE_COUNT, length: int = CODE_LENGTH) -> List[str]:
    """
    Generate a batch of distinct recovery codes.

    Args:
        count: Number of codes to generate.
        length: Length of each code.

    Returns:
        List of plaintext codes.
    """
    codes: List[str] = []
    while len(codes) < count:
        code = generate_code(length)
        if code not in codes:
            codes.append(code)
    return codes


def normalize_code(code: str) -> str:
    """Canonical form for hashing: no whitespace or dashes, lowercase."""
    return "".join(ch for ch in code if not ch.isspace() and ch != "-").lower()


def hash_code(code: str) -> str:
    """
    Hash a recovery code for storage.

    Args:
        code: Plain text recovery code (e.g., "k3x9a0qz").

    Returns:
        SHA-256 hex digest of the normalized code.
    """
    return hashlib.sha256(normalize_code(code).encode("utf-8")).hexdigest()


class RecoveryCodeManager:
    """
    Generates, stores and redeems recovery codes.

    Callers are responsible for checking that the user's MFA is enabled
    before generate_batch(); see MFAService.
    """

    def __init__(self, store: MFAStore, count: int = CODE_COUNT, length: int = CODE_LENGTH):
        self.store = store
        self.count = count
        self.length = length

    def generate_batch(self, user_id: str) -> List[str]:
        """
        Create a new batch, replacing every previous code for the user.

        Returns:
            The plaintext codes. This is the only time they are available.

        Raises:
            StorageError: If the store could not swap the batch. No new
                codes are issued in that case.
        """
        codes = generate_codes(self.count, self.length)
        self.store.replace_recovery_codes(user_id, [hash_code(c) for c in codes])
        logger.info(f"Issued {len(codes)} recovery codes for user {user_id}")
        return codes

    def verify(self, user_id: str, code: str) -> bool:
        """
        Redeem a recovery code. A code works exactly once.

        Returns:
            True if the code matched and was consumed. False otherwise,
            without revealing whether the user has codes left.
        """
        if not code or not normalize_code(code):
            return False

        consumed = self.store.consume_recovery_code(user_id, hash_code(code))
        if consumed:
            logger.info(f"Recovery code used for user {user_id}")
        return consumed

    def remaining(self, user_id: str) -> int:
        return self.store.count_recovery_codes(user_id)
