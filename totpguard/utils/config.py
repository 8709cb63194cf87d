"""
Runtime settings for TOTPGUARD.

Settings are resolved once at process startup and passed into the
components that need them; nothing below reads the environment lazily.
"""
from dataclasses import dataclass
from typing import Optional

from .secrets import get_secret, get_int_setting


@dataclass(frozen=True)
class MFASettings:
    """
    Tunables for the MFA flows.

    Attributes:
        issuer: Name shown in authenticator apps.
        verify_window: Number of 30-second steps accepted on either side
            of the current one (1 = current, previous and next step).
        recovery_code_count: Codes per generated batch.
        recovery_code_length: Characters per recovery code.
        max_verify_attempts: Failed verifications allowed per user within
            ``attempt_window_seconds`` at the HTTP layer.
        attempt_window_seconds: Sliding window for the attempt limiter.
    """
    issuer: str = "TOTPGUARD"
    verify_window: int = 1
    recovery_code_count: int = 10
    recovery_code_length: int = 8
    max_verify_attempts: int = 5
    attempt_window_seconds: int = 900

    @classmethod
    def from_env(cls) -> "MFASettings":
        """Build settings from environment variables, keeping defaults for unset ones."""
        return cls(
            issuer=get_secret("MFA_ISSUER", cls.issuer),
            verify_window=max(0, get_int_setting("MFA_VERIFY_WINDOW", cls.verify_window)),
            recovery_code_count=get_int_setting("MFA_RECOVERY_CODE_COUNT", cls.recovery_code_count),
            recovery_code_length=get_int_setting("MFA_RECOVERY_CODE_LENGTH", cls.recovery_code_length),
            max_verify_attempts=get_int_setting("MFA_VERIFY_MAX_ATTEMPTS", cls.max_verify_attempts),
            attempt_window_seconds=get_int_setting("MFA_VERIFY_ATTEMPT_WINDOW", cls.attempt_window_seconds),
        )


def get_database_url(override: Optional[str] = None) -> str:
    """
    Resolve the database connection string.

    Uses ``DATABASE_URL`` when set, otherwise assembles a PostgreSQL URL
    from the ``POSTGRES_*`` variables.
    """
    if override:
        return override

    url = get_secret("DATABASE_URL")
    if url:
        return url

    host = get_secret("POSTGRES_HOST", "localhost")
    port = get_secret("POSTGRES_PORT", "5432")
    db = get_secret("POSTGRES_DB", "totpguard")
    user = get_secret("POSTGRES_USER", "totpguard")
    password = get_secret("POSTGRES_PASSWORD", "")
    return f"postgresql://{user}:{password}@{host}:{port}/{db}"
