"""
Exception taxonomy for the MFA subsystem.

Every error carries the HTTP status the API layer answers with and a
``public_message`` that is safe to return to clients. The exception's own
message may hold internal detail and is only ever logged.

Wrong codes are not errors: verification mismatches are reported as
``False`` by the verify functions.
"""
from typing import Optional


class MFAError(Exception):
    """Base class for all MFA subsystem errors."""

    status_code: int = 500
    public_message: str = "Internal server error"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.public_message)
        self.detail = detail or self.public_message


class ConfigurationError(MFAError):
    """Encryption key material is missing or unusable."""

    public_message = "Service is not configured"


class IntegrityError(MFAError):
    """Stored ciphertext failed authentication (tampering or key mismatch)."""

    public_message = "Stored MFA data could not be read"


class StorageError(MFAError):
    """The data store rejected or failed an operation."""

    public_message = "Storage failure"


class Unauthorized(MFAError):
    """No usable caller identity."""

    status_code = 401
    public_message = "Authentication required"


class MFANotConfigured(MFAError):
    """The user has no MFA record."""

    status_code = 404
    public_message = "MFA not configured for this user"


class MFANotEnabled(MFAError):
    """The user's MFA record exists but setup was never confirmed."""

    status_code = 400
    public_message = "MFA is not enabled for this user"


class MFAAlreadyEnabled(MFAError):
    """Provisioning was requested for a user whose MFA is already active."""

    status_code = 409
    public_message = "MFA is already enabled"
