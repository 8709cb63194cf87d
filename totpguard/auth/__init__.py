"""
Second-factor authentication for TOTPGUARD.

This package provides:
- TOTP generation and verification (RFC 6238)
- Recovery code generation and redemption
- The MFA enrollment/verification service
"""
from .mfa import MFAService, MFAStatus, ProvisionResult, VerifyAction
from .recovery import RecoveryCodeManager, generate_codes, hash_code
from .totp import generate, verify, generate_secret, provisioning_uri

__all__ = [
    "MFAService",
    "MFAStatus",
    "ProvisionResult",
    "VerifyAction",
    "RecoveryCodeManager",
    "generate_codes",
    "hash_code",
    "generate",
    "verify",
    "generate_secret",
    "provisioning_uri",
]
