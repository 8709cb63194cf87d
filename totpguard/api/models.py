"""
Pydantic Models for TOTPGUARD API.

Request and response models for all API endpoints.
"""
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


# ============================================
# MFA Models
# ============================================

class MFASetupResponse(BaseModel):
    """MFA setup response with QR code."""
    secret: str
    provisioning_uri: str
    qr_code_base64: str


class MFAVerifyRequest(BaseModel):
    """
    MFA verification request.

    ``setup`` confirms a freshly provisioned authenticator and enables MFA;
    ``login`` checks a code for an already enabled account.
    """
    code: str = Field(..., pattern=r"^[0-9]{6}$", description="6-digit code from the authenticator app")
    action: Literal["setup", "login"]

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "123456",
                "action": "setup"
            }
        }
    )


class MFAVerifyResponse(BaseModel):
    """A wrong code is reported here as verified=false, not as an error."""
    verified: bool


class RecoveryCodesResponse(BaseModel):
    """
    Freshly generated recovery codes.

    Shown exactly once; they cannot be retrieved again. Generating a new
    batch invalidates every previous code.
    """
    codes: List[str] = Field(..., description="One-time recovery codes (store securely!)")

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "codes": [
                    "k3x9a0qz",
                    "m2b7c4dd",
                    "p0q1r2s3",
                ]
            }
        }
    )


class RecoveryCodeVerifyRequest(BaseModel):
    """Recovery code submitted in place of a TOTP code."""
    code: str = Field(..., min_length=1, max_length=64)


class MFAStatusResponse(BaseModel):
    is_enabled: bool
    is_setup: bool
    recovery_codes_remaining: int


# ============================================
# Common Models
# ============================================

class ErrorResponse(BaseModel):
    """Error body returned for every non-2xx response."""
    error: str
    request_id: Optional[str] = None


class HealthStatus(BaseModel):
    """Health check response."""
    status: str
    version: str
    services: Dict[str, str]
    timestamp: datetime
