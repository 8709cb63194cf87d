"""
MFA Endpoints.

Provides TOTP enrollment, code verification and recovery code management.
"""
import logging
from typing import Dict

from fastapi import APIRouter, Depends

from ..models import (
    MFASetupResponse,
    MFAVerifyRequest,
    MFAVerifyResponse,
    RecoveryCodesResponse,
    RecoveryCodeVerifyRequest,
    MFAStatusResponse,
    ErrorResponse,
)
from ..deps import (
    get_current_user,
    get_mfa_service,
    get_attempt_limiter,
    check_verify_rate_limit,
    VerifyAttemptLimiter,
)
from ...auth.mfa import MFAService
from ...auth.totp import qr_code_base64

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/mfa", tags=["MFA"])


@router.post(
    "/setup",
    response_model=MFASetupResponse,
    responses={
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        409: {"model": ErrorResponse, "description": "MFA already enabled"},
    },
)
async def setup_mfa(
    user: Dict = Depends(get_current_user),
    service: MFAService = Depends(get_mfa_service),
):
    """
    Initialize MFA setup.

    Returns a QR code and secret for authenticator app setup.
    MFA is not active until confirmed with /mfa/verify (action "setup").
    Calling this again before confirming replaces the pending secret.
    """
    result = service.provision(str(user["user_id"]), account_label=user.get("email"))

    logger.info(f"MFA setup initiated for user: {user['user_id']}")

    return MFASetupResponse(
        secret=result.secret,
        provisioning_uri=result.provisioning_uri,
        qr_code_base64=qr_code_base64(result.provisioning_uri),
    )


@router.post(
    "/verify",
    response_model=MFAVerifyResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Malformed code or action"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        404: {"model": ErrorResponse, "description": "MFA not configured"},
        429: {"model": ErrorResponse, "description": "Too many failed attempts"},
    },
)
async def verify_mfa(
    verification: MFAVerifyRequest,
    user: Dict = Depends(check_verify_rate_limit),
    service: MFAService = Depends(get_mfa_service),
    limiter: VerifyAttemptLimiter = Depends(get_attempt_limiter),
):
    """
    Verify a TOTP code.

    - action "setup": confirms enrollment and enables MFA
    - action "login": checks the code for an enabled account

    A wrong code returns 200 with verified=false.
    """
    user_id = str(user["user_id"])

    verified = service.verify(user_id, verification.code, verification.action)

    if verified:
        limiter.clear(user_id)
    else:
        limiter.record_failure(user_id)

    return MFAVerifyResponse(verified=verified)


@router.post(
    "/recovery-codes",
    response_model=RecoveryCodesResponse,
    responses={
        400: {"model": ErrorResponse, "description": "MFA not enabled"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        404: {"model": ErrorResponse, "description": "MFA not configured"},
    },
)
async def generate_recovery_codes(
    user: Dict = Depends(get_current_user),
    service: MFAService = Depends(get_mfa_service),
):
    """
    Generate a new batch of recovery codes.

    All previously issued codes stop working. The codes are returned
    once and cannot be retrieved again - store them securely!
    """
    codes = service.generate_recovery_codes(str(user["user_id"]))

    logger.info(f"Recovery codes regenerated for user: {user['user_id']}")

    return RecoveryCodesResponse(codes=codes)


@router.post(
    "/recovery",
    response_model=MFAVerifyResponse,
    responses={
        400: {"model": ErrorResponse, "description": "MFA not enabled"},
        401: {"model": ErrorResponse, "description": "Not authenticated"},
        404: {"model": ErrorResponse, "description": "MFA not configured"},
        429: {"model": ErrorResponse, "description": "Too many failed attempts"},
    },
)
async def redeem_recovery_code(
    request: RecoveryCodeVerifyRequest,
    user: Dict = Depends(check_verify_rate_limit),
    service: MFAService = Depends(get_mfa_service),
    limiter: VerifyAttemptLimiter = Depends(get_attempt_limiter),
):
    """
    Redeem a recovery code in place of a TOTP code.

    Each code works once.
    """
    user_id = str(user["user_id"])

    verified = service.verify_recovery_code(user_id, request.code)

    if verified:
        limiter.clear(user_id)
        logger.info(f"Recovery code used for user: {user_id}")
    else:
        limiter.record_failure(user_id)

    return MFAVerifyResponse(verified=verified)


@router.get("/status", response_model=MFAStatusResponse)
async def mfa_status(
    user: Dict = Depends(get_current_user),
    service: MFAService = Depends(get_mfa_service),
):
    """Get the MFA state of the current user."""
    result = service.status(str(user["user_id"]))
    return MFAStatusResponse(
        is_enabled=result.is_enabled,
        is_setup=result.is_setup,
        recovery_codes_remaining=result.recovery_codes_remaining,
    )
