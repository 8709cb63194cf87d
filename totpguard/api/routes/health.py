"""
Health Check Endpoints.

Provides health status for the API and its dependencies.
"""
import time
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse
from sqlalchemy import text

from ... import __version__
from ...database.mfa_db import MFADB
from ...errors import MFAError
from ...utils.secrets import get_secret
from ...security.field_cipher import KEY_ENV_VAR
from ..models import HealthStatus
from ..deps import get_db, get_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["Health"])


def _ping_database(db: MFADB) -> float:
    """Run SELECT 1 and return the latency in milliseconds."""
    start = time.time()
    with db.get_session() as session:
        session.execute(text("SELECT 1"))
    return (time.time() - start) * 1000


@router.get("", response_model=HealthStatus)
async def health_check(db: MFADB = Depends(get_db)):
    """
    Basic health check endpoint.

    Returns overall system status.
    """
    services = {}
    overall_healthy = True

    # Check database
    try:
        latency = _ping_database(db)
        services["database"] = f"healthy ({latency:.1f}ms)"
    except MFAError as e:
        logger.error(f"Health check database failure: {e.detail}")
        services["database"] = "unhealthy"
        overall_healthy = False

    # Check encryption key (presence only)
    if get_secret(KEY_ENV_VAR):
        services["encryption"] = "configured"
    else:
        services["encryption"] = "missing"
        overall_healthy = False

    # Check Redis
    redis_client = get_redis_client()
    if redis_client:
        services["redis"] = "healthy"
    else:
        # Not critical - attempt limiting falls back to memory
        services["redis"] = "fallback_mode (in-memory)"

    return HealthStatus(
        status="healthy" if overall_healthy else "unhealthy",
        version=__version__,
        services=services,
        timestamp=datetime.now(timezone.utc),
    )


@router.get("/live")
async def liveness():
    """
    Kubernetes liveness probe.

    Returns 200 if the service is running.
    """
    return {"status": "alive"}


@router.get("/ready")
async def readiness(db: MFADB = Depends(get_db)):
    """
    Kubernetes readiness probe.

    Returns 200 if the service is ready to accept traffic.
    """
    try:
        _ping_database(db)
    except MFAError as e:
        logger.error(f"Readiness check failed: {e.detail}")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not ready"},
        )

    if not get_secret(KEY_ENV_VAR):
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "not ready"},
        )

    return {"status": "ready"}
