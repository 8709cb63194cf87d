"""
API Routes for TOTPGUARD.
"""
from .health import router as health_router
from .mfa import router as mfa_router

__all__ = [
    "health_router",
    "mfa_router",
]
