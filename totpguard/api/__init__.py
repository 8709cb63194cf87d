"""
TOTPGUARD REST API.

FastAPI application exposing MFA enrollment, verification and recovery codes.
"""
from .main import app, create_app

__all__ = ["app", "create_app"]
