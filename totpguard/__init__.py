"""
TOTPGUARD - TOTP second factor and recovery code service.

This package provides TOTP enrollment and verification, one-time recovery
codes, and field-level encryption of the stored TOTP secrets, exposed
through a FastAPI application.
"""

__version__ = "0.1.0"
