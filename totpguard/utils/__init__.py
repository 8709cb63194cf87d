"""
Shared utilities for TOTPGUARD.

This package provides:
- Configuration management
- Secrets management
- Masking helpers for display and logging
"""
from .secrets import (
    get_secret,
    get_required_secret,
    mask_secret,
    mask_field,
    mask_email,
    mask_phone,
)
from .config import MFASettings, get_database_url

__all__ = [
    "get_secret",
    "get_required_secret",
    "mask_secret",
    "mask_field",
    "mask_email",
    "mask_phone",
    "MFASettings",
    "get_database_url",
]
