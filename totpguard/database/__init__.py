"""
Database layer for TOTPGUARD.

This package provides:
- base: the MFAStore contract and MFARecord type
- mfa_db: SQLAlchemy implementation (PostgreSQL, SQLite for tests)
"""
from .base import MFARecord, MFAStore

__all__ = ["MFARecord", "MFAStore"]
