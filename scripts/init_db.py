#!/usr/bin/env python3
"""
Initialize TOTPGUARD database schema.

Run this after first setup, or against a fresh test database.

Usage:
    python scripts/init_db.py
    python scripts/init_db.py --database-url sqlite:///totpguard.db

This script:
1. Creates the mfa_records and recovery_codes tables
2. Creates the profiles and sessions tables if the platform has not
"""
import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from totpguard.database.mfa_db import MFADB
from totpguard.errors import StorageError


def main():
    parser = argparse.ArgumentParser(description="Initialize the TOTPGUARD database schema")
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy URL (defaults to DATABASE_URL or POSTGRES_* settings)",
    )
    args = parser.parse_args()

    print("=" * 60)
    print("TOTPGUARD Database Initialization")
    print("=" * 60)

    db = MFADB(args.database_url)

    print("\n[1] Creating tables...")
    try:
        db.init_schema()
    except StorageError as e:
        print(f"    Failed: {e.detail}")
        return 1
    print("    Tables: mfa_records, recovery_codes, profiles, sessions")

    print("\n" + "=" * 60)
    print("Initialization complete!")
    print("=" * 60)
    return 0


if __name__ == "__main__":
    sys.exit(main())
