#!/usr/bin/env python3
"""
Generate a DATA_ENCRYPTION_KEY value.

Prints 32 random bytes, base64-encoded. A value in this form is used as the
AES-256 key directly; any other value is stretched with PBKDF2.

Usage:
    python scripts/generate_key.py
    python scripts/generate_key.py --env >> .env
"""
import argparse
import base64
import secrets

KEY_BYTES = 32


def main():
    parser = argparse.ArgumentParser(description="Generate a field encryption key")
    parser.add_argument(
        "--env",
        action="store_true",
        help="Print as a DATA_ENCRYPTION_KEY= line",
    )
    args = parser.parse_args()

    key = base64.b64encode(secrets.token_bytes(KEY_BYTES)).decode("ascii")

    if args.env:
        print(f"DATA_ENCRYPTION_KEY={key}")
    else:
        print(key)


if __name__ == "__main__":
    main()
