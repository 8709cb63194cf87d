"""
TOTP (Time-based One-Time Password) engine for TOTPGUARD.

Implements RFC 6238 on top of the RFC 4226 HOTP construction:
- HMAC-SHA1 keyed with the decoded base32 secret
- 8-byte big-endian counter, counter = floor(unix_time / 30)
- dynamic truncation to a zero-padded 6-digit code

SHA-1 is what authenticator apps (Google Authenticator, Authy, Aegis)
implement; do not swap it for a stronger hash.

Code generation, verification and otpauth:// URIs are done by pyotp; this
module adds the permissive base32 handling and strict input checks in front
of it. QR codes are rendered with qrcode.
"""
import io
import time
import base64
import hashlib
from datetime import datetime, timezone
from typing import Optional

import pyotp
import qrcode

BASE32_ALPHABET = "ABCDEFGHIJKLMNOPQRSTUVWXYZ234567"

DIGITS = 6
PERIOD_SECONDS = 30
DEFAULT_WINDOW = 1
SECRET_BYTES = 20
SECRET_LENGTH = 32  # base32 characters for a 160-bit secret


# ============================================
# Base32
# ============================================

def decode_base32(text: str) -> bytes:
    """
    Decode RFC 4648 base32, skipping characters outside the alphabet.

    Padding is ignored and input is case-insensitive, so "jbsw y3dp" and
    "JBSWY3DP====" decode to the same bytes. Trailing bits that do not
    fill a whole byte are dropped.

    Args:
        text: Base32 secret as entered or stored.

    Returns:
        Decoded secret bytes.
    """
    output = bytearray()
    bits = 0
    value = 0

    for char in text.rstrip("=").upper():
        index = BASE32_ALPHABET.find(char)
        if index == -1:
            continue
        value = ((value << 5) | index) & 0xFFFF
        bits += 5
        if bits >= 8:
            output.append((value >> (bits - 8)) & 0xFF)
            bits -= 8

    return bytes(output)


def encode_base32(raw: bytes) -> str:
    """Encode bytes as unpadded RFC 4648 base32."""
    return base64.b32encode(raw).decode("ascii").rstrip("=")


# ============================================
# Code generation and verification
# ============================================

def time_counter(timestamp: Optional[float] = None, period: int = PERIOD_SECONDS) -> int:
    """Return the TOTP time step for a unix timestamp (defaults to now)."""
    ts = time.time() if timestamp is None else timestamp
    return int(ts // period)


def _clean_secret(secret: str) -> str:
    """Canonical unpadded base32 form of a permissively entered secret."""
    return encode_base32(decode_base32(secret))


def _hotp(secret: str) -> pyotp.HOTP:
    return pyotp.HOTP(_clean_secret(secret), digits=DIGITS, digest=hashlib.sha1)


def _totp(secret: str) -> pyotp.TOTP:
    return pyotp.TOTP(_clean_secret(secret), digits=DIGITS, digest=hashlib.sha1, interval=PERIOD_SECONDS)


def generate(secret: str, counter: int) -> str:
    """
    Generate the 6-digit code for a base32 secret and counter.

    Args:
        secret: Base32-encoded TOTP secret.
        counter: Time step (or HOTP counter).

    Returns:
        Zero-padded 6-digit code.
    """
    return _hotp(secret).at(counter)


def _is_well_formed(code: str) -> bool:
    return len(code) == DIGITS and code.isascii() and code.isdigit()


def verify(
    secret: str,
    code: str,
    *,
    timestamp: Optional[float] = None,
    window: int = DEFAULT_WINDOW,
) -> bool:
    """
    Verify a TOTP code against the secret.

    Checks the current time step and ``window`` steps on either side
    (default 1, i.e. up to 90 seconds of accepted drift). pyotp compares
    each candidate in constant time.

    Args:
        secret: Base32-encoded TOTP secret.
        code: 6-digit code entered by user.
        timestamp: Unix time to verify at (defaults to now).
        window: Number of 30-second steps to accept before and after now.

    Returns:
        True if code is valid, False otherwise.
    """
    if not secret or not code or not _is_well_formed(code):
        return False

    ts = time.time() if timestamp is None else timestamp
    current = time_counter(ts)

    if current - window < 0:
        # pyotp rejects negative counters; only the steps right after the epoch get here
        hotp = _hotp(secret)
        return any(hotp.verify(code, counter) for counter in range(0, current + window + 1))

    for_time = datetime.fromtimestamp(ts, timezone.utc)
    return _totp(secret).verify(code, for_time=for_time, valid_window=window)


# ============================================
# Provisioning
# ============================================

def generate_secret() -> str:
    """
    Generate a new TOTP secret for MFA enrollment.

    Returns:
        Base32-encoded secret (32 characters, 160 bits).
    """
    return pyotp.random_base32(length=SECRET_LENGTH)


def provisioning_uri(secret: str, account: str, issuer: str) -> str:
    """
    Generate a provisioning URI for TOTP apps.

    Args:
        secret: Base32-encoded TOTP secret.
        account: Label shown in the authenticator app (email or user id).
        issuer: Application name shown in the authenticator app.

    Returns:
        otpauth:// URI string.
    """
    totp = _totp(secret)
    return totp.provisioning_uri(name=account, issuer_name=issuer)


def qr_code_base64(uri: str) -> str:
    """
    Generate a base64-encoded QR code for embedding in HTML.

    Args:
        uri: otpauth:// provisioning URI.

    Returns:
        Base64-encoded PNG image string (data URI ready).
    """
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_L,
        box_size=10,
        border=4,
    )
    qr.add_data(uri)
    qr.make(fit=True)

    img = qr.make_image(fill_color="black", back_color="white")

    buffer = io.BytesIO()
    img.save(buffer, format='PNG')
    b64 = base64.b64encode(buffer.getvalue()).decode('utf-8')
    return f"data:image/png;base64,{b64}"
