"""
Secrets management and masking utilities for TOTPGUARD.

Supports multiple secret sources:
1. Environment variables (development)
2. Docker secrets files (production)

Usage:
    from totpguard.utils.secrets import get_secret

    # Automatically checks SECRET_FILE env var, then SECRET env var
    key = get_secret("DATA_ENCRYPTION_KEY")

Values are read on every call: rotating a secret file or variable takes
effect without a restart.
"""
import os
import re
import logging
from typing import Optional

logger = logging.getLogger(__name__)

DOCKER_SECRETS_DIR = "/run/secrets"


def _read_secret_file(path: str) -> Optional[str]:
    try:
        with open(path, 'r') as f:
            return f.read().strip()
    except OSError as e:
        logger.warning(f"Failed to read secret file {path}: {e}")
        return None


def get_secret(name: str, default: Optional[str] = None) -> Optional[str]:
    """
    Get a secret value from various sources.

    Priority:
    1. {NAME}_FILE environment variable (path to file containing secret)
    2. {NAME} environment variable (direct value)
    3. /run/secrets/{name.lower()} file (Docker secrets default path)
    4. Default value

    Args:
        name: Secret name (e.g., "DATA_ENCRYPTION_KEY")
        default: Default value if secret not found

    Returns:
        Secret value or default
    """
    # 1. Check for _FILE variant (Docker secrets pattern)
    file_path = os.environ.get(f"{name}_FILE")
    if file_path and os.path.isfile(file_path):
        secret = _read_secret_file(file_path)
        if secret:
            logger.debug(f"Loaded secret {name} from file")
            return secret

    # 2. Check direct environment variable
    env_value = os.environ.get(name)
    if env_value:
        logger.debug(f"Loaded secret {name} from environment")
        return env_value

    # 3. Check Docker secrets default path
    docker_secret_path = os.path.join(DOCKER_SECRETS_DIR, name.lower())
    if os.path.isfile(docker_secret_path):
        secret = _read_secret_file(docker_secret_path)
        if secret:
            logger.debug(f"Loaded secret {name} from Docker secrets")
            return secret

    return default


def get_required_secret(name: str) -> str:
    """
    Get a required secret, raising an error if not found.

    Args:
        name: Secret name

    Returns:
        Secret value

    Raises:
        ValueError: If secret not found
    """
    value = get_secret(name)
    if not value:
        raise ValueError(
            f"Required secret '{name}' not found. "
            f"Set {name} or {name}_FILE environment variable."
        )
    return value


def get_int_setting(name: str, default: int) -> int:
    """Read an integer setting, falling back to the default on bad input."""
    raw = get_secret(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer value for {name}, using {default}")
        return default


# ============================================
# Masking helpers
# ============================================

def mask_secret(secret: str, visible_chars: int = 4) -> str:
    """
    Mask a secret for safe logging.

    Args:
        secret: The secret to mask
        visible_chars: Number of characters to show at start and end

    Returns:
        Masked string like "abc...xyz"
    """
    if not secret or len(secret) <= visible_chars * 2:
        return "***"
    return f"{secret[:visible_chars]}...{secret[-visible_chars:]}"


def mask_field(value: str, visible_chars: int = 4) -> str:
    """
    Mask a sensitive field for display, keeping only the tail.

    A value no longer than ``visible_chars`` is masked entirely.

    Example:
        >>> mask_field("4111111111111234")
        '************1234'
        >>> mask_field("1234")
        '****'
    """
    if len(value) <= visible_chars:
        return "*" * len(value)
    return "*" * (len(value) - visible_chars) + value[-visible_chars:]


def mask_email(email: str) -> str:
    """
    Mask the local part of an email address.

    "jane@example.com" -> "j**e@example.com". Local parts of one or two
    characters are masked entirely; input without "@" goes through
    mask_field().
    """
    local, sep, domain = email.partition("@")
    if not sep or not domain:
        return mask_field(email)
    if len(local) <= 2:
        masked_local = "*" * len(local)
    else:
        masked_local = local[0] + "*" * (len(local) - 2) + local[-1]
    return f"{masked_local}@{domain}"


def mask_phone(phone: str) -> str:
    """Mask a phone number down to its last four digits, e.g. "******7890"."""
    digits = re.sub(r"\D", "", phone)
    if len(digits) <= 4:
        return "*" * len(digits)
    return "*" * (len(digits) - 4) + digits[-4:]
