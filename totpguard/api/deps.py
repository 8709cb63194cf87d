"""
FastAPI Dependencies for TOTPGUARD API.

Provides:
- Authentication dependencies
- Database, cipher and MFA service wiring
- Verification attempt limiting (Redis-backed)
- Redis client
"""
import os
import time
import logging
from typing import Optional, Dict
from functools import lru_cache

import redis
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..auth.mfa import MFAService
from ..database.base import MFAStore
from ..database.mfa_db import get_mfa_db
from ..security.field_cipher import EncryptionConfig, FieldCipher
from ..utils.config import MFASettings

logger = logging.getLogger(__name__)


# ============================================
# Redis Client
# ============================================

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get Redis client singleton.

    Returns None if Redis is not configured or unavailable.
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    host = os.getenv("REDIS_HOST")
    if not host:
        return None

    port = int(os.getenv("REDIS_PORT", "6379"))
    password = os.getenv("REDIS_PASSWORD", "") or None
    db = int(os.getenv("REDIS_DB", "0"))

    try:
        client = redis.Redis(
            host=host,
            port=port,
            password=password,
            db=db,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        # Test connection
        client.ping()
        logger.info(f"Redis connected: {host}:{port}")
        _redis_client = client
        return _redis_client
    except redis.ConnectionError as e:
        logger.warning(f"Redis connection failed: {e}. Attempt limiting will use in-memory fallback.")
        return None


# Security scheme
security = HTTPBearer(auto_error=False)


# ============================================
# Core Dependencies
# ============================================

def get_db() -> MFAStore:
    """Get database connection."""
    return get_mfa_db()


@lru_cache(maxsize=1)
def get_settings() -> MFASettings:
    """MFA settings, read from the environment once per process."""
    return MFASettings.from_env()


_field_cipher: Optional[FieldCipher] = None


def get_field_cipher() -> FieldCipher:
    """
    Get the process-wide field cipher.

    Raises:
        ConfigurationError: If DATA_ENCRYPTION_KEY is not set. The cipher
            is built once and reused; a failed build is not cached, so every
            request fails loudly until the key is configured.
    """
    global _field_cipher
    if _field_cipher is None:
        _field_cipher = FieldCipher(EncryptionConfig.from_env())
    return _field_cipher


def get_mfa_service(
    db: MFAStore = Depends(get_db),
    cipher: FieldCipher = Depends(get_field_cipher),
    settings: MFASettings = Depends(get_settings),
) -> MFAService:
    """Build the MFA service for a request."""
    return MFAService(db, cipher, settings)


# ============================================
# Authentication Dependencies
# ============================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: MFAStore = Depends(get_db),
) -> Dict:
    """
    Validate bearer token and return current user.

    Raises:
        HTTPException: If token is missing, invalid, or expired.
    """
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.validate_session(credentials.credentials)

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


# ============================================
# Verification Attempt Limiting
# ============================================

class VerifyAttemptLimiter:
    """
    Per-user limiter for failed MFA code submissions.

    Only failures count; a successful verification clears the counter.
    Uses Redis INCR with TTL when available, in-memory timestamps otherwise.
    """

    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        max_attempts: int = 5,
        window_seconds: int = 900,
    ):
        self.redis = redis_client
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        # In-memory fallback storage
        self._memory_store: Dict[str, list] = {}

    def _key(self, user_id: str) -> str:
        return f"totpguard:mfa_attempts:{user_id}"

    def _memory_count(self, user_id: str) -> int:
        now = time.time()
        entries = [
            ts for ts in self._memory_store.get(user_id, [])
            if now - ts < self.window_seconds
        ]
        if entries:
            self._memory_store[user_id] = entries
        else:
            self._memory_store.pop(user_id, None)
        return len(entries)

    def failure_count(self, user_id: str) -> int:
        """Failed attempts inside the current window."""
        if self.redis is not None:
            try:
                count = self.redis.get(self._key(user_id))
                return int(count) if count else 0
            except redis.RedisError as e:
                logger.warning(f"Redis error in attempt limit check: {e}")

        return self._memory_count(user_id)

    def check(self, user_id: str) -> tuple[bool, int]:
        """
        Check if the user may submit another code.

        Returns:
            Tuple of (allowed, remaining_attempts)
        """
        remaining = self.max_attempts - self.failure_count(user_id)
        return remaining > 0, max(0, remaining)

    def record_failure(self, user_id: str) -> int:
        """Record a wrong code. Returns the new failure count."""
        if self.redis is not None:
            try:
                pipe = self.redis.pipeline()
                pipe.incr(self._key(user_id))
                pipe.expire(self._key(user_id), self.window_seconds)
                results = pipe.execute()
                return results[0]
            except redis.RedisError as e:
                logger.warning(f"Redis error in attempt limit increment: {e}")

        self._memory_count(user_id)
        entries = self._memory_store.setdefault(user_id, [])
        entries.append(time.time())
        return len(entries)

    def clear(self, user_id: str) -> None:
        """Reset the counter after a successful verification."""
        if self.redis is not None:
            try:
                self.redis.delete(self._key(user_id))
            except redis.RedisError as e:
                logger.warning(f"Redis error clearing attempt counter: {e}")

        self._memory_store.pop(user_id, None)


# Singleton attempt limiter
_attempt_limiter: Optional[VerifyAttemptLimiter] = None


def get_attempt_limiter() -> VerifyAttemptLimiter:
    """Get singleton attempt limiter (Redis-backed if available)."""
    global _attempt_limiter
    if _attempt_limiter is None:
        settings = get_settings()
        _attempt_limiter = VerifyAttemptLimiter(
            get_redis_client(),
            max_attempts=settings.max_verify_attempts,
            window_seconds=settings.attempt_window_seconds,
        )
    return _attempt_limiter


async def check_verify_rate_limit(
    user: Dict = Depends(get_current_user),
    limiter: VerifyAttemptLimiter = Depends(get_attempt_limiter),
) -> Dict:
    """
    Dependency to block code submissions after too many failures.

    Raises HTTPException 429 if limit exceeded.
    """
    enabled = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    if not enabled:
        return user

    allowed, _ = limiter.check(str(user["user_id"]))
    if not allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many failed verification attempts. Try again later.",
            headers={
                "Retry-After": str(limiter.window_seconds),
                "X-RateLimit-Remaining": "0",
            },
        )
    return user
