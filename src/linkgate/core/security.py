"""Signing, hashing and token helpers shared by the verification pipeline."""
from __future__ import annotations

import hashlib
import hmac
from datetime import UTC, datetime, timedelta

from jose import JWTError, jwt

from linkgate.core.settings import settings


def hmac_sha256_hex(secret: str, message: str) -> str:
    """Return the hex HMAC-SHA256 of `message` keyed by `secret`."""
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def sha256_hex(data: str) -> str:
    """Return the hex SHA-256 digest of a UTF-8 string."""
    return hashlib.sha256(data.encode("utf-8")).hexdigest()


def constant_time_equals(left: str | None, right: str | None) -> bool:
    """Compare two strings without leaking the position of the first difference."""
    if left is None or right is None:
        return False
    return hmac.compare_digest(left.encode("utf-8"), right.encode("utf-8"))


def hash_user_agent(user_agent: str) -> str:
    return sha256_hex(user_agent)


def create_access_token(subject: str, expires_minutes: int | None = None) -> str:
    """Create a bearer token for a link owner.

    Args:
        subject: Owner identifier stored in the ``sub`` claim.
        expires_minutes: Optional override of the configured lifetime.

    Returns:
        Encoded JWT string.
    """
    minutes = expires_minutes or settings.access_token_expire_minutes
    expire = datetime.now(UTC) + timedelta(minutes=minutes)
    to_encode = {"sub": subject, "exp": expire}
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def create_session_cookie(token: str, ttl_seconds: int, now_ms: int) -> str:
    """Return the signed value of the browser-locking session cookie."""
    payload = {"sid": token, "exp": now_ms // 1000 + ttl_seconds}
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


def read_session_cookie(value: str | None) -> str | None:
    """Return the session token carried by a signed cookie, or None if invalid."""
    if not value:
        return None
    try:
        payload = jwt.decode(value, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    sid = payload.get("sid")
    return sid if isinstance(sid, str) else None
