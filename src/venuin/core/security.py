"""Password hashing, session tokens and JWT access tokens.

Provides the core security primitives used by the session manager and the
principal resolver.

Uses bcrypt directly (not passlib) for Python 3.13 compatibility.
"""

from __future__ import annotations

import hashlib
import secrets
from datetime import datetime, timedelta, timezone
from functools import lru_cache

import bcrypt
from jose import JWTError, jwt

from src.venuin.config import get_settings
from src.venuin.core.errors import Unauthenticated

# ── Password Hashing ──────────────────────────────────────────────────────────


def hash_password(password: str) -> str:
    """Hash a plaintext password using bcrypt."""
    salt = bcrypt.gensalt(rounds=get_settings().BCRYPT_ROUNDS)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Verify a plaintext password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


@lru_cache
def _dummy_hash() -> str:
    return hash_password(secrets.token_hex(16))


def burn_password_check(plain: str) -> None:
    """Run a bcrypt check against a throwaway hash.

    Called when the account does not exist so that unknown-user and
    wrong-password failures take the same time.
    """
    verify_password(plain, _dummy_hash())


# ── Opaque Session Tokens ─────────────────────────────────────────────────────


def generate_session_token() -> str:
    """Return a new random session token (shown to the client once)."""
    return secrets.token_urlsafe(32)


def hash_session_token(token: str) -> str:
    """SHA-256 digest of a session token; only the digest is persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


# ── JWT Access Tokens ─────────────────────────────────────────────────────────


def create_access_token(
    data: dict,
    expires_delta: timedelta | None = None,
    not_after: datetime | None = None,
) -> str:
    """Create a JWT access token.

    The data dict should contain at minimum:
    - sub: subject id (str)
    - kind: subject kind (str)
    - sid: id of the session the token is bound to (str)

    ``not_after`` caps the expiry so a token never outlives its session.
    """
    settings = get_settings()
    to_encode = data.copy()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES))
    if not_after is not None and not_after < expire:
        expire = not_after
    to_encode.update({
        "exp": expire,
        "iat": now,
        "type": "access",
    })
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str, token_type: str = "access") -> dict:
    """Decode and validate a JWT token.

    Args:
        token: The JWT string.
        token_type: Expected token type.

    Returns:
        The decoded payload dict.

    Raises:
        Unauthenticated: If the token is invalid, expired, or of the wrong type.
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
    except JWTError:
        raise Unauthenticated("Could not validate credentials")
    if payload.get("type") != token_type:
        raise Unauthenticated("Could not validate credentials")
    if not payload.get("sub"):
        raise Unauthenticated("Could not validate credentials")
    return payload
