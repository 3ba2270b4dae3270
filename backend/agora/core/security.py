"""
Password hashing and session tokens.

Passwords are stored as bcrypt hashes. Sessions are HS256 JWTs carrying
the user's id, username and role as of login time.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from jose import JWTError, jwt

from agora.core.config import settings
from agora.core.exceptions import InvalidTokenError, MissingTokenError


@dataclass(frozen=True)
class SessionClaims:
    """Identity embedded in a session token."""

    user_id: int
    username: str
    role: str
    expires_at: datetime


def hash_password(password: str) -> str:
    """Hash a password with a fresh salt."""
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt())
    return hashed.decode("utf-8")


def verify_password(password: str, hashed_password: str) -> bool:
    """Check a password against its stored hash."""
    try:
        return bcrypt.checkpw(
            password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    except ValueError:
        # Stored value is not a bcrypt hash
        return False


def create_access_token(
    user_id: int,
    username: str,
    role: str,
    expires_delta: timedelta | None = None,
) -> str:
    """
    Issue a signed session token.

    Args:
        user_id: User ID (stored as ``sub``)
        username: Username at login time
        role: Role at login time
        expires_delta: Lifetime (default from settings)

    Returns:
        Encoded JWT
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.jwt_access_token_expire_minutes)

    now = datetime.now(timezone.utc)
    payload: dict[str, Any] = {
        "sub": str(user_id),
        "username": username,
        "role": role,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(
        payload,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def verify_session(token: str | None) -> SessionClaims:
    """
    Decode and validate a session token.

    Claims are a snapshot taken at login: role changes and bans made later
    are not reflected until the token expires.

    Raises:
        MissingTokenError: No token presented
        InvalidTokenError: Token malformed, forged or expired
    """
    if not token:
        raise MissingTokenError()

    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as e:
        raise InvalidTokenError() from e

    try:
        return SessionClaims(
            user_id=int(payload["sub"]),
            username=payload["username"],
            role=payload["role"],
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidTokenError() from e
