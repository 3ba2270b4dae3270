"""
Shared endpoint dependencies.

The current user is identified by a ``Authorization: Bearer <token>``
header. The token proves identity; role and status are re-read from the
database on every request so bans and role changes apply immediately.
"""

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from agora.core.database import get_db
from agora.core.exceptions import InvalidTokenError, NotFoundError
from agora.core.security import SessionClaims, verify_session
from agora.models.user import User
from agora.modules.accounts import AccountService
from agora.modules.forum.permissions import Actor

__all__ = [
    "get_db",
    "get_bearer_token",
    "get_session_claims",
    "get_current_user",
    "get_current_actor",
]


def get_bearer_token(authorization: str | None = Header(None)) -> str | None:
    """Extract the token from the Authorization header, if any."""
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_session_claims(
    token: str | None = Depends(get_bearer_token),
) -> SessionClaims:
    """Verify the session token (401 if missing, 403 if invalid)."""
    return verify_session(token)


async def get_current_user(
    claims: SessionClaims = Depends(get_session_claims),
    db: AsyncSession = Depends(get_db),
) -> User:
    """Load the account behind the session token."""
    try:
        return await AccountService(db).get_user(claims.user_id)
    except NotFoundError as e:
        # Account deleted after the token was issued
        raise InvalidTokenError() from e


async def get_current_actor(
    user: User = Depends(get_current_user),
) -> Actor:
    """The current user as seen by the authorization rules."""
    return Actor.from_user(user)
