"""
Account Service - Registration, login and user moderation.
"""

import asyncio
from datetime import datetime

from email_validator import EmailNotValidError, validate_email
from loguru import logger
from sqlalchemy import delete, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agora.core.exceptions import (
    ConflictError,
    ForbiddenError,
    InvalidCredentialsError,
    NotFoundError,
    ValidationError,
)
from agora.core.security import create_access_token, hash_password, verify_password
from agora.models.user import User, UserRole, UserStatus
from agora.modules.forum.permissions import (
    Actor,
    can_ban_user,
    can_change_role,
    can_delete_user,
    can_edit_profile,
    can_view_users,
)

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50
PASSWORD_MIN_LENGTH = 6
AVATAR_URL_MAX_LENGTH = 500


def _username_error(username: str) -> str | None:
    if len(username) < USERNAME_MIN_LENGTH:
        return f"Username must be at least {USERNAME_MIN_LENGTH} characters"
    if len(username) > USERNAME_MAX_LENGTH:
        return f"Username must be at most {USERNAME_MAX_LENGTH} characters"
    return None


def validate_registration(username: str, email: str, password: str) -> tuple[str, str]:
    """
    Check registration fields.

    Returns:
        Cleaned (username, email)

    Raises:
        ValidationError: With one entry per failing field
    """
    errors: list[dict[str, str]] = []

    username = (username or "").strip()
    message = _username_error(username)
    if message:
        errors.append({"field": "username", "message": message})

    try:
        email = validate_email(
            (email or "").strip(), check_deliverability=False
        ).normalized
    except EmailNotValidError as e:
        errors.append({"field": "email", "message": str(e)})

    if len(password or "") < PASSWORD_MIN_LENGTH:
        errors.append({
            "field": "password",
            "message": f"Password must be at least {PASSWORD_MIN_LENGTH} characters",
        })

    if errors:
        raise ValidationError("Validation failed", errors=errors)
    return username, email


class AccountService:
    """
    Service for user accounts: registration, login and moderation.

    Usage:
        accounts = AccountService(db_session)
        user = await accounts.register("alice", "alice@x.com", "secret1")
        token, user = await accounts.login("alice", "secret1")
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize account service with database session."""
        self.db = db

    # ==================== Identity ====================

    async def register(self, username: str, email: str, password: str) -> User:
        """
        Create a new account with role ``user`` and status ``active``.

        Raises:
            ValidationError: Bad username, email or password
            ConflictError: Username or email already taken
        """
        username, email = validate_registration(username, email, password)

        existing = await self.db.execute(
            select(User.id).where(or_(User.username == username, User.email == email))
        )
        if existing.first() is not None:
            raise ConflictError("User already exists")

        hashed = await asyncio.to_thread(hash_password, password)
        user = User(
            username=username,
            email=email,
            hashed_password=hashed,
            role=UserRole.USER,
            status=UserStatus.ACTIVE,
        )
        self.db.add(user)

        try:
            await self.db.flush()
        except IntegrityError as e:
            # Lost a race with a concurrent registration
            await self.db.rollback()
            raise ConflictError("User already exists") from e

        logger.info(f"Registered user {user.username} (id={user.id})")
        return user

    async def authenticate(self, username: str, password: str) -> User:
        """
        Verify credentials.

        Unknown usernames and wrong passwords raise the same error.
        """
        result = await self.db.execute(
            select(User).where(User.username == (username or "").strip())
        )
        user = result.scalar_one_or_none()

        if user is None or not await asyncio.to_thread(
            verify_password, password or "", user.hashed_password
        ):
            logger.debug(f"Failed login attempt for {username!r}")
            raise InvalidCredentialsError()

        return user

    async def login(self, username: str, password: str) -> tuple[str, User]:
        """
        Authenticate and issue a session token.

        Returns:
            (token, user)
        """
        user = await self.authenticate(username, password)

        user.last_login = datetime.utcnow()
        await self.db.flush()

        token = create_access_token(user.id, user.username, user.role.value)
        logger.info(f"User {user.username} logged in")
        return token, user

    async def get_user(self, user_id: int) -> User:
        """Get user by ID."""
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def list_users(self, actor: Actor) -> list[User]:
        """List all accounts (moderators and admins only)."""
        if not can_view_users(actor):
            raise ForbiddenError("Moderator access required")

        result = await self.db.execute(select(User).order_by(User.id))
        return list(result.scalars().all())

    async def update_profile(
        self,
        actor: Actor,
        user_id: int,
        username: str | None = None,
        bio: str | None = None,
        avatar_url: str | None = None,
    ) -> User:
        """
        Update profile fields that are not None (own profile, or admin).

        Raises:
            NotFoundError: No such user
            ForbiddenError: Someone else's profile
            ValidationError: Nothing to update, or a field out of bounds
            ConflictError: Username already taken
        """
        user = await self.get_user(user_id)

        if not can_edit_profile(actor, Actor.from_user(user)):
            raise ForbiddenError("Cannot edit another user's profile")

        if username is None and bio is None and avatar_url is None:
            raise ValidationError("No fields to update")

        if username is not None:
            username = username.strip()
            message = _username_error(username)
            if message:
                raise ValidationError.for_field("username", message)
            if username != user.username:
                existing = await self.db.execute(
                    select(User.id).where(User.username == username, User.id != user.id)
                )
                if existing.first() is not None:
                    raise ConflictError("Username already taken")
                user.username = username

        if avatar_url is not None:
            avatar_url = avatar_url.strip()
            if len(avatar_url) > AVATAR_URL_MAX_LENGTH:
                raise ValidationError.for_field(
                    "avatar_url",
                    f"Avatar URL must be at most {AVATAR_URL_MAX_LENGTH} characters",
                )
            user.avatar_url = avatar_url or None
        if bio is not None:
            user.bio = bio.strip() or None

        await self.db.flush()

        logger.info(f"Profile of user {user.id} updated by user {actor.id}")
        return user

    # ==================== Moderation ====================

    async def set_status(
        self,
        actor: Actor,
        user_id: int,
        status: UserStatus,
    ) -> User:
        """
        Ban or unban a user.

        Raises:
            NotFoundError: No such user
            ForbiddenError: Actor is not staff, or target is an admin
        """
        user = await self.get_user(user_id)

        if not can_ban_user(actor, Actor.from_user(user)):
            raise ForbiddenError(
                "Cannot ban an admin account"
                if user.role == UserRole.ADMIN
                else "Moderator access required"
            )

        user.status = UserStatus(status)
        await self.db.flush()

        logger.info(f"User {user.username} set to {user.status.value} by user {actor.id}")
        return user

    async def set_role(
        self,
        actor: Actor,
        user_id: int,
        role: UserRole | str,
    ) -> User:
        """
        Change a user's role (admins only; admins themselves are immutable).
        """
        try:
            new_role = UserRole(role)
        except ValueError as e:
            raise ValidationError.for_field("role", "Invalid role") from e

        user = await self.get_user(user_id)

        if not can_change_role(actor, Actor.from_user(user), new_role):
            raise ForbiddenError(
                "Cannot change the role of an admin"
                if user.role == UserRole.ADMIN
                else "Admin access required"
            )

        user.role = new_role
        await self.db.flush()

        logger.info(f"User {user.username} role set to {new_role.value} by user {actor.id}")
        return user

    async def delete_user(self, actor: Actor, user_id: int) -> None:
        """Delete a user with all their topics and posts."""
        user = await self.get_user(user_id)

        if not can_delete_user(actor, Actor.from_user(user)):
            raise ForbiddenError("Admin access required")

        username = user.username
        await self.db.execute(delete(User).where(User.id == user_id))
        logger.info(f"User {username} deleted by user {actor.id}")

    # ==================== Bootstrap ====================

    async def bootstrap_admin(
        self,
        username: str,
        email: str,
        password: str,
    ) -> User | None:
        """
        Create the initial admin account if no admin exists yet.

        An ordinary account already holding the username or email is never
        promoted: whoever registered it does not necessarily own the
        configured credentials.

        Returns:
            The new admin, or None if nothing was created
        """
        result = await self.db.execute(
            select(User.id).where(User.role == UserRole.ADMIN).limit(1)
        )
        if result.first() is not None:
            return None

        taken = await self.db.execute(
            select(User.username).where(
                or_(User.username == username.strip(), User.email == email.strip())
            )
        )
        holder = taken.scalars().first()
        if holder is not None:
            logger.warning(
                f"Admin account not created: username or email already used by {holder!r}"
            )
            return None

        user = await self.register(username, email, password)
        user.role = UserRole.ADMIN
        await self.db.flush()

        logger.info(f"Created admin account {user.username}")
        return user
