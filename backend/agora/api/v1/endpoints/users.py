"""
User administration endpoints.

Everyone edits their own profile; admins edit any.
Moderators and admins can list, ban and unban users; only admins change
roles or delete accounts. Admin accounts are immune to all of these.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from agora.api.deps import get_current_actor, get_db
from agora.api.v1.endpoints.auth import serialize_user
from agora.models.user import UserStatus
from agora.modules.accounts import AccountService
from agora.modules.forum.permissions import Actor

router = APIRouter()


class ChangeRoleRequest(BaseModel):
    role: str


class UpdateProfileRequest(BaseModel):
    """Fields left out are not changed."""

    username: str | None = None
    bio: str | None = None
    avatar_url: str | None = None


@router.get("")
async def list_users(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    """List all users (moderator/admin)."""
    users = await AccountService(db).list_users(actor)
    return [serialize_user(u, private=True) for u in users]


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get a public user profile."""
    user = await AccountService(db).get_user(user_id)
    return serialize_user(user)


@router.put("/{user_id}")
async def update_profile(
    user_id: int,
    request: UpdateProfileRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Update username, bio or avatar (own profile, or admin)."""
    user = await AccountService(db).update_profile(
        actor,
        user_id,
        username=request.username,
        bio=request.bio,
        avatar_url=request.avatar_url,
    )
    await db.commit()
    return {"message": "Profile updated", "user": serialize_user(user)}


@router.put("/{user_id}/ban")
async def ban_user(
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Ban a user (moderator/admin; admins cannot be banned)."""
    user = await AccountService(db).set_status(actor, user_id, UserStatus.BANNED)
    await db.commit()
    return {"message": "User banned", "user": serialize_user(user)}


@router.put("/{user_id}/unban")
async def unban_user(
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Lift a ban (moderator/admin)."""
    user = await AccountService(db).set_status(actor, user_id, UserStatus.ACTIVE)
    await db.commit()
    return {"message": "User unbanned", "user": serialize_user(user)}


@router.put("/{user_id}/role")
async def change_role(
    user_id: int,
    request: ChangeRoleRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Change a user's role (admin only; admins are immutable)."""
    user = await AccountService(db).set_role(actor, user_id, request.role)
    await db.commit()
    return {"message": "Role updated", "user": serialize_user(user)}


@router.delete("/{user_id}")
async def delete_user(
    user_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Delete a user with all their topics and posts (admin only)."""
    await AccountService(db).delete_user(actor, user_id)
    await db.commit()
    return {"message": "User deleted"}
