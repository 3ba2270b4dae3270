"""
Authentication API Endpoints.

Registration, login and the current session's profile.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from agora.api.deps import get_current_user, get_db
from agora.models.user import User
from agora.modules.accounts import AccountService

router = APIRouter()


# ==================== Schemas ====================


class RegisterRequest(BaseModel):
    """Create new account."""

    username: str
    email: str
    password: str


class LoginRequest(BaseModel):
    """Exchange credentials for a session token."""

    username: str
    password: str


def serialize_user(user: User, private: bool = False) -> dict[str, Any]:
    """User profile as returned by the API."""
    data = {
        "id": user.id,
        "username": user.username,
        "role": user.role.value,
        "status": user.status.value,
        "bio": user.bio,
        "avatar_url": user.avatar_url,
        "created_at": user.created_at.isoformat() if user.created_at else None,
    }
    if private:
        data["email"] = user.email
        data["last_login"] = user.last_login.isoformat() if user.last_login else None
    return data


# ==================== Endpoints ====================


@router.post("/register", status_code=201)
async def register(
    request: RegisterRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Register a new user."""
    user = await AccountService(db).register(
        username=request.username,
        email=request.email,
        password=request.password,
    )
    await db.commit()
    return {"message": "User registered successfully", "userId": user.id}


@router.post("/login")
async def login(
    request: LoginRequest,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Log in and receive a bearer token (valid for 24 hours by default)."""
    token, user = await AccountService(db).login(request.username, request.password)
    await db.commit()
    return {
        "message": "Login successful",
        "token": token,
        "user": {
            "id": user.id,
            "username": user.username,
            "role": user.role.value,
        },
    }


@router.get("/me")
async def me(user: User = Depends(get_current_user)) -> dict[str, Any]:
    """Get the profile of the logged-in user."""
    return serialize_user(user, private=True)
