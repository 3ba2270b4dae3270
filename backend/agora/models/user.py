"""
User model for authentication and moderation.
"""

from datetime import datetime
from enum import Enum as PyEnum
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, Enum, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agora.core.database import Base

if TYPE_CHECKING:
    from agora.models.forum import ForumPost, ForumTopic


class UserRole(str, PyEnum):
    """Account role, lowest to highest."""

    USER = "user"
    MODERATOR = "moderator"
    ADMIN = "admin"


class UserStatus(str, PyEnum):
    """Account status."""

    ACTIVE = "active"
    BANNED = "banned"


class User(Base):
    """User account model."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))

    # Profile
    avatar_url: Mapped[str | None] = mapped_column(String(500))
    bio: Mapped[str | None] = mapped_column(Text)

    # Access
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, values_callable=lambda e: [m.value for m in e]),
        default=UserRole.USER,
    )
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, values_callable=lambda e: [m.value for m in e]),
        default=UserStatus.ACTIVE,
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )
    last_login: Mapped[datetime | None] = mapped_column(DateTime)

    # Relationships
    forum_topics: Mapped[list["ForumTopic"]] = relationship(
        back_populates="author", passive_deletes=True
    )
    forum_posts: Mapped[list["ForumPost"]] = relationship(
        back_populates="author", passive_deletes=True
    )

    @property
    def is_banned(self) -> bool:
        return self.status == UserStatus.BANNED

    def __repr__(self) -> str:
        return f"<User {self.username}>"
