"""
Forum models for community discussions.

Includes:
- Categories (sections)
- Topics (threads), each paired with exactly one first post
- Posts (replies)

All foreign keys cascade on delete: removing a category removes its
topics, removing a topic removes its posts.
"""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from agora.core.database import Base

if TYPE_CHECKING:
    from agora.models.user import User


class ForumCategory(Base):
    """Forum category/section."""

    __tablename__ = "forum_categories"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    slug: Mapped[str] = mapped_column(String(100), unique=True, index=True)
    description: Mapped[str | None] = mapped_column(Text)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Relationships
    topics: Mapped[list["ForumTopic"]] = relationship(
        back_populates="category", passive_deletes=True
    )

    def __repr__(self) -> str:
        return f"<ForumCategory {self.name}>"


class ForumTopic(Base):
    """Forum topic/thread."""

    __tablename__ = "forum_topics"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    category_id: Mapped[int] = mapped_column(
        ForeignKey("forum_categories.id", ondelete="CASCADE"), index=True
    )
    author_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )

    title: Mapped[str] = mapped_column(String(200))

    # Status
    is_pinned: Mapped[bool] = mapped_column(Boolean, default=False)
    is_locked: Mapped[bool] = mapped_column(Boolean, default=False)

    # Stats
    view_count: Mapped[int] = mapped_column(Integer, default=0)

    # Last activity
    last_post_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    category: Mapped["ForumCategory"] = relationship(back_populates="topics")
    author: Mapped["User"] = relationship(back_populates="forum_topics")
    posts: Mapped[list["ForumPost"]] = relationship(
        back_populates="topic",
        order_by="ForumPost.id",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<ForumTopic {self.title[:30]}>"


class ForumPost(Base):
    """Forum post/reply."""

    __tablename__ = "forum_posts"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    topic_id: Mapped[int] = mapped_column(
        ForeignKey("forum_topics.id", ondelete="CASCADE"), index=True
    )
    author_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True
    )

    content: Mapped[str] = mapped_column(Text)

    # Status
    is_first_post: Mapped[bool] = mapped_column(Boolean, default=False)
    is_edited: Mapped[bool] = mapped_column(Boolean, default=False)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    # Relationships
    topic: Mapped["ForumTopic"] = relationship(back_populates="posts")
    author: Mapped["User"] = relationship(back_populates="forum_posts")

    def __repr__(self) -> str:
        return f"<ForumPost {self.id} in topic {self.topic_id}>"
