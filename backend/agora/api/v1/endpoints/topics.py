"""
Topic API Endpoints.

Reading is public. Creating needs a session; editing and deleting need
ownership or staff rights; pin/lock need a moderator or admin.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from agora.api.deps import get_current_actor, get_db
from agora.core.config import settings
from agora.models.forum import ForumPost, ForumTopic
from agora.modules.forum import ForumService
from agora.modules.forum.permissions import Actor
from agora.modules.forum.service import TopicSummary

router = APIRouter()


# ==================== Schemas ====================


class CreateTopicRequest(BaseModel):
    """Create new topic with its first post."""

    title: str
    content: str
    category_id: int


class UpdateTopicRequest(BaseModel):
    """Update topic title and/or first post content."""

    title: str | None = None
    content: str | None = None


class PinRequest(BaseModel):
    is_pinned: bool


class LockRequest(BaseModel):
    is_locked: bool


# ==================== Serializers ====================


def serialize_topic(topic: ForumTopic) -> dict[str, Any]:
    """Topic fields shared by list and detail views. Needs author and category loaded."""
    return {
        "id": topic.id,
        "title": topic.title,
        "category_id": topic.category_id,
        "category_name": topic.category.name if topic.category else None,
        "user_id": topic.author_id,
        "username": topic.author.username if topic.author else "Unknown",
        "is_pinned": topic.is_pinned,
        "is_locked": topic.is_locked,
        "view_count": topic.view_count,
        "created_at": topic.created_at.isoformat(),
        "updated_at": topic.updated_at.isoformat(),
        "last_post_at": topic.last_post_at.isoformat(),
    }


def serialize_topic_summary(summary: TopicSummary) -> dict[str, Any]:
    data = serialize_topic(summary.topic)
    data["post_count"] = summary.post_count
    data["reply_count"] = summary.reply_count
    return data


def serialize_post(post: ForumPost) -> dict[str, Any]:
    """Post as returned inside a topic. Needs author loaded."""
    return {
        "id": post.id,
        "topic_id": post.topic_id,
        "user_id": post.author_id,
        "username": post.author.username if post.author else "Unknown",
        "role": post.author.role.value if post.author else None,
        "content": post.content,
        "is_first_post": post.is_first_post,
        "is_edited": post.is_edited,
        "created_at": post.created_at.isoformat(),
        "updated_at": post.updated_at.isoformat(),
    }


# ==================== Endpoints ====================


@router.get("")
async def get_topics(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.forum_topics_per_page, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get topics with pagination (pinned first, then by last activity)."""
    forum = ForumService(db)
    result = await forum.list_topics(page=page, page_size=limit)

    return {
        "topics": [serialize_topic_summary(t) for t in result.items],
        "pagination": {
            "page": result.page,
            "limit": result.limit,
            "total": result.total,
            "totalPages": result.total_pages,
        },
    }


@router.get("/{topic_id}")
async def get_topic(
    topic_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get topic with all posts. Each call counts as a view."""
    forum = ForumService(db)
    topic = await forum.get_topic(topic_id)
    await db.commit()

    data = serialize_topic(topic)
    data["posts"] = [serialize_post(p) for p in topic.posts]
    return data


@router.post("", status_code=201)
async def create_topic(
    request: CreateTopicRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Create new topic with its first post."""
    forum = ForumService(db)
    topic, post = await forum.create_topic(
        actor,
        category_id=request.category_id,
        title=request.title,
        body=request.content,
    )
    await db.commit()
    return {
        "message": "Topic created successfully",
        "topicId": topic.id,
        "postId": post.id,
    }


@router.put("/{topic_id}")
async def update_topic(
    topic_id: int,
    request: UpdateTopicRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Update topic title and/or first post content (owner or staff)."""
    forum = ForumService(db)
    await forum.update_topic(
        actor,
        topic_id,
        title=request.title,
        content=request.content,
    )
    await db.commit()
    return {"message": "Topic updated"}


@router.patch("/{topic_id}/pin")
async def pin_topic(
    topic_id: int,
    request: PinRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Pin or unpin a topic (moderator/admin)."""
    forum = ForumService(db)
    await forum.set_pinned(actor, topic_id, request.is_pinned)
    await db.commit()
    return {
        "message": f"Topic {'pinned' if request.is_pinned else 'unpinned'}",
        "is_pinned": request.is_pinned,
    }


@router.patch("/{topic_id}/lock")
async def lock_topic(
    topic_id: int,
    request: LockRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Lock or unlock a topic (moderator/admin)."""
    forum = ForumService(db)
    await forum.set_locked(actor, topic_id, request.is_locked)
    await db.commit()
    return {
        "message": f"Topic {'locked' if request.is_locked else 'unlocked'}",
        "is_locked": request.is_locked,
    }


@router.delete("/{topic_id}")
async def delete_topic(
    topic_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Delete a topic with all its posts (owner or staff)."""
    forum = ForumService(db)
    await forum.delete_topic(actor, topic_id)
    await db.commit()
    return {"message": "Topic deleted"}
