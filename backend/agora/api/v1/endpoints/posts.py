"""
Post API Endpoints.

Replies to topics. The first post of a topic is edited here like any
other post but can only be removed by deleting the topic.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from agora.api.deps import get_current_actor, get_db
from agora.modules.forum import ForumService
from agora.modules.forum.permissions import Actor

router = APIRouter()


# ==================== Schemas ====================


class CreatePostRequest(BaseModel):
    """Create new post/reply."""

    topic_id: int
    content: str


class UpdatePostRequest(BaseModel):
    """Update post content."""

    content: str


# ==================== Endpoints ====================


@router.post("", status_code=201)
async def create_post(
    request: CreatePostRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Reply to a topic. Locked topics accept replies from staff only."""
    forum = ForumService(db)
    post = await forum.create_post(actor, request.topic_id, request.content)
    await db.commit()
    return {"message": "Post created successfully", "postId": post.id}


@router.put("/{post_id}")
async def update_post(
    post_id: int,
    request: UpdatePostRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Update post content (owner or staff)."""
    forum = ForumService(db)
    post = await forum.update_post(actor, post_id, request.content)
    await db.commit()
    return {
        "message": "Post updated",
        "id": post.id,
        "is_edited": post.is_edited,
    }


@router.delete("/{post_id}")
async def delete_post(
    post_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Delete a reply (owner or staff). First posts are refused."""
    forum = ForumService(db)
    await forum.delete_post(actor, post_id)
    await db.commit()
    return {"message": "Post deleted"}
