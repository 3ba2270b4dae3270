"""
Category API Endpoints.

Listing is public; creating, updating and deleting require an admin.
"""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from agora.api.deps import get_current_actor, get_db
from agora.api.v1.endpoints.topics import serialize_topic_summary
from agora.modules.forum import ForumService
from agora.modules.forum.permissions import Actor

router = APIRouter()


# ==================== Schemas ====================


class CreateCategoryRequest(BaseModel):
    """Create new category."""

    name: str
    description: str | None = None
    display_order: int = 0


class UpdateCategoryRequest(BaseModel):
    """Update category; omitted fields are left unchanged."""

    name: str | None = None
    description: str | None = None
    display_order: int | None = None


# ==================== Endpoints ====================


@router.get("")
async def get_categories(
    db: AsyncSession = Depends(get_db),
) -> list[dict[str, Any]]:
    """Get all forum categories with topic and post counts."""
    forum = ForumService(db)
    summaries = await forum.get_categories()

    return [
        {
            "id": s.category.id,
            "name": s.category.name,
            "slug": s.category.slug,
            "description": s.category.description,
            "display_order": s.category.sort_order,
            "topic_count": s.topic_count,
            "post_count": s.post_count,
            "created_at": s.category.created_at.isoformat(),
        }
        for s in summaries
    ]


@router.get("/{category_id}")
async def get_category(
    category_id: int,
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get category with its topics (pinned first, then by activity)."""
    forum = ForumService(db)
    category = await forum.get_category(category_id)
    topics = await forum.get_category_topics(category_id)

    return {
        "id": category.id,
        "name": category.name,
        "slug": category.slug,
        "description": category.description,
        "display_order": category.sort_order,
        "created_at": category.created_at.isoformat(),
        "topics": [serialize_topic_summary(t) for t in topics],
    }


@router.post("", status_code=201)
async def create_category(
    request: CreateCategoryRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Create a new category (admin only)."""
    forum = ForumService(db)
    category = await forum.create_category(
        actor,
        name=request.name,
        description=request.description,
        sort_order=request.display_order,
    )
    await db.commit()
    return {"message": "Category created", "categoryId": category.id}


@router.put("/{category_id}")
async def update_category(
    category_id: int,
    request: UpdateCategoryRequest,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Update a category (admin only)."""
    forum = ForumService(db)
    await forum.update_category(
        actor,
        category_id,
        name=request.name,
        description=request.description,
        sort_order=request.display_order,
    )
    await db.commit()
    return {"message": "Category updated"}


@router.delete("/{category_id}")
async def delete_category(
    category_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Delete a category with all its topics and posts (admin only)."""
    forum = ForumService(db)
    await forum.delete_category(actor, category_id)
    await db.commit()
    return {"message": "Category deleted"}
