"""
Notification API Endpoints.

Topic subscriptions and the current user's notifications.
"""

from typing import Any

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from agora.api.deps import get_current_actor, get_db
from agora.models.notification import Notification
from agora.modules.forum.permissions import Actor
from agora.modules.notifications import NotificationService

router = APIRouter()


def serialize_notification(notification: Notification) -> dict[str, Any]:
    return {
        "id": notification.id,
        "type": notification.type.value,
        "topic_id": notification.topic_id,
        "message": notification.message,
        "is_read": notification.is_read,
        "created_at": notification.created_at.isoformat(),
    }


# ==================== Notifications ====================


@router.get("")
async def list_notifications(
    unread: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Get the current user's notifications, newest first."""
    notifications = await NotificationService(db).list_notifications(actor, unread_only=unread)
    return {
        "notifications": [serialize_notification(n) for n in notifications],
        "unread_count": sum(1 for n in notifications if not n.is_read),
    }


@router.put("/read-all")
async def mark_all_read(
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    count = await NotificationService(db).mark_all_read(actor)
    await db.commit()
    return {"message": "All notifications marked as read", "count": count}


@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    notification = await NotificationService(db).mark_read(actor, notification_id)
    await db.commit()
    return {
        "message": "Notification marked as read",
        "notification": serialize_notification(notification),
    }


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await NotificationService(db).delete_notification(actor, notification_id)
    await db.commit()
    return {"message": "Notification deleted"}


# ==================== Subscriptions ====================


@router.post("/subscribe/{topic_id}", status_code=201)
async def subscribe(
    topic_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    """Follow a topic: every reply by someone else creates a notification."""
    await NotificationService(db).subscribe(actor, topic_id)
    await db.commit()
    return {"message": "Subscribed to topic", "topic_id": topic_id}


@router.delete("/subscribe/{topic_id}")
async def unsubscribe(
    topic_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
) -> dict[str, Any]:
    await NotificationService(db).unsubscribe(actor, topic_id)
    await db.commit()
    return {"message": "Unsubscribed from topic", "topic_id": topic_id}
