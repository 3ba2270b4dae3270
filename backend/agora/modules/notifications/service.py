"""
Notification Service - Topic subscriptions and reply notifications.
"""

from datetime import datetime, timedelta

from loguru import logger
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from agora.core.exceptions import ConflictError, ForbiddenError, NotFoundError
from agora.models.forum import ForumTopic
from agora.models.notification import Notification, NotificationType, TopicSubscription
from agora.modules.forum.permissions import Actor, can_access_notification

MESSAGE_MAX_LENGTH = 300
READ_RETENTION_DAYS = 30


class NotificationService:
    """
    Service for topic subscriptions and per-user notifications.

    Usage:
        notifications = NotificationService(db_session)
        await notifications.subscribe(actor, topic_id)
        unread = await notifications.list_notifications(actor, unread_only=True)
    """

    def __init__(self, db: AsyncSession) -> None:
        """Initialize notification service with database session."""
        self.db = db

    # ==================== Subscriptions ====================

    async def is_subscribed(self, user_id: int, topic_id: int) -> bool:
        result = await self.db.execute(
            select(TopicSubscription.id).where(
                TopicSubscription.user_id == user_id,
                TopicSubscription.topic_id == topic_id,
            )
        )
        return result.first() is not None

    async def subscribe(self, actor: Actor, topic_id: int) -> TopicSubscription:
        """
        Follow a topic.

        Raises:
            NotFoundError: Topic does not exist
            ConflictError: Already subscribed
        """
        if await self.db.get(ForumTopic, topic_id) is None:
            raise NotFoundError("Topic not found")
        if await self.is_subscribed(actor.id, topic_id):
            raise ConflictError("Already subscribed to this topic")

        subscription = TopicSubscription(user_id=actor.id, topic_id=topic_id)
        self.db.add(subscription)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError("Already subscribed to this topic") from e

        logger.debug(f"User {actor.id} subscribed to topic {topic_id}")
        return subscription

    async def unsubscribe(self, actor: Actor, topic_id: int) -> None:
        """Stop following a topic."""
        result = await self.db.execute(
            delete(TopicSubscription).where(
                TopicSubscription.user_id == actor.id,
                TopicSubscription.topic_id == topic_id,
            )
        )
        if result.rowcount == 0:
            raise NotFoundError("Not subscribed to this topic")

        logger.debug(f"User {actor.id} unsubscribed from topic {topic_id}")

    async def notify_subscribers(
        self,
        topic: ForumTopic,
        author_id: int,
    ) -> int:
        """
        Tell every subscriber of a topic, except the author, about a new reply.

        Returns:
            Number of notifications created
        """
        result = await self.db.execute(
            select(TopicSubscription.user_id).where(
                TopicSubscription.topic_id == topic.id,
                TopicSubscription.user_id != author_id,
            )
        )
        recipients = list(result.scalars().all())
        if not recipients:
            return 0

        message = f"New reply in topic: {topic.title}"[:MESSAGE_MAX_LENGTH]
        self.db.add_all(
            Notification(
                user_id=user_id,
                topic_id=topic.id,
                type=NotificationType.NEW_REPLY,
                message=message,
            )
            for user_id in recipients
        )
        await self.db.flush()
        return len(recipients)

    # ==================== Notifications ====================

    async def list_notifications(
        self,
        actor: Actor,
        unread_only: bool = False,
    ) -> list[Notification]:
        """Get the actor's notifications, newest first."""
        query = select(Notification).where(Notification.user_id == actor.id)
        if unread_only:
            query = query.where(Notification.is_read == False)

        result = await self.db.execute(
            query.order_by(Notification.created_at.desc(), Notification.id.desc())
        )
        return list(result.scalars().all())

    async def _load_own(self, actor: Actor, notification_id: int) -> Notification:
        notification = await self.db.get(Notification, notification_id)
        if notification is None:
            raise NotFoundError("Notification not found")
        if not can_access_notification(actor, notification.user_id):
            raise ForbiddenError()
        return notification

    async def mark_read(self, actor: Actor, notification_id: int) -> Notification:
        notification = await self._load_own(actor, notification_id)
        notification.is_read = True
        await self.db.flush()
        return notification

    async def mark_all_read(self, actor: Actor) -> int:
        """Mark every unread notification of the actor as read."""
        result = await self.db.execute(
            update(Notification)
            .where(Notification.user_id == actor.id, Notification.is_read == False)
            .values(is_read=True)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount

    async def delete_notification(self, actor: Actor, notification_id: int) -> None:
        await self._load_own(actor, notification_id)
        await self.db.execute(delete(Notification).where(Notification.id == notification_id))

    async def purge_read(self, older_than: timedelta = timedelta(days=READ_RETENTION_DAYS)) -> int:
        """Delete read notifications older than the retention period."""
        cutoff = datetime.utcnow() - older_than
        result = await self.db.execute(
            delete(Notification).where(
                Notification.is_read == True,
                Notification.created_at < cutoff,
            )
        )
        if result.rowcount:
            logger.info(f"Purged {result.rowcount} read notifications")
        return result.rowcount

