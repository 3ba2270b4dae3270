"""
Forum Service - Category, topic and post management.

Every mutating method takes the acting user and asks the rules in
``agora.modules.forum.permissions`` before touching the database.
"""

import math
from dataclasses import dataclass
from datetime import datetime

from loguru import logger
from slugify import slugify
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from agora.core.config import settings
from agora.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from agora.models.forum import ForumCategory, ForumPost, ForumTopic
from agora.modules.forum.permissions import (
    Action,
    Actor,
    ModerationPolicy,
    Resource,
    can_create_topic,
    can_delete_post,
    can_delete_topic,
    can_edit_post,
    can_edit_topic,
    can_manage_category,
    can_pin_or_lock,
    can_post_reply,
    is_allowed,
)

TITLE_MIN_LENGTH = 5
TITLE_MAX_LENGTH = 200
BODY_MIN_LENGTH = 10


@dataclass
class CategorySummary:
    """Category with computed counts."""

    category: ForumCategory
    topic_count: int
    post_count: int


@dataclass
class TopicSummary:
    """Topic with computed post count."""

    topic: ForumTopic
    post_count: int

    @property
    def reply_count(self) -> int:
        """Posts after the first one."""
        return max(self.post_count - 1, 0)


@dataclass
class TopicPage:
    """One page of the topic listing."""

    items: list[TopicSummary]
    page: int
    limit: int
    total: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def _validate_title(title: str | None) -> str:
    title = (title or "").strip()
    if not TITLE_MIN_LENGTH <= len(title) <= TITLE_MAX_LENGTH:
        raise ValidationError.for_field(
            "title",
            f"Title must be between {TITLE_MIN_LENGTH} and {TITLE_MAX_LENGTH} characters",
        )
    return title


def _validate_body(body: str | None, field: str = "content") -> str:
    body = (body or "").strip()
    if len(body) < BODY_MIN_LENGTH:
        raise ValidationError.for_field(
            field, f"Content must be at least {BODY_MIN_LENGTH} characters"
        )
    return body


def _validate_reply(content: str | None) -> str:
    content = (content or "").strip()
    if not content:
        raise ValidationError.for_field("content", "Content must not be empty")
    return content


class ForumService:
    """
    Service for managing forum categories, topics, and posts.

    Usage:
        forum = ForumService(db_session)
        page = await forum.list_topics(page=1, page_size=20)
        topic, post = await forum.create_topic(actor, 1, "Hello World!", "Body text here")
    """

    def __init__(
        self,
        db: AsyncSession,
        moderation_policy: ModerationPolicy | str | None = None,
    ) -> None:
        """Initialize forum service with database session."""
        self.db = db
        self.moderation_policy = ModerationPolicy(
            moderation_policy or settings.forum_moderation_policy
        )

    # ==================== Categories ====================

    async def get_categories(self) -> list[CategorySummary]:
        """Get all categories with topic and post counts."""
        topic_count = (
            select(func.count(ForumTopic.id))
            .where(ForumTopic.category_id == ForumCategory.id)
            .correlate(ForumCategory)
            .scalar_subquery()
        )
        post_count = (
            select(func.count(ForumPost.id))
            .join(ForumTopic, ForumPost.topic_id == ForumTopic.id)
            .where(ForumTopic.category_id == ForumCategory.id)
            .correlate(ForumCategory)
            .scalar_subquery()
        )
        query = select(
            ForumCategory,
            topic_count.label("topic_count"),
            post_count.label("post_count"),
        ).order_by(ForumCategory.sort_order, ForumCategory.id)

        result = await self.db.execute(query)
        return [
            CategorySummary(category=row[0], topic_count=row[1], post_count=row[2])
            for row in result.all()
        ]

    async def get_category(self, category_id: int) -> ForumCategory:
        """Get category by ID."""
        category = await self.db.get(ForumCategory, category_id)
        if category is None:
            raise NotFoundError("Category not found")
        return category

    async def get_category_topics(self, category_id: int) -> list[TopicSummary]:
        """Get all topics of a category, pinned first then by activity."""
        await self.get_category(category_id)

        query = self._topic_summary_query().where(
            ForumTopic.category_id == category_id
        )
        result = await self.db.execute(query)
        return [TopicSummary(topic=row[0], post_count=row[1]) for row in result.all()]

    async def _unique_category_slug(
        self,
        name: str,
        exclude_id: int | None = None,
    ) -> str:
        base_slug = slugify(name)[:90] or "category"
        slug = base_slug

        # Ensure unique slug
        counter = 1
        while True:
            query = select(ForumCategory.id).where(ForumCategory.slug == slug)
            if exclude_id is not None:
                query = query.where(ForumCategory.id != exclude_id)
            existing = await self.db.execute(query)
            if existing.first() is None:
                return slug
            slug = f"{base_slug}-{counter}"
            counter += 1

    async def _ensure_category_name_free(
        self,
        name: str,
        exclude_id: int | None = None,
    ) -> None:
        query = select(ForumCategory.id).where(ForumCategory.name == name)
        if exclude_id is not None:
            query = query.where(ForumCategory.id != exclude_id)
        existing = await self.db.execute(query)
        if existing.first() is not None:
            raise ConflictError("Category already exists")

    async def create_category(
        self,
        actor: Actor,
        name: str,
        description: str | None = None,
        sort_order: int = 0,
    ) -> ForumCategory:
        """Create new forum category (admin only)."""
        if not can_manage_category(actor):
            raise ForbiddenError("Admin access required")

        name = (name or "").strip()
        if not name:
            raise ValidationError.for_field("name", "Name must not be empty")

        await self._ensure_category_name_free(name)

        category = ForumCategory(
            name=name,
            slug=await self._unique_category_slug(name),
            description=description.strip() if description else description,
            sort_order=sort_order or 0,
        )
        self.db.add(category)
        await self.db.flush()

        logger.info(f"Category {category.name!r} created by user {actor.id}")
        return category

    async def update_category(
        self,
        actor: Actor,
        category_id: int,
        name: str | None = None,
        description: str | None = None,
        sort_order: int | None = None,
    ) -> ForumCategory:
        """Update category fields that are not None (admin only)."""
        if not can_manage_category(actor):
            raise ForbiddenError("Admin access required")

        if name is None and description is None and sort_order is None:
            raise ValidationError("No fields to update")

        category = await self.get_category(category_id)

        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError.for_field("name", "Name must not be empty")
            if name != category.name:
                await self._ensure_category_name_free(name, exclude_id=category.id)
                category.name = name
                category.slug = await self._unique_category_slug(
                    name, exclude_id=category.id
                )
        if description is not None:
            category.description = description.strip()
        if sort_order is not None:
            category.sort_order = sort_order

        await self.db.flush()
        return category

    async def delete_category(self, actor: Actor, category_id: int) -> None:
        """Delete category with all its topics and posts (admin only)."""
        if not can_manage_category(actor):
            raise ForbiddenError("Admin access required")

        result = await self.db.execute(
            delete(ForumCategory).where(ForumCategory.id == category_id)
        )
        if result.rowcount == 0:
            raise NotFoundError("Category not found")

        logger.info(f"Category {category_id} deleted by user {actor.id}")

    # ==================== Topics ====================

    def _topic_summary_query(self):
        post_count = (
            select(func.count(ForumPost.id))
            .where(ForumPost.topic_id == ForumTopic.id)
            .correlate(ForumTopic)
            .scalar_subquery()
        )
        return (
            select(ForumTopic, post_count.label("post_count"))
            .options(selectinload(ForumTopic.author), selectinload(ForumTopic.category))
            .order_by(
                ForumTopic.is_pinned.desc(),
                ForumTopic.last_post_at.desc(),
                ForumTopic.id.desc(),
            )
        )

    async def list_topics(
        self,
        page: int = 1,
        page_size: int | None = None,
    ) -> TopicPage:
        """
        Get topics with pagination.

        Args:
            page: 1-based page number
            page_size: Topics per page (default from settings)

        Returns:
            Page of topics, pinned first then by last activity
        """
        page = max(page, 1)
        page_size = page_size or settings.forum_topics_per_page

        query = (
            self._topic_summary_query()
            .limit(page_size)
            .offset((page - 1) * page_size)
        )
        result = await self.db.execute(query)
        items = [TopicSummary(topic=row[0], post_count=row[1]) for row in result.all()]

        total = await self.db.scalar(select(func.count(ForumTopic.id)))

        return TopicPage(items=items, page=page, limit=page_size, total=total or 0)

    async def _load_topic(self, topic_id: int) -> ForumTopic:
        """Get topic with its author, or raise NotFoundError."""
        query = (
            select(ForumTopic)
            .options(selectinload(ForumTopic.author))
            .where(ForumTopic.id == topic_id)
        )
        result = await self.db.execute(query)
        topic = result.scalar_one_or_none()
        if topic is None:
            raise NotFoundError("Topic not found")
        return topic

    async def get_topic(self, topic_id: int) -> ForumTopic:
        """
        Get topic with all its posts, counting the view.

        Every call increments the view counter, including repeated reads
        by the same user.
        """
        result = await self.db.execute(
            update(ForumTopic)
            .where(ForumTopic.id == topic_id)
            # Keep updated_at: a view is not an edit
            .values(
                view_count=ForumTopic.view_count + 1,
                updated_at=ForumTopic.updated_at,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Topic not found")

        query = (
            select(ForumTopic)
            .options(
                selectinload(ForumTopic.author),
                selectinload(ForumTopic.category),
                selectinload(ForumTopic.posts).selectinload(ForumPost.author),
            )
            .where(ForumTopic.id == topic_id)
            .execution_options(populate_existing=True)
        )
        result = await self.db.execute(query)
        return result.scalar_one()

    def _build_first_post(
        self,
        topic: ForumTopic,
        author: Actor,
        body: str,
    ) -> ForumPost:
        return ForumPost(
            topic_id=topic.id,
            author_id=author.id,
            content=body,
            is_first_post=True,
        )

    async def create_topic(
        self,
        author: Actor,
        category_id: int,
        title: str,
        body: str,
    ) -> tuple[ForumTopic, ForumPost]:
        """
        Create new forum topic together with its first post.

        The topic and the first post are written in one transaction: if the
        post cannot be stored, the topic is rolled back as well.

        Args:
            author: Acting user
            category_id: Category ID
            title: Topic title
            body: First post content

        Returns:
            Created topic and first post

        Raises:
            ForbiddenError: Author may not create topics (e.g. banned)
            ValidationError: Title or body out of bounds
            NotFoundError: Category does not exist
            StorageError: Insert failed; nothing was written
        """
        if not can_create_topic(author):
            raise ForbiddenError("Your account is not allowed to create topics")

        title = _validate_title(title)
        body = _validate_body(body)
        await self.get_category(category_id)

        now = datetime.utcnow()
        topic = ForumTopic(
            category_id=category_id,
            author_id=author.id,
            title=title,
            last_post_at=now,
        )

        try:
            self.db.add(topic)
            await self.db.flush()

            post = self._build_first_post(topic, author, body)
            self.db.add(post)
            await self.db.flush()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Failed to create topic {title!r}: {e}")
            raise StorageError("Failed to create topic") from e

        logger.info(f"Topic {topic.id} created by user {author.id}")
        return topic, post

    async def update_topic(
        self,
        actor: Actor,
        topic_id: int,
        title: str | None = None,
        content: str | None = None,
    ) -> ForumTopic:
        """
        Update topic title and/or first post content (owner or staff).
        """
        if title is None and content is None:
            raise ValidationError("No fields to update")

        if title is not None:
            title = _validate_title(title)
        if content is not None:
            content = _validate_body(content)

        topic = await self._load_topic(topic_id)
        if not can_edit_topic(actor, Resource.from_topic(topic)):
            raise ForbiddenError()

        if title is not None:
            topic.title = title
        if content is not None:
            result = await self.db.execute(
                select(ForumPost).where(
                    ForumPost.topic_id == topic.id,
                    ForumPost.is_first_post == True,
                )
            )
            first_post = result.scalar_one()
            first_post.content = content
            first_post.is_edited = True

        await self.db.flush()
        return topic

    async def set_pinned(self, actor: Actor, topic_id: int, pinned: bool) -> None:
        """Pin or unpin a topic (staff only). Idempotent."""
        await self._set_flag(actor, topic_id, is_pinned=bool(pinned))
        logger.info(f"Topic {topic_id} {'pinned' if pinned else 'unpinned'} by user {actor.id}")

    async def set_locked(self, actor: Actor, topic_id: int, locked: bool) -> None:
        """Lock or unlock a topic (staff only). Idempotent."""
        await self._set_flag(actor, topic_id, is_locked=bool(locked))
        logger.info(f"Topic {topic_id} {'locked' if locked else 'unlocked'} by user {actor.id}")

    async def _set_flag(self, actor: Actor, topic_id: int, **values: bool) -> None:
        if not can_pin_or_lock(actor):
            raise ForbiddenError("Moderator access required")

        result = await self.db.execute(
            update(ForumTopic)
            .where(ForumTopic.id == topic_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            raise NotFoundError("Topic not found")

    async def delete_topic(self, actor: Actor, topic_id: int) -> None:
        """Delete topic with all its posts (owner or staff)."""
        topic = await self._load_topic(topic_id)
        if not can_delete_topic(actor, Resource.from_topic(topic), self.moderation_policy):
            raise ForbiddenError()

        await self.db.execute(delete(ForumTopic).where(ForumTopic.id == topic_id))
        logger.info(f"Topic {topic_id} deleted by user {actor.id}")

    # ==================== Posts ====================

    async def _load_post(self, post_id: int) -> ForumPost:
        query = (
            select(ForumPost)
            .options(selectinload(ForumPost.author), selectinload(ForumPost.topic))
            .where(ForumPost.id == post_id)
        )
        result = await self.db.execute(query)
        post = result.scalar_one_or_none()
        if post is None:
            raise NotFoundError("Post not found")
        return post

    async def create_post(
        self,
        author: Actor,
        topic_id: int,
        content: str,
    ) -> ForumPost:
        """
        Create new post in topic.

        Args:
            author: Acting user
            topic_id: Topic ID
            content: Post content

        Returns:
            Created post

        Raises:
            ValidationError: Empty content
            NotFoundError: Topic does not exist
            ForbiddenError: Topic locked (for non-staff) or author banned
        """
        content = _validate_reply(content)
        topic = await self._load_topic(topic_id)

        if not can_post_reply(author, Resource.from_topic(topic)):
            if topic.is_locked and not author.is_banned:
                raise ForbiddenError("Topic is locked")
            raise ForbiddenError("Your account is not allowed to post")

        post = ForumPost(
            topic_id=topic.id,
            author_id=author.id,
            content=content,
        )
        self.db.add(post)
        await self.db.flush()

        # Bump topic activity
        topic.last_post_at = post.created_at or datetime.utcnow()
        topic.updated_at = topic.last_post_at
        await self.db.flush()

        # Imported here: the notifications module depends on this package
        from agora.modules.notifications import NotificationService

        await NotificationService(self.db).notify_subscribers(topic, author.id)

        return post

    async def update_post(
        self,
        actor: Actor,
        post_id: int,
        content: str,
    ) -> ForumPost:
        """
        Update post content (owner or staff).

        A first post keeps the topic body minimum length.
        """
        post = await self._load_post(post_id)
        if not can_edit_post(actor, Resource.from_post(post)):
            raise ForbiddenError()

        if post.is_first_post:
            content = _validate_body(content)
        else:
            content = _validate_reply(content)

        post.content = content
        post.is_edited = True
        await self.db.flush()
        return post

    async def delete_post(self, actor: Actor, post_id: int) -> None:
        """
        Delete a reply (owner or staff).

        The first post of a topic cannot be deleted; delete the topic instead.
        """
        post = await self._load_post(post_id)
        resource = Resource.from_post(post)

        if not can_delete_post(actor, resource, self.moderation_policy):
            if post.is_first_post and is_allowed(actor, Action.DELETE_POST, resource):
                raise ValidationError(
                    "Cannot delete the first post. Delete the topic instead."
                )
            raise ForbiddenError()

        await self.db.execute(delete(ForumPost).where(ForumPost.id == post_id))
        logger.info(f"Post {post_id} deleted by user {actor.id}")
