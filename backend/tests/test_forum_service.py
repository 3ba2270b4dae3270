import pytest
from sqlalchemy import func, select

from agora.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    StorageError,
    ValidationError,
)
from agora.models.forum import ForumPost, ForumTopic
from agora.models.user import UserRole, UserStatus
from agora.modules.accounts import AccountService
from agora.modules.forum import ForumService
from agora.modules.forum.permissions import Actor, ModerationPolicy

TITLE = "Hello World!"
BODY = "This is the body."


async def count(db, column):
    return await db.scalar(select(func.count(column)))


async def first_posts(db, topic_id):
    result = await db.execute(
        select(ForumPost).where(
            ForumPost.topic_id == topic_id,
            ForumPost.is_first_post == True,
        )
    )
    return list(result.scalars().all())


# ------------------------------------------------------------
# Topic creation
# ------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_topic_writes_first_post(db, cast):
    forum = ForumService(db)
    topic, post = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)

    assert topic.id is not None
    assert post.topic_id == topic.id
    assert post.is_first_post
    assert post.author_id == cast.alice.id
    assert [p.id for p in await first_posts(db, topic.id)] == [post.id]


@pytest.mark.asyncio
async def test_create_topic_trims_title(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.alice), cast.category.id, "  Hello World!  ", BODY)
    assert topic.title == "Hello World!"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "title,body,field",
    [
        ("Hey", BODY, "title"),
        ("x" * 201, BODY, "title"),
        (TITLE, "too short", "content"),
        (TITLE, "          ", "content"),
    ],
)
async def test_create_topic_validation(db, cast, title, body, field):
    forum = ForumService(db)
    with pytest.raises(ValidationError) as exc:
        await forum.create_topic(cast.actor(cast.alice), cast.category.id, title, body)
    assert exc.value.errors[0]["field"] == field
    assert await count(db, ForumTopic.id) == 0


@pytest.mark.asyncio
async def test_create_topic_unknown_category(db, cast):
    forum = ForumService(db)
    with pytest.raises(NotFoundError):
        await forum.create_topic(cast.actor(cast.alice), 999, TITLE, BODY)


@pytest.mark.asyncio
async def test_banned_user_cannot_create_topic(db, cast):
    forum = ForumService(db)
    banned = Actor(id=cast.alice.id, role=UserRole.USER, status=UserStatus.BANNED)
    with pytest.raises(ForbiddenError):
        await forum.create_topic(banned, cast.category.id, TITLE, BODY)


class BrokenFirstPostForum(ForumService):
    """Builds a first post the database will refuse."""

    def _build_first_post(self, topic, author, body):
        return ForumPost(topic_id=topic.id, author_id=author.id, content=None, is_first_post=True)


@pytest.mark.asyncio
async def test_failed_first_post_rolls_back_topic(db, cast):
    actor = cast.actor(cast.alice)
    category_id = cast.category.id

    with pytest.raises(StorageError):
        await BrokenFirstPostForum(db).create_topic(actor, category_id, TITLE, BODY)

    assert await count(db, ForumTopic.id) == 0
    assert await count(db, ForumPost.id) == 0


# ------------------------------------------------------------
# Reading
# ------------------------------------------------------------


@pytest.mark.asyncio
async def test_view_counter_increments_per_call(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)
    updated_at = topic.updated_at

    first = await forum.get_topic(topic.id)
    assert first.view_count == 1
    second = await forum.get_topic(topic.id)
    assert second.view_count == 2
    assert second.updated_at == updated_at


@pytest.mark.asyncio
async def test_get_topic_orders_posts(db, cast):
    forum = ForumService(db)
    topic, first = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)
    reply_1 = await forum.create_post(cast.actor(cast.bob), topic.id, "first reply")
    reply_2 = await forum.create_post(cast.actor(cast.alice), topic.id, "second reply")

    loaded = await forum.get_topic(topic.id)
    assert [p.id for p in loaded.posts] == [first.id, reply_1.id, reply_2.id]
    assert loaded.posts[1].author.username == "bob"


@pytest.mark.asyncio
async def test_get_missing_topic(db, cast):
    with pytest.raises(NotFoundError):
        await ForumService(db).get_topic(12345)


@pytest.mark.asyncio
async def test_list_topics_pinned_first_then_activity(db, cast):
    forum = ForumService(db)
    alice = cast.actor(cast.alice)
    old, _ = await forum.create_topic(alice, cast.category.id, "Oldest topic", BODY)
    middle, _ = await forum.create_topic(alice, cast.category.id, "Middle topic", BODY)
    new, _ = await forum.create_topic(alice, cast.category.id, "Newest topic", BODY)

    await forum.set_pinned(cast.actor(cast.moderator), old.id, True)

    page = await forum.list_topics(page=1, page_size=2)
    assert [s.topic.id for s in page.items] == [old.id, new.id]
    assert page.total == 3
    assert page.total_pages == 2

    page_2 = await forum.list_topics(page=2, page_size=2)
    assert [s.topic.id for s in page_2.items] == [middle.id]


@pytest.mark.asyncio
async def test_reply_moves_topic_up(db, cast):
    forum = ForumService(db)
    alice = cast.actor(cast.alice)
    old, _ = await forum.create_topic(alice, cast.category.id, "Oldest topic", BODY)
    new, _ = await forum.create_topic(alice, cast.category.id, "Newest topic", BODY)

    await forum.create_post(cast.actor(cast.bob), old.id, "bump")

    page = await forum.list_topics()
    assert [s.topic.id for s in page.items] == [old.id, new.id]
    assert page.items[0].post_count == 2
    assert page.items[0].reply_count == 1
    assert page.items[1].reply_count == 0


@pytest.mark.asyncio
async def test_category_counts(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)
    await forum.create_post(cast.actor(cast.bob), topic.id, "a reply")
    await forum.create_category(cast.actor(cast.admin), "Empty")

    summaries = await forum.get_categories()
    by_name = {s.category.name: s for s in summaries}
    assert (by_name["General"].topic_count, by_name["General"].post_count) == (1, 2)
    assert (by_name["Empty"].topic_count, by_name["Empty"].post_count) == (0, 0)


# ------------------------------------------------------------
# Pin and lock
# ------------------------------------------------------------


@pytest.mark.asyncio
async def test_lock_is_idempotent(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)
    mod = cast.actor(cast.moderator)

    await forum.set_locked(mod, topic.id, True)
    await forum.set_locked(mod, topic.id, True)
    assert (await forum._load_topic(topic.id)).is_locked

    await forum.set_locked(mod, topic.id, False)
    assert not (await forum._load_topic(topic.id)).is_locked


@pytest.mark.asyncio
async def test_user_cannot_pin_or_lock(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)

    with pytest.raises(ForbiddenError):
        await forum.set_locked(cast.actor(cast.alice), topic.id, True)
    with pytest.raises(ForbiddenError):
        await forum.set_pinned(cast.actor(cast.alice), topic.id, True)


@pytest.mark.asyncio
async def test_lock_missing_topic(db, cast):
    with pytest.raises(NotFoundError):
        await ForumService(db).set_locked(cast.actor(cast.moderator), 404, True)


# ------------------------------------------------------------
# Replies
# ------------------------------------------------------------


@pytest.mark.asyncio
async def test_locked_topic_replies(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)
    await forum.set_locked(cast.actor(cast.moderator), topic.id, True)

    with pytest.raises(ForbiddenError) as exc:
        await forum.create_post(cast.actor(cast.alice), topic.id, "can I still post?")
    assert exc.value.message == "Topic is locked"

    post = await forum.create_post(cast.actor(cast.moderator), topic.id, "closing this")
    assert post.id is not None
    post = await forum.create_post(cast.actor(cast.admin), topic.id, "agreed")
    assert post.id is not None


@pytest.mark.asyncio
async def test_banned_user_cannot_reply(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)
    banned = Actor(id=cast.bob.id, role=UserRole.USER, status=UserStatus.BANNED)

    with pytest.raises(ForbiddenError):
        await forum.create_post(banned, topic.id, "let me in")


@pytest.mark.asyncio
async def test_reply_validation_and_missing_topic(db, cast):
    forum = ForumService(db)
    with pytest.raises(ValidationError):
        await forum.create_post(cast.actor(cast.bob), 1, "   ")
    with pytest.raises(NotFoundError):
        await forum.create_post(cast.actor(cast.bob), 999, "hello there")


@pytest.mark.asyncio
async def test_edit_post_rules(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)
    reply = await forum.create_post(cast.actor(cast.bob), topic.id, "original")

    with pytest.raises(ForbiddenError):
        await forum.update_post(cast.actor(cast.alice), reply.id, "hijacked")

    edited = await forum.update_post(cast.actor(cast.bob), reply.id, "corrected")
    assert edited.content == "corrected"
    assert edited.is_edited

    edited = await forum.update_post(cast.actor(cast.moderator), reply.id, "moderated")
    assert edited.content == "moderated"


@pytest.mark.asyncio
async def test_first_post_edit_keeps_body_minimum(db, cast):
    forum = ForumService(db)
    topic, post = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)
    reply = await forum.create_post(cast.actor(cast.bob), topic.id, "original")

    with pytest.raises(ValidationError) as exc:
        await forum.update_post(cast.actor(cast.alice), post.id, "x")
    assert exc.value.errors[0]["field"] == "content"

    [first] = await first_posts(db, topic.id)
    assert first.content == BODY
    assert not first.is_edited

    # replies only need to be non-empty
    edited = await forum.update_post(cast.actor(cast.bob), reply.id, "x")
    assert edited.content == "x"


@pytest.mark.asyncio
async def test_update_topic_title_and_first_post(db, cast):
    forum = ForumService(db)
    topic, post = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)

    with pytest.raises(ForbiddenError):
        await forum.update_topic(cast.actor(cast.bob), topic.id, title="Not my topic")
    with pytest.raises(ValidationError):
        await forum.update_topic(cast.actor(cast.alice), topic.id)

    await forum.update_topic(
        cast.actor(cast.alice), topic.id, title="Renamed topic", content="A longer first post."
    )

    [first] = await first_posts(db, topic.id)
    assert first.content == "A longer first post."
    assert first.is_edited
    assert (await forum._load_topic(topic.id)).title == "Renamed topic"


# ------------------------------------------------------------
# Deletion
# ------------------------------------------------------------


@pytest.mark.asyncio
async def test_first_post_cannot_be_deleted(db, cast):
    forum = ForumService(db)
    topic, post = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)

    with pytest.raises(ValidationError):
        await forum.delete_post(cast.actor(cast.alice), post.id)
    with pytest.raises(ValidationError):
        await forum.delete_post(cast.actor(cast.admin), post.id)
    with pytest.raises(ForbiddenError):
        await forum.delete_post(cast.actor(cast.bob), post.id)

    assert len(await first_posts(db, topic.id)) == 1


@pytest.mark.asyncio
async def test_delete_reply(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)
    reply = await forum.create_post(cast.actor(cast.bob), topic.id, "short lived")

    with pytest.raises(ForbiddenError):
        await forum.delete_post(cast.actor(cast.alice), reply.id)

    await forum.delete_post(cast.actor(cast.bob), reply.id)
    assert await count(db, ForumPost.id) == 1

    with pytest.raises(NotFoundError):
        await forum.delete_post(cast.actor(cast.bob), reply.id)


@pytest.mark.asyncio
async def test_delete_topic_cascades_to_posts(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)
    await forum.create_post(cast.actor(cast.bob), topic.id, "a reply")

    with pytest.raises(ForbiddenError):
        await forum.delete_topic(cast.actor(cast.bob), topic.id)

    await forum.delete_topic(cast.actor(cast.alice), topic.id)
    assert await count(db, ForumTopic.id) == 0
    assert await count(db, ForumPost.id) == 0

    with pytest.raises(NotFoundError):
        await forum.delete_topic(cast.actor(cast.alice), topic.id)


@pytest.mark.asyncio
async def test_delete_category_cascades(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)
    await forum.create_post(cast.actor(cast.bob), topic.id, "a reply")

    with pytest.raises(ForbiddenError):
        await forum.delete_category(cast.actor(cast.moderator), cast.category.id)

    await forum.delete_category(cast.actor(cast.admin), cast.category.id)
    assert await count(db, ForumTopic.id) == 0
    assert await count(db, ForumPost.id) == 0

    with pytest.raises(NotFoundError):
        await forum.delete_category(cast.actor(cast.admin), cast.category.id)


@pytest.mark.asyncio
async def test_strict_policy_protects_staff_content(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.admin), cast.category.id, "Forum rules", BODY)

    with pytest.raises(ForbiddenError):
        await forum.delete_topic(cast.actor(cast.moderator), topic.id)

    permissive = ForumService(db, moderation_policy=ModerationPolicy.PERMISSIVE)
    await permissive.delete_topic(cast.actor(cast.moderator), topic.id)
    assert await count(db, ForumTopic.id) == 0


@pytest.mark.asyncio
async def test_moderator_deletes_user_topic(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)
    await forum.delete_topic(cast.actor(cast.moderator), topic.id)
    assert await count(db, ForumTopic.id) == 0


@pytest.mark.asyncio
async def test_deleting_user_removes_their_content(db, cast):
    forum = ForumService(db)
    topic, _ = await forum.create_topic(cast.actor(cast.alice), cast.category.id, TITLE, BODY)
    await forum.create_post(cast.actor(cast.bob), topic.id, "bob was here")
    bob_id = cast.bob.id

    await AccountService(db).delete_user(cast.actor(cast.admin), bob_id)

    assert await count(db, ForumPost.id) == 1
    assert len(await first_posts(db, topic.id)) == 1


# ------------------------------------------------------------
# Categories
# ------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_category_admin_only(db, cast):
    forum = ForumService(db)
    with pytest.raises(ForbiddenError):
        await forum.create_category(cast.actor(cast.moderator), "Off Topic")

    category = await forum.create_category(cast.actor(cast.admin), "Off Topic", "Anything goes", 3)
    assert category.slug == "off-topic"
    assert category.sort_order == 3


@pytest.mark.asyncio
async def test_category_name_and_slug_uniqueness(db, cast):
    forum = ForumService(db)
    admin = cast.actor(cast.admin)

    with pytest.raises(ConflictError):
        await forum.create_category(admin, "General")

    category = await forum.create_category(admin, "General!")
    assert category.slug == "general-1"


@pytest.mark.asyncio
async def test_update_category(db, cast):
    forum = ForumService(db)
    admin = cast.actor(cast.admin)

    with pytest.raises(ValidationError):
        await forum.update_category(admin, cast.category.id)

    category = await forum.update_category(admin, cast.category.id, name="Announcements")
    assert category.slug == "announcements"

    with pytest.raises(NotFoundError):
        await forum.update_category(admin, 999, name="Nothing")
