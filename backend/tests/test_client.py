import httpx
import pytest
import pytest_asyncio

from agora.client import ForumAPIError, ForumClient, SessionContext
from agora.main import app


@pytest_asyncio.fixture
async def forum(client):
    # ``client`` installs the test database override
    async with ForumClient("http://test", transport=httpx.ASGITransport(app=app)) as forum:
        yield forum


@pytest.mark.asyncio
async def test_session_flow(forum, api_cast):
    await forum.register("carol", "carol@x.com", "secret1")
    session = await forum.login("carol", "secret1")

    assert session.username == "carol"
    assert session.role == "user"
    assert not session.is_staff
    assert session.headers == {"Authorization": f"Bearer {session.token}"}

    me = await forum.me(session)
    assert me["id"] == session.user_id

    created = await forum.create_topic(session, api_cast.category_id, "Hello World!", "This is the body.")
    post_id = await forum.reply(session, created["topicId"], "Replying to myself")
    await forum.edit_post(session, post_id, "Edited reply")

    topic = await forum.get_topic(created["topicId"])
    assert [p["content"] for p in topic["posts"]] == ["This is the body.", "Edited reply"]

    listing = await forum.list_topics(page=1, limit=10)
    assert listing["pagination"]["total"] == 1


@pytest.mark.asyncio
async def test_errors_carry_status_and_message(forum):
    with pytest.raises(ForumAPIError) as exc:
        await forum.login("nobody", "secret1")
    assert exc.value.status_code == 401
    assert exc.value.message == "Invalid credentials"


@pytest.mark.asyncio
async def test_moderation_calls(forum, api_cast):
    await forum.register("carol", "carol@x.com", "secret1")
    carol = await forum.login("carol", "secret1")
    created = await forum.create_topic(carol, api_cast.category_id, "Hello World!", "This is the body.")

    # Admin session built from the fixture account
    admin_token = api_cast.admin.headers["Authorization"].split(" ", 1)[1]
    admin = SessionContext(admin_token, api_cast.admin.id, "admin", "admin")
    assert admin.is_staff

    await forum.change_role(admin, carol.user_id, "moderator")
    await forum.lock_topic(carol, created["topicId"])
    await forum.pin_topic(carol, created["topicId"])

    topic = await forum.get_topic(created["topicId"])
    assert topic["is_locked"] and topic["is_pinned"]

    banned = await forum.ban_user(admin, api_cast.bob.id)
    assert banned["user"]["status"] == "banned"
    await forum.unban_user(admin, api_cast.bob.id)

    await forum.delete_topic(carol, created["topicId"])
    with pytest.raises(ForumAPIError) as exc:
        await forum.get_topic(created["topicId"])
    assert exc.value.status_code == 404


@pytest.mark.asyncio
async def test_profile_and_notification_calls(forum, api_cast):
    await forum.register("carol", "carol@x.com", "secret1")
    carol = await forum.login("carol", "secret1")
    await forum.register("dave", "dave@x.com", "secret1")
    dave = await forum.login("dave", "secret1")

    user = await forum.update_profile(carol, carol.user_id, bio="Hello from Carol")
    assert user["bio"] == "Hello from Carol"

    created = await forum.create_topic(carol, api_cast.category_id, "Hello World!", "This is the body.")
    await forum.subscribe(carol, created["topicId"])
    await forum.reply(dave, created["topicId"], "Welcome!")

    [notification] = await forum.list_notifications(carol, unread=True)
    await forum.mark_read(carol, notification["id"])
    assert await forum.list_notifications(carol, unread=True) == []
    assert await forum.mark_all_read(carol) == 0

    await forum.unsubscribe(carol, created["topicId"])
    with pytest.raises(ForumAPIError) as exc:
        await forum.unsubscribe(carol, created["topicId"])
    assert exc.value.status_code == 404
