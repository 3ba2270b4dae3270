"""
Agora Forum API Client.

Async client for the forum HTTP API. Session state is never stored on the
client: ``login`` returns a ``SessionContext`` which callers pass to every
call that needs authentication.

Usage:
    async with ForumClient("http://localhost:8000") as client:
        session = await client.login("alice", "secret1")
        created = await client.create_topic(session, 1, "Hello World!", "This is the body.")
        topic = await client.get_topic(created["topicId"])
"""

from dataclasses import dataclass
from typing import Any

import httpx
from loguru import logger

from agora.core.config import settings


class ForumAPIError(Exception):
    """Non-2xx response from the forum API."""

    def __init__(self, status_code: int, message: str, payload: Any = None) -> None:
        super().__init__(f"{status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.payload = payload


@dataclass(frozen=True)
class SessionContext:
    """An authenticated session, as returned by ``ForumClient.login``."""

    token: str
    user_id: int
    username: str
    role: str

    @property
    def headers(self) -> dict[str, str]:
        return {"Authorization": f"Bearer {self.token}"}

    @property
    def is_staff(self) -> bool:
        return self.role in ("moderator", "admin")


class ForumClient:
    """
    Async client for the forum API.

    Args:
        base_url: Server root, e.g. ``http://localhost:8000``
        api_prefix: API prefix (default from settings)
        timeout: Request timeout in seconds
        transport: Optional httpx transport (e.g. ``httpx.ASGITransport``)
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        api_prefix: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/") + (api_prefix or settings.api_v1_prefix)
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "ForumClient":
        """Async context manager entry."""
        await self.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.disconnect()

    async def connect(self) -> None:
        """Create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                transport=self._transport,
            )

    async def disconnect(self) -> None:
        """Close HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def _request(
        self,
        method: str,
        endpoint: str,
        session: SessionContext | None = None,
        **kwargs: Any,
    ) -> Any:
        """
        Make HTTP request to the forum API.

        Raises:
            ForumAPIError: On any non-2xx response
        """
        if self._client is None or self._client.is_closed:
            await self.connect()

        headers = session.headers if session else None
        response = await self._client.request(method, endpoint, headers=headers, **kwargs)

        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            try:
                payload = response.json()
                message = payload.get("error", response.reason_phrase)
            except ValueError:
                payload = None
                message = response.text or response.reason_phrase
            logger.debug(f"{method} {endpoint} failed: {response.status_code} {message}")
            raise ForumAPIError(response.status_code, message, payload) from e

        return response.json()

    # ==================== Accounts ====================

    async def register(self, username: str, email: str, password: str) -> int:
        """Register and return the new user ID."""
        data = await self._request(
            "POST",
            "/auth/register",
            json={"username": username, "email": email, "password": password},
        )
        return data["userId"]

    async def login(self, username: str, password: str) -> SessionContext:
        """Log in and return a session context for later calls."""
        data = await self._request(
            "POST",
            "/auth/login",
            json={"username": username, "password": password},
        )
        user = data["user"]
        return SessionContext(
            token=data["token"],
            user_id=user["id"],
            username=user["username"],
            role=user["role"],
        )

    async def me(self, session: SessionContext) -> dict[str, Any]:
        return await self._request("GET", "/auth/me", session)

    # ==================== Categories ====================

    async def list_categories(self) -> list[dict[str, Any]]:
        return await self._request("GET", "/categories")

    async def get_category(self, category_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/categories/{category_id}")

    async def create_category(
        self,
        session: SessionContext,
        name: str,
        description: str | None = None,
        display_order: int = 0,
    ) -> int:
        data = await self._request(
            "POST",
            "/categories",
            session,
            json={"name": name, "description": description, "display_order": display_order},
        )
        return data["categoryId"]

    async def delete_category(self, session: SessionContext, category_id: int) -> None:
        await self._request("DELETE", f"/categories/{category_id}", session)

    # ==================== Topics ====================

    async def list_topics(self, page: int = 1, limit: int = 20) -> dict[str, Any]:
        return await self._request("GET", "/topics", params={"page": page, "limit": limit})

    async def get_topic(self, topic_id: int) -> dict[str, Any]:
        return await self._request("GET", f"/topics/{topic_id}")

    async def create_topic(
        self,
        session: SessionContext,
        category_id: int,
        title: str,
        content: str,
    ) -> dict[str, Any]:
        """Create topic; returns ``{topicId, postId}``."""
        return await self._request(
            "POST",
            "/topics",
            session,
            json={"title": title, "content": content, "category_id": category_id},
        )

    async def update_topic(
        self,
        session: SessionContext,
        topic_id: int,
        title: str | None = None,
        content: str | None = None,
    ) -> None:
        body = {k: v for k, v in {"title": title, "content": content}.items() if v is not None}
        await self._request("PUT", f"/topics/{topic_id}", session, json=body)

    async def pin_topic(self, session: SessionContext, topic_id: int, pinned: bool = True) -> None:
        await self._request("PATCH", f"/topics/{topic_id}/pin", session, json={"is_pinned": pinned})

    async def lock_topic(self, session: SessionContext, topic_id: int, locked: bool = True) -> None:
        await self._request("PATCH", f"/topics/{topic_id}/lock", session, json={"is_locked": locked})

    async def delete_topic(self, session: SessionContext, topic_id: int) -> None:
        await self._request("DELETE", f"/topics/{topic_id}", session)

    # ==================== Posts ====================

    async def reply(self, session: SessionContext, topic_id: int, content: str) -> int:
        """Reply to a topic and return the new post ID."""
        data = await self._request(
            "POST",
            "/posts",
            session,
            json={"topic_id": topic_id, "content": content},
        )
        return data["postId"]

    async def edit_post(self, session: SessionContext, post_id: int, content: str) -> None:
        await self._request("PUT", f"/posts/{post_id}", session, json={"content": content})

    async def delete_post(self, session: SessionContext, post_id: int) -> None:
        await self._request("DELETE", f"/posts/{post_id}", session)

    # ==================== Users ====================

    async def ban_user(self, session: SessionContext, user_id: int) -> dict[str, Any]:
        return await self._request("PUT", f"/users/{user_id}/ban", session)

    async def unban_user(self, session: SessionContext, user_id: int) -> dict[str, Any]:
        return await self._request("PUT", f"/users/{user_id}/unban", session)

    async def change_role(
        self,
        session: SessionContext,
        user_id: int,
        role: str,
    ) -> dict[str, Any]:
        return await self._request("PUT", f"/users/{user_id}/role", session, json={"role": role})

    async def update_profile(
        self,
        session: SessionContext,
        user_id: int,
        username: str | None = None,
        bio: str | None = None,
        avatar_url: str | None = None,
    ) -> dict[str, Any]:
        """Update profile fields that are not None; returns the updated user."""
        fields = {"username": username, "bio": bio, "avatar_url": avatar_url}
        body = {k: v for k, v in fields.items() if v is not None}
        data = await self._request("PUT", f"/users/{user_id}", session, json=body)
        return data["user"]

    # ==================== Notifications ====================

    async def subscribe(self, session: SessionContext, topic_id: int) -> None:
        await self._request("POST", f"/notifications/subscribe/{topic_id}", session)

    async def unsubscribe(self, session: SessionContext, topic_id: int) -> None:
        await self._request("DELETE", f"/notifications/subscribe/{topic_id}", session)

    async def list_notifications(
        self,
        session: SessionContext,
        unread: bool = False,
    ) -> list[dict[str, Any]]:
        data = await self._request(
            "GET",
            "/notifications",
            session,
            params={"unread": str(unread).lower()},
        )
        return data["notifications"]

    async def mark_read(self, session: SessionContext, notification_id: int) -> None:
        await self._request("PUT", f"/notifications/{notification_id}/read", session)

    async def mark_all_read(self, session: SessionContext) -> int:
        data = await self._request("PUT", "/notifications/read-all", session)
        return data["count"]
