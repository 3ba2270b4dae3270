import os

# Must be set before agora.core.config is imported
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("JWT_SECRET_KEY", "test-secret")

from dataclasses import dataclass

import httpx
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agora.core.database import build_engine, get_db, init_db
from agora.core.security import create_access_token, hash_password
from agora.main import app
from agora.models.forum import ForumCategory
from agora.models.user import User, UserRole, UserStatus
from agora.modules.forum.permissions import Actor

PASSWORD = "secret1"
PASSWORD_HASH = hash_password(PASSWORD)


async def make_user(
    session: AsyncSession,
    username: str,
    role: UserRole = UserRole.USER,
    status: UserStatus = UserStatus.ACTIVE,
) -> User:
    user = User(
        username=username,
        email=f"{username}@x.com",
        hashed_password=PASSWORD_HASH,
        role=role,
        status=status,
    )
    session.add(user)
    await session.flush()
    return user


async def make_category(session: AsyncSession, name: str = "General") -> ForumCategory:
    category = ForumCategory(name=name, slug=name.lower())
    session.add(category)
    await session.flush()
    return category


def auth_headers(user_id: int, username: str, role: str) -> dict[str, str]:
    token = create_access_token(user_id, username, role)
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture(scope="function")
async def engine():
    engine = build_engine("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db(session_maker):
    async with session_maker() as session:
        yield session


# ------------------------------------------------------------
# Service-level fixtures
# ------------------------------------------------------------


@dataclass
class Cast:
    """Users and a category committed to the test database."""

    admin: User
    moderator: User
    alice: User
    bob: User
    category: ForumCategory

    def actor(self, user: User) -> Actor:
        return Actor.from_user(user)


@pytest_asyncio.fixture(scope="function")
async def cast(db) -> Cast:
    cast = Cast(
        admin=await make_user(db, "admin", UserRole.ADMIN),
        moderator=await make_user(db, "moddy", UserRole.MODERATOR),
        alice=await make_user(db, "alice"),
        bob=await make_user(db, "bob"),
        category=await make_category(db),
    )
    await db.commit()
    return cast


# ------------------------------------------------------------
# API fixtures
# ------------------------------------------------------------


@dataclass
class Account:
    id: int
    username: str
    role: str

    @property
    def headers(self) -> dict[str, str]:
        return auth_headers(self.id, self.username, self.role)


@dataclass
class ApiCast:
    admin: Account
    other_admin: Account
    moderator: Account
    alice: Account
    bob: Account
    category_id: int


@pytest_asyncio.fixture(scope="function")
async def client(session_maker):
    async def override_get_db():
        async with session_maker() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest_asyncio.fixture(scope="function")
async def api_cast(session_maker) -> ApiCast:
    async with session_maker() as session:
        users = {}
        for name, role in [
            ("admin", UserRole.ADMIN),
            ("root", UserRole.ADMIN),
            ("moddy", UserRole.MODERATOR),
            ("alice", UserRole.USER),
            ("bob", UserRole.USER),
        ]:
            user = await make_user(session, name, role)
            users[name] = Account(user.id, user.username, role.value)
        category = await make_category(session)
        category_id = category.id
        await session.commit()

    return ApiCast(
        admin=users["admin"],
        other_admin=users["root"],
        moderator=users["moddy"],
        alice=users["alice"],
        bob=users["bob"],
        category_id=category_id,
    )
