import uuid

import pytest
import pytest_asyncio
from jose import jwt
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from procurement.config import settings
from procurement.database import Base, enable_sqlite_savepoints
from procurement.services.policy import Actor

# Import models so they are registered with Base.metadata
import procurement.models  # noqa: F401


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite shared across sessions of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


def make_actor(*roles: str) -> Actor:
    return Actor(user_id=uuid.uuid4(), roles=frozenset(roles))


@pytest.fixture
def admin():
    return make_actor("admin")


@pytest.fixture
def encoder():
    return make_actor("encoder")


@pytest.fixture
def bac():
    return make_actor("bac")


@pytest.fixture
def inspector():
    return make_actor("inspector")


@pytest.fixture
def accountant():
    return make_actor("accountant")


def make_token(actor: Actor) -> str:
    claims = {"sub": str(actor.user_id), "roles": sorted(actor.roles)}
    return jwt.encode(claims, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def auth_headers(actor: Actor) -> dict:
    return {"Authorization": f"Bearer {make_token(actor)}"}


@pytest.fixture
def headers_for():
    return auth_headers
