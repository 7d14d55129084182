"""Shared fixtures for Mundapdari tests.

Every test gets its own in-memory SQLite database (aiosqlite with
StaticPool). Set TEST_DATABASE_URL to run against PostgreSQL instead.
"""

import os
import uuid
from contextlib import asynccontextmanager

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")

# Settings are read at import time, so these must be set first
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ.setdefault("REDIS_URL", "redis://localhost:1/0")
os.environ.setdefault("ENCRYPTION_KEY", "ab" * 32)

from mundapdari.database import Base  # noqa: E402

PARENT_PHONE = "+82-10-1234-5678"
CHILD_PHONE = "010-9876-5432"


# ---------------------------------------------------------------------------
# Per-test engine and session
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def db_session():
    import mundapdari.models  # noqa: F401  populate Base.metadata

    engine_kwargs = {}
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine_kwargs = {
            "connect_args": {"check_same_thread": False},
            "poolclass": StaticPool,
        }
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, **engine_kwargs)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
        await session.rollback()

    await engine.dispose()


# ---------------------------------------------------------------------------
# Reset rate-limiter counters before every test
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_rate_limits():
    """Clear in-memory rate-limit counters so tests never block each other."""
    from mundapdari.core.rate_limit import limiter

    storage = getattr(limiter, "_storage", None)
    if storage is not None and hasattr(storage, "reset"):
        storage.reset()


@pytest.fixture()
def cipher():
    from mundapdari.core.encryption import get_phone_cipher

    return get_phone_cipher()


# ---------------------------------------------------------------------------
# HTTP test client
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def client(db_session: AsyncSession):
    from mundapdari.database import get_db
    from mundapdari.main import app

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Question catalog
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture()
async def questions(db_session: AsyncSession):
    """Five active questions with order_num 1..5."""
    from mundapdari.models.question import Question

    created = []
    for i in range(1, 6):
        question = Question(
            content=f"테스트 질문 번호 {i}번은 무엇인가요?",
            category="daily" if i % 2 else "family",
            order_num=i,
            active=True,
        )
        db_session.add(question)
        created.append(question)
    await db_session.commit()
    return created


# ---------------------------------------------------------------------------
# Convenience: registered users and an active pair
# ---------------------------------------------------------------------------

async def register_user(client: AsyncClient, name: str, phone: str, role: str, invite_code: str | None = None):
    """Register through the API and return a context dict.

    Keys: headers, user_id, user, tokens
    """
    body = {"name": name, "phone": phone, "role": role}
    if invite_code:
        body["invite_code"] = invite_code
    resp = await client.post("/api/auth/register", json=body)
    assert resp.status_code == 201, resp.text
    data = resp.json()["data"]
    return {
        "headers": {"Authorization": f"Bearer {data['token']}"},
        "user_id": data["user"]["id"],
        "user": data["user"],
        "tokens": data["tokens"],
    }


@pytest_asyncio.fixture()
async def registered_parent(client: AsyncClient):
    return await register_user(client, "김엄마", PARENT_PHONE, "parent")


@pytest_asyncio.fixture()
async def paired_users(client: AsyncClient, registered_parent):
    """An active pair: the parent invites, the child registers with the code.

    Keys: parent, child, pair_id
    """
    resp = await client.post("/api/auth/invite", headers=registered_parent["headers"])
    assert resp.status_code == 201, resp.text
    token = resp.json()["data"]["invitation_token"]

    child = await register_user(client, "김지우", CHILD_PHONE, "child", invite_code=token)

    resp = await client.get("/api/auth/pairs", headers=child["headers"])
    pairs = resp.json()["data"]["pairs"]
    assert len(pairs) == 1
    return {"parent": registered_parent, "child": child, "pair_id": pairs[0]["id"]}


@pytest.fixture()
def random_phone():
    """A fresh valid Korean mobile number."""
    def _make() -> str:
        digits = str(uuid.uuid4().int)[:8]
        return f"010-{digits[:4]}-{digits[4:]}"
    return _make


@pytest.fixture()
def session_factory(db_session: AsyncSession):
    """Stand-in for ``async_session`` that hands out the test session."""
    @asynccontextmanager
    async def _factory():
        yield db_session
    return _factory


async def create_user(db: AsyncSession, name: str, phone: str, role: str):
    from mundapdari.core.encryption import get_phone_cipher
    from mundapdari.services import user_service

    return await user_service.create_user(db, get_phone_cipher(), name=name, phone=phone, role=role)


async def create_active_pair(db: AsyncSession, parent, child):
    from mundapdari.models.pair import Pair

    pair = Pair(parent_id=parent.id, child_id=child.id, status="active")
    db.add(pair)
    await db.flush()
    return pair
