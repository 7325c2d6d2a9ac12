"""Test configuration and fixtures.

Each test gets its own database: a throwaway SQLite file through aiosqlite
unless TEST_DATABASE_URL points at a PostgreSQL instance, in which case the
tables are created and dropped around the test. Redis is an in-memory
fakeredis instance. Requests are signed per request by ``UserSigAuth``.
"""

import uuid
from collections.abc import AsyncGenerator, Generator
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

import httpx
import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import settings
from app.database import Base, get_db
from app.main import app
from app.redis import get_redis
from app.utils.crypto import new_keypair, signed_headers

# Tiny but real PNG header; storage never inspects content
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


# ---------------------------------------------------------------------------
# Per-test fixtures
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_settings(tmp_path: Path) -> Generator[None, None, None]:
    """Snapshot settings before each test and restore after to prevent mutation bleed."""
    original = settings.model_dump()
    object.__setattr__(settings, "upload_dir", str(tmp_path / "uploads"))
    object.__setattr__(settings, "payment_backend", "mock")
    object.__setattr__(settings, "admin_registration_enabled", True)
    yield
    for key, value in original.items():
        object.__setattr__(settings, key, value)


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    url = settings.test_database_url or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    test_engine = create_async_engine(url)
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    if settings.test_database_url:
        async with test_engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Session for inspecting rows directly from a test."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis() -> AsyncGenerator[FakeAsyncRedis, None]:
    redis_client = FakeAsyncRedis()
    yield redis_client
    await redis_client.flushall()
    await redis_client.aclose()


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    fake_redis: FakeAsyncRedis,
) -> AsyncGenerator[AsyncClient, None]:
    """HTTP test client with overridden DB and Redis dependencies.

    Every request gets its own session, as in production, so concurrent
    requests really race on the database.
    """

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    async def override_get_redis() -> AsyncGenerator[FakeAsyncRedis, None]:
        yield fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class UserSigAuth(httpx.Auth):
    """Signs each outgoing request with the user's Ed25519 key."""

    requires_request_body = True

    def __init__(self, user_id: str, private_key_hex: str) -> None:
        self.user_id = user_id
        self.private_key_hex = private_key_hex

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers.update(signed_headers(
            self.user_id, self.private_key_hex, request.method, request.url.path, request.content
        ))
        yield request


@dataclass
class Party:
    user_id: str
    private_key: str
    role: str

    @property
    def auth(self) -> UserSigAuth:
        return UserSigAuth(self.user_id, self.private_key)


@dataclass
class Cast:
    """The three parties of a job."""
    client: Party
    contributor: Party
    admin: Party


def make_user_data(role: str = "client", public_key: str | None = None) -> dict:
    """Factory for user registration payload."""
    if public_key is None:
        _, public_key = new_keypair()
    return {
        "public_key": public_key,
        "display_name": f"Test {role.title()}",
        "email": f"{role}-{uuid.uuid4().hex[:8]}@example.com",
        "role": role,
    }


async def register_user(client: AsyncClient, role: str = "client") -> Party:
    priv, pub = new_keypair()
    resp = await client.post("/users", json=make_user_data(role, pub))
    assert resp.status_code == 201, resp.text
    return Party(user_id=resp.json()["user_id"], private_key=priv, role=role)


async def make_cast(client: AsyncClient) -> Cast:
    return Cast(
        client=await register_user(client, "client"),
        contributor=await register_user(client, "contributor"),
        admin=await register_user(client, "admin"),
    )


def make_job_data(**overrides: object) -> dict:
    data = {
        "title": "Design a logo for a bakery",
        "description": "A friendly, hand-drawn logo for a neighbourhood bakery.",
        "deadline": (datetime.now(UTC) + timedelta(days=7)).isoformat(),
        "category": "design",
        "skills": ["illustration", "branding"],
    }
    data.update(overrides)
    return data


def upload_files(count: int = 1, mime_type: str = "image/png") -> list[tuple]:
    return [("files", (f"work-{i}.png", PNG_BYTES, mime_type)) for i in range(count)]


async def post_job(client: AsyncClient, owner: Party, **overrides: object) -> dict:
    resp = await client.post("/jobs", json=make_job_data(**overrides), auth=owner.auth)
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def _ok(resp: httpx.Response) -> dict:
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


async def drive_to(client: AsyncClient, cast: Cast, status: str, price: str = "100.00") -> dict:
    """Create a job and walk it through the lifecycle until it reaches ``status``."""
    job = await post_job(client, cast.client)
    job_id = job["job_id"]
    if status == "pending":
        return job

    if status == "rejected":
        return _ok(await client.post(
            f"/admin/jobs/{job_id}/review",
            json={"status": "rejected", "admin_feedback": "Too vague"},
            auth=cast.admin.auth,
        ))

    job = _ok(await client.post(
        f"/admin/jobs/{job_id}/review",
        json={"status": "approved", "price": price},
        auth=cast.admin.auth,
    ))
    if status == "approved":
        return job

    job = _ok(await client.post(
        f"/jobs/{job_id}/pay-deposit", json={"payment_method": "card"}, auth=cast.client.auth
    ))
    if status == "deposit_paid":
        return job

    job = _ok(await client.post(f"/jobs/{job_id}/apply", auth=cast.contributor.auth))
    if status == "in_progress":
        return job

    job = _ok(await client.post(
        f"/jobs/{job_id}/submit",
        files=upload_files(),
        data={"note": "First draft"},
        auth=cast.contributor.auth,
    ))
    if status == "completed":
        return job

    if status in ("approved_by_client", "final_paid", "job_end"):
        job = _ok(await client.post(
            f"/jobs/{job_id}/review", json={"action": "approve"}, auth=cast.client.auth
        ))
        if status == "approved_by_client":
            return job
        job = _ok(await client.post(
            f"/jobs/{job_id}/pay-final", json={"payment_method": "card"}, auth=cast.client.auth
        ))
        if status == "final_paid":
            return job
        return _ok(await client.post(
            f"/jobs/{job_id}/no-revision-required", auth=cast.client.auth
        ))

    job = _ok(await client.post(
        f"/jobs/{job_id}/review",
        json={"action": "request_revision", "feedback": "Warmer colours please"},
        auth=cast.client.auth,
    ))
    if status == "revision_requested":
        return job

    revision_id = job["revisions"][-1]["revision_id"]
    job = _ok(await client.post(
        f"/jobs/{job_id}/revisions/{revision_id}/start", auth=cast.contributor.auth
    ))
    if status == "revision_in_progress":
        return job

    job = _ok(await client.post(
        f"/jobs/{job_id}/revisions/{revision_id}/submit",
        files=upload_files(),
        data={"note": "Warmer palette"},
        auth=cast.contributor.auth,
    ))
    if status == "revision_completed":
        return job

    raise ValueError(f"Unknown status: {status}")
