"""Tests for user registration, profiles and signed-request authentication."""

import uuid
from datetime import UTC, datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.user import User, UserStatus
from app.utils.crypto import AUTH_SCHEME, new_keypair, signed_headers
from tests.conftest import make_user_data, register_user


@pytest.mark.asyncio
async def test_register_user(client: AsyncClient) -> None:
    _, pub = new_keypair()
    resp = await client.post("/users", json=make_user_data("contributor", pub))
    assert resp.status_code == 201
    body = resp.json()
    assert body["role"] == "contributor"
    assert body["status"] == "active"
    assert "email" not in body
    uuid.UUID(body["user_id"])


@pytest.mark.asyncio
async def test_register_duplicate_key(client: AsyncClient) -> None:
    _, pub = new_keypair()
    assert (await client.post("/users", json=make_user_data("client", pub))).status_code == 201
    resp = await client.post("/users", json=make_user_data("client", pub))
    assert resp.status_code == 409
    assert resp.json()["message"] == "Public key already registered"


@pytest.mark.asyncio
async def test_register_duplicate_email(client: AsyncClient) -> None:
    first = make_user_data("client")
    assert (await client.post("/users", json=first)).status_code == 201
    second = make_user_data("client")
    second["email"] = first["email"].upper()
    resp = await client.post("/users", json=second)
    assert resp.status_code == 409


@pytest.mark.asyncio
@pytest.mark.parametrize("field,value", [
    ("public_key", "not-hex"),
    ("email", "nobody"),
    ("display_name", " x "),
    ("role", "superuser"),
])
async def test_register_validation(client: AsyncClient, field: str, value: str) -> None:
    data = make_user_data("client")
    data[field] = value
    resp = await client.post("/users", json=data)
    assert resp.status_code == 400
    assert resp.json()["errors"][0]["field"] == field


@pytest.mark.asyncio
async def test_admin_registration_can_be_disabled(client: AsyncClient) -> None:
    object.__setattr__(settings, "admin_registration_enabled", False)
    resp = await client.post("/users", json=make_user_data("admin"))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_profile_includes_capabilities(client: AsyncClient) -> None:
    user = await register_user(client, "client")
    resp = await client.get("/users/me", auth=user.auth)
    assert resp.status_code == 200
    profile = resp.json()
    assert profile["user_id"] == user.user_id
    assert profile["email"].endswith("@example.com")
    assert "jobs.post" in profile["capabilities"]
    assert "jobs.apply" not in profile["capabilities"]


@pytest.mark.asyncio
async def test_get_user(client: AsyncClient) -> None:
    viewer = await register_user(client, "contributor")
    other = await register_user(client, "client")
    resp = await client.get(f"/users/{other.user_id}", auth=viewer.auth)
    assert resp.status_code == 200
    assert resp.json()["role"] == "client"

    resp = await client.get(f"/users/{uuid.uuid4()}", auth=viewer.auth)
    assert resp.status_code == 404


# ---------------------------------------------------------------------------
# Signed requests
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_missing_headers(client: AsyncClient) -> None:
    resp = await client.get("/users/me")
    assert resp.status_code == 403
    assert resp.json()["message"] == "Missing authentication headers"


@pytest.mark.asyncio
async def test_wrong_scheme(client: AsyncClient) -> None:
    user = await register_user(client, "client")
    headers = signed_headers(user.user_id, user.private_key, "GET", "/users/me")
    headers["Authorization"] = headers["Authorization"].replace(AUTH_SCHEME, "Bearer")
    resp = await client.get("/users/me", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["message"] == "Invalid authorization scheme"


@pytest.mark.asyncio
async def test_stale_timestamp(client: AsyncClient) -> None:
    user = await register_user(client, "client")
    old = (datetime.now(UTC) - timedelta(minutes=5)).isoformat()
    headers = signed_headers(user.user_id, user.private_key, "GET", "/users/me", timestamp=old)
    resp = await client.get("/users/me", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["message"] == "Request timestamp expired"


@pytest.mark.asyncio
async def test_signature_from_other_key(client: AsyncClient) -> None:
    user = await register_user(client, "client")
    impostor_priv, _ = new_keypair()
    headers = signed_headers(user.user_id, impostor_priv, "GET", "/users/me")
    resp = await client.get("/users/me", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["message"] == "Invalid signature"


@pytest.mark.asyncio
async def test_tampered_body(client: AsyncClient) -> None:
    user = await register_user(client, "client")
    headers = signed_headers(user.user_id, user.private_key, "POST", "/jobs", b'{"title":"a"}')
    headers["Content-Type"] = "application/json"
    resp = await client.post("/jobs", content=b'{"title":"b"}', headers=headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_nonce_replay(client: AsyncClient) -> None:
    user = await register_user(client, "client")
    headers = signed_headers(user.user_id, user.private_key, "GET", "/users/me")
    assert (await client.get("/users/me", headers=headers)).status_code == 200
    resp = await client.get("/users/me", headers=headers)
    assert resp.status_code == 403
    assert resp.json()["message"] == "Nonce already used"


@pytest.mark.asyncio
async def test_unknown_user(client: AsyncClient) -> None:
    priv, _ = new_keypair()
    headers = signed_headers(str(uuid.uuid4()), priv, "GET", "/users/me")
    resp = await client.get("/users/me", headers=headers)
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_suspended_user_rejected(client: AsyncClient, db_session: AsyncSession) -> None:
    user = await register_user(client, "client")
    await db_session.execute(
        update(User).where(User.user_id == uuid.UUID(user.user_id)).values(status=UserStatus.SUSPENDED)
    )
    await db_session.commit()

    resp = await client.get("/users/me", auth=user.auth)
    assert resp.status_code == 403
    assert resp.json()["message"] == "User is not active"
