"""Ed25519 signature verification dependencies for FastAPI."""

import uuid
from collections.abc import Callable, Coroutine
from typing import Any

import redis.asyncio as aioredis
from fastapi import Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import get_db
from app.models.user import User, UserRole, UserStatus
from app.redis import claim_nonce, get_redis
from app.utils.crypto import (
    NONCE_HEADER,
    TIMESTAMP_HEADER,
    AuthorizationFormatError,
    parse_authorization,
    signature_is_valid,
    timestamp_is_fresh,
)


class AuthenticatedUser:
    """Container for the verified user context."""

    def __init__(self, user_id: uuid.UUID, user: User) -> None:
        self.user_id = user_id
        self.user = user

    @property
    def role(self) -> UserRole:
        return self.user.role

    @property
    def is_admin(self) -> bool:
        return self.user.role == UserRole.ADMIN


async def verify_request(
    request: Request,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> AuthenticatedUser:
    """Verify the Ed25519 signature on an incoming request and load the signer."""
    auth_header = request.headers.get("Authorization")
    timestamp = request.headers.get(TIMESTAMP_HEADER)
    nonce = request.headers.get(NONCE_HEADER)

    if not auth_header or not timestamp:
        raise HTTPException(status_code=403, detail="Missing authentication headers")

    try:
        user_id, signature = parse_authorization(auth_header)
    except AuthorizationFormatError as e:
        raise HTTPException(status_code=403, detail=str(e))

    if not timestamp_is_fresh(timestamp, settings.signature_max_age_seconds):
        raise HTTPException(status_code=403, detail="Request timestamp expired")

    # Replay protection
    if nonce:
        if not await claim_nonce(redis, nonce, settings.nonce_ttl_seconds):
            raise HTTPException(status_code=403, detail="Nonce already used")

    result = await db.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise HTTPException(status_code=403, detail="User not found")
    if user.status != UserStatus.ACTIVE:
        raise HTTPException(status_code=403, detail="User is not active")

    # Caches the raw body on the request, so multipart endpoints can still parse it
    body = await request.body()
    if not signature_is_valid(
        user.public_key, signature, timestamp, request.method, request.url.path, body
    ):
        raise HTTPException(status_code=403, detail="Invalid signature")

    return AuthenticatedUser(user_id=user_id, user=user)


def require_role(
    *roles: UserRole,
) -> Callable[..., Coroutine[Any, Any, AuthenticatedUser]]:
    """Dependency factory: authenticated user whose role is one of ``roles``."""
    allowed = set(roles)
    names = " or ".join(r.value for r in roles)

    async def _dependency(auth: AuthenticatedUser = Depends(verify_request)) -> AuthenticatedUser:
        if auth.role not in allowed:
            raise HTTPException(status_code=403, detail=f"Access denied. {names.capitalize()} role required.")
        return auth

    return _dependency
