"""User registration and lookup."""

import logging
import uuid

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.roles import capabilities_for
from app.config import settings
from app.errors import ConflictError, ForbiddenError, NotFoundError
from app.models.user import User, UserRole
from app.schemas.user import ProfileResponse, UserCreate

logger = logging.getLogger(__name__)


async def register_user(db: AsyncSession, data: UserCreate) -> User:
    """Register a user under an Ed25519 public key.

    Admin accounts can only self-register when ``admin_registration_enabled``
    is set; otherwise admins are provisioned out of band.
    """
    role = UserRole(data.role)
    if role == UserRole.ADMIN and not settings.admin_registration_enabled:
        raise ForbiddenError("Admin registration is disabled")

    result = await db.execute(
        select(User).where(or_(User.public_key == data.public_key, User.email == data.email))
    )
    existing = result.scalars().first()
    if existing is not None:
        if existing.public_key == data.public_key:
            raise ConflictError("Public key already registered")
        raise ConflictError("User already exists")

    user = User(
        user_id=uuid.uuid4(),
        public_key=data.public_key,
        display_name=data.display_name,
        email=data.email,
        role=role,
    )
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("User already exists")
    await db.refresh(user)

    logger.info("Registered %s user %s", role.value, user.user_id)
    return user


async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
    result = await db.execute(select(User).where(User.user_id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    return user


def build_profile(user: User) -> ProfileResponse:
    profile = ProfileResponse.model_validate(user)
    profile.capabilities = capabilities_for(user.role)
    return profile
