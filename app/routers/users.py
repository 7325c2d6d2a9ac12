"""User registration and profile endpoints."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.middleware import AuthenticatedUser, verify_request
from app.database import get_db
from app.schemas.user import ProfileResponse, UserCreate, UserResponse
from app.services import user as user_service

router = APIRouter(prefix="/users", tags=["users"])


@router.post("", response_model=UserResponse, status_code=201)
async def register_user(
    data: UserCreate,
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    """Register a user under an Ed25519 public key. Requests are then signed with it."""
    user = await user_service.register_user(db, data)
    return UserResponse.model_validate(user)


@router.get("/me", response_model=ProfileResponse)
async def me(auth: AuthenticatedUser = Depends(verify_request)) -> ProfileResponse:
    """Caller's profile plus the capability table for their role."""
    return user_service.build_profile(auth.user)


@router.get("/{user_id}", response_model=UserResponse)
async def get_user(
    user_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> UserResponse:
    user = await user_service.get_user(db, user_id)
    return UserResponse.model_validate(user)
