"""Notification outbox endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.middleware import AuthenticatedUser, verify_request
from app.database import get_db
from app.schemas.notification import NotificationList, NotificationResponse
from app.services import notifications as notification_service

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=NotificationList)
async def list_notifications(
    limit: int = Query(50, ge=1, le=200),
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> NotificationList:
    """Most recent notifications for the caller."""
    rows = await notification_service.list_notifications(db, auth.user_id, limit)
    return NotificationList(
        count=len(rows),
        data=[NotificationResponse.model_validate(n) for n in rows],
    )
