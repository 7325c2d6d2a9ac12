"""Pydantic v2 schemas for the notification outbox."""

import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, field_validator


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    notification_id: uuid.UUID
    job_id: uuid.UUID | None
    event_type: str
    payload: dict
    status: str
    created_at: datetime

    @field_validator("status", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)


class NotificationList(BaseModel):
    success: bool = True
    count: int
    data: list[NotificationResponse]
