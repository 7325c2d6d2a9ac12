"""Pydantic v2 schemas for User endpoints."""

import re
import uuid
from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field, field_validator

from app.utils.crypto import is_valid_public_key

_EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")


class UserCreate(BaseModel):
    public_key: str = Field(..., max_length=128, description="Ed25519 public key (hex)")
    display_name: str = Field(..., min_length=2, max_length=50)
    email: str = Field(..., max_length=254)
    role: str = Field("client", pattern=r"^(client|contributor|admin)$")

    @field_validator("public_key")
    @classmethod
    def validate_public_key(cls, v: str) -> str:
        if not is_valid_public_key(v):
            raise ValueError("public_key must be a hex-encoded Ed25519 key")
        return v

    @field_validator("display_name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        v = v.strip().lower()
        if not _EMAIL_PATTERN.match(v):
            raise ValueError("Please enter a valid email")
        return v


class UserResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: uuid.UUID
    display_name: str
    role: str
    status: str
    created_at: datetime

    @field_validator("role", "status", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)


class ProfileResponse(UserResponse):
    email: str
    capabilities: list[str] = []
