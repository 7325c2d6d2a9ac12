"""Pydantic v2 schemas for Job lifecycle endpoints."""

import uuid
from datetime import UTC, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from app.config import settings

_VISIBILITY = r"^(public|private|invite_only)$"


def _future_deadline(v: datetime) -> datetime:
    if v.tzinfo is None:
        v = v.replace(tzinfo=UTC)
    if v <= datetime.now(UTC):
        raise ValueError("Deadline must be in the future")
    return v


class AttachmentIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=256)
    url: str = Field(..., min_length=1, max_length=2048)
    mime_type: str = Field(..., min_length=1, max_length=128)


class JobCreate(BaseModel):
    """Client posts a job. It stays ``pending`` until an admin prices it."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=5, max_length=100)
    description: str = Field(..., min_length=20, max_length=10_000)
    deadline: datetime
    category: str = Field(..., min_length=1, max_length=64)
    skills: list[str] = Field(default_factory=list, max_length=20)
    visibility: str = Field("public", pattern=_VISIBILITY)
    attachments: list[AttachmentIn] = Field(default_factory=list, max_length=10)

    @field_validator("deadline")
    @classmethod
    def validate_deadline(cls, v: datetime) -> datetime:
        return _future_deadline(v)

    @field_validator("skills")
    @classmethod
    def clean_skills(cls, v: list[str]) -> list[str]:
        return [s.strip() for s in v if s.strip()]


class JobUpdate(BaseModel):
    """Edit a job that is still awaiting admin review. Omitted fields are kept."""
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str | None = Field(None, min_length=5, max_length=100)
    description: str | None = Field(None, min_length=20, max_length=10_000)
    deadline: datetime | None = None
    category: str | None = Field(None, min_length=1, max_length=64)
    skills: list[str] | None = Field(None, max_length=20)
    visibility: str | None = Field(None, pattern=_VISIBILITY)

    @field_validator("deadline")
    @classmethod
    def validate_deadline(cls, v: datetime | None) -> datetime | None:
        return None if v is None else _future_deadline(v)


class JobReview(BaseModel):
    """Admin decision on a pending job."""
    status: str = Field(..., pattern=r"^(approved|rejected)$")
    price: Decimal | None = Field(None, gt=0, max_digits=12, decimal_places=2)
    admin_feedback: str | None = Field(None, max_length=4096)

    @field_validator("price")
    @classmethod
    def validate_price(cls, v: Decimal | None) -> Decimal | None:
        if v is not None and v > settings.max_price:
            raise ValueError(f"Maximum price is {settings.max_price}")
        return v


class ClientReview(BaseModel):
    action: str = Field(..., pattern=r"^(approve|request_revision)$")
    feedback: str | None = Field(None, max_length=4096)


class PaymentRequest(BaseModel):
    payment_method: str = Field(..., min_length=1, max_length=64)
    payment_details: dict | None = None


class DeliverableResponse(BaseModel):
    name: str
    url: str
    mime_type: str
    is_watermarked: bool
    uploaded_at: datetime


class RevisionResponse(BaseModel):
    revision_id: str
    requested_at: datetime
    completed_at: datetime | None = None
    client_notes: str = ""
    freelancer_notes: str = ""
    status: str
    deliverables: list[DeliverableResponse] = []


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    job_id: uuid.UUID
    title: str
    description: str
    category: str
    skills: list[str]
    visibility: str
    attachments: list[dict]
    deadline: datetime
    client_id: uuid.UUID
    freelancer_id: uuid.UUID | None
    status: str
    payment_status: str
    price: Decimal | None
    deposit_amount: Decimal | None
    deposit_paid_at: datetime | None
    final_paid_at: datetime | None
    completed_at: datetime | None
    client_approved_at: datetime | None
    assigned_at: datetime | None
    admin_feedback: str | None
    client_feedback: str | None
    freelancer_note: str | None
    admin_note: str | None
    deliverables: list[DeliverableResponse]
    revisions: list[RevisionResponse]
    revisions_remaining: int
    client_approved: bool
    created_at: datetime
    updated_at: datetime

    @field_validator("status", "payment_status", "visibility", mode="before")
    @classmethod
    def serialize_enum(cls, v: object) -> str:
        if hasattr(v, "value"):
            return v.value
        return str(v)

    @model_validator(mode="after")
    def hide_final_files_until_paid(self) -> "JobResponse":
        """Unwatermarked deliverables are only visible once the final payment is in."""
        if self.payment_status != "final_paid":
            self.deliverables = [d for d in self.deliverables if d.is_watermarked]
        return self


class JobEnvelope(BaseModel):
    success: bool = True
    message: str | None = None
    data: JobResponse


class JobPage(BaseModel):
    success: bool = True
    count: int
    total: int
    total_pages: int
    current_page: int
    data: list[JobResponse]


class OfferResponse(BaseModel):
    """Returned when a client accepts an admin's price: what to pay next."""
    success: bool = True
    message: str
    next_step: str
    deposit_amount: Decimal | None
    data: JobResponse


class RevisionHistory(BaseModel):
    job_id: uuid.UUID
    title: str
    status: str
    revisions_remaining: int
    revisions: list[RevisionResponse]


class RevisionHistoryEnvelope(BaseModel):
    success: bool = True
    data: RevisionHistory


class ClientStats(BaseModel):
    active_jobs: int
    completed_jobs: int
    pending_review: int
    total_spent: Decimal


class ContributorStats(BaseModel):
    active_jobs: int
    completed_jobs: int
    revision_requests: int
    total_earnings: Decimal
    available_jobs: int


class StatsEnvelope(BaseModel):
    success: bool = True
    data: ClientStats | ContributorStats
