"""Job SQLAlchemy model and the lifecycle state machine it carries."""

import enum
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, JSONDocument


class JobStatus(enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DEPOSIT_PAID = "deposit_paid"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FINAL_PAID = "final_paid"
    REVISION_REQUESTED = "revision_requested"
    REVISION_IN_PROGRESS = "revision_in_progress"
    REVISION_COMPLETED = "revision_completed"
    APPROVED_BY_CLIENT = "approved_by_client"
    JOB_END = "job_end"


class PaymentStatus(enum.Enum):
    NONE = "none"
    DEPOSIT_PENDING = "deposit_pending"
    DEPOSIT_PAID = "deposit_paid"
    FINAL_PENDING = "final_pending"
    FINAL_PAID = "final_paid"


class RevisionStatus(enum.Enum):
    REQUESTED = "requested"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    APPROVED = "approved"


class Visibility(enum.Enum):
    PUBLIC = "public"
    PRIVATE = "private"
    INVITE_ONLY = "invite_only"


class JobAction(enum.Enum):
    UPDATE = "update"
    DELETE = "delete"
    REVIEW_APPROVE = "review_approve"
    REVIEW_REJECT = "review_reject"
    ACCEPT_OFFER = "accept_offer"
    PAY_DEPOSIT = "pay_deposit"
    APPLY = "apply"
    SUBMIT_WORK = "submit_work"
    CLIENT_APPROVE = "client_approve"
    REQUEST_REVISION = "request_revision"
    START_REVISION = "start_revision"
    SUBMIT_REVISION = "submit_revision"
    PAY_FINAL = "pay_final"
    CLOSE = "close"
    DELIVER = "deliver"
    DELIVER_FINAL = "deliver_final"


@dataclass(frozen=True)
class Transition:
    sources: frozenset[JobStatus]
    target: JobStatus | None  # None leaves the status unchanged


def _from(*statuses: JobStatus) -> frozenset[JobStatus]:
    return frozenset(statuses)


_REVIEWABLE = _from(JobStatus.COMPLETED, JobStatus.REVISION_COMPLETED)

# Every operation that touches a job, keyed to the statuses it may start from.
TRANSITIONS: dict[JobAction, Transition] = {
    JobAction.UPDATE: Transition(_from(JobStatus.PENDING), None),
    JobAction.DELETE: Transition(_from(JobStatus.PENDING, JobStatus.REJECTED), None),
    JobAction.REVIEW_APPROVE: Transition(_from(JobStatus.PENDING), JobStatus.APPROVED),
    JobAction.REVIEW_REJECT: Transition(_from(JobStatus.PENDING), JobStatus.REJECTED),
    JobAction.ACCEPT_OFFER: Transition(_from(JobStatus.APPROVED), None),
    JobAction.PAY_DEPOSIT: Transition(_from(JobStatus.APPROVED), JobStatus.DEPOSIT_PAID),
    JobAction.APPLY: Transition(_from(JobStatus.DEPOSIT_PAID), JobStatus.IN_PROGRESS),
    JobAction.SUBMIT_WORK: Transition(_from(JobStatus.IN_PROGRESS), JobStatus.COMPLETED),
    JobAction.CLIENT_APPROVE: Transition(_REVIEWABLE, JobStatus.APPROVED_BY_CLIENT),
    JobAction.REQUEST_REVISION: Transition(_REVIEWABLE, JobStatus.REVISION_REQUESTED),
    JobAction.START_REVISION: Transition(
        _from(JobStatus.REVISION_REQUESTED), JobStatus.REVISION_IN_PROGRESS
    ),
    JobAction.SUBMIT_REVISION: Transition(
        _from(JobStatus.REVISION_REQUESTED, JobStatus.REVISION_IN_PROGRESS),
        JobStatus.REVISION_COMPLETED,
    ),
    JobAction.PAY_FINAL: Transition(
        _from(JobStatus.COMPLETED, JobStatus.REVISION_COMPLETED, JobStatus.APPROVED_BY_CLIENT),
        JobStatus.FINAL_PAID,
    ),
    JobAction.CLOSE: Transition(_from(JobStatus.FINAL_PAID), JobStatus.JOB_END),
    JobAction.DELIVER: Transition(_from(JobStatus.COMPLETED), None),
    JobAction.DELIVER_FINAL: Transition(_from(JobStatus.FINAL_PAID), None),
}


def _build_graph() -> dict[JobStatus, set[JobStatus]]:
    graph: dict[JobStatus, set[JobStatus]] = {status: set() for status in JobStatus}
    for transition in TRANSITIONS.values():
        if transition.target is None:
            continue
        for source in transition.sources:
            graph[source].add(transition.target)
    return graph


# Valid state transitions (derived from TRANSITIONS)
VALID_TRANSITIONS: dict[JobStatus, set[JobStatus]] = _build_graph()


def allowed_actions(status: JobStatus) -> set[JobAction]:
    return {action for action, t in TRANSITIONS.items() if status in t.sources}


_PAYMENT_STATUS: dict[JobStatus, PaymentStatus] = {
    JobStatus.PENDING: PaymentStatus.NONE,
    JobStatus.REJECTED: PaymentStatus.NONE,
    JobStatus.APPROVED: PaymentStatus.DEPOSIT_PENDING,
    JobStatus.DEPOSIT_PAID: PaymentStatus.DEPOSIT_PAID,
    JobStatus.IN_PROGRESS: PaymentStatus.DEPOSIT_PAID,
    JobStatus.COMPLETED: PaymentStatus.DEPOSIT_PAID,
    JobStatus.REVISION_REQUESTED: PaymentStatus.DEPOSIT_PAID,
    JobStatus.REVISION_IN_PROGRESS: PaymentStatus.DEPOSIT_PAID,
    JobStatus.REVISION_COMPLETED: PaymentStatus.DEPOSIT_PAID,
    JobStatus.APPROVED_BY_CLIENT: PaymentStatus.FINAL_PENDING,
    JobStatus.FINAL_PAID: PaymentStatus.FINAL_PAID,
    JobStatus.JOB_END: PaymentStatus.FINAL_PAID,
}


def derive_payment_status(status: JobStatus) -> PaymentStatus:
    return _PAYMENT_STATUS[status]


def statuses_with_payment_status(payment_status: PaymentStatus) -> list[JobStatus]:
    return [s for s, p in _PAYMENT_STATUS.items() if p == payment_status]


def derive_deposit(price: Decimal) -> Decimal:
    """50% of the price, rounded half-up to cents."""
    return (Decimal(price) / 2).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


# Job status <-> status of the latest revision while the revision loop is open
_REVISION_PHASE: dict[JobStatus, str] = {
    JobStatus.REVISION_REQUESTED: RevisionStatus.REQUESTED.value,
    JobStatus.REVISION_IN_PROGRESS: RevisionStatus.IN_PROGRESS.value,
    JobStatus.REVISION_COMPLETED: RevisionStatus.COMPLETED.value,
}


def revision_state_consistent(status: JobStatus, revisions: list[dict] | None) -> bool:
    """A job is in a revision_* status iff its latest revision is in the matching phase."""
    latest = revisions[-1]["status"] if revisions else None
    expected = _REVISION_PHASE.get(status)
    if expected is not None:
        return latest == expected
    return latest not in _REVISION_PHASE.values()


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        CheckConstraint("revisions_remaining >= 0", name="ck_jobs_revisions_remaining_non_negative"),
    )

    job_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    skills: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    visibility: Mapped[Visibility] = mapped_column(
        Enum(Visibility, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=Visibility.PUBLIC,
    )
    attachments: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    client_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False, index=True
    )
    freelancer_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=True, index=True
    )
    status: Mapped[JobStatus] = mapped_column(
        Enum(JobStatus, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
        default=JobStatus.PENDING,
        index=True,
    )
    price: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    deposit_amount: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    deposit_paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    final_paid_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    client_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    assigned_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    admin_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    client_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    freelancer_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    admin_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    deliverables: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    revisions: Mapped[list] = mapped_column(JSONDocument, nullable=False, default=list)
    revisions_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=2)
    client_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )

    @property
    def payment_status(self) -> PaymentStatus:
        return derive_payment_status(self.status)

    @property
    def latest_revision(self) -> dict | None:
        return self.revisions[-1] if self.revisions else None
