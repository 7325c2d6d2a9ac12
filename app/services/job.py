"""Job lifecycle business logic.

Every status change goes through ``_commit_transition``: the precondition is
checked against the row that was read, then re-checked in the WHERE clause of
the single UPDATE that applies the change. If another request moved the job
in between, no row matches and the caller gets a 409.
"""

import logging
import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from decimal import Decimal

from fastapi import UploadFile
from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.middleware import AuthenticatedUser
from app.config import settings
from app.errors import (
    ConflictError,
    ForbiddenError,
    InvalidStateError,
    InvariantViolation,
    NotFoundError,
    PaymentDeclinedError,
    ValidationFailedError,
)
from app.models.job import (
    TRANSITIONS,
    Job,
    JobAction,
    JobStatus,
    RevisionStatus,
    Visibility,
    derive_deposit,
    revision_state_consistent,
)
from app.models.user import UserRole
from app.schemas.job import ClientReview, JobCreate, JobReview, JobUpdate, PaymentRequest
from app.services.notifications import notify_job_event
from app.services.payments import PaymentGatewayError, PaymentProcessor
from app.services.storage import (
    CONTRIBUTOR_FOLDER,
    FINAL_FOLDER,
    WATERMARKED_FOLDER,
    FileStorage,
    StoredFile,
)

logger = logging.getLogger(__name__)

_ACTION_LABELS: dict[JobAction, str] = {
    JobAction.UPDATE: "edit",
    JobAction.DELETE: "delete",
    JobAction.REVIEW_APPROVE: "approve",
    JobAction.REVIEW_REJECT: "reject",
    JobAction.ACCEPT_OFFER: "accept the offer for",
    JobAction.PAY_DEPOSIT: "pay the deposit for",
    JobAction.APPLY: "apply for",
    JobAction.SUBMIT_WORK: "submit work for",
    JobAction.CLIENT_APPROVE: "approve work for",
    JobAction.REQUEST_REVISION: "request a revision for",
    JobAction.START_REVISION: "start a revision for",
    JobAction.SUBMIT_REVISION: "submit a revision for",
    JobAction.PAY_FINAL: "pay the final balance for",
    JobAction.CLOSE: "close",
    JobAction.DELIVER: "deliver files for",
    JobAction.DELIVER_FINAL: "deliver final files for",
}


def _now() -> datetime:
    return datetime.now(UTC)


def _require_state(job: Job, action: JobAction) -> None:
    """Raise 400 if ``action`` is not allowed from the job's current status."""
    if job.status not in TRANSITIONS[action].sources:
        raise InvalidStateError(
            f"Cannot {_ACTION_LABELS[action]} a job in status {job.status.value}"
        )


def _require_client(job: Job, auth: AuthenticatedUser) -> None:
    if job.client_id != auth.user_id:
        raise ForbiddenError("Only the client who posted this job can perform this action")


def _require_freelancer(job: Job, auth: AuthenticatedUser) -> None:
    if job.freelancer_id is None or job.freelancer_id != auth.user_id:
        raise ForbiddenError("You are not assigned to this job")


def _require_viewer(job: Job, auth: AuthenticatedUser) -> None:
    """Admins see everything; parties see their job; contributors see open jobs."""
    if auth.is_admin or auth.user_id in (job.client_id, job.freelancer_id):
        return
    if (
        auth.role == UserRole.CONTRIBUTOR
        and job.status == JobStatus.DEPOSIT_PAID
        and job.freelancer_id is None
    ):
        return
    raise ForbiddenError("Not authorized to view this job")


async def _get_job(db: AsyncSession, job_id: uuid.UUID) -> Job:
    result = await db.execute(select(Job).where(Job.job_id == job_id))
    job = result.scalar_one_or_none()
    if job is None:
        raise NotFoundError("Job not found")
    return job


def _deliverables(files: Sequence[StoredFile], watermarked: bool, at: datetime) -> list[dict]:
    return [
        {
            "name": f.name,
            "url": f.url,
            "mime_type": f.mime_type,
            "is_watermarked": watermarked,
            "uploaded_at": at.isoformat(),
        }
        for f in files
    ]


def _approve_latest_revision(revisions: list[dict]) -> list[dict]:
    """Return a copy of ``revisions`` with a completed latest revision marked approved."""
    if not revisions or revisions[-1]["status"] != RevisionStatus.COMPLETED.value:
        return list(revisions)
    return [*revisions[:-1], {**revisions[-1], "status": RevisionStatus.APPROVED.value}]


def _latest_revision(job: Job, revision_id: str) -> dict:
    """Resolve ``revision_id`` and insist it is the one currently being worked on."""
    if not any(r["revision_id"] == revision_id for r in job.revisions or []):
        raise NotFoundError("Revision not found")
    latest = job.latest_revision
    if latest["revision_id"] != revision_id:
        raise InvalidStateError("Only the latest revision can be worked on")
    return latest


async def _commit_transition(
    db: AsyncSession,
    job: Job,
    action: JobAction,
    values: dict,
    *conditions,
) -> Job:
    """Apply ``values`` (and the action's target status) if the job is still as read.

    ``conditions`` are extra WHERE clauses for preconditions other than status.
    """
    transition = TRANSITIONS[action]
    new_status = transition.target or job.status
    revisions = values.get("revisions", job.revisions)
    if not revision_state_consistent(new_status, revisions):
        raise InvariantViolation(
            f"{action.value} would leave job {job.job_id} in {new_status.value} "
            f"with an inconsistent revision history"
        )

    values = {**values, "updated_at": _now()}
    if transition.target is not None:
        values["status"] = transition.target

    result = await db.execute(
        update(Job)
        .where(Job.job_id == job.job_id, Job.status == job.status, *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        logger.warning("Lost race on %s for job %s (read as %s)", action.value, job.job_id, job.status.value)
        raise ConflictError("Job was modified by another request; reload and try again")

    await db.commit()
    await db.refresh(job)
    logger.info("Job %s: %s -> %s", job.job_id, action.value, job.status.value)
    return job


async def get_job(db: AsyncSession, job_id: uuid.UUID, auth: AuthenticatedUser) -> Job:
    job = await _get_job(db, job_id)
    _require_viewer(job, auth)
    return job


async def create_job(db: AsyncSession, auth: AuthenticatedUser, data: JobCreate) -> Job:
    """Client posts a job. It waits in ``pending`` for admin review."""
    job = Job(
        job_id=uuid.uuid4(),
        title=data.title,
        description=data.description,
        category=data.category,
        skills=data.skills,
        visibility=Visibility(data.visibility),
        attachments=[a.model_dump() for a in data.attachments],
        deadline=data.deadline,
        client_id=auth.user_id,
        status=JobStatus.PENDING,
        revisions_remaining=settings.default_revisions,
        deliverables=[],
        revisions=[],
    )
    db.add(job)
    await db.commit()
    await db.refresh(job)

    logger.info("Client %s created job %s", auth.user_id, job.job_id)
    await notify_job_event(db, job, "job.created", actor_id=auth.user_id)
    return job


async def update_job(
    db: AsyncSession, job_id: uuid.UUID, auth: AuthenticatedUser, data: JobUpdate
) -> Job:
    job = await _get_job(db, job_id)
    _require_client(job, auth)
    _require_state(job, JobAction.UPDATE)

    values = data.model_dump(exclude_unset=True, exclude_none=True)
    if not values:
        raise ValidationFailedError("No fields to update")
    if "visibility" in values:
        values["visibility"] = Visibility(values["visibility"])

    job = await _commit_transition(db, job, JobAction.UPDATE, values)
    await notify_job_event(db, job, "job.updated", actor_id=auth.user_id)
    return job


async def delete_job(db: AsyncSession, job_id: uuid.UUID, auth: AuthenticatedUser) -> None:
    """Remove a job that never got past review."""
    job = await _get_job(db, job_id)
    _require_client(job, auth)
    _require_state(job, JobAction.DELETE)

    result = await db.execute(
        delete(Job)
        .where(Job.job_id == job.job_id, Job.status == job.status)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise ConflictError("Job was modified by another request; reload and try again")
    await db.commit()
    logger.info("Client %s deleted job %s", auth.user_id, job_id)


async def review_job(
    db: AsyncSession, job_id: uuid.UUID, auth: AuthenticatedUser, data: JobReview
) -> Job:
    """Admin approves (and prices) or rejects a pending job."""
    job = await _get_job(db, job_id)

    if data.status == "approved":
        _require_state(job, JobAction.REVIEW_APPROVE)
        if data.price is None:
            raise ValidationFailedError("Price is required when approving a job")
        values: dict = {"price": data.price}
        if job.deposit_amount is None:
            values["deposit_amount"] = derive_deposit(data.price)
        if data.admin_feedback:
            values["admin_feedback"] = data.admin_feedback
        job = await _commit_transition(db, job, JobAction.REVIEW_APPROVE, values)
        await notify_job_event(
            db, job, "job.approved", actor_id=auth.user_id,
            details={"price": str(job.price), "deposit_amount": str(job.deposit_amount)},
        )
        return job

    _require_state(job, JobAction.REVIEW_REJECT)
    if not data.admin_feedback or not data.admin_feedback.strip():
        raise ValidationFailedError("Feedback is required when rejecting a job")
    job = await _commit_transition(
        db, job, JobAction.REVIEW_REJECT, {"admin_feedback": data.admin_feedback.strip()}
    )
    await notify_job_event(
        db, job, "job.rejected", actor_id=auth.user_id,
        details={"feedback": job.admin_feedback},
    )
    return job


async def accept_offer(db: AsyncSession, job_id: uuid.UUID, auth: AuthenticatedUser) -> Job:
    """Client accepts the admin's price. Read-only: the deposit payment is the commitment."""
    job = await _get_job(db, job_id)
    _require_client(job, auth)
    _require_state(job, JobAction.ACCEPT_OFFER)
    return job


async def _charge(
    processor: PaymentProcessor, job: Job, amount: Decimal, data: PaymentRequest
) -> str | None:
    result = await processor.charge(job.job_id, amount, data.payment_method, data.payment_details)
    if not result.succeeded:
        logger.info("Payment of %s declined for job %s", amount, job.job_id)
        raise PaymentDeclinedError(result.message or "Payment was declined")
    return result.reference


async def _refund_after_failed_write(
    processor: PaymentProcessor, job_id: uuid.UUID, reference: str | None, amount: Decimal
) -> None:
    try:
        await processor.refund(job_id, reference, amount)
    except PaymentGatewayError:
        logger.exception(
            "Refund of %s (charge %s) for job %s failed; needs manual reconciliation",
            amount, reference, job_id,
        )


async def pay_deposit(
    db: AsyncSession,
    job_id: uuid.UUID,
    auth: AuthenticatedUser,
    data: PaymentRequest,
    processor: PaymentProcessor,
) -> Job:
    job = await _get_job(db, job_id)
    _require_client(job, auth)
    _require_state(job, JobAction.PAY_DEPOSIT)

    amount = job.deposit_amount
    reference = await _charge(processor, job, amount, data)
    try:
        job = await _commit_transition(
            db, job, JobAction.PAY_DEPOSIT,
            {"deposit_paid_at": job.deposit_paid_at or _now()},
        )
    except Exception:
        await _refund_after_failed_write(processor, job_id, reference, amount)
        raise

    await notify_job_event(
        db, job, "job.deposit_paid", actor_id=auth.user_id, details={"amount": str(amount)}
    )
    return job


async def apply_for_job(db: AsyncSession, job_id: uuid.UUID, auth: AuthenticatedUser) -> Job:
    """Contributor claims a funded job. First claim wins."""
    job = await _get_job(db, job_id)
    _require_state(job, JobAction.APPLY)
    if job.freelancer_id is not None:
        raise InvalidStateError("Job has already been assigned")

    job = await _commit_transition(
        db, job, JobAction.APPLY,
        {"freelancer_id": auth.user_id, "assigned_at": job.assigned_at or _now()},
        Job.freelancer_id.is_(None),
    )
    await notify_job_event(db, job, "job.assigned", actor_id=auth.user_id)
    return job


async def submit_work(
    db: AsyncSession,
    job_id: uuid.UUID,
    auth: AuthenticatedUser,
    uploads: Sequence[UploadFile],
    note: str | None,
    storage: FileStorage,
) -> Job:
    job = await _get_job(db, job_id)
    _require_freelancer(job, auth)
    _require_state(job, JobAction.SUBMIT_WORK)

    files = await storage.save(uploads, CONTRIBUTOR_FOLDER)
    values: dict = {"deliverables": _deliverables(files, watermarked=True, at=_now())}
    if note:
        values["freelancer_note"] = note

    job = await _commit_transition(db, job, JobAction.SUBMIT_WORK, values)
    await notify_job_event(
        db, job, "job.work_submitted", actor_id=auth.user_id, details={"files": len(files)}
    )
    return job


async def client_review(
    db: AsyncSession, job_id: uuid.UUID, auth: AuthenticatedUser, data: ClientReview
) -> Job:
    """Client approves the delivered work or sends it back for a revision."""
    job = await _get_job(db, job_id)
    _require_client(job, auth)

    if data.action == "approve":
        _require_state(job, JobAction.CLIENT_APPROVE)
        job = await _commit_transition(db, job, JobAction.CLIENT_APPROVE, {
            "client_approved": True,
            "client_approved_at": job.client_approved_at or _now(),
            "client_feedback": data.feedback or "Work approved",
            "revisions": _approve_latest_revision(job.revisions),
        })
        await notify_job_event(db, job, "job.client_approved", actor_id=auth.user_id)
        return job

    _require_state(job, JobAction.REQUEST_REVISION)
    if job.revisions_remaining <= 0:
        raise InvalidStateError("No revisions remaining for this job")

    notes = data.feedback or "Revision requested"
    revision = {
        "revision_id": str(uuid.uuid4()),
        "requested_at": _now().isoformat(),
        "completed_at": None,
        "client_notes": notes,
        "freelancer_notes": "",
        "status": RevisionStatus.REQUESTED.value,
        "deliverables": [],
    }
    # Earlier completed revisions were superseded, not approved
    job = await _commit_transition(
        db, job, JobAction.REQUEST_REVISION,
        {
            "revisions": [*(job.revisions or []), revision],
            "revisions_remaining": job.revisions_remaining - 1,
            "client_feedback": notes,
        },
        Job.revisions_remaining == job.revisions_remaining,
    )
    await notify_job_event(
        db, job, "job.revision_requested", actor_id=auth.user_id,
        details={"revision_id": revision["revision_id"], "revisions_remaining": job.revisions_remaining},
    )
    return job


async def start_revision(
    db: AsyncSession, job_id: uuid.UUID, revision_id: str, auth: AuthenticatedUser
) -> Job:
    job = await _get_job(db, job_id)
    _require_freelancer(job, auth)
    _require_state(job, JobAction.START_REVISION)

    latest = _latest_revision(job, revision_id)
    if latest["status"] != RevisionStatus.REQUESTED.value:
        raise InvalidStateError(f"Revision is already {latest['status']}")

    revisions = [*job.revisions[:-1], {**latest, "status": RevisionStatus.IN_PROGRESS.value}]
    job = await _commit_transition(db, job, JobAction.START_REVISION, {"revisions": revisions})
    await notify_job_event(
        db, job, "job.revision_started", actor_id=auth.user_id, details={"revision_id": revision_id}
    )
    return job


async def submit_revision(
    db: AsyncSession,
    job_id: uuid.UUID,
    revision_id: str,
    auth: AuthenticatedUser,
    uploads: Sequence[UploadFile],
    notes: str | None,
    storage: FileStorage,
) -> Job:
    job = await _get_job(db, job_id)
    _require_freelancer(job, auth)
    _require_state(job, JobAction.SUBMIT_REVISION)

    latest = _latest_revision(job, revision_id)
    if latest["status"] not in (RevisionStatus.REQUESTED.value, RevisionStatus.IN_PROGRESS.value):
        raise InvalidStateError(f"Revision is already {latest['status']}")

    files = await storage.save(uploads, CONTRIBUTOR_FOLDER)
    now = _now()
    deliverables = _deliverables(files, watermarked=True, at=now)
    completed = {
        **latest,
        "status": RevisionStatus.COMPLETED.value,
        "completed_at": now.isoformat(),
        "freelancer_notes": notes or "",
        "deliverables": deliverables,
    }
    job = await _commit_transition(db, job, JobAction.SUBMIT_REVISION, {
        "revisions": [*job.revisions[:-1], completed],
    })
    await notify_job_event(
        db, job, "job.revision_submitted", actor_id=auth.user_id,
        details={"revision_id": revision_id, "files": len(files)},
    )
    return job


async def pay_final(
    db: AsyncSession,
    job_id: uuid.UUID,
    auth: AuthenticatedUser,
    data: PaymentRequest,
    processor: PaymentProcessor,
) -> Job:
    """Client pays the balance (price minus deposit), unlocking the final files."""
    job = await _get_job(db, job_id)
    _require_client(job, auth)
    _require_state(job, JobAction.PAY_FINAL)

    amount = job.price - job.deposit_amount
    reference = await _charge(processor, job, amount, data)
    try:
        job = await _commit_transition(db, job, JobAction.PAY_FINAL, {
            "final_paid_at": job.final_paid_at or _now(),
            "revisions": _approve_latest_revision(job.revisions),
        })
    except Exception:
        await _refund_after_failed_write(processor, job_id, reference, amount)
        raise

    await notify_job_event(
        db, job, "job.final_paid", actor_id=auth.user_id, details={"amount": str(amount)}
    )
    return job


async def mark_no_revision_required(
    db: AsyncSession, job_id: uuid.UUID, auth: AuthenticatedUser
) -> Job:
    """Client closes a fully paid job without asking for more changes."""
    job = await _get_job(db, job_id)
    _require_client(job, auth)
    _require_state(job, JobAction.CLOSE)

    job = await _commit_transition(
        db, job, JobAction.CLOSE, {"completed_at": job.completed_at or _now()}
    )
    await notify_job_event(db, job, "job.closed", actor_id=auth.user_id)
    return job


async def deliver(
    db: AsyncSession,
    job_id: uuid.UUID,
    auth: AuthenticatedUser,
    uploads: Sequence[UploadFile],
    note: str | None,
    storage: FileStorage,
    final: bool = False,
) -> Job:
    """Admin uploads files for the client: watermarked previews, or final files once paid.

    The job status is left unchanged.
    """
    action = JobAction.DELIVER_FINAL if final else JobAction.DELIVER
    job = await _get_job(db, job_id)
    _require_state(job, action)

    files = await storage.save(uploads, FINAL_FOLDER if final else WATERMARKED_FOLDER)
    values: dict = {"deliverables": _deliverables(files, watermarked=not final, at=_now())}
    if note:
        values["admin_note"] = note

    job = await _commit_transition(db, job, action, values)
    await notify_job_event(
        db, job, "job.final_delivered" if final else "job.delivered",
        actor_id=auth.user_id, details={"files": len(files)},
    )
    return job


async def get_revisions(db: AsyncSession, job_id: uuid.UUID, auth: AuthenticatedUser) -> Job:
    job = await _get_job(db, job_id)
    if not (auth.is_admin or auth.user_id in (job.client_id, job.freelancer_id)):
        raise ForbiddenError("Not authorized to view revisions for this job")
    return job
