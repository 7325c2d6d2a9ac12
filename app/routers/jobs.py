"""Job lifecycle endpoints for clients and contributors."""

import uuid
from dataclasses import dataclass

from fastapi import APIRouter, Depends, Query, Request, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.middleware import AuthenticatedUser, require_role, verify_request
from app.config import settings
from app.database import get_db
from app.models.job import Job, JobStatus, PaymentStatus
from app.models.user import UserRole
from app.schemas.job import (
    ClientReview,
    JobCreate,
    JobEnvelope,
    JobPage,
    JobResponse,
    JobUpdate,
    OfferResponse,
    PaymentRequest,
    RevisionHistory,
    RevisionHistoryEnvelope,
    StatsEnvelope,
)
from app.services import job as job_service
from app.services import job_queries
from app.services.job_queries import JobFilters, JobPageResult
from app.services.payments import PaymentProcessor, get_payment_processor
from app.services.storage import FileStorage, get_file_storage

router = APIRouter(prefix="/jobs", tags=["jobs"])

client_only = require_role(UserRole.CLIENT)
contributor_only = require_role(UserRole.CONTRIBUTOR)

_STATUS_PATTERN = "^(" + "|".join(s.value for s in JobStatus) + ")$"
_PAYMENT_PATTERN = "^(" + "|".join(p.value for p in PaymentStatus) + ")$"
_SORT_PATTERN = "^(" + "|".join(job_queries.SORT_COLUMNS) + ")$"


def job_filters(
    status: str | None = Query(None, pattern=_STATUS_PATTERN),
    category: str | None = Query(None, max_length=64),
    search: str | None = Query(None, max_length=200),
    payment_status: str | None = Query(None, pattern=_PAYMENT_PATTERN),
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    sort_by: str = Query("created_at", pattern=_SORT_PATTERN),
    sort_order: str = Query("desc", pattern=r"^(asc|desc)$"),
) -> JobFilters:
    return JobFilters(
        status=status,
        category=category,
        search=search.strip() if search else None,
        payment_status=payment_status,
        page=page,
        limit=limit,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@dataclass
class UploadForm:
    files: list[UploadFile]
    note: str | None


async def parse_upload(
    request: Request,
    auth: AuthenticatedUser = Depends(verify_request),
) -> UploadForm:
    """Read a multipart upload (``files`` plus an optional ``note``).

    Parsed here rather than through File()/Form() parameters so the body is
    only read after the signature check has cached it.
    """
    form = await request.form(max_files=settings.max_upload_files + 1)
    files = [f for f in form.getlist("files") if not isinstance(f, str)]
    note = form.get("note")
    return UploadForm(files=files, note=note.strip() if isinstance(note, str) and note.strip() else None)


def to_page(result: JobPageResult) -> JobPage:
    return JobPage(
        count=len(result.jobs),
        total=result.total,
        total_pages=result.total_pages,
        current_page=result.page,
        data=[JobResponse.model_validate(j) for j in result.jobs],
    )


def _envelope(job: Job, message: str | None = None) -> JobEnvelope:
    return JobEnvelope(message=message, data=JobResponse.model_validate(job))


@router.post("", response_model=JobEnvelope, status_code=201)
async def create_job(
    data: JobCreate,
    auth: AuthenticatedUser = Depends(client_only),
    db: AsyncSession = Depends(get_db),
) -> JobEnvelope:
    """Client posts a job for admin review."""
    job = await job_service.create_job(db, auth, data)
    return _envelope(job, "Job posted successfully")


@router.get("", response_model=JobPage)
async def browse_jobs(
    filters: JobFilters = Depends(job_filters),
    db: AsyncSession = Depends(get_db),
) -> JobPage:
    """Public listing of approved, public jobs."""
    return to_page(await job_queries.list_public_jobs(db, filters))


@router.get("/mine", response_model=JobPage)
async def my_jobs(
    filters: JobFilters = Depends(job_filters),
    auth: AuthenticatedUser = Depends(client_only),
    db: AsyncSession = Depends(get_db),
) -> JobPage:
    return to_page(await job_queries.list_client_jobs(db, auth.user_id, filters))


@router.get("/available", response_model=JobPage)
async def available_jobs(
    filters: JobFilters = Depends(job_filters),
    auth: AuthenticatedUser = Depends(contributor_only),
    db: AsyncSession = Depends(get_db),
) -> JobPage:
    """Funded jobs waiting for a contributor."""
    return to_page(await job_queries.list_available_jobs(db, filters))


@router.get("/assigned", response_model=JobPage)
async def assigned_jobs(
    filters: JobFilters = Depends(job_filters),
    auth: AuthenticatedUser = Depends(contributor_only),
    db: AsyncSession = Depends(get_db),
) -> JobPage:
    return to_page(await job_queries.list_assigned_jobs(db, auth.user_id, filters))


@router.get("/stats", response_model=StatsEnvelope)
async def job_stats(
    auth: AuthenticatedUser = Depends(require_role(UserRole.CLIENT, UserRole.CONTRIBUTOR)),
    db: AsyncSession = Depends(get_db),
) -> StatsEnvelope:
    """Dashboard counters for the caller's role."""
    if auth.role == UserRole.CLIENT:
        return StatsEnvelope(data=await job_queries.client_stats(db, auth.user_id))
    return StatsEnvelope(data=await job_queries.contributor_stats(db, auth.user_id))


@router.get("/{job_id}", response_model=JobEnvelope)
async def get_job(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> JobEnvelope:
    job = await job_service.get_job(db, job_id, auth)
    return _envelope(job)


@router.patch("/{job_id}", response_model=JobEnvelope)
async def update_job(
    job_id: uuid.UUID,
    data: JobUpdate,
    auth: AuthenticatedUser = Depends(client_only),
    db: AsyncSession = Depends(get_db),
) -> JobEnvelope:
    """Edit a job while it is still pending review."""
    job = await job_service.update_job(db, job_id, auth, data)
    return _envelope(job, "Job updated successfully")


@router.delete("/{job_id}")
async def delete_job(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(client_only),
    db: AsyncSession = Depends(get_db),
) -> dict:
    await job_service.delete_job(db, job_id, auth)
    return {"success": True, "message": "Job deleted successfully"}


@router.post("/{job_id}/accept-offer", response_model=OfferResponse)
async def accept_offer(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(client_only),
    db: AsyncSession = Depends(get_db),
) -> OfferResponse:
    """Client accepts the admin's price; the response says what to pay next."""
    job = await job_service.accept_offer(db, job_id, auth)
    return OfferResponse(
        message="Offer accepted. Please pay the deposit to proceed.",
        next_step="pay_deposit",
        deposit_amount=job.deposit_amount,
        data=JobResponse.model_validate(job),
    )


@router.post("/{job_id}/pay-deposit", response_model=JobEnvelope)
async def pay_deposit(
    job_id: uuid.UUID,
    data: PaymentRequest,
    auth: AuthenticatedUser = Depends(client_only),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> JobEnvelope:
    job = await job_service.pay_deposit(db, job_id, auth, data, processor)
    return _envelope(job, "Deposit paid successfully")


@router.post("/{job_id}/apply", response_model=JobEnvelope)
async def apply_for_job(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(contributor_only),
    db: AsyncSession = Depends(get_db),
) -> JobEnvelope:
    """Contributor claims a funded job."""
    job = await job_service.apply_for_job(db, job_id, auth)
    return _envelope(job, "Successfully applied for job")


@router.post("/{job_id}/submit", response_model=JobEnvelope)
async def submit_work(
    job_id: uuid.UUID,
    upload: UploadForm = Depends(parse_upload),
    auth: AuthenticatedUser = Depends(contributor_only),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
) -> JobEnvelope:
    """Multipart: one or more ``files`` and an optional ``note``."""
    job = await job_service.submit_work(db, job_id, auth, upload.files, upload.note, storage)
    return _envelope(job, "Work submitted successfully")


@router.post("/{job_id}/review", response_model=JobEnvelope)
async def review_work(
    job_id: uuid.UUID,
    data: ClientReview,
    auth: AuthenticatedUser = Depends(client_only),
    db: AsyncSession = Depends(get_db),
) -> JobEnvelope:
    """Client approves the work or requests a revision."""
    job = await job_service.client_review(db, job_id, auth, data)
    message = "Work approved" if data.action == "approve" else "Revision requested"
    return _envelope(job, message)


@router.get("/{job_id}/revisions", response_model=RevisionHistoryEnvelope)
async def revision_history(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(verify_request),
    db: AsyncSession = Depends(get_db),
) -> RevisionHistoryEnvelope:
    job = await job_service.get_revisions(db, job_id, auth)
    return RevisionHistoryEnvelope(data=RevisionHistory(
        job_id=job.job_id,
        title=job.title,
        status=job.status.value,
        revisions_remaining=job.revisions_remaining,
        revisions=job.revisions,
    ))


@router.post("/{job_id}/revisions/{revision_id}/start", response_model=JobEnvelope)
async def start_revision(
    job_id: uuid.UUID,
    revision_id: str,
    auth: AuthenticatedUser = Depends(contributor_only),
    db: AsyncSession = Depends(get_db),
) -> JobEnvelope:
    job = await job_service.start_revision(db, job_id, revision_id, auth)
    return _envelope(job, "Revision started")


@router.post("/{job_id}/revisions/{revision_id}/submit", response_model=JobEnvelope)
async def submit_revision(
    job_id: uuid.UUID,
    revision_id: str,
    upload: UploadForm = Depends(parse_upload),
    auth: AuthenticatedUser = Depends(contributor_only),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
) -> JobEnvelope:
    """Multipart: one or more ``files`` and optional ``note`` for the client."""
    job = await job_service.submit_revision(
        db, job_id, revision_id, auth, upload.files, upload.note, storage
    )
    return _envelope(job, "Revision submitted successfully")


@router.post("/{job_id}/pay-final", response_model=JobEnvelope)
async def pay_final(
    job_id: uuid.UUID,
    data: PaymentRequest,
    auth: AuthenticatedUser = Depends(client_only),
    db: AsyncSession = Depends(get_db),
    processor: PaymentProcessor = Depends(get_payment_processor),
) -> JobEnvelope:
    job = await job_service.pay_final(db, job_id, auth, data, processor)
    return _envelope(job, "Final payment completed successfully")


@router.post("/{job_id}/no-revision-required", response_model=JobEnvelope)
async def no_revision_required(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(client_only),
    db: AsyncSession = Depends(get_db),
) -> JobEnvelope:
    """Client closes a paid job without further changes."""
    job = await job_service.mark_no_revision_required(db, job_id, auth)
    return _envelope(job, "Job closed")
