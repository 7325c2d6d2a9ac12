"""Admin endpoints: review queue, pricing decisions and file delivery."""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.middleware import AuthenticatedUser, require_role
from app.database import get_db
from app.models.user import UserRole
from app.routers.jobs import UploadForm, job_filters, parse_upload, to_page
from app.schemas.job import JobEnvelope, JobPage, JobResponse, JobReview
from app.services import job as job_service
from app.services import job_queries
from app.services.job_queries import JobFilters
from app.services.storage import FileStorage, get_file_storage

router = APIRouter(prefix="/admin", tags=["admin"])

admin_only = require_role(UserRole.ADMIN)


@router.get("/jobs", response_model=JobPage)
async def all_jobs(
    filters: JobFilters = Depends(job_filters),
    auth: AuthenticatedUser = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
) -> JobPage:
    return to_page(await job_queries.list_all_jobs(db, filters))


@router.get("/jobs/pending", response_model=JobPage)
async def pending_jobs(
    filters: JobFilters = Depends(job_filters),
    auth: AuthenticatedUser = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
) -> JobPage:
    """Review queue, oldest first."""
    return to_page(await job_queries.list_pending_jobs(db, filters))


@router.post("/jobs/{job_id}/review", response_model=JobEnvelope)
async def review_job(
    job_id: uuid.UUID,
    data: JobReview,
    auth: AuthenticatedUser = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
) -> JobEnvelope:
    """Approve with a price, or reject with feedback."""
    job = await job_service.review_job(db, job_id, auth, data)
    return JobEnvelope(message=f"Job {data.status} successfully", data=JobResponse.model_validate(job))


@router.post("/jobs/{job_id}/deliver", response_model=JobEnvelope)
async def deliver(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(admin_only),
    upload: UploadForm = Depends(parse_upload),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
) -> JobEnvelope:
    """Upload watermarked preview files for a completed job."""
    job = await job_service.deliver(db, job_id, auth, upload.files, upload.note, storage)
    return JobEnvelope(message="Files delivered to client", data=JobResponse.model_validate(job))


@router.post("/jobs/{job_id}/deliver-final", response_model=JobEnvelope)
async def deliver_final(
    job_id: uuid.UUID,
    auth: AuthenticatedUser = Depends(admin_only),
    upload: UploadForm = Depends(parse_upload),
    db: AsyncSession = Depends(get_db),
    storage: FileStorage = Depends(get_file_storage),
) -> JobEnvelope:
    """Upload unwatermarked final files once the final payment is in."""
    job = await job_service.deliver(
        db, job_id, auth, upload.files, upload.note, storage, final=True
    )
    return JobEnvelope(message="Final files delivered to client", data=JobResponse.model_validate(job))
