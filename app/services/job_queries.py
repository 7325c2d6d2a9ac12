"""Read-side job queries: scoped, filtered, paged listings and dashboard stats."""

import math
import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.job import (
    Job,
    JobStatus,
    PaymentStatus,
    Visibility,
    statuses_with_payment_status,
)
from app.schemas.job import ClientStats, ContributorStats

SORT_COLUMNS = {
    "created_at": Job.created_at,
    "updated_at": Job.updated_at,
    "deadline": Job.deadline,
    "price": Job.price,
    "title": Job.title,
    "status": Job.status,
}

# Funded and not yet closed, from the client's side
CLIENT_ACTIVE = frozenset({
    JobStatus.DEPOSIT_PAID,
    JobStatus.IN_PROGRESS,
    JobStatus.COMPLETED,
    JobStatus.REVISION_REQUESTED,
    JobStatus.REVISION_IN_PROGRESS,
    JobStatus.REVISION_COMPLETED,
    JobStatus.APPROVED_BY_CLIENT,
    JobStatus.FINAL_PAID,
})
CONTRIBUTOR_ACTIVE = CLIENT_ACTIVE - {JobStatus.DEPOSIT_PAID}


@dataclass
class JobFilters:
    status: str | None = None
    category: str | None = None
    search: str | None = None
    payment_status: str | None = None
    page: int = 1
    limit: int = 10
    sort_by: str = "created_at"
    sort_order: str = "desc"


@dataclass
class JobPageResult:
    jobs: list[Job]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.total else 0


def _filter_conditions(filters: JobFilters) -> list:
    conditions = []
    if filters.status:
        conditions.append(Job.status == JobStatus(filters.status))
    if filters.category:
        conditions.append(Job.category == filters.category)
    if filters.search:
        escaped = filters.search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"
        conditions.append(or_(
            Job.title.ilike(pattern, escape="\\"),
            Job.description.ilike(pattern, escape="\\"),
        ))
    if filters.payment_status:
        statuses = statuses_with_payment_status(PaymentStatus(filters.payment_status))
        conditions.append(Job.status.in_(statuses))
    return conditions


async def _page(db: AsyncSession, scope: list, filters: JobFilters) -> JobPageResult:
    conditions = [*scope, *_filter_conditions(filters)]

    total = await db.scalar(select(func.count()).select_from(Job).where(*conditions))

    column = SORT_COLUMNS[filters.sort_by]
    primary = column.asc() if filters.sort_order == "asc" else column.desc()
    query = (
        select(Job)
        .where(*conditions)
        .order_by(primary, Job.created_at.asc(), Job.job_id.asc())
        .offset((filters.page - 1) * filters.limit)
        .limit(filters.limit)
    )
    result = await db.execute(query)
    return JobPageResult(
        jobs=list(result.scalars().all()),
        total=total or 0,
        page=filters.page,
        limit=filters.limit,
    )


async def list_client_jobs(
    db: AsyncSession, client_id: uuid.UUID, filters: JobFilters
) -> JobPageResult:
    return await _page(db, [Job.client_id == client_id], filters)


async def list_available_jobs(db: AsyncSession, filters: JobFilters) -> JobPageResult:
    """Funded jobs no contributor has claimed yet."""
    return await _page(
        db, [Job.status == JobStatus.DEPOSIT_PAID, Job.freelancer_id.is_(None)], filters
    )


async def list_assigned_jobs(
    db: AsyncSession, freelancer_id: uuid.UUID, filters: JobFilters
) -> JobPageResult:
    return await _page(db, [Job.freelancer_id == freelancer_id], filters)


async def list_all_jobs(db: AsyncSession, filters: JobFilters) -> JobPageResult:
    return await _page(db, [], filters)


async def list_pending_jobs(db: AsyncSession, filters: JobFilters) -> JobPageResult:
    """Admin review queue, oldest first regardless of the requested sort."""
    filters.sort_by, filters.sort_order = "created_at", "asc"
    return await _page(db, [Job.status == JobStatus.PENDING], filters)


async def list_public_jobs(db: AsyncSession, filters: JobFilters) -> JobPageResult:
    return await _page(
        db, [Job.status == JobStatus.APPROVED, Job.visibility == Visibility.PUBLIC], filters
    )


async def _status_counts(db: AsyncSession, *conditions) -> dict[JobStatus, int]:
    result = await db.execute(
        select(Job.status, func.count()).where(*conditions).group_by(Job.status)
    )
    return {status: count for status, count in result.all()}


async def client_stats(db: AsyncSession, client_id: uuid.UUID) -> ClientStats:
    counts = await _status_counts(db, Job.client_id == client_id)

    result = await db.execute(
        select(Job.price, Job.deposit_amount, Job.final_paid_at)
        .where(Job.client_id == client_id, Job.deposit_paid_at.is_not(None))
    )
    spent = Decimal("0.00")
    for price, deposit, final_paid_at in result.all():
        spent += deposit
        if final_paid_at is not None:
            spent += price - deposit

    return ClientStats(
        active_jobs=sum(counts.get(s, 0) for s in CLIENT_ACTIVE),
        completed_jobs=counts.get(JobStatus.JOB_END, 0),
        pending_review=counts.get(JobStatus.PENDING, 0),
        total_spent=spent,
    )


async def contributor_stats(db: AsyncSession, freelancer_id: uuid.UUID) -> ContributorStats:
    counts = await _status_counts(db, Job.freelancer_id == freelancer_id)

    earnings = await db.scalar(
        select(func.coalesce(func.sum(Job.price), 0))
        .where(Job.freelancer_id == freelancer_id, Job.status == JobStatus.JOB_END)
    )
    available = await db.scalar(
        select(func.count()).select_from(Job)
        .where(Job.status == JobStatus.DEPOSIT_PAID, Job.freelancer_id.is_(None))
    )

    return ContributorStats(
        active_jobs=sum(counts.get(s, 0) for s in CONTRIBUTOR_ACTIVE),
        completed_jobs=counts.get(JobStatus.JOB_END, 0),
        revision_requests=counts.get(JobStatus.REVISION_REQUESTED, 0),
        total_earnings=Decimal(str(earnings or 0)).quantize(Decimal("0.01")),
        available_jobs=available or 0,
    )
