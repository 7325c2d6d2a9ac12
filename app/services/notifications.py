"""Notification outbox: one row per recipient for each lifecycle event.

Rows are written in their own session after the job transition has been
committed. A failure here is logged and swallowed so it never turns a
successful transition into an error response. Delivery (email, push) reads
the outbox and is not part of this service.
"""

import logging
import uuid

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.job import Job
from app.models.notification import Notification

logger = logging.getLogger(__name__)

EVENT_MESSAGES: dict[str, str] = {
    "job.created": "Job posted and waiting for admin review",
    "job.updated": "Job details updated",
    "job.approved": "Job approved and priced; deposit is due",
    "job.rejected": "Job was rejected by the admin",
    "job.deposit_paid": "Deposit received; job is open to contributors",
    "job.assigned": "A contributor has started work on the job",
    "job.work_submitted": "Work submitted for review",
    "job.client_approved": "Client approved the work",
    "job.revision_requested": "Client requested a revision",
    "job.revision_started": "Contributor started the revision",
    "job.revision_submitted": "Revision submitted for review",
    "job.final_paid": "Final payment received",
    "job.closed": "Job closed",
    "job.delivered": "Preview files delivered",
    "job.final_delivered": "Final files delivered",
}


def _recipients(job: Job, actor_id: uuid.UUID | None) -> list[uuid.UUID]:
    parties = [job.client_id, job.freelancer_id]
    return [p for p in dict.fromkeys(parties) if p is not None and p != actor_id]


async def notify_job_event(
    db: AsyncSession,
    job: Job,
    event: str,
    actor_id: uuid.UUID | None = None,
    details: dict | None = None,
) -> int:
    """Write outbox rows for ``event`` to every job party except the actor.

    Returns the number of rows written (0 on failure).
    """
    if event not in EVENT_MESSAGES:
        raise ValueError(f"Unknown job event: {event}")

    payload = {
        "job_id": str(job.job_id),
        "title": job.title,
        "status": job.status.value,
        "message": EVENT_MESSAGES[event],
        **(details or {}),
    }
    recipients = _recipients(job, actor_id)
    if not recipients:
        return 0

    async with AsyncSession(bind=db.bind, expire_on_commit=False) as session:
        try:
            session.add_all([
                Notification(
                    recipient_user_id=recipient,
                    job_id=job.job_id,
                    event_type=event,
                    payload=payload,
                )
                for recipient in recipients
            ])
            await session.commit()
        except SQLAlchemyError:
            await session.rollback()
            logger.exception("Failed to record %s notification for job %s", event, job.job_id)
            return 0

    logger.info("Queued %s for %d recipient(s) on job %s", event, len(recipients), job.job_id)
    return len(recipients)


async def list_notifications(
    db: AsyncSession, user_id: uuid.UUID, limit: int = 50
) -> list[Notification]:
    result = await db.execute(
        select(Notification)
        .where(Notification.recipient_user_id == user_id)
        .order_by(Notification.created_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
