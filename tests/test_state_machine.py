"""Tests for the transition table, derived payment status and lifecycle invariants."""

from datetime import UTC, datetime, timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient

from app.models.job import (
    TRANSITIONS,
    VALID_TRANSITIONS,
    JobAction,
    JobStatus,
    PaymentStatus,
    allowed_actions,
    derive_deposit,
    derive_payment_status,
    revision_state_consistent,
    statuses_with_payment_status,
)
from app.schemas.job import JobResponse
from tests.conftest import Cast, drive_to, make_cast, upload_files

ALL_STATUSES = [s.value for s in JobStatus]
FREELANCER_ACTIONS = {JobAction.SUBMIT_WORK, JobAction.START_REVISION, JobAction.SUBMIT_REVISION}
UNASSIGNED_STATUSES = {"pending", "approved", "rejected", "deposit_paid"}


# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

def test_every_status_is_reachable_from_pending() -> None:
    seen = {JobStatus.PENDING}
    frontier = [JobStatus.PENDING]
    while frontier:
        current = frontier.pop()
        for nxt in VALID_TRANSITIONS[current]:
            if nxt not in seen:
                seen.add(nxt)
                frontier.append(nxt)
    assert seen == set(JobStatus)


def test_terminal_states() -> None:
    assert VALID_TRANSITIONS[JobStatus.JOB_END] == set()
    assert VALID_TRANSITIONS[JobStatus.REJECTED] == set()


def test_revision_back_edge() -> None:
    assert JobStatus.REVISION_REQUESTED in VALID_TRANSITIONS[JobStatus.REVISION_COMPLETED]
    assert JobStatus.REVISION_REQUESTED in VALID_TRANSITIONS[JobStatus.COMPLETED]


def test_allowed_actions() -> None:
    assert allowed_actions(JobStatus.PENDING) == {
        JobAction.UPDATE, JobAction.DELETE, JobAction.REVIEW_APPROVE, JobAction.REVIEW_REJECT,
    }
    assert allowed_actions(JobStatus.JOB_END) == set()
    assert allowed_actions(JobStatus.FINAL_PAID) == {JobAction.CLOSE, JobAction.DELIVER_FINAL}


# ---------------------------------------------------------------------------
# Derived values
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("status,expected", [
    (JobStatus.PENDING, PaymentStatus.NONE),
    (JobStatus.APPROVED, PaymentStatus.DEPOSIT_PENDING),
    (JobStatus.REVISION_IN_PROGRESS, PaymentStatus.DEPOSIT_PAID),
    (JobStatus.APPROVED_BY_CLIENT, PaymentStatus.FINAL_PENDING),
    (JobStatus.JOB_END, PaymentStatus.FINAL_PAID),
])
def test_payment_status_derivation(status: JobStatus, expected: PaymentStatus) -> None:
    assert derive_payment_status(status) == expected


def test_payment_status_covers_every_status() -> None:
    covered = [s for p in PaymentStatus for s in statuses_with_payment_status(p)]
    assert sorted(covered, key=lambda s: s.value) == sorted(JobStatus, key=lambda s: s.value)


@pytest.mark.parametrize("price,deposit", [
    ("100.00", "50.00"),
    ("100.01", "50.01"),
    ("0.01", "0.01"),
    ("99.99", "50.00"),
    ("1234.57", "617.29"),
])
def test_derive_deposit(price: str, deposit: str) -> None:
    assert derive_deposit(Decimal(price)) == Decimal(deposit)


def test_revision_state_consistency() -> None:
    requested = [{"revision_id": "r1", "status": "requested"}]
    completed = [{"revision_id": "r1", "status": "completed"}]
    approved = [{"revision_id": "r1", "status": "approved"}]

    assert revision_state_consistent(JobStatus.REVISION_REQUESTED, requested)
    assert revision_state_consistent(JobStatus.REVISION_COMPLETED, completed)
    assert revision_state_consistent(JobStatus.APPROVED_BY_CLIENT, approved)
    assert revision_state_consistent(JobStatus.COMPLETED, [])

    assert not revision_state_consistent(JobStatus.REVISION_REQUESTED, [])
    assert not revision_state_consistent(JobStatus.REVISION_IN_PROGRESS, requested)
    assert not revision_state_consistent(JobStatus.FINAL_PAID, completed)


def _job_payload(status: str, payment_status: str) -> dict:
    now = datetime.now(UTC)
    deliverable = {"name": "f", "url": "u", "mime_type": "image/png", "uploaded_at": now}
    return {
        "job_id": "00000000-0000-0000-0000-000000000001",
        "title": "Design a logo",
        "description": "x" * 20,
        "category": "design",
        "skills": [],
        "visibility": "public",
        "attachments": [],
        "deadline": now + timedelta(days=1),
        "client_id": "00000000-0000-0000-0000-000000000002",
        "freelancer_id": None,
        "status": status,
        "payment_status": payment_status,
        "price": None,
        "deposit_amount": None,
        "deposit_paid_at": None,
        "final_paid_at": None,
        "completed_at": None,
        "client_approved_at": None,
        "assigned_at": None,
        "admin_feedback": None,
        "client_feedback": None,
        "freelancer_note": None,
        "admin_note": None,
        "deliverables": [
            {**deliverable, "is_watermarked": True},
            {**deliverable, "is_watermarked": False},
        ],
        "revisions": [],
        "revisions_remaining": 2,
        "client_approved": False,
        "created_at": now,
        "updated_at": now,
    }


def test_unwatermarked_files_hidden_before_final_payment() -> None:
    response = JobResponse.model_validate(_job_payload("approved_by_client", "final_pending"))
    assert [d.is_watermarked for d in response.deliverables] == [True]

    paid = JobResponse.model_validate(_job_payload("final_paid", "final_paid"))
    assert len(paid.deliverables) == 2


# ---------------------------------------------------------------------------
# Transition closure over HTTP
# ---------------------------------------------------------------------------

async def _attempt(client: AsyncClient, cast: Cast, job: dict, action: JobAction):  # type: ignore[no-untyped-def]
    job_id = job["job_id"]
    revision_id = job["revisions"][-1]["revision_id"] if job["revisions"] else "none"
    card = {"payment_method": "card"}
    c, f, a = cast.client.auth, cast.contributor.auth, cast.admin.auth

    if action == JobAction.UPDATE:
        return await client.patch(f"/jobs/{job_id}", json={"title": "A brand new title"}, auth=c)
    if action == JobAction.DELETE:
        return await client.delete(f"/jobs/{job_id}", auth=c)
    if action == JobAction.REVIEW_APPROVE:
        return await client.post(
            f"/admin/jobs/{job_id}/review", json={"status": "approved", "price": "10.00"}, auth=a
        )
    if action == JobAction.REVIEW_REJECT:
        return await client.post(
            f"/admin/jobs/{job_id}/review", json={"status": "rejected", "admin_feedback": "no"}, auth=a
        )
    if action == JobAction.ACCEPT_OFFER:
        return await client.post(f"/jobs/{job_id}/accept-offer", auth=c)
    if action == JobAction.PAY_DEPOSIT:
        return await client.post(f"/jobs/{job_id}/pay-deposit", json=card, auth=c)
    if action == JobAction.APPLY:
        return await client.post(f"/jobs/{job_id}/apply", auth=f)
    if action == JobAction.SUBMIT_WORK:
        return await client.post(f"/jobs/{job_id}/submit", files=upload_files(), auth=f)
    if action == JobAction.CLIENT_APPROVE:
        return await client.post(f"/jobs/{job_id}/review", json={"action": "approve"}, auth=c)
    if action == JobAction.REQUEST_REVISION:
        return await client.post(f"/jobs/{job_id}/review", json={"action": "request_revision"}, auth=c)
    if action == JobAction.START_REVISION:
        return await client.post(f"/jobs/{job_id}/revisions/{revision_id}/start", auth=f)
    if action == JobAction.SUBMIT_REVISION:
        return await client.post(
            f"/jobs/{job_id}/revisions/{revision_id}/submit", files=upload_files(), auth=f
        )
    if action == JobAction.PAY_FINAL:
        return await client.post(f"/jobs/{job_id}/pay-final", json=card, auth=c)
    if action == JobAction.CLOSE:
        return await client.post(f"/jobs/{job_id}/no-revision-required", auth=c)
    if action == JobAction.DELIVER:
        return await client.post(f"/admin/jobs/{job_id}/deliver", files=upload_files(), auth=a)
    if action == JobAction.DELIVER_FINAL:
        return await client.post(f"/admin/jobs/{job_id}/deliver-final", files=upload_files(), auth=a)
    raise AssertionError(f"Unhandled action {action}")


@pytest.mark.asyncio
@pytest.mark.parametrize("status", ALL_STATUSES)
async def test_transition_closure(client: AsyncClient, status: str) -> None:
    """Every action not allowed from ``status`` is refused and leaves the job unchanged."""
    cast = await make_cast(client)
    job = await drive_to(client, cast, status)
    before = (await client.get(f"/jobs/{job['job_id']}", auth=cast.admin.auth)).json()["data"]

    for action, transition in TRANSITIONS.items():
        if JobStatus(status) in transition.sources:
            continue
        resp = await _attempt(client, cast, before, action)
        if action in FREELANCER_ACTIONS and status in UNASSIGNED_STATUSES:
            # Nobody is assigned yet, so the ownership check fires first
            assert resp.status_code == 403, (action, resp.text)
        else:
            assert resp.status_code == 400, (action, resp.text)
            assert resp.json()["error"] == "invalid_state", (action, resp.text)

    after = (await client.get(f"/jobs/{job['job_id']}", auth=cast.admin.auth)).json()["data"]
    assert after == before
