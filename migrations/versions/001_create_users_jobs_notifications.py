"""Create users, jobs and notifications tables.

Revision ID: 001
Revises:
Create Date: 2026-10-19
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("user_id", sa.Uuid(), primary_key=True),
        sa.Column("public_key", sa.String(128), nullable=False, unique=True),
        sa.Column("display_name", sa.String(64), nullable=False),
        sa.Column("email", sa.String(254), nullable=False, unique=True),
        sa.Column(
            "role",
            sa.Enum("client", "contributor", "admin", name="userrole"),
            nullable=False,
            server_default="client",
        ),
        sa.Column(
            "status",
            sa.Enum("active", "suspended", name="userstatus"),
            nullable=False,
            server_default="active",
        ),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "jobs",
        sa.Column("job_id", sa.Uuid(), primary_key=True),
        sa.Column("title", sa.String(100), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("category", sa.String(64), nullable=False),
        sa.Column("skills", JSONB, nullable=False, server_default="[]"),
        sa.Column(
            "visibility",
            sa.Enum("public", "private", "invite_only", name="visibility"),
            nullable=False,
            server_default="public",
        ),
        sa.Column("attachments", JSONB, nullable=False, server_default="[]"),
        sa.Column("deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("client_id", sa.Uuid(), sa.ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=False),
        sa.Column("freelancer_id", sa.Uuid(), sa.ForeignKey("users.user_id", ondelete="RESTRICT"), nullable=True),
        sa.Column(
            "status",
            sa.Enum(
                "pending", "approved", "rejected", "deposit_paid", "in_progress",
                "completed", "final_paid", "revision_requested", "revision_in_progress",
                "revision_completed", "approved_by_client", "job_end",
                name="jobstatus",
            ),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("price", sa.Numeric(12, 2), nullable=True),
        sa.Column("deposit_amount", sa.Numeric(12, 2), nullable=True),
        sa.Column("deposit_paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("final_paid_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("client_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("admin_feedback", sa.Text(), nullable=True),
        sa.Column("client_feedback", sa.Text(), nullable=True),
        sa.Column("freelancer_note", sa.Text(), nullable=True),
        sa.Column("admin_note", sa.Text(), nullable=True),
        sa.Column("deliverables", JSONB, nullable=False, server_default="[]"),
        sa.Column("revisions", JSONB, nullable=False, server_default="[]"),
        sa.Column("revisions_remaining", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("client_approved", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("revisions_remaining >= 0", name="ck_jobs_revisions_remaining_non_negative"),
    )
    op.create_index("ix_jobs_category", "jobs", ["category"])
    op.create_index("ix_jobs_client_id", "jobs", ["client_id"])
    op.create_index("ix_jobs_freelancer_id", "jobs", ["freelancer_id"])
    op.create_index("ix_jobs_status", "jobs", ["status"])

    op.create_table(
        "notifications",
        sa.Column("notification_id", sa.Uuid(), primary_key=True),
        sa.Column("recipient_user_id", sa.Uuid(), nullable=False),
        sa.Column("job_id", sa.Uuid(), nullable=True),
        sa.Column("event_type", sa.String(64), nullable=False),
        sa.Column("payload", JSONB, nullable=False),
        sa.Column(
            "status",
            sa.Enum("pending", "delivered", "failed", name="notificationstatus"),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_notifications_recipient_user_id", "notifications", ["recipient_user_id"])


def downgrade() -> None:
    op.drop_table("notifications")
    op.drop_table("jobs")
    op.drop_table("users")
    op.execute("DROP TYPE IF EXISTS notificationstatus")
    op.execute("DROP TYPE IF EXISTS jobstatus")
    op.execute("DROP TYPE IF EXISTS visibility")
    op.execute("DROP TYPE IF EXISTS userstatus")
    op.execute("DROP TYPE IF EXISTS userrole")
