"""Role capability table served to the presentation layer.

The frontend decides which dashboards and actions to show from this table;
the API enforces the same rules independently in each service.
"""

from app.models.user import UserRole

ROLE_CAPABILITIES: dict[UserRole, tuple[str, ...]] = {
    UserRole.CLIENT: (
        "jobs.post",
        "jobs.edit_pending",
        "jobs.delete_unreviewed",
        "payments.deposit",
        "payments.final",
        "work.review",
        "work.request_revision",
        "dashboard.client",
    ),
    UserRole.CONTRIBUTOR: (
        "jobs.browse_available",
        "jobs.apply",
        "work.submit",
        "revisions.work",
        "dashboard.contributor",
    ),
    UserRole.ADMIN: (
        "jobs.review",
        "jobs.manage",
        "work.deliver",
        "work.deliver_final",
        "dashboard.admin",
    ),
}


def capabilities_for(role: UserRole) -> list[str]:
    return list(ROLE_CAPABILITIES[role])
