"""
Identity/Tenant Directory — read-only membership lookups.

The security context resolver and the ownership validator depend on the
``MembershipDirectory`` interface rather than on the ORM, so the directory
can be swapped (or faked in tests) without touching authorization code.
``SqlMembershipDirectory`` is the production implementation backed by the
``organization_memberships`` table.

A membership counts as *active* only when both the membership row and
its organization are active.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from abc import ABC, abstractmethod

from sqlalchemy import select

from contentflow.models import db
from contentflow.models.auth import Organization, OrganizationMembership

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Membership:
    """Immutable snapshot of one user ↔ organization membership."""

    user_id: str
    organization_id: str
    organization_role: str
    permissions: frozenset = field(default_factory=frozenset)
    is_active: bool = True
    joined_at: datetime | None = None


class MembershipDirectory(ABC):
    """Read-only view of the membership table."""

    @abstractmethod
    def get_membership(self, user_id: str, organization_id: str) -> Membership | None:
        """Membership of *user_id* in *organization_id*, active or not."""

    @abstractmethod
    def list_active_memberships(self, user_id: str) -> list[Membership]:
        """Active memberships in a stable order; the first is the default tenant."""

    @abstractmethod
    def organization_exists(self, organization_id: str) -> bool:
        """Whether the organization row exists."""


def _to_membership(row: OrganizationMembership, org_active: bool) -> Membership:
    perms = row.permissions if isinstance(row.permissions, list) else []
    return Membership(
        user_id=row.user_id,
        organization_id=row.organization_id,
        organization_role=row.role,
        permissions=frozenset(p for p in perms if isinstance(p, str)),
        is_active=bool(row.is_active) and bool(org_active),
        joined_at=row.joined_at,
    )


class SqlMembershipDirectory(MembershipDirectory):
    """Membership lookups through the Flask-SQLAlchemy session."""

    def get_membership(self, user_id: str, organization_id: str) -> Membership | None:
        stmt = (
            select(OrganizationMembership, Organization.is_active)
            .join(Organization, Organization.id == OrganizationMembership.organization_id)
            .where(
                OrganizationMembership.user_id == user_id,
                OrganizationMembership.organization_id == organization_id,
            )
        )
        row = db.session.execute(stmt).first()
        if row is None:
            return None
        return _to_membership(row[0], row[1])

    def list_active_memberships(self, user_id: str) -> list[Membership]:
        """Active memberships, most recently joined first (stable order)."""
        stmt = (
            select(OrganizationMembership)
            .join(Organization, Organization.id == OrganizationMembership.organization_id)
            .where(
                OrganizationMembership.user_id == user_id,
                OrganizationMembership.is_active.is_(True),
                Organization.is_active.is_(True),
            )
            .order_by(
                OrganizationMembership.joined_at.desc(),
                OrganizationMembership.organization_id.asc(),
            )
        )
        rows = db.session.execute(stmt).scalars().all()
        return [_to_membership(r, True) for r in rows]

    def organization_exists(self, organization_id: str) -> bool:
        stmt = select(Organization.id).where(Organization.id == organization_id)
        return db.session.execute(stmt).scalar_one_or_none() is not None
