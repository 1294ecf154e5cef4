"""
TenantModel — Abstract base class for tenant-owned work items.

All models that hold organization data inherit from TenantModel instead
of db.Model directly. This adds:
  - organization_id FK column with index (set once at creation)
  - the workflow position columns (current_stage / current_status)
  - creator / assignee references
  - a before_update guard that refuses to re-home a row to another tenant
"""

from datetime import datetime, timezone

from sqlalchemy import event, inspect
from sqlalchemy.orm import declared_attr

from contentflow.core.exceptions import SecurityError
from contentflow.models import db


class TenantModel(db.Model):
    """Abstract base for tenant-scoped tables."""
    __abstract__ = True

    # FK columns on an abstract base must be produced per subclass.
    @declared_attr
    def organization_id(cls):
        return db.Column(
            db.String(36),
            db.ForeignKey("organizations.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )

    @declared_attr
    def created_by_id(cls):
        return db.Column(
            db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        )

    @declared_attr
    def assigned_to_id(cls):
        return db.Column(
            db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True
        )

    title = db.Column(db.String(300), nullable=False)
    current_stage = db.Column(db.String(30), nullable=False, default="IDEA")
    current_status = db.Column(db.String(30), nullable=False, default="PENDING")
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "title": self.title,
            "current_stage": self.current_stage,
            "current_status": self.current_status,
            "created_by_id": self.created_by_id,
            "assigned_to_id": self.assigned_to_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@event.listens_for(TenantModel, "before_update", propagate=True)
def _forbid_tenant_change(mapper, connection, target):
    """organization_id is written once; any later change is refused."""
    history = inspect(target).attrs.organization_id.history
    if history.deleted and history.added and history.deleted[0] != history.added[0]:
        raise SecurityError(
            "organization_id is immutable",
            details={
                "model": type(target).__name__,
                "id": getattr(target, "id", None),
                "old": history.deleted[0],
                "new": history.added[0],
            },
        )
