"""
Directory Models — organizations, users, organization memberships.

These tables form the Identity/Tenant Directory. The tenant-isolation core
only ever READS them; provisioning, invitations and role management are
handled by the admin screens that sit outside this package.
"""

import uuid
from datetime import datetime, timezone

from contentflow.models import db


def _uuid() -> str:
    return str(uuid.uuid4())


# ═══════════════════════════════════════════════════════════════
# 1. ORGANIZATIONS
# ═══════════════════════════════════════════════════════════════
class Organization(db.Model):
    __tablename__ = "organizations"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    slug = db.Column(db.String(100), unique=True, nullable=False)
    is_active = db.Column(db.Boolean, default=True)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    # Relationships
    memberships = db.relationship(
        "OrganizationMembership", back_populates="organization", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "slug": self.slug,
            "is_active": self.is_active,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 2. USERS
# ═══════════════════════════════════════════════════════════════
class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    email = db.Column(db.String(200), unique=True, nullable=False)
    full_name = db.Column(db.String(200))
    # Platform role used by the content workflow: CREATIVE, CLIENT, ADMIN
    role = db.Column(db.String(20), nullable=False, default="CREATIVE")
    is_super_admin = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.Index("ix_users_email", "email"),
    )

    # Relationships
    memberships = db.relationship(
        "OrganizationMembership", back_populates="user", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "is_super_admin": bool(self.is_super_admin),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# ═══════════════════════════════════════════════════════════════
# 3. ORGANIZATION_MEMBERSHIPS (User ↔ Organization, with role)
# ═══════════════════════════════════════════════════════════════
class OrganizationMembership(db.Model):
    __tablename__ = "organization_memberships"

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(
        db.String(36), db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    role = db.Column(db.String(20), nullable=False, default="MEMBER")  # OWNER … VIEWER
    permissions = db.Column(db.JSON, default=list)
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    joined_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))

    __table_args__ = (
        db.UniqueConstraint("organization_id", "user_id", name="uq_membership_org_user"),
        db.Index("ix_memberships_user_active", "user_id", "is_active"),
    )

    # Relationships
    organization = db.relationship("Organization", back_populates="memberships")
    user = db.relationship("User", back_populates="memberships")

    def to_dict(self):
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "role": self.role,
            "permissions": list(self.permissions or []),
            "is_active": self.is_active,
            "joined_at": self.joined_at.isoformat() if self.joined_at else None,
        }
