"""
Content domain models — the three tenant-owned work item kinds.

    Idea         → a pitch, enters the pipeline at Stage=IDEA
    ContentDraft → a draft produced from an idea
    ContentItem  → the unified content record that travels through
                   review, approval, publication and delivery

All three share the TenantModel shape (organization_id, current_stage,
current_status, created_by_id, assigned_to_id) so the workflow engine
and the ownership validator can treat them uniformly.
"""

import uuid

from contentflow.models import db
from contentflow.models.base import TenantModel


def _uuid() -> str:
    return str(uuid.uuid4())


class Idea(TenantModel):
    __tablename__ = "ideas"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    description = db.Column(db.Text)

    def __repr__(self):
        return f"<Idea {self.id} {self.current_stage}/{self.current_status}>"


class ContentDraft(TenantModel):
    __tablename__ = "content_drafts"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    idea_id = db.Column(
        db.String(36), db.ForeignKey("ideas.id", ondelete="SET NULL"), nullable=True
    )
    body = db.Column(db.Text)

    def __repr__(self):
        return f"<ContentDraft {self.id} {self.current_stage}/{self.current_status}>"


class ContentItem(TenantModel):
    __tablename__ = "content_items"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    content_type = db.Column(db.String(30), default="SOCIAL_POST")
    body = db.Column(db.Text)

    __table_args__ = (
        db.Index("ix_content_items_org_stage", "organization_id", "current_stage"),
    )

    def __repr__(self):
        return f"<ContentItem {self.id} {self.current_stage}/{self.current_status}>"
