"""
Audit domain model.

Models:
    - AuditLog: immutable, append-only trail of authorization decisions,
      super-admin bypasses and workflow transitions.
"""

import json
from datetime import datetime, timezone

from contentflow.models import db

# ── Constants ────────────────────────────────────────────────────────────────

AUDIT_ENTITY_TYPES = {
    "idea", "content_draft", "content_item",
    "security_context", "query",
}

AUDIT_ACTIONS = {
    # Tenant resolution
    "context.resolved",
    "context.denied",
    "context.super_admin_override",
    # Query guard
    "query.guarded",
    "query.super_admin_bypass",
    "query.rejected",
    # Ownership
    "ownership.denied",
    # Route permissions
    "permission.denied",
    # Workflow
    "workflow.transition",
    "workflow.rejected",
    "workflow.auto_transition",
    # Generic
    "create",
    "database_access",
}


class AuditLog(db.Model):
    """
    Immutable audit trail for every authorization decision.

    One row per decision. ``diff_json`` carries the decision payload:
    old→new workflow state, the raw query shape of a bypass, or the
    reason a request was denied.
    """

    __tablename__ = "audit_logs"
    __table_args__ = (
        db.Index("idx_audit_entity", "entity_type", "entity_id"),
        db.Index("idx_audit_org", "organization_id"),
        db.Index("idx_audit_actor", "actor"),
        db.Index("idx_audit_action", "action"),
        db.Index("idx_audit_ts", "timestamp"),
    )

    id = db.Column(db.Integer, primary_key=True)
    # No FK: denied decisions may reference a tenant id that does not exist.
    organization_id = db.Column(db.String(36), nullable=True)

    entity_type = db.Column(
        db.String(30), nullable=False,
        comment="content_item | idea | content_draft | query | security_context",
    )
    entity_id = db.Column(
        db.String(36), nullable=False,
        comment="PK of the referenced entity, or '-' for decisions without one",
    )

    action = db.Column(
        db.String(60), nullable=False,
        comment="workflow.transition | query.super_admin_bypass | …",
    )
    actor = db.Column(
        db.String(150), nullable=False, default="system",
        comment="user id of the acting identity, or 'system'",
    )

    diff_json = db.Column(db.Text, default="{}")

    timestamp = db.Column(
        db.DateTime(timezone=True), nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Helpers ──────────────────────────────────────────────────────────

    @property
    def diff(self) -> dict:
        """Deserialise *diff_json* to a Python dict."""
        try:
            return json.loads(self.diff_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "action": self.action,
            "actor": self.actor,
            "diff": self.diff,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }

    def __repr__(self):
        return f"<AuditLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"


# ── Convenience writer ───────────────────────────────────────────────────────

def write_audit(
    *,
    entity_type: str,
    entity_id: str | None,
    action: str,
    actor: str | None = "system",
    organization_id: str | None = None,
    diff: dict | None = None,
) -> AuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) AuditLog instance.
    """
    log = AuditLog(
        organization_id=organization_id,
        entity_type=entity_type,
        entity_id=str(entity_id) if entity_id is not None else "-",
        action=action,
        actor=actor or "system",
        diff_json=json.dumps(diff or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log
