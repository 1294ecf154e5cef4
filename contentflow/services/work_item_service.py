"""
Work item service — create, list and move work items through the workflow.

Ties the core together in the order every mutation follows:

    SecurityContext (resolved by the caller)
      → ContentOwnershipValidator      does the item belong to ctx's tenant?
      → WorkflowEngine.execute         is the move legal for this role?
      → SecureQueryGuard / select_for  tenant-filtered read
      → write_audit                    persist the decision

The service flushes; the caller (blueprint) owns the commit.

Usage:
    svc = WorkItemService(guard=..., ownership=..., engine=..., audit=...)
    result = svc.transition("content_item", item_id, "approve_content", ctx)
"""

import logging

from contentflow.core.exceptions import (
    IllegalTransition,
    SecurityError,
    ValidationError,
)
from contentflow.models import db
from contentflow.models.audit import write_audit
from contentflow.services.helpers.scoped_queries import select_for
from contentflow.services.ownership import (
    ContentOwnershipValidator,
    ResourceKind,
    entity_type_for,
    model_for,
)
from contentflow.services.query_guard import (
    DEFAULT_MAX_PAGE_SIZE,
    TENANT_FILTER_KEYS,
    SecureQueryGuard,
    secure_pagination,
    user_org_filter,
)
from contentflow.services.workflow import Stage, Status, WorkflowEngine

logger = logging.getLogger(__name__)

# Filters a list request may pass straight through to the guarded intent.
LIST_FILTER_FIELDS = ("current_stage", "current_status", "assigned_to_id", "created_by_id")

_STAGE_VALUES = frozenset(s.value for s in Stage)
_STATUS_VALUES = frozenset(s.value for s in Status)


def _check_state(value, allowed, field_name) -> None:
    if value is None:
        return
    if not isinstance(value, str) or value.strip().upper() not in allowed:
        raise ValidationError(
            f"Unknown {field_name}: {value}",
            details={field_name: "must be one of " + ", ".join(sorted(allowed))},
        )


class WorkItemService:
    """Tenant-scoped work item operations for one application."""

    def __init__(
        self,
        *,
        guard: SecureQueryGuard,
        ownership: ContentOwnershipValidator,
        engine: WorkflowEngine,
        audit=None,
        max_page_size: int = DEFAULT_MAX_PAGE_SIZE,
    ):
        self.guard = guard
        self.ownership = ownership
        self.engine = engine
        self.audit = audit
        self.max_page_size = max_page_size

    # ── Create ───────────────────────────────────────────────────────────

    def create(self, kind, ctx, data: dict):
        """
        Create a work item at Stage=IDEA / Status=PENDING in ctx's tenant.

        Raises:
            ValidationError: title missing.
            SecurityError: payload names a different organization.
        """
        kind = ResourceKind.parse(kind)
        model = model_for(kind)
        data = data or {}

        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("title is required", details={"title": "required"})
        if not ctx.organization_id:
            raise SecurityError("missing tenant filter")
        for key in TENANT_FILTER_KEYS:
            if data.get(key) not in (None, ctx.organization_id):
                raise SecurityError(
                    "conflicting tenant filter",
                    details={"requested": data.get(key), "context": ctx.organization_id},
                )

        item = model(
            organization_id=ctx.organization_id,
            title=title,
            current_stage=Stage.IDEA.value,
            current_status=Status.PENDING.value,
            created_by_id=ctx.user_id,
            assigned_to_id=data.get("assigned_to_id"),
        )
        if kind is ResourceKind.IDEA:
            item.description = data.get("description")
        elif kind is ResourceKind.DRAFT:
            item.body = data.get("body")
            item.idea_id = data.get("idea_id")
        else:
            item.body = data.get("body")
            if data.get("content_type"):
                item.content_type = data["content_type"]

        db.session.add(item)
        db.session.flush()

        write_audit(
            entity_type=entity_type_for(kind),
            entity_id=item.id,
            action="create",
            actor=ctx.user_id,
            organization_id=ctx.organization_id,
            diff={"title": title, "stage": item.current_stage, "status": item.current_status},
        )
        logger.info("Created %s %s in org %s", kind.value, item.id, ctx.organization_id)
        return item

    # ── Read ─────────────────────────────────────────────────────────────

    def list_items(self, kind, ctx, *, filters=None, page=1, limit=20, order_by="-created_at", mine=False) -> dict:
        """Guarded, paginated listing. Returns {"items": [...], "pagination": {...}}."""
        model = model_for(kind)
        where = {}
        if mine:
            where.update(user_org_filter(ctx.user_id, ctx.organization_id))
        for field_name in LIST_FILTER_FIELDS:
            value = (filters or {}).get(field_name)
            if value:
                where[field_name] = value

        paging = secure_pagination(page, limit, self.max_page_size)
        intent = {"where": where, "order_by": order_by, **paging}
        guarded = self.guard.secure(intent, ctx)
        if self.audit is not None:
            self.audit.log_database_access("select", model.__tablename__, ctx, guarded.query)

        rows = db.session.execute(select_for(model, guarded)).scalars().all()
        return {
            "items": [r.to_dict() for r in rows],
            "pagination": {
                "page": paging["skip"] // paging["take"] + 1,
                "limit": paging["take"],
                "count": len(rows),
            },
        }

    def get(self, kind, item_id, ctx):
        return self.ownership.require_owned(item_id, kind, ctx)

    def available_transitions(self, kind, item_id, ctx) -> list[dict]:
        item = self.get(kind, item_id, ctx)
        return [
            t.to_dict()
            for t in self.engine.list_legal_transitions(
                item.current_stage, item.current_status, ctx.system_role
            )
        ]

    def progress(self, kind, ctx) -> dict:
        """Delivery progress over every work item of *kind* visible to ctx."""
        model = model_for(kind)
        guarded = self.guard.secure({"where": {}}, ctx)
        rows = db.session.execute(select_for(model, guarded)).scalars().all()
        return self.engine.compute_progress(rows)

    # ── Workflow ─────────────────────────────────────────────────────────

    def transition(self, kind, item_id, action: str, ctx, *, to_stage=None, to_status=None) -> dict:
        """
        Execute one workflow action on a work item.

        Omitted target dimensions are derived from the table row for
        *action*. The stored state is always the row's derived target: a
        requested pair that differs from it on either dimension is refused.
        The role checked is the caller's platform role (ctx.system_role).

        Returns:
            {"id", "kind", "action", "previous_stage", "previous_status",
             "new_stage", "new_status", "auto_transition"}

        Raises:
            NotFoundError: item missing or in another tenant.
            ValidationError: to_stage / to_status is not a known value.
            IllegalTransition: no row matches, or the role is not allowed.
        """
        _check_state(to_stage, _STAGE_VALUES, "to_stage")
        _check_state(to_status, _STATUS_VALUES, "to_status")

        kind = ResourceKind.parse(kind)
        item = self.ownership.require_owned(item_id, kind, ctx)
        prev_stage, prev_status = item.current_stage, item.current_status

        to_stage, to_status = self.engine.resolve_targets(
            prev_stage, prev_status, action, to_stage, to_status
        )
        try:
            result = self.engine.execute_exact(
                prev_stage, prev_status, to_stage, to_status, ctx.system_role, action
            )
        except IllegalTransition as exc:
            if self.audit is not None:
                self.audit.record(
                    "workflow.rejected",
                    ctx=ctx,
                    allowed=False,
                    entity_type=entity_type_for(kind),
                    entity_id=str(item.id),
                    reason="illegal_transition",
                    details=exc.to_dict(),
                )
            raise

        item.current_stage, item.current_status = self.engine.targets_for(
            result.transition, prev_stage, prev_status
        )
        db.session.flush()

        write_audit(
            entity_type=entity_type_for(kind),
            entity_id=item.id,
            action="workflow.transition",
            actor=ctx.user_id,
            organization_id=item.organization_id,
            diff={
                "action": action,
                "stage": {"old": prev_stage, "new": item.current_stage},
                "status": {"old": prev_status, "new": item.current_status},
            },
        )
        logger.info(
            "Work item %s %s: %s/%s -> %s/%s by %s",
            item.id, action, prev_stage, prev_status,
            item.current_stage, item.current_status, ctx.user_id,
        )

        return {
            "id": item.id,
            "kind": kind.value,
            "action": action,
            "previous_stage": prev_stage,
            "previous_status": prev_status,
            "new_stage": item.current_stage,
            "new_status": item.current_status,
            "auto_transition": result.auto_transition.to_dict() if result.auto_transition else None,
        }

    def apply_auto_transition(self, kind, item_id, ctx) -> dict:
        """
        Apply the APPROVED → PUBLISHED follow-on to an owned item.

        No role re-check: eligibility was established by the approving move.

        Raises:
            NotFoundError: item missing or in another tenant.
            ValidationError: the item is not eligible for an auto-transition.
        """
        kind = ResourceKind.parse(kind)
        item = self.ownership.require_owned(item_id, kind, ctx)
        auto = self.engine.auto_transition_for(item.current_stage, item.current_status)
        if auto is None:
            raise ValidationError(
                "No auto-transition available",
                details={"stage": item.current_stage, "status": item.current_status},
            )

        prev_stage, prev_status = item.current_stage, item.current_status
        item.current_stage = auto.to_stage
        item.current_status = auto.to_status
        db.session.flush()

        write_audit(
            entity_type=entity_type_for(kind),
            entity_id=item.id,
            action="workflow.auto_transition",
            actor=ctx.user_id,
            organization_id=item.organization_id,
            diff={
                "action": auto.action,
                "stage": {"old": prev_stage, "new": item.current_stage},
                "status": {"old": prev_status, "new": item.current_status},
            },
        )
        return {
            "id": item.id,
            "kind": kind.value,
            "action": auto.action,
            "previous_stage": prev_stage,
            "previous_status": prev_status,
            "new_stage": item.current_stage,
            "new_status": item.current_status,
            "auto_transition": None,
        }
