"""
Work Items Blueprint — tenant-scoped ideas, drafts and content items.

Routes (kind ∈ idea | draft | content_item, aliases: ideas, drafts, content):
  GET    /me/context                                   – resolved security context
  POST   /work-items/<kind>                            – create (IDEA / PENDING)
  GET    /work-items/<kind>                            – guarded, paginated list
  GET    /work-items/<kind>/progress                   – delivery progress
  GET    /work-items/<kind>/<item_id>                  – fetch (ownership-checked)
  GET    /work-items/<kind>/<item_id>/transitions      – legal actions for caller
  POST   /work-items/<kind>/<item_id>/transition       – execute an action
  POST   /work-items/<kind>/<item_id>/auto-transition  – apply APPROVED → PUBLISHED

Every request first resolves the SecurityContext and charges the caller's
per-identity rate budget. Create, transition and auto-transition also
require a MEMBER-or-stronger membership; create additionally needs the
platform capability create_content. Core exceptions are mapped to JSON errors here,
once. Audit rows written while denying a request are committed with the
error response.
"""

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from contentflow.core.container import get_core
from contentflow.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    IllegalTransition,
    NoActiveOrganization,
    NotFoundError,
    RateLimitExceeded,
    SecurityError,
    ValidationError,
)
from contentflow.middleware.permission_required import require_permission
from contentflow.middleware.rate_limiter import enforce_identity_limit
from contentflow.middleware.security_context import get_security_context
from contentflow.models import db
from contentflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

work_items_bp = Blueprint("work_items", __name__, url_prefix="/api/v1")


# ── Request guard ────────────────────────────────────────────────────────────


@work_items_bp.before_request
def _resolve_context():
    ctx = get_security_context()
    enforce_identity_limit(ctx)


# ── Error handlers ───────────────────────────────────────────────────────────


def _commit_audit_trail():
    """Keep audit rows recorded for a denied request."""
    try:
        db.session.commit()
    except SQLAlchemyError:
        logger.exception("Could not persist audit rows for endpoint=%s", request.endpoint)
        db.session.rollback()


@work_items_bp.errorhandler(AuthenticationError)
def _handle_unauthenticated(error: AuthenticationError):
    return api_error(E.UNAUTHENTICATED, str(error))


@work_items_bp.errorhandler(NoActiveOrganization)
def _handle_no_org(error: NoActiveOrganization):
    _commit_audit_trail()
    return api_error(E.TENANT_NO_ACTIVE_ORG, "No active organization found")


@work_items_bp.errorhandler(AuthorizationError)
def _handle_forbidden(error: AuthorizationError):
    _commit_audit_trail()
    return api_error(E.FORBIDDEN, str(error))


@work_items_bp.errorhandler(IllegalTransition)
def _handle_illegal_transition(error: IllegalTransition):
    _commit_audit_trail()
    return api_error(E.ILLEGAL_TRANSITION, str(error), details=error.to_dict())


@work_items_bp.errorhandler(SecurityError)
def _handle_security(error: SecurityError):
    _commit_audit_trail()
    logger.warning("Security error on %s: %s %s", request.endpoint, error, error.details)
    return api_error(E.SECURITY, str(error))


@work_items_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    _commit_audit_trail()
    return api_error(E.NOT_FOUND, f"{error.resource} not found")


@work_items_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    db.session.rollback()
    return api_error(E.VALIDATION_INVALID, str(error), details=error.details)


@work_items_bp.errorhandler(RateLimitExceeded)
def _handle_rate_limited(error: RateLimitExceeded):
    body, status = api_error(E.RATE_LIMITED, "Too many requests")
    if error.retry_after:
        body.headers["Retry-After"] = str(int(error.retry_after) + 1)
    return body, status


# ═════════════════════════════════════════════════════════════════════════════
# CONTEXT
# ═════════════════════════════════════════════════════════════════════════════


@work_items_bp.route("/me/context", methods=["GET"])
def my_context():
    """Return the SecurityContext resolved for this request."""
    return jsonify(get_security_context().to_dict())


# ═════════════════════════════════════════════════════════════════════════════
# WORK ITEMS
# ═════════════════════════════════════════════════════════════════════════════


@work_items_bp.route("/work-items/<kind>", methods=["POST"])
@require_permission("create_content")
def create_work_item(kind):
    """Create a work item in the caller's organization.

    Body: { title, description?, body?, idea_id?, content_type?, assigned_to_id? }
    """
    data = request.get_json(silent=True) or {}
    item = get_core().work_items.create(kind, get_security_context(), data)
    db.session.commit()
    return jsonify(item.to_dict()), 201


@work_items_bp.route("/work-items/<kind>", methods=["GET"])
def list_work_items(kind):
    """List work items. Query: page, limit, current_stage, current_status, mine."""
    result = get_core().work_items.list_items(
        kind,
        get_security_context(),
        filters=request.args,
        page=request.args.get("page", 1),
        limit=request.args.get("limit", 20),
        mine=request.args.get("mine") == "true",
    )
    _commit_audit_trail()
    return jsonify(result)


@work_items_bp.route("/work-items/<kind>/progress", methods=["GET"])
def work_item_progress(kind):
    result = get_core().work_items.progress(kind, get_security_context())
    _commit_audit_trail()
    return jsonify(result)


@work_items_bp.route("/work-items/<kind>/<item_id>", methods=["GET"])
def get_work_item(kind, item_id):
    item = get_core().work_items.get(kind, item_id, get_security_context())
    return jsonify(item.to_dict())


@work_items_bp.route("/work-items/<kind>/<item_id>/transitions", methods=["GET"])
def list_transitions(kind, item_id):
    """Actions the caller's role may take from the item's current state."""
    transitions = get_core().work_items.available_transitions(
        kind, item_id, get_security_context()
    )
    return jsonify({"transitions": transitions})


@work_items_bp.route("/work-items/<kind>/<item_id>/transition", methods=["POST"])
@require_permission()
def transition_work_item(kind, item_id):
    """Execute a workflow action.

    Body: { action, to_stage?, to_status? }
    """
    data = request.get_json(silent=True) or {}
    action = (data.get("action") or "").strip()
    if not action:
        return api_error(E.VALIDATION_REQUIRED, "action is required")

    result = get_core().work_items.transition(
        kind,
        item_id,
        action,
        get_security_context(),
        to_stage=data.get("to_stage"),
        to_status=data.get("to_status"),
    )
    db.session.commit()
    return jsonify(result)


@work_items_bp.route("/work-items/<kind>/<item_id>/auto-transition", methods=["POST"])
@require_permission()
def auto_transition_work_item(kind, item_id):
    """Apply the pending APPROVED → PUBLISHED follow-on move."""
    result = get_core().work_items.apply_auto_transition(kind, item_id, get_security_context())
    db.session.commit()
    return jsonify(result)
