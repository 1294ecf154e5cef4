"""
Tenant-scoped query helpers.

Every read of tenant-owned rows goes through these helpers instead of
Model.query.get(pk) or db.session.get(Model, pk). Direct .get() calls
bypass tenant isolation.

Two entry points:

    # Compile a GuardedQuery (from SecureQueryGuard.secure) into a select
    stmt = select_for(ContentItem, guarded)
    rows = db.session.execute(stmt).scalars().all()

    # Fetch one row by PK inside an organization
    item = get_scoped(ContentItem, item_id, organization_id=ctx.organization_id)

Filter fields in a guarded intent map directly to column names on the
model. An unknown field raises SecurityError at compile time so that a
typo can never degrade into a silently unfiltered query.
"""

import logging
from collections.abc import Mapping

from sqlalchemy import and_, exists, or_, select

from contentflow.core.exceptions import NotFoundError, SecurityError
from contentflow.models import db
from contentflow.models.auth import OrganizationMembership
from contentflow.services.query_guard import TENANT_FIELD, GuardedQuery

logger = logging.getLogger(__name__)


def _column(model, field: str):
    if field not in model.__table__.columns:
        raise SecurityError(
            "unknown filter field",
            details={"model": model.__name__, "field": field},
        )
    return getattr(model, field)


def _conditions(model, where: Mapping) -> list:
    conds = []
    for field, value in where.items():
        if field == "OR":
            branches = [and_(*_conditions(model, branch)) for branch in value]
            if branches:
                conds.append(or_(*branches))
            continue
        col = _column(model, field)
        if isinstance(value, Mapping):
            if "in" in value:
                conds.append(col.in_(list(value["in"])))
            elif "not" in value:
                conds.append(col != value["not"])
            else:
                raise SecurityError(
                    "unsupported filter operator",
                    details={"model": model.__name__, "field": field},
                )
        elif value is None:
            conds.append(col.is_(None))
        else:
            conds.append(col == value)
    return conds


def _order_by(model, order_by) -> list:
    if not order_by:
        return []
    fields = [order_by] if isinstance(order_by, str) else list(order_by)
    clauses = []
    for raw in fields:
        desc = raw.startswith("-")
        col = _column(model, raw.lstrip("-"))
        clauses.append(col.desc() if desc else col.asc())
    return clauses


def select_for(model, guarded: GuardedQuery):
    """Compile a GuardedQuery into a SQLAlchemy select for *model*.

    Security: refuses anything that is not a GuardedQuery, and for
    non-bypassed queries re-asserts that the tenant filter is present and
    that the model actually carries an organization_id column.

    Raises:
        SecurityError: unguarded input, missing/mismatched tenant filter,
            model without a tenant column, unknown filter field.
    """
    if not isinstance(guarded, GuardedQuery):
        raise SecurityError("unguarded query", details={"model": model.__name__})

    where = guarded.where
    if not guarded.bypassed:
        if TENANT_FIELD not in model.__table__.columns:
            raise SecurityError(
                "model is not tenant-scoped",
                details={"model": model.__name__},
            )
        if not guarded.organization_id or where.get(TENANT_FIELD) != guarded.organization_id:
            raise SecurityError("missing tenant filter", details={"model": model.__name__})

    stmt = select(model)
    conds = _conditions(model, where)
    if conds:
        stmt = stmt.where(*conds)

    if guarded.active_member_id is not None:
        stmt = stmt.where(
            exists(
                select(OrganizationMembership.id).where(
                    OrganizationMembership.organization_id == model.organization_id,
                    OrganizationMembership.user_id == guarded.active_member_id,
                    OrganizationMembership.is_active.is_(True),
                )
            )
        )

    order = _order_by(model, guarded.query.get("order_by"))
    if order:
        stmt = stmt.order_by(*order)
    if guarded.query.get("skip"):
        stmt = stmt.offset(int(guarded.query["skip"]))
    if guarded.query.get("take"):
        stmt = stmt.limit(int(guarded.query["take"]))
    return stmt


def get_scoped(model, pk, *, organization_id: str | None):
    """Fetch a single entity by PK with a mandatory organization filter.

    Cross-tenant access is indistinguishable from a missing record: both
    raise NotFoundError → HTTP 404.

    Raises:
        ValueError: organization_id not provided, or the model has no
                    organization_id column (would be an unscoped lookup).
        NotFoundError: entity missing OR owned by another organization.
    """
    if not organization_id:
        raise ValueError(
            f"{model.__name__} id={pk} requires an organization_id scope. "
            "Unscoped lookups are forbidden, they bypass tenant isolation."
        )
    if TENANT_FIELD not in model.__table__.columns:
        raise ValueError(
            f"{model.__name__} has no organization_id column. "
            "Refusing to perform an unscoped lookup."
        )

    stmt = select(model).where(model.id == pk, model.organization_id == organization_id)
    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in organization %s",
            model.__name__, pk, organization_id,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return result


def get_scoped_or_none(model, pk, *, organization_id: str | None):
    """Same as get_scoped but returns None instead of raising NotFoundError.

    Still raises ValueError for a missing scope.
    """
    try:
        return get_scoped(model, pk, organization_id=organization_id)
    except NotFoundError:
        return None
