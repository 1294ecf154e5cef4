"""
Secure Query Guard — every data-access intent carries a tenant filter.

A query intent is a plain mapping, e.g.::

    {"where": {"current_stage": "DRAFT"}, "order_by": "-created_at", "take": 20}

``SecureQueryGuard.secure`` turns it into a ``GuardedQuery``:

  * non-super-admin contexts get ``organization_id = ctx.organization_id``
    merged into ``where``. A caller-supplied filter naming a DIFFERENT
    organization fails closed with ``SecurityError("conflicting tenant
    filter")``; one naming the same organization is a no-op.
  * super-admin contexts pass through unchanged, and the bypass is always
    written to the audit log together with the raw query shape. This is
    the only place in the code base where the tenant filter may be skipped.

``validate`` is a second, defence-in-depth pass. Besides re-checking the
tenant filter it screens the serialised intent for SQL-like fragments
(``union select``, ``drop table``, ``delete from``, ``update … set``). It
is a heuristic aimed at intents assembled from less-trusted input; it does
NOT replace parameterised queries, which SQLAlchemy always uses when the
guarded query is compiled by ``helpers.scoped_queries.select_for``.
"""

import copy
import json
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from contentflow.core.exceptions import SecurityError
from contentflow.services.access_audit import AccessAuditLogger, query_shape

logger = logging.getLogger(__name__)

TENANT_FIELD = "organization_id"
# camelCase alias accepted from JSON-shaped intents
TENANT_FILTER_KEYS = (TENANT_FIELD, "organizationId")

DANGEROUS_PATTERNS = (
    re.compile(r"union\s+select", re.IGNORECASE),
    re.compile(r"drop\s+table", re.IGNORECASE),
    re.compile(r"delete\s+from", re.IGNORECASE),
    re.compile(r"update\s+.*\s+set", re.IGNORECASE),
)

DEFAULT_MAX_PAGE_SIZE = 100


@dataclass(frozen=True)
class GuardedQuery:
    """A query intent proven (or explicitly exempted) to carry a tenant filter."""

    query: dict
    organization_id: str | None
    active_member_id: str | None = None
    bypassed: bool = False

    @property
    def where(self) -> dict:
        return self.query.get("where") or {}


def _nested_tenant_values(value: Any) -> list:
    """Collect tenant filter values hidden inside nested AND/OR structures."""
    found = []
    if isinstance(value, Mapping):
        for key, inner in value.items():
            if key in TENANT_FILTER_KEYS:
                found.append(inner)
            else:
                found.extend(_nested_tenant_values(inner))
    elif isinstance(value, (list, tuple)):
        for inner in value:
            found.extend(_nested_tenant_values(inner))
    return found


class SecureQueryGuard:
    """Wraps query intents with the mandatory tenant filter."""

    def __init__(self, audit: AccessAuditLogger | None = None) -> None:
        self.audit = audit or AccessAuditLogger()

    def secure(
        self,
        intent: Mapping | None,
        ctx,
        *,
        include_inactive: bool = False,
        validate: bool = True,
    ) -> GuardedQuery:
        """
        Inject the tenant filter into *intent* for *ctx*.

        Args:
            intent: Mapping with an optional ``where`` mapping.
            ctx: The request's SecurityContext.
            include_inactive: When False (default) the compiled query also
                requires the caller's membership in the owning organization
                to be active.
            validate: Run ``validate`` on the result.

        Raises:
            SecurityError: malformed intent, conflicting or missing tenant
                filter, dangerous pattern.
        """
        if intent is None:
            intent = {}
        if not isinstance(intent, Mapping):
            self._reject(ctx, "malformed query intent", intent)
        base = copy.deepcopy(dict(intent))
        where = base.get("where") or {}
        if not isinstance(where, Mapping):
            self._reject(ctx, "malformed query intent", intent)

        if ctx.is_super_admin:
            self.audit.record_bypass(ctx, intent)
            guarded = GuardedQuery(query=base, organization_id=ctx.organization_id, bypassed=True)
            if validate:
                self.validate(guarded, ctx)
            return guarded

        if not ctx.organization_id:
            self._reject(ctx, "missing tenant filter", intent)

        where = dict(where)
        for key in TENANT_FILTER_KEYS:
            if key in where and where.pop(key) != ctx.organization_id:
                self._reject(ctx, "conflicting tenant filter", intent)
        for nested in _nested_tenant_values(where):
            if nested != ctx.organization_id:
                self._reject(ctx, "conflicting tenant filter", intent)

        where[TENANT_FIELD] = ctx.organization_id
        base["where"] = where

        guarded = GuardedQuery(
            query=base,
            organization_id=ctx.organization_id,
            active_member_id=None if include_inactive else ctx.user_id,
        )
        if validate:
            self.validate(guarded, ctx)

        self.audit.record(
            "query.guarded",
            ctx=ctx,
            entity_type="query",
            details={"query": query_shape(base), "include_inactive": include_inactive},
            level=logging.DEBUG,
        )
        return guarded

    def validate(self, query, ctx) -> None:
        """
        Re-check a (guarded or raw) query intent.

        Raises:
            SecurityError: tenant filter missing for a non-super-admin
                context, or a dangerous SQL-like substring is present.
        """
        raw = query.query if isinstance(query, GuardedQuery) else query
        if not isinstance(raw, Mapping):
            self._reject(ctx, "malformed query intent", raw)

        where = raw.get("where") or {}
        if not ctx.is_super_admin:
            tenant = where.get(TENANT_FIELD) if isinstance(where, Mapping) else None
            if not tenant:
                self._reject(ctx, "missing tenant filter", raw)
            if tenant != ctx.organization_id:
                self._reject(ctx, "conflicting tenant filter", raw)

        serialised = json.dumps(raw, default=str)
        for pattern in DANGEROUS_PATTERNS:
            if pattern.search(serialised):
                self._reject(ctx, "dangerous pattern detected", raw, pattern=pattern.pattern)

    def is_safe(self, query, ctx) -> bool:
        try:
            self.validate(query, ctx)
        except SecurityError:
            return False
        return True

    def _reject(self, ctx, reason: str, intent, **extra) -> None:
        details = {"query": query_shape(intent), **extra}
        self.audit.record(
            "query.rejected",
            ctx=ctx,
            allowed=False,
            entity_type="query",
            reason=reason,
            details=details,
            level=logging.WARNING,
        )
        raise SecurityError(reason, details=details)


# ── Intent builders ──────────────────────────────────────────────────────────


def secure_pagination(page=1, limit=10, max_limit: int = DEFAULT_MAX_PAGE_SIZE) -> dict:
    """Clamp page/limit into a ``{"skip", "take"}`` pair."""
    try:
        page = int(page)
    except (TypeError, ValueError):
        page = 1
    try:
        limit = int(limit)
    except (TypeError, ValueError):
        limit = 10
    safe_limit = max(1, min(limit, max_limit))
    safe_page = max(page, 1)
    return {"skip": (safe_page - 1) * safe_limit, "take": safe_limit}


def user_org_filter(user_id: str, organization_id: str) -> dict:
    """Tenant filter narrowed to items the user created or is assigned to."""
    return {
        TENANT_FIELD: organization_id,
        "OR": [
            {"created_by_id": user_id},
            {"assigned_to_id": user_id},
        ],
    }
