"""
Access audit logger — one record per authorization decision.

Every decision taken by the tenant-isolation core (context resolution,
query guarding, ownership checks, workflow moves) is reported here. Each
record is:
  1. written to the ``contentflow.audit`` logger with structured ``extra``
     fields (picked up by the JSON formatter in production),
  2. kept in a bounded in-instance buffer for inspection and tests,
  3. optionally persisted as an AuditLog row (``persist=True``).

Super-admin bypasses go through ``record_bypass`` and are never silent:
they are logged at WARNING with actor, target tenant and raw query shape.

Usage:
    audit = AccessAuditLogger(persist=True)
    audit.record("query.guarded", ctx=ctx, entity_type="query", details={...})
"""

from __future__ import annotations

import json
import logging
import threading
import time
from collections import deque
from typing import Any

logger = logging.getLogger("contentflow.audit")

_MAX_EVENTS = 5000


def query_shape(query: Any) -> str:
    """Serialise a query intent for the audit trail."""
    try:
        return json.dumps(query, default=str, sort_keys=True)
    except (TypeError, ValueError):
        return repr(query)


class AccessAuditLogger:
    """Records authorization decisions; instances are created per app."""

    def __init__(self, *, persist: bool = False, max_events: int = _MAX_EVENTS) -> None:
        self.persist = persist
        self._events: deque[dict[str, Any]] = deque(maxlen=max_events)
        self._lock = threading.Lock()

    def record(
        self,
        action: str,
        *,
        ctx=None,
        allowed: bool = True,
        entity_type: str = "security_context",
        entity_id: str | None = None,
        organization_id: str | None = None,
        actor: str | None = None,
        reason: str | None = None,
        details: dict[str, Any] | None = None,
        level: int = logging.INFO,
    ) -> dict[str, Any]:
        if ctx is not None:
            organization_id = organization_id or ctx.organization_id
            actor = actor or ctx.user_id

        event = {
            "ts": time.time(),
            "action": action,
            "allowed": allowed,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "organization_id": organization_id,
            "actor": actor or "system",
            "reason": reason,
            "details": details or {},
        }
        with self._lock:
            self._events.append(event)

        logger.log(
            level,
            "%s %s actor=%s org=%s%s",
            action,
            "allowed" if allowed else "denied",
            event["actor"],
            organization_id,
            f" reason={reason}" if reason else "",
            extra={
                "event_type": action,
                "organization_id": organization_id,
                "user_id": event["actor"],
            },
        )

        if self.persist:
            from contentflow.models.audit import write_audit

            write_audit(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                actor=event["actor"],
                organization_id=organization_id,
                diff={"allowed": allowed, "reason": reason, **(details or {})},
            )
        return event

    def record_bypass(self, ctx, query: Any, *, target_organization_id: str | None = None) -> dict[str, Any]:
        """Super-admin override of the tenant filter. Always emitted."""
        return self.record(
            "query.super_admin_bypass",
            ctx=ctx,
            entity_type="query",
            organization_id=target_organization_id or ctx.organization_id,
            reason="super_admin",
            details={
                "user_email": ctx.user_email,
                "query": query_shape(query),
            },
            level=logging.WARNING,
        )

    def log_database_access(self, operation: str, table: str, ctx, query: Any = None) -> dict[str, Any]:
        return self.record(
            "database_access",
            ctx=ctx,
            entity_type="query",
            details={
                "operation": operation,
                "table": table,
                "user_email": ctx.user_email,
                "query": query_shape(query) if query is not None else None,
            },
            level=logging.DEBUG,
        )

    def recent(self, *, action: str | None = None, seconds: int | None = None) -> list[dict[str, Any]]:
        with self._lock:
            rows = list(self._events)
        if seconds is not None:
            cutoff = time.time() - seconds
            rows = [e for e in rows if e["ts"] >= cutoff]
        if action:
            rows = [e for e in rows if e["action"] == action]
        return rows

    def clear(self) -> None:
        with self._lock:
            self._events.clear()
