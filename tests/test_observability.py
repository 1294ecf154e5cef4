"""
Tests for the audit logger, log formatters and request timing headers.
"""

import json
import logging

from sqlalchemy import select

from contentflow.middleware.logging_config import JSONFormatter, ReadableFormatter
from contentflow.models import db
from contentflow.models.audit import AuditLog
from contentflow.services.access_audit import AccessAuditLogger, query_shape
from contentflow.services.security_context import SecurityContext


CTX = SecurityContext(user_id="u1", organization_id="A", user_email="u1@example.com", is_super_admin=True)


class TestAccessAuditLogger:
    def test_record_fills_actor_and_org_from_context(self):
        audit = AccessAuditLogger()
        event = audit.record("query.guarded", ctx=CTX, entity_type="query")
        assert event["actor"] == "u1"
        assert event["organization_id"] == "A"
        assert event["allowed"] is True
        assert audit.recent(action="query.guarded") == [event]

    def test_system_actor_without_context(self):
        assert AccessAuditLogger().record("context.denied", allowed=False)["actor"] == "system"

    def test_buffer_is_bounded(self):
        audit = AccessAuditLogger(max_events=3)
        for i in range(5):
            audit.record("query.guarded", entity_id=str(i))
        assert [e["entity_id"] for e in audit.recent()] == ["2", "3", "4"]

    def test_clear(self):
        audit = AccessAuditLogger()
        audit.record("query.guarded")
        audit.clear()
        assert audit.recent() == []

    def test_bypass_is_logged_at_warning(self, caplog):
        audit = AccessAuditLogger()
        with caplog.at_level(logging.WARNING, logger="contentflow.audit"):
            audit.record_bypass(CTX, {"where": {"organization_id": "B"}}, target_organization_id="B")
        assert any("query.super_admin_bypass" in r.getMessage() for r in caplog.records)
        event = audit.recent(action="query.super_admin_bypass")[0]
        assert event["organization_id"] == "B"
        assert event["details"]["user_email"] == "u1@example.com"
        assert json.loads(event["details"]["query"]) == {"where": {"organization_id": "B"}}

    def test_persist_writes_audit_row(self):
        AccessAuditLogger(persist=True).record(
            "ownership.denied", ctx=CTX, allowed=False, entity_type="idea",
            entity_id="i1", reason="not_in_organization",
        )
        row = db.session.execute(select(AuditLog)).scalar_one()
        assert row.action == "ownership.denied"
        assert row.entity_id == "i1"
        assert row.diff == {"allowed": False, "reason": "not_in_organization"}

    def test_query_shape_is_sorted_json(self):
        assert query_shape({"b": 1, "a": 2}) == '{"a": 2, "b": 1}'


class TestFormatters:
    def _record(self, **extra):
        record = logging.LogRecord("contentflow.audit", logging.INFO, __file__, 1, "hello %s", ("x",), None)
        for k, v in extra.items():
            setattr(record, k, v)
        return record

    def test_json_formatter_copies_known_extras(self):
        out = json.loads(JSONFormatter().format(
            self._record(organization_id="A", event_type="context.resolved", secret="nope")
        ))
        assert out["message"] == "hello x"
        assert out["organization_id"] == "A"
        assert out["event_type"] == "context.resolved"
        assert "secret" not in out

    def test_readable_formatter_shows_org(self):
        out = ReadableFormatter().format(self._record(organization_id="A", duration_ms=12.0))
        assert "org=A" in out
        assert "[12ms]" in out


class TestRequestTiming:
    def test_request_id_is_echoed(self, client):
        res = client.get("/api/v1/health", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert "X-Request-Duration-Ms" in res.headers

    def test_request_id_is_generated(self, client):
        res = client.get("/api/v1/health")
        assert len(res.headers["X-Request-ID"]) == 12
