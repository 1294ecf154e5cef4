"""
Tests for contentflow/services/query_guard.py and services/helpers/scoped_queries.py

These tests are security-critical: they verify that no guarded query can
cross a tenant boundary.

Scenarios covered:
  1. Tenant filter injection (idempotent, merges with caller filters)
  2. Conflicting tenant filters fail closed (top-level and nested)
  3. Super-admin bypass passes through and is always audited
  4. validate(): missing filter, dangerous patterns
  5. select_for / get_scoped compile and execute tenant-scoped reads
  6. Intent builders (secure_pagination, user_org_filter)
"""

import pytest

from contentflow.core.exceptions import NotFoundError, SecurityError
from contentflow.models import db
from contentflow.models.content import ContentItem, Idea
from contentflow.services.access_audit import AccessAuditLogger
from contentflow.services.helpers.scoped_queries import (
    get_scoped,
    get_scoped_or_none,
    select_for,
)
from contentflow.services.query_guard import (
    GuardedQuery,
    SecureQueryGuard,
    secure_pagination,
    user_org_filter,
)
from contentflow.services.security_context import SecurityContext


def _ctx(org="A", *, user="u1", super_admin=False):
    return SecurityContext(
        user_id=user,
        organization_id=org,
        user_email=f"{user}@example.com",
        organization_role="MANAGER",
        system_role="CREATIVE",
        is_super_admin=super_admin,
    )


@pytest.fixture
def audit():
    return AccessAuditLogger()


@pytest.fixture
def guard(audit):
    return SecureQueryGuard(audit)


# ── 1. Injection ─────────────────────────────────────────────────────────────


class TestTenantInjection:
    def test_empty_where_gets_tenant_filter(self, guard):
        guarded = guard.secure({"where": {}}, _ctx("A"))
        assert guarded.query == {"where": {"organization_id": "A"}}
        assert guarded.organization_id == "A"
        assert guarded.bypassed is False

    def test_none_intent_is_treated_as_empty(self, guard):
        assert guard.secure(None, _ctx("A")).where == {"organization_id": "A"}

    def test_caller_filters_are_kept(self, guard):
        guarded = guard.secure({"where": {"current_stage": "DRAFT"}, "take": 5}, _ctx("A"))
        assert guarded.query == {
            "where": {"current_stage": "DRAFT", "organization_id": "A"},
            "take": 5,
        }

    @pytest.mark.parametrize("key", ["organization_id", "organizationId"])
    def test_injection_is_idempotent(self, guard, key):
        plain = guard.secure({"where": {"current_stage": "DRAFT"}}, _ctx("A"))
        pre_filtered = guard.secure({"where": {"current_stage": "DRAFT", key: "A"}}, _ctx("A"))
        assert pre_filtered.where == plain.where

    def test_double_secure_is_stable(self, guard):
        once = guard.secure({"where": {}}, _ctx("A"))
        twice = guard.secure(once.query, _ctx("A"))
        assert twice.query == once.query

    def test_input_intent_is_not_mutated(self, guard):
        intent = {"where": {"current_stage": "DRAFT"}}
        guard.secure(intent, _ctx("A"))
        assert intent == {"where": {"current_stage": "DRAFT"}}

    def test_active_membership_required_by_default(self, guard):
        assert guard.secure({}, _ctx("A", user="u7")).active_member_id == "u7"

    def test_include_inactive_drops_membership_requirement(self, guard):
        assert guard.secure({}, _ctx("A"), include_inactive=True).active_member_id is None


# ── 2. Conflicts ─────────────────────────────────────────────────────────────


class TestConflictingFilters:
    @pytest.mark.parametrize("key", ["organization_id", "organizationId"])
    def test_different_org_is_rejected(self, guard, audit, key):
        with pytest.raises(SecurityError, match="conflicting tenant filter"):
            guard.secure({"where": {key: "B"}}, _ctx("A"))
        rejected = audit.recent(action="query.rejected")
        assert rejected[0]["reason"] == "conflicting tenant filter"
        assert rejected[0]["allowed"] is False

    @pytest.mark.parametrize("org", ["A", "B", "tenant-x"])
    def test_conflict_fails_for_any_tenant(self, guard, org):
        with pytest.raises(SecurityError):
            guard.secure({"where": {"organization_id": org + "-other"}}, _ctx(org))

    def test_nested_conflict_is_rejected(self, guard):
        intent = {"where": {"OR": [{"created_by_id": "u1"}, {"organization_id": "B"}]}}
        with pytest.raises(SecurityError, match="conflicting tenant filter"):
            guard.secure(intent, _ctx("A"))

    def test_malformed_intent_is_rejected(self, guard):
        with pytest.raises(SecurityError, match="malformed"):
            guard.secure(["not", "a", "mapping"], _ctx("A"))
        with pytest.raises(SecurityError, match="malformed"):
            guard.secure({"where": "organization_id = 'A'"}, _ctx("A"))

    def test_context_without_org_is_rejected(self, guard):
        with pytest.raises(SecurityError, match="missing tenant filter"):
            guard.secure({}, _ctx(None))


# ── 3. Super-admin bypass ────────────────────────────────────────────────────


class TestSuperAdminBypass:
    def test_intent_passes_through_unchanged(self, guard):
        intent = {"where": {"organization_id": "B", "current_stage": "IDEA"}}
        guarded = guard.secure(intent, _ctx("A", super_admin=True))
        assert guarded.query == intent
        assert guarded.bypassed is True

    def test_bypass_is_always_audited(self, guard, audit):
        guard.secure({"where": {}}, _ctx("A", user="root", super_admin=True))
        bypasses = audit.recent(action="query.super_admin_bypass")
        assert len(bypasses) == 1
        event = bypasses[0]
        assert event["actor"] == "root"
        assert event["organization_id"] == "A"
        assert event["details"]["user_email"] == "root@example.com"
        assert event["details"]["query"] == '{"where": {}}'

    def test_dangerous_pattern_still_rejected_for_super_admin(self, guard):
        with pytest.raises(SecurityError, match="dangerous"):
            guard.secure({"where": {"title": "x; DROP TABLE ideas"}}, _ctx("A", super_admin=True))


# ── 4. validate() ────────────────────────────────────────────────────────────


class TestValidate:
    def test_missing_tenant_filter(self, guard):
        with pytest.raises(SecurityError, match="missing tenant filter"):
            guard.validate({"where": {"current_stage": "IDEA"}}, _ctx("A"))

    def test_mismatched_tenant_filter(self, guard):
        with pytest.raises(SecurityError, match="conflicting"):
            guard.validate({"where": {"organization_id": "B"}}, _ctx("A"))

    @pytest.mark.parametrize("fragment", [
        "1 UNION SELECT password FROM users",
        "x'; drop   table ideas; --",
        "delete from content_items",
        "update users set is_super_admin = 1",
    ])
    def test_dangerous_patterns(self, guard, fragment):
        intent = {"where": {"organization_id": "A", "title": fragment}}
        with pytest.raises(SecurityError, match="dangerous pattern detected"):
            guard.validate(intent, _ctx("A"))

    def test_is_safe(self, guard):
        assert guard.is_safe({"where": {"organization_id": "A"}}, _ctx("A")) is True
        assert guard.is_safe({"where": {}}, _ctx("A")) is False
        assert guard.is_safe({"where": {}}, _ctx("A", super_admin=True)) is True


# ── 5. Compilation & execution ───────────────────────────────────────────────


def _seed_items(make_org, make_user, add_membership):
    user = make_user("u1")
    other = make_user("u2")
    a, b = make_org("A"), make_org("B")
    add_membership(user, a)
    add_membership(other, b)
    items = [
        ContentItem(id="a1", organization_id="A", title="A one", current_stage="DRAFT", created_by_id="u1"),
        ContentItem(id="a2", organization_id="A", title="A two", current_stage="IDEA", assigned_to_id="u1"),
        ContentItem(id="a3", organization_id="A", title="A three", current_stage="IDEA"),
        ContentItem(id="b1", organization_id="B", title="B one", current_stage="DRAFT", created_by_id="u2"),
    ]
    db.session.add_all(items)
    db.session.flush()


class TestSelectFor:
    def test_only_own_tenant_rows(self, guard, make_org, make_user, add_membership):
        _seed_items(make_org, make_user, add_membership)
        guarded = guard.secure({"where": {}, "order_by": "id"}, _ctx("A"))
        rows = db.session.execute(select_for(ContentItem, guarded)).scalars().all()
        assert [r.id for r in rows] == ["a1", "a2", "a3"]

    def test_filters_and_pagination(self, guard, make_org, make_user, add_membership):
        _seed_items(make_org, make_user, add_membership)
        intent = {"where": {"current_stage": "IDEA"}, "order_by": "-id", **secure_pagination(1, 1)}
        rows = db.session.execute(select_for(ContentItem, guard.secure(intent, _ctx("A")))).scalars().all()
        assert [r.id for r in rows] == ["a3"]

    def test_user_org_filter(self, guard, make_org, make_user, add_membership):
        _seed_items(make_org, make_user, add_membership)
        intent = {"where": user_org_filter("u1", "A"), "order_by": "id"}
        rows = db.session.execute(select_for(ContentItem, guard.secure(intent, _ctx("A")))).scalars().all()
        assert [r.id for r in rows] == ["a1", "a2"]

    def test_inactive_membership_sees_nothing(self, guard, make_org, make_user, add_membership):
        user = make_user("u1")
        add_membership(user, make_org("A"), is_active=False)
        db.session.add(ContentItem(id="a1", organization_id="A", title="A one"))
        db.session.flush()

        rows = db.session.execute(select_for(ContentItem, guard.secure({}, _ctx("A")))).scalars().all()
        assert rows == []
        guarded = guard.secure({}, _ctx("A"), include_inactive=True)
        assert len(db.session.execute(select_for(ContentItem, guarded)).scalars().all()) == 1

    def test_super_admin_bypass_sees_all_tenants(self, guard, make_org, make_user, add_membership):
        _seed_items(make_org, make_user, add_membership)
        guarded = guard.secure({"order_by": "id"}, _ctx("A", super_admin=True))
        rows = db.session.execute(select_for(ContentItem, guarded)).scalars().all()
        assert [r.id for r in rows] == ["a1", "a2", "a3", "b1"]

    def test_raw_mapping_is_refused(self):
        with pytest.raises(SecurityError, match="unguarded"):
            select_for(ContentItem, {"where": {"organization_id": "A"}})

    def test_hand_built_guarded_query_without_filter_is_refused(self):
        forged = GuardedQuery(query={"where": {}}, organization_id="A")
        with pytest.raises(SecurityError, match="missing tenant filter"):
            select_for(ContentItem, forged)

    def test_unknown_filter_field_is_refused(self, guard):
        guarded = guard.secure({"where": {"no_such_column": 1}}, _ctx("A"))
        with pytest.raises(SecurityError, match="unknown filter field"):
            select_for(ContentItem, guarded)


class TestGetScoped:
    def test_returns_row_in_scope(self, make_org):
        make_org("A")
        db.session.add(Idea(id="i1", organization_id="A", title="Pitch"))
        db.session.flush()
        assert get_scoped(Idea, "i1", organization_id="A").title == "Pitch"

    def test_cross_tenant_is_not_found(self, make_org):
        make_org("A")
        make_org("B")
        db.session.add(Idea(id="i1", organization_id="B", title="Pitch"))
        db.session.flush()
        with pytest.raises(NotFoundError):
            get_scoped(Idea, "i1", organization_id="A")
        assert get_scoped_or_none(Idea, "i1", organization_id="A") is None

    def test_missing_scope_raises_value_error(self):
        with pytest.raises(ValueError, match="requires an organization_id"):
            get_scoped(Idea, "i1", organization_id=None)
        with pytest.raises(ValueError):
            get_scoped_or_none(Idea, "i1", organization_id="")


# ── 6. Intent builders ───────────────────────────────────────────────────────


class TestSecurePagination:
    def test_defaults(self):
        assert secure_pagination() == {"skip": 0, "take": 10}

    def test_limit_is_capped(self):
        assert secure_pagination(1, 500) == {"skip": 0, "take": 100}
        assert secure_pagination(1, 500, max_limit=25)["take"] == 25

    def test_page_and_limit_are_clamped(self):
        assert secure_pagination(0, 0) == {"skip": 0, "take": 1}
        assert secure_pagination(3, 20) == {"skip": 40, "take": 20}

    def test_garbage_input_falls_back(self):
        assert secure_pagination("x", None) == {"skip": 0, "take": 10}
