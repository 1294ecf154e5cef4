"""
Tests for contentflow/services/security_context.py and services/directory.py

Test blocks:
  1. Default resolution — most recently joined active membership
  2. Hint precedence — explicit > cookie > header > default
  3. Stale / malformed hints — discarded, resolution continues
  4. Explicit override — AuthorizationError / audited super-admin override
  5. SqlMembershipDirectory against the real tables
"""

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from contentflow.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    NoActiveOrganization,
)
from contentflow.services.access_audit import AccessAuditLogger
from contentflow.services.directory import (
    Membership,
    MembershipDirectory,
    SqlMembershipDirectory,
)
from contentflow.services.security_context import (
    Identity,
    ResolutionHints,
    SecurityContextResolver,
    is_valid_organization_id,
    validate_organization_context,
)

_T0 = datetime(2026, 1, 1, tzinfo=timezone.utc)


class FakeDirectory(MembershipDirectory):
    """In-memory directory that counts lookups."""

    def __init__(self, memberships=(), organizations=()):
        self.memberships = list(memberships)
        self.organizations = set(organizations) | {m.organization_id for m in self.memberships}
        self.lookups = 0

    def get_membership(self, user_id, organization_id):
        self.lookups += 1
        for m in self.memberships:
            if m.user_id == user_id and m.organization_id == organization_id:
                return m
        return None

    def list_active_memberships(self, user_id):
        active = [m for m in self.memberships if m.user_id == user_id and m.is_active]
        active.sort(key=lambda m: m.organization_id)
        active.sort(key=lambda m: m.joined_at, reverse=True)
        return active

    def organization_exists(self, organization_id):
        return organization_id in self.organizations


def _m(org_id, *, user_id="u1", role="MEMBER", active=True, days=0, permissions=()):
    return Membership(
        user_id=user_id,
        organization_id=org_id,
        organization_role=role,
        permissions=frozenset(permissions),
        is_active=active,
        joined_at=_T0 + timedelta(days=days),
    )


@pytest.fixture
def audit():
    return AccessAuditLogger()


def _resolver(*memberships, organizations=(), audit=None):
    return SecurityContextResolver(FakeDirectory(memberships, organizations), audit)


IDENTITY = Identity(user_id="u1", email="u1@example.com", system_role="creative")


# ── 1. Default resolution ────────────────────────────────────────────────────


class TestDefaultResolution:
    def test_single_membership_no_hints(self):
        ctx = _resolver(_m("A", role="Manager")).resolve(IDENTITY)
        assert ctx.organization_id == "A"
        assert ctx.organization_role == "MANAGER"
        assert ctx.user_id == "u1"
        assert ctx.user_email == "u1@example.com"
        assert ctx.system_role == "CREATIVE"
        assert ctx.is_super_admin is False

    def test_most_recently_joined_wins(self):
        ctx = _resolver(_m("A", days=1), _m("B", days=5), _m("C", days=3)).resolve(IDENTITY)
        assert ctx.organization_id == "B"

    def test_tie_on_joined_at_is_broken_by_org_id(self):
        ctx = _resolver(_m("Z"), _m("B"), _m("M")).resolve(IDENTITY)
        assert ctx.organization_id == "B"

    def test_inactive_membership_is_never_the_default(self):
        ctx = _resolver(_m("A", active=False, days=10), _m("B", days=1)).resolve(IDENTITY)
        assert ctx.organization_id == "B"

    @pytest.mark.parametrize("flags", [
        (True,), (True, False), (False, True), (True, True, True), (False, False, True),
    ])
    def test_result_is_always_an_active_membership(self, flags):
        memberships = [_m(f"org{i}", active=a, days=i) for i, a in enumerate(flags)]
        ctx = _resolver(*memberships).resolve(IDENTITY)
        active_ids = {m.organization_id for m in memberships if m.is_active}
        assert ctx.organization_id in active_ids

    def test_no_memberships_raises(self):
        with pytest.raises(NoActiveOrganization):
            _resolver().resolve(IDENTITY)

    def test_only_inactive_memberships_raises(self):
        with pytest.raises(NoActiveOrganization):
            _resolver(_m("A", active=False), _m("B", active=False)).resolve(IDENTITY)

    def test_no_active_membership_is_audited(self, audit):
        with pytest.raises(NoActiveOrganization):
            _resolver(audit=audit).resolve(IDENTITY)
        denied = audit.recent(action="context.denied")
        assert len(denied) == 1
        assert denied[0]["allowed"] is False
        assert denied[0]["actor"] == "u1"

    def test_missing_identity_raises_authentication_error(self):
        with pytest.raises(AuthenticationError):
            _resolver(_m("A")).resolve(None)

    def test_resolution_is_deterministic(self):
        resolver = _resolver(_m("A", days=1), _m("B", days=2))
        hints = ResolutionHints(header_org_id="A")
        assert resolver.resolve(IDENTITY, hints) == resolver.resolve(IDENTITY, hints)

    def test_permissions_are_copied_from_membership(self):
        ctx = _resolver(_m("A", permissions={"content.approve"})).resolve(IDENTITY)
        assert ctx.has_permission_code("content.approve")
        assert not ctx.has_permission_code("content.delete")
        assert ctx.to_dict()["permissions"] == ["content.approve"]


# ── 2. Hint precedence ───────────────────────────────────────────────────────


class TestHintPrecedence:
    def setup_method(self):
        self.resolver = _resolver(_m("A", days=9), _m("B", days=1), _m("C", days=2))

    def test_cookie_beats_header_and_default(self):
        ctx = self.resolver.resolve(IDENTITY, ResolutionHints(cookie_org_id="B", header_org_id="C"))
        assert ctx.organization_id == "B"

    def test_header_used_without_cookie(self):
        ctx = self.resolver.resolve(IDENTITY, ResolutionHints(header_org_id="C"))
        assert ctx.organization_id == "C"

    def test_explicit_beats_cookie_and_header(self):
        ctx = self.resolver.resolve(
            IDENTITY, ResolutionHints(explicit_org_id="C", cookie_org_id="B", header_org_id="B")
        )
        assert ctx.organization_id == "C"

    def test_blank_hints_are_ignored(self):
        ctx = self.resolver.resolve(IDENTITY, ResolutionHints(cookie_org_id="  ", header_org_id=""))
        assert ctx.organization_id == "A"


# ── 3. Stale / malformed hints ───────────────────────────────────────────────


class TestStaleHints:
    def test_stale_cookie_falls_through_to_header(self):
        resolver = _resolver(_m("A", days=5), _m("B"), _m("X", active=False))
        ctx = resolver.resolve(IDENTITY, ResolutionHints(cookie_org_id="X", header_org_id="B"))
        assert ctx.organization_id == "B"

    def test_cookie_for_foreign_org_falls_back_to_default(self):
        resolver = _resolver(_m("A"), organizations={"B"})
        ctx = resolver.resolve(IDENTITY, ResolutionHints(cookie_org_id="B"))
        assert ctx.organization_id == "A"

    def test_malformed_hint_skips_directory_lookup(self):
        directory = FakeDirectory([_m("A")])
        resolver = SecurityContextResolver(directory)
        ctx = resolver.resolve(IDENTITY, ResolutionHints(header_org_id="A' OR '1'='1"))
        assert ctx.organization_id == "A"
        assert directory.lookups == 0

    @pytest.mark.parametrize("value, ok", [
        ("org-1", True),
        ("a_b_C", True),
        ("", False),
        ("has space", False),
        ("x" * 65, False),
        (None, False),
        (42, False),
    ])
    def test_is_valid_organization_id(self, value, ok):
        assert is_valid_organization_id(value) is ok


# ── 4. Explicit override ─────────────────────────────────────────────────────


class TestExplicitOverride:
    def test_explicit_without_membership_raises(self, audit):
        resolver = _resolver(_m("A"), organizations={"B"}, audit=audit)
        with pytest.raises(AuthorizationError) as exc:
            resolver.resolve(IDENTITY, ResolutionHints(explicit_org_id="B"))
        assert exc.value.organization_id == "B"
        assert audit.recent(action="context.denied")[0]["organization_id"] == "B"

    def test_explicit_with_inactive_membership_raises(self):
        resolver = _resolver(_m("A"), _m("B", active=False))
        with pytest.raises(AuthorizationError):
            resolver.resolve(IDENTITY, ResolutionHints(explicit_org_id="B"))

    def test_super_admin_may_target_any_existing_org(self, audit):
        admin = replace(IDENTITY, is_super_admin=True, system_role="ADMIN")
        resolver = _resolver(_m("A"), organizations={"B"}, audit=audit)
        ctx = resolver.resolve(admin, ResolutionHints(explicit_org_id="B"))
        assert ctx.organization_id == "B"
        assert ctx.is_super_admin is True
        assert ctx.organization_role is None
        assert ctx.permissions == frozenset()
        overrides = audit.recent(action="context.super_admin_override")
        assert len(overrides) == 1
        assert overrides[0]["organization_id"] == "B"
        assert overrides[0]["actor"] == "u1"

    def test_super_admin_cannot_target_missing_org(self):
        admin = replace(IDENTITY, is_super_admin=True)
        with pytest.raises(AuthorizationError):
            _resolver(_m("A")).resolve(admin, ResolutionHints(explicit_org_id="nope"))

    def test_super_admin_stale_cookie_is_still_discarded(self):
        admin = replace(IDENTITY, is_super_admin=True)
        ctx = _resolver(_m("A"), organizations={"B"}).resolve(admin, ResolutionHints(cookie_org_id="B"))
        assert ctx.organization_id == "A"


class TestValidateOrganizationContext:
    def test_own_org_only(self):
        ctx = _resolver(_m("A")).resolve(IDENTITY)
        assert validate_organization_context("A", ctx) is True
        assert validate_organization_context("B", ctx) is False

    def test_super_admin_may_address_any_org(self):
        admin = replace(IDENTITY, is_super_admin=True)
        ctx = _resolver(_m("A")).resolve(admin)
        assert validate_organization_context("B", ctx) is True


# ── 5. SqlMembershipDirectory ────────────────────────────────────────────────


class TestSqlMembershipDirectory:
    def test_orders_by_joined_at_desc(self, make_org, make_user, add_membership):
        user = make_user("u1")
        a, b = make_org("A"), make_org("B")
        add_membership(user, a, joined_days=1)
        add_membership(user, b, joined_days=7)

        rows = SqlMembershipDirectory().list_active_memberships("u1")
        assert [m.organization_id for m in rows] == ["B", "A"]

    def test_inactive_organization_excluded(self, make_org, make_user, add_membership):
        user = make_user("u1")
        add_membership(user, make_org("A"), joined_days=1)
        add_membership(user, make_org("B", is_active=False), joined_days=9)

        directory = SqlMembershipDirectory()
        assert [m.organization_id for m in directory.list_active_memberships("u1")] == ["A"]
        assert directory.get_membership("u1", "B").is_active is False

    def test_resolver_with_sql_directory(self, make_org, make_user, add_membership):
        user = make_user("u1", role="CLIENT")
        add_membership(user, make_org("A"), role="Manager")

        ctx = SecurityContextResolver(SqlMembershipDirectory()).resolve(Identity.from_user(user))
        assert ctx.organization_id == "A"
        assert ctx.organization_role == "MANAGER"
        assert ctx.system_role == "CLIENT"

    def test_organization_exists(self, make_org):
        make_org("A")
        directory = SqlMembershipDirectory()
        assert directory.organization_exists("A") is True
        assert directory.organization_exists("B") is False
