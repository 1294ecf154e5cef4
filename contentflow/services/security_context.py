"""
Security Context Resolver — decides which organization a request acts in.

Given an authenticated identity and optional tenant hints, produces one
canonical, immutable ``SecurityContext``.

Resolution order (first usable hint wins):
    1. explicit   — organization id passed by a privileged internal flow.
                    Must be an active membership, otherwise AuthorizationError.
    2. cookie     — the organization last selected in the browser session.
    3. header     — X-Selected-Organization, for non-browser callers.
    4. default    — the most recently joined active membership.

Cookie and header hints that do not name an active membership are stale
(e.g. the user was removed from that organization); they are discarded,
logged, and resolution continues with the next strategy.

The resolver is read-only. Resolving the same identity + hints against an
unchanged directory always yields the same context.

Usage:
    resolver = SecurityContextResolver(SqlMembershipDirectory(), audit)
    ctx = resolver.resolve(identity, ResolutionHints(header_org_id="org-1"))
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Callable

from contentflow.core.exceptions import (
    AuthenticationError,
    AuthorizationError,
    NoActiveOrganization,
)
from contentflow.services.directory import Membership, MembershipDirectory
from contentflow.services.role_hierarchy import has_permission

logger = logging.getLogger(__name__)

_ORG_ID_PATTERN = re.compile(r"^[A-Za-z0-9_-]{1,64}$")


# ── Value types ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Identity:
    """Authenticated caller, as handed over by the upstream auth layer."""

    user_id: str
    email: str = ""
    system_role: str = "CREATIVE"
    is_super_admin: bool = False

    @classmethod
    def from_user(cls, user) -> "Identity":
        return cls(
            user_id=user.id,
            email=user.email or "",
            system_role=(user.role or "").upper(),
            is_super_admin=bool(user.is_super_admin),
        )


@dataclass(frozen=True)
class ResolutionHints:
    explicit_org_id: str | None = None
    cookie_org_id: str | None = None
    header_org_id: str | None = None


@dataclass(frozen=True)
class SecurityContext:
    """Request-scoped authorization bundle. A value: never cached or shared."""

    user_id: str
    organization_id: str
    user_email: str = ""
    organization_role: str | None = None
    system_role: str = ""
    permissions: frozenset = field(default_factory=frozenset)
    is_super_admin: bool = False

    def has_role(self, required_role) -> bool:
        return has_permission(self.organization_role, required_role)

    def has_permission_code(self, codename: str) -> bool:
        return codename in self.permissions

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "organization_id": self.organization_id,
            "user_email": self.user_email,
            "organization_role": self.organization_role,
            "system_role": self.system_role,
            "permissions": sorted(self.permissions),
            "is_super_admin": self.is_super_admin,
        }


# ── Resolution strategies ────────────────────────────────────────────────────


def is_valid_organization_id(value) -> bool:
    """Format screen applied to hint values before any directory lookup."""
    return isinstance(value, str) and bool(_ORG_ID_PATTERN.match(value))


def _clean(value) -> str | None:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def explicit_strategy(hints: ResolutionHints) -> str | None:
    return _clean(hints.explicit_org_id)


def cookie_strategy(hints: ResolutionHints) -> str | None:
    return _clean(hints.cookie_org_id)


def header_strategy(hints: ResolutionHints) -> str | None:
    return _clean(hints.header_org_id)


Strategy = Callable[[ResolutionHints], "str | None"]

# Order is part of the contract.
RESOLUTION_STRATEGIES: tuple[tuple[str, Strategy], ...] = (
    ("explicit", explicit_strategy),
    ("cookie", cookie_strategy),
    ("header", header_strategy),
)


# ── Resolver ─────────────────────────────────────────────────────────────────


class SecurityContextResolver:
    """Builds SecurityContext values from identities and tenant hints."""

    def __init__(
        self,
        directory: MembershipDirectory,
        audit=None,
        strategies: tuple[tuple[str, Strategy], ...] = RESOLUTION_STRATEGIES,
    ) -> None:
        self.directory = directory
        self.audit = audit
        self.strategies = strategies

    def resolve(self, identity: Identity | None, hints: ResolutionHints | None = None) -> SecurityContext:
        """
        Resolve the tenant for *identity*.

        Raises:
            AuthenticationError: identity is None.
            AuthorizationError: explicit override targets an organization the
                identity has no active membership in (and is not super-admin).
            NoActiveOrganization: no hint applies and there is no active
                membership to default to.
        """
        if identity is None:
            raise AuthenticationError()
        hints = hints or ResolutionHints()

        for source, strategy in self.strategies:
            org_id = strategy(hints)
            if org_id is None:
                continue

            if source == "explicit":
                return self._resolve_explicit(identity, org_id)

            membership = self._active_membership(identity.user_id, org_id)
            if membership is not None:
                return self._build(identity, membership, source)

            logger.warning(
                "Discarding stale %s tenant hint org=%s for user %s",
                source, org_id, identity.user_id,
            )

        memberships = self.directory.list_active_memberships(identity.user_id)
        if not memberships:
            self._record_denied(identity, None, "no_active_membership")
            raise NoActiveOrganization(identity.user_id)
        return self._build(identity, memberships[0], "default")

    # ── internals ────────────────────────────────────────────────────────

    def _active_membership(self, user_id: str, org_id: str) -> Membership | None:
        if not is_valid_organization_id(org_id):
            return None
        membership = self.directory.get_membership(user_id, org_id)
        if membership is None or not membership.is_active:
            return None
        return membership

    def _resolve_explicit(self, identity: Identity, org_id: str) -> SecurityContext:
        membership = self._active_membership(identity.user_id, org_id)
        if membership is not None:
            return self._build(identity, membership, "explicit")

        if (
            identity.is_super_admin
            and is_valid_organization_id(org_id)
            and self.directory.organization_exists(org_id)
        ):
            ctx = SecurityContext(
                user_id=identity.user_id,
                organization_id=org_id,
                user_email=identity.email,
                organization_role=None,
                system_role=(identity.system_role or "").upper(),
                permissions=frozenset(),
                is_super_admin=True,
            )
            if self.audit is not None:
                self.audit.record(
                    "context.super_admin_override",
                    ctx=ctx,
                    reason="explicit_override_without_membership",
                    details={"user_email": identity.email},
                    level=logging.WARNING,
                )
            return ctx

        self._record_denied(identity, org_id, "explicit_override_without_membership")
        raise AuthorizationError(
            "No active membership in requested organization",
            organization_id=org_id,
        )

    def _build(self, identity: Identity, membership: Membership, source: str) -> SecurityContext:
        ctx = SecurityContext(
            user_id=identity.user_id,
            organization_id=membership.organization_id,
            user_email=identity.email,
            organization_role=(membership.organization_role or "").upper() or None,
            system_role=(identity.system_role or "").upper(),
            permissions=frozenset(membership.permissions),
            is_super_admin=identity.is_super_admin,
        )
        if self.audit is not None:
            self.audit.record(
                "context.resolved",
                ctx=ctx,
                details={"source": source, "organization_role": ctx.organization_role},
                level=logging.DEBUG,
            )
        return ctx

    def _record_denied(self, identity: Identity, org_id: str | None, reason: str) -> None:
        if self.audit is None:
            return
        self.audit.record(
            "context.denied",
            allowed=False,
            actor=identity.user_id,
            organization_id=org_id,
            reason=reason,
            level=logging.WARNING,
        )


def validate_organization_context(organization_id: str, ctx: SecurityContext) -> bool:
    """A context may only address its own organization, unless super-admin."""
    if ctx.is_super_admin:
        return True
    return ctx.organization_id == organization_id
