"""
Platform-wide exception hierarchy.

Every decision taken by the tenant-isolation core surfaces as one of the
typed exceptions below. Services raise them; the HTTP layer maps them to
status codes once (see ``contentflow.blueprints.work_items_bp``). None of
them is ever downgraded to a generic internal error inside the core.

Usage:
    from contentflow.core.exceptions import NotFoundError, SecurityError

    raise NotFoundError(resource="ContentItem", resource_id="c1")
    raise SecurityError("conflicting tenant filter", details={...})
"""


class AuthenticationError(Exception):
    """Raised when no authenticated identity accompanies the request.

    Maps to HTTP 401.
    """

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class NoActiveOrganization(Exception):
    """Raised when an identity has no usable (active) membership.

    Maps to HTTP 403.

    Args:
        user_id: The identity that could not be placed in a tenant.
    """

    def __init__(self, user_id: str | None = None) -> None:
        self.user_id = user_id
        msg = "No active organization found"
        if user_id is not None:
            msg += f" for user {user_id}"
        super().__init__(msg)


class AuthorizationError(Exception):
    """Raised when a role/permission is insufficient, or when an explicit
    organization override targets a tenant the identity is not an active
    member of.

    Maps to HTTP 403.

    Args:
        message: Human-readable explanation (logged, not shown to end users).
        required: Optional role or permission that was missing.
        organization_id: Optional tenant the check was made against.
    """

    def __init__(
        self,
        message: str = "Insufficient permissions",
        *,
        required: str | None = None,
        organization_id: str | None = None,
    ) -> None:
        self.required = required
        self.organization_id = organization_id
        super().__init__(message)


class IllegalTransition(Exception):
    """Raised when a workflow move has no matching, role-permitted row.

    The offending ``from_state``, ``to_state`` and ``action`` are echoed
    back unchanged so that repeated calls produce an identical error shape.

    Maps to HTTP 400.
    """

    def __init__(self, from_state: str, to_state: str, action: str) -> None:
        self.from_state = from_state
        self.to_state = to_state
        self.action = action
        super().__init__(
            f"Invalid transition from {from_state} to {to_state} with action {action}"
        )

    def to_dict(self) -> dict:
        return {"from": self.from_state, "to": self.to_state, "action": self.action}

    def __eq__(self, other):
        if not isinstance(other, IllegalTransition):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash((self.from_state, self.to_state, self.action))


class SecurityError(Exception):
    """Raised by the query guard: conflicting or missing tenant filter,
    dangerous pattern detected, or an attempt to re-home a tenant-owned row.

    Maps to HTTP 400.

    Args:
        message: Short machine-friendly reason, e.g. "conflicting tenant filter".
        details: Structured context for the audit log (never the HTTP body).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Security note: used for BOTH genuinely missing records AND cross-tenant
    access attempts. A 403 would confirm the resource exists; a 404 does not.

    Args:
        resource: Human-readable model/entity name (e.g. "ContentItem").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        organization_id: Optional, the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        organization_id: str | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if organization_id is not None:
            msg += f" (organization={organization_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Maps to HTTP 400.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class RateLimitExceeded(Exception):
    """Raised when a caller exhausts its fixed-window request budget.

    Maps to HTTP 429.
    """

    def __init__(self, key: str, retry_after: float | None = None) -> None:
        self.key = key
        self.retry_after = retry_after
        super().__init__(f"Rate limit exceeded for {key}")
