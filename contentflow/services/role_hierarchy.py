"""
Organization role hierarchy.

Levels (descending):
    OWNER   4
    ADMIN   3
    MANAGER 2
    MEMBER  1
    VIEWER  0

The table is fixed and versioned with the code; it is not tenant-configurable.
Labels are compared case-insensitively. Any label outside the table is
treated as unknown and DENIED, whichever side of the comparison it appears on.
"""

from enum import Enum


class OrganizationRole(str, Enum):
    OWNER = "OWNER"
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"


ROLE_LEVELS: dict[str, int] = {
    OrganizationRole.OWNER.value: 4,
    OrganizationRole.ADMIN.value: 3,
    OrganizationRole.MANAGER.value: 2,
    OrganizationRole.MEMBER.value: 1,
    OrganizationRole.VIEWER.value: 0,
}


def normalize_role(role) -> str | None:
    """Return the canonical upper-case label, or None for non-string input."""
    if isinstance(role, Enum):
        role = role.value
    if not isinstance(role, str):
        return None
    return role.strip().upper()


def role_level(role) -> int:
    """Numeric level for *role*; unknown labels map to 0."""
    return ROLE_LEVELS.get(normalize_role(role), 0)


def is_known_role(role) -> bool:
    return normalize_role(role) in ROLE_LEVELS


def has_permission(actual_role, required_role) -> bool:
    """Check whether *actual_role* is at least as strong as *required_role*.

    Examples:
        >>> has_permission("OWNER", "VIEWER")
        True
        >>> has_permission("Viewer", "Owner")
        False
        >>> has_permission("unknown-role", "VIEWER")
        False
    """
    if not is_known_role(actual_role) or not is_known_role(required_role):
        return False
    return role_level(actual_role) >= role_level(required_role)


def roles_at_least(required_role) -> set[str]:
    """All known roles that satisfy *required_role* (empty if it is unknown)."""
    if not is_known_role(required_role):
        return set()
    floor = role_level(required_role)
    return {name for name, level in ROLE_LEVELS.items() if level >= floor}


# Platform (user.role) capabilities, independent of the organization role.
PLATFORM_CAPABILITIES: dict[str, frozenset[str]] = {
    "CREATIVE": frozenset({
        "create_content", "edit_own_content", "delete_own_content",
        "view_all_content", "view_dashboard", "provide_feedback",
        "view_organization_data",
    }),
    "CLIENT": frozenset({
        "approve_ideas", "view_all_content", "view_dashboard",
        "provide_feedback", "view_organization_data",
    }),
    "ADMIN": frozenset({
        "create_content", "approve_ideas", "edit_own_content",
        "delete_own_content", "view_all_content", "view_dashboard",
        "provide_feedback", "view_organization_data", "manage_organization",
    }),
}


def has_capability(system_role, capability: str) -> bool:
    """True when platform *system_role* grants *capability*; unknown roles get nothing."""
    granted = PLATFORM_CAPABILITIES.get(normalize_role(system_role), frozenset())
    return capability in granted
