"""
Permission decorators for state-changing work item routes.

Two checks, both against the request's SecurityContext:
    * the membership role must reach ``min_org_role`` in the organization
      hierarchy (OWNER > ADMIN > MANAGER > MEMBER > VIEWER);
    * when a ``capability`` is named, the caller's platform role
      (CREATIVE / CLIENT / ADMIN) must grant it.

Super-admins pass both. Denials are audited as ``permission.denied`` and
surface as AuthorizationError (403) through the blueprint's handler.

Usage:
    @work_items_bp.route("/work-items/<kind>", methods=["POST"])
    @require_permission("create_content")
    def create_work_item(kind):
        ...
"""

import functools
import logging

from contentflow.core.container import get_core
from contentflow.core.exceptions import AuthorizationError
from contentflow.middleware.security_context import get_security_context
from contentflow.services.role_hierarchy import has_capability

logger = logging.getLogger(__name__)


def require_permission(capability: str | None = None, *, min_org_role: str = "MEMBER"):
    """
    Decorator: require an organization role floor and, optionally, a
    platform capability.

    Args:
        capability: Platform capability, e.g. "create_content".
        min_org_role: Weakest organization role that may call the route.
    """
    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            ctx = get_security_context()
            if ctx.is_super_admin:
                return f(*args, **kwargs)

            missing = None
            if not ctx.has_role(min_org_role):
                missing = f"org_role:{min_org_role}"
            elif capability and not has_capability(ctx.system_role, capability):
                missing = capability

            if missing:
                logger.warning(
                    "User %s denied: missing '%s' on %s",
                    ctx.user_id, missing, f.__name__,
                )
                get_core().audit.record(
                    "permission.denied",
                    ctx=ctx,
                    allowed=False,
                    entity_type="route",
                    entity_id=f.__name__,
                    reason=missing,
                    details={
                        "organization_role": ctx.organization_role,
                        "system_role": ctx.system_role,
                    },
                    level=logging.WARNING,
                )
                raise AuthorizationError(
                    "Permission denied",
                    required=missing,
                    organization_id=ctx.organization_id,
                )

            return f(*args, **kwargs)
        return decorated
    return decorator
