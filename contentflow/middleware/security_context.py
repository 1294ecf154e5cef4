"""
Security Context Middleware — one resolved SecurityContext per request.

Chain order:
    upstream auth (sets g.identity)  →  this middleware  →  route handler

The upstream authentication layer is expected to put an ``Identity`` on
``g.identity``. In development and testing, ``TRUST_USER_HEADER`` lets an
``X-User-Id`` header stand in for it (the user row is loaded from the
directory). Never enable that flag behind a public edge.

The context itself is resolved lazily by ``get_security_context()`` and
memoised on ``g``, so within one request every caller observes the same
tenant, role and permission set.

Tenant hints read from the request:
    cookie  ``TENANT_COOKIE_NAME``  (default "selected-organization")
    header  ``TENANT_HEADER_NAME``  (default "X-Selected-Organization")
"""

import logging

from flask import current_app, g, request
from sqlalchemy import select

from contentflow.core.container import get_core
from contentflow.models import db
from contentflow.models.auth import User
from contentflow.services.security_context import Identity, ResolutionHints, SecurityContext

logger = logging.getLogger(__name__)

USER_HEADER = "X-User-Id"


def init_security_context(app):
    """Register the identity loader as a before_request hook."""

    @app.before_request
    def _load_identity():
        g.security_context = None
        if getattr(g, "identity", None) is not None:
            return None
        g.identity = None

        if not app.config.get("TRUST_USER_HEADER"):
            return None
        user_id = request.headers.get(USER_HEADER)
        if not user_id:
            return None
        user = db.session.execute(
            select(User).where(User.id == user_id)
        ).scalar_one_or_none()
        if user is None:
            logger.info("Unknown %s header value: %s", USER_HEADER, user_id)
            return None
        g.identity = Identity.from_user(user)
        return None

    @app.teardown_request
    def _drop_context(exc):
        # g can outlive the request when an app context is already pushed
        g.pop("security_context", None)
        g.pop("identity", None)


def current_hints() -> ResolutionHints:
    cfg = current_app.config
    return ResolutionHints(
        cookie_org_id=request.cookies.get(cfg.get("TENANT_COOKIE_NAME", "selected-organization")),
        header_org_id=request.headers.get(cfg.get("TENANT_HEADER_NAME", "X-Selected-Organization")),
    )


def get_security_context() -> SecurityContext:
    """
    Resolve (once) and return the request's SecurityContext.

    Raises:
        AuthenticationError, AuthorizationError, NoActiveOrganization
    """
    ctx = g.get("security_context")
    if ctx is not None:
        return ctx
    ctx = get_core().resolver.resolve(g.get("identity"), current_hints())
    g.security_context = ctx
    return ctx
