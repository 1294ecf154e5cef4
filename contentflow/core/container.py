"""
Explicit wiring of the tenant-isolation core.

One ``CoreServices`` bundle is built per application from its config and
stored under ``app.extensions["contentflow"]``. Nothing in the core is a
module-level singleton; tests build their own bundles with fakes.

Usage:
    core = build_core(app.config)
    app.extensions["contentflow"] = core

    core = get_core()          # inside a request / app context
"""

from dataclasses import dataclass

from flask import current_app

from contentflow.services.access_audit import AccessAuditLogger
from contentflow.services.directory import MembershipDirectory, SqlMembershipDirectory
from contentflow.services.ownership import ContentOwnershipValidator
from contentflow.services.query_guard import DEFAULT_MAX_PAGE_SIZE, SecureQueryGuard
from contentflow.services.rate_limit import FixedWindowRateLimiter
from contentflow.services.security_context import SecurityContextResolver
from contentflow.services.work_item_service import WorkItemService
from contentflow.services.workflow import WorkflowEngine

EXTENSION_KEY = "contentflow"


@dataclass
class CoreServices:
    audit: AccessAuditLogger
    directory: MembershipDirectory
    resolver: SecurityContextResolver
    guard: SecureQueryGuard
    ownership: ContentOwnershipValidator
    engine: WorkflowEngine
    rate_limiter: FixedWindowRateLimiter
    work_items: WorkItemService


def build_core(config, directory: MembershipDirectory | None = None) -> CoreServices:
    """Construct every core component from a config mapping."""
    audit = AccessAuditLogger(persist=bool(config.get("AUDIT_PERSIST", False)))
    directory = directory or SqlMembershipDirectory()
    guard = SecureQueryGuard(audit)
    ownership = ContentOwnershipValidator(directory, audit)
    engine = WorkflowEngine()
    return CoreServices(
        audit=audit,
        directory=directory,
        resolver=SecurityContextResolver(directory, audit),
        guard=guard,
        ownership=ownership,
        engine=engine,
        rate_limiter=FixedWindowRateLimiter(
            max_requests=int(config.get("RATE_LIMIT_MAX_REQUESTS", 100)),
            window_seconds=int(config.get("RATE_LIMIT_WINDOW_SECONDS", 900)),
        ),
        work_items=WorkItemService(
            guard=guard,
            ownership=ownership,
            engine=engine,
            audit=audit,
            max_page_size=int(config.get("MAX_PAGE_SIZE", DEFAULT_MAX_PAGE_SIZE)),
        ),
    )


def get_core() -> CoreServices:
    return current_app.extensions[EXTENSION_KEY]
