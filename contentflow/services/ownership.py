"""
Content Ownership Validator — does this work item belong to the caller's tenant?

Called before any mutation of an Idea, ContentDraft or ContentItem.

    validator = ContentOwnershipValidator(directory, audit)
    if not validator.owns(item_id, ResourceKind.CONTENT_ITEM, ctx):
        ...

Order of checks:
    1. the context's own membership. No active membership in
       ctx.organization_id → False, and resource storage is never read.
    2. a count of rows matching {id, organization_id = ctx.organization_id}.
       True only when exactly one row matches.

A resource that exists in another tenant is reported exactly like a
missing one (False / NotFoundError → 404).
"""

import logging
from enum import Enum

from sqlalchemy import func, select

from contentflow.core.exceptions import NotFoundError, ValidationError
from contentflow.models import db
from contentflow.models.content import ContentDraft, ContentItem, Idea
from contentflow.services.directory import MembershipDirectory

logger = logging.getLogger(__name__)


class ResourceKind(str, Enum):
    IDEA = "idea"
    DRAFT = "draft"
    CONTENT_ITEM = "content_item"

    @classmethod
    def parse(cls, value) -> "ResourceKind":
        """Accept enum members, values, and the URL aliases used by the API."""
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().lower().replace("-", "_")
        key = _ALIASES.get(key, key)
        try:
            return cls(key)
        except ValueError:
            raise ValidationError(
                f"Unknown resource kind: {value}",
                details={"allowed": [k.value for k in cls]},
            ) from None


_ALIASES = {
    "ideas": "idea",
    "drafts": "draft",
    "content_draft": "draft",
    "content": "content_item",
    "contentitem": "content_item",
    "content_items": "content_item",
}

_MODELS = {
    ResourceKind.IDEA: Idea,
    ResourceKind.DRAFT: ContentDraft,
    ResourceKind.CONTENT_ITEM: ContentItem,
}

_ENTITY_TYPES = {
    ResourceKind.IDEA: "idea",
    ResourceKind.DRAFT: "content_draft",
    ResourceKind.CONTENT_ITEM: "content_item",
}


def model_for(kind) -> type:
    return _MODELS[ResourceKind.parse(kind)]


def entity_type_for(kind) -> str:
    return _ENTITY_TYPES[ResourceKind.parse(kind)]


class ContentOwnershipValidator:
    """Confirms a work item id belongs to the resolved tenant."""

    def __init__(self, directory: MembershipDirectory, audit=None) -> None:
        self.directory = directory
        self.audit = audit

    def has_active_membership(self, ctx) -> bool:
        if not ctx.organization_id:
            return False
        membership = self.directory.get_membership(ctx.user_id, ctx.organization_id)
        return membership is not None and membership.is_active

    def owns(self, resource_id, kind, ctx) -> bool:
        kind = ResourceKind.parse(kind)
        if not self.has_active_membership(ctx):
            self._deny(resource_id, kind, ctx, "no_active_membership")
            return False

        model = _MODELS[kind]
        stmt = (
            select(func.count())
            .select_from(model)
            .where(model.id == resource_id, model.organization_id == ctx.organization_id)
        )
        count = db.session.execute(stmt).scalar_one()
        if count != 1:
            self._deny(resource_id, kind, ctx, "not_in_organization")
            return False
        return True

    def require_owned(self, resource_id, kind, ctx):
        """Return the owned row, or raise NotFoundError.

        Raises:
            NotFoundError: no membership, missing row, or row in another tenant.
        """
        kind = ResourceKind.parse(kind)
        model = _MODELS[kind]
        if not self.owns(resource_id, kind, ctx):
            raise NotFoundError(resource=model.__name__, resource_id=resource_id)
        stmt = select(model).where(
            model.id == resource_id, model.organization_id == ctx.organization_id
        )
        return db.session.execute(stmt).scalar_one()

    def _deny(self, resource_id, kind: ResourceKind, ctx, reason: str) -> None:
        logger.info(
            "Ownership denied: %s id=%s org=%s user=%s (%s)",
            kind.value, resource_id, ctx.organization_id, ctx.user_id, reason,
        )
        if self.audit is not None:
            self.audit.record(
                "ownership.denied",
                ctx=ctx,
                allowed=False,
                entity_type=_ENTITY_TYPES[kind],
                entity_id=str(resource_id),
                reason=reason,
                level=logging.INFO,
            )
