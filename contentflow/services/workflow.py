"""
Content Workflow Engine — table-driven stage/status state machine.

A work item carries two positions, ``current_stage`` and ``current_status``.
The transition table declares each row against ONE of them, and a row
matches when its ``from_state`` equals either the current stage or the
current status. Stage and status values are compared as plain strings, so
``Stage.APPROVED`` and ``Status.APPROVED`` are the same key.

    IDEA → DRAFT → CONTENT_REVIEW → APPROVED → PUBLISHED → DELIVERED
      ↘ REJECTED   ↘ REJECTED   ↘ DRAFT / REJECTED

    PENDING → IN_PROGRESS → REVIEW → APPROVED → PUBLISHED → DELIVERED
                              ↘ IN_PROGRESS

Roles on the table are platform roles (CREATIVE, CLIENT, ADMIN), compared
case-insensitively. A row with no required roles admits any role.

The engine validates; it owns no storage. Persisting the new state and
applying an auto-transition are the caller's job (see
``contentflow.services.work_item_service``). Callers that persist use
``execute_exact``, which accepts only the pair ``targets_for`` derives
from the matched row.

Usage:
    engine = WorkflowEngine()
    result = engine.execute("CONTENT_REVIEW", "REVIEW", "APPROVED", "APPROVED",
                            role="CLIENT", action="approve_content")
    if result.auto_transition:
        ...
"""

import logging
from dataclasses import dataclass, field
from enum import Enum

from contentflow.core.exceptions import IllegalTransition

logger = logging.getLogger(__name__)


class Stage(str, Enum):
    IDEA = "IDEA"
    DRAFT = "DRAFT"
    CONTENT_REVIEW = "CONTENT_REVIEW"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    DELIVERED = "DELIVERED"


class Status(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEW = "REVIEW"
    APPROVED = "APPROVED"
    PUBLISHED = "PUBLISHED"
    DELIVERED = "DELIVERED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


class WorkflowRole(str, Enum):
    CREATIVE = "CREATIVE"
    CLIENT = "CLIENT"
    ADMIN = "ADMIN"


@dataclass(frozen=True)
class WorkflowTransition:
    from_state: str
    to_state: str
    action: str
    description: str = ""
    required_roles: frozenset = field(default_factory=frozenset)
    auto_transition: bool = False

    def allows(self, role) -> bool:
        if not self.required_roles:
            return True
        return _label(role) in self.required_roles

    def to_dict(self) -> dict:
        return {
            "from": self.from_state,
            "to": self.to_state,
            "action": self.action,
            "description": self.description,
            "required_roles": sorted(self.required_roles),
            "auto_transition": self.auto_transition,
        }


def _t(from_state, to_state, action, description, roles, auto=False) -> WorkflowTransition:
    return WorkflowTransition(
        from_state=from_state.value,
        to_state=to_state.value,
        action=action,
        description=description,
        required_roles=frozenset(r.value for r in roles),
        auto_transition=auto,
    )


_CREATIVE_ADMIN = (WorkflowRole.CREATIVE, WorkflowRole.ADMIN)
_ADMIN_CLIENT = (WorkflowRole.ADMIN, WorkflowRole.CLIENT)

CONTENT_WORKFLOW_TRANSITIONS: tuple[WorkflowTransition, ...] = (
    # ── Stage dimension ──────────────────────────────────────────────────
    _t(Stage.IDEA, Stage.DRAFT, "create_draft",
       "Turn an approved idea into a working draft", _CREATIVE_ADMIN),
    _t(Stage.IDEA, Status.REJECTED, "reject_idea",
       "Reject the idea before any drafting starts", _ADMIN_CLIENT),
    _t(Stage.DRAFT, Stage.CONTENT_REVIEW, "submit_for_review",
       "Send the draft to the client for review", _CREATIVE_ADMIN),
    _t(Stage.DRAFT, Stage.DRAFT, "revise_draft",
       "Save a new revision of the draft", _CREATIVE_ADMIN),
    _t(Stage.DRAFT, Status.REJECTED, "reject_draft",
       "Reject the draft", _ADMIN_CLIENT),
    _t(Stage.CONTENT_REVIEW, Stage.APPROVED, "approve_content",
       "Approve the reviewed content", _ADMIN_CLIENT),
    _t(Stage.CONTENT_REVIEW, Stage.DRAFT, "request_revision",
       "Send the content back for revision", _ADMIN_CLIENT),
    _t(Stage.CONTENT_REVIEW, Status.REJECTED, "reject_content",
       "Reject the reviewed content", _ADMIN_CLIENT),
    _t(Stage.APPROVED, Stage.PUBLISHED, "publish_content",
       "Publish approved content", _CREATIVE_ADMIN, auto=True),
    _t(Stage.PUBLISHED, Stage.DELIVERED, "mark_delivered",
       "Mark published content as delivered to the client", _CREATIVE_ADMIN),
    # ── Status dimension ─────────────────────────────────────────────────
    _t(Status.PENDING, Status.IN_PROGRESS, "start_work",
       "Start working on the item", _CREATIVE_ADMIN),
    _t(Status.IN_PROGRESS, Status.REVIEW, "submit_for_review",
       "Submit the work for review", _CREATIVE_ADMIN),
    _t(Status.REVIEW, Status.APPROVED, "approve",
       "Approve the submitted work", _ADMIN_CLIENT),
    _t(Status.REVIEW, Status.IN_PROGRESS, "request_changes",
       "Request changes to the submitted work", _ADMIN_CLIENT),
    _t(Status.APPROVED, Status.PUBLISHED, "publish",
       "Publish the approved work", _CREATIVE_ADMIN, auto=True),
    _t(Status.PUBLISHED, Status.DELIVERED, "deliver",
       "Deliver the published work", _CREATIVE_ADMIN),
)

TERMINAL_STATES = frozenset({
    Status.DELIVERED.value,
    Status.REJECTED.value,
    Status.CANCELLED.value,
})


_STAGE_VALUES = frozenset(s.value for s in Stage)
_STATUS_VALUES = frozenset(s.value for s in Status)


def _label(value) -> str | None:
    if isinstance(value, Enum):
        value = value.value
    if value is None:
        return None
    return str(value).strip().upper() or None


def validate_table(transitions) -> None:
    """Every state that can be entered must have an outward row or be terminal.

    Raises:
        ValueError: listing the dead-end states.
    """
    sources = {t.from_state for t in transitions}
    dead_ends = sorted(
        {t.to_state for t in transitions} - sources - TERMINAL_STATES
    )
    if dead_ends:
        raise ValueError(f"Workflow table has dead-end states: {', '.join(dead_ends)}")
    for t in transitions:
        if t.from_state in TERMINAL_STATES:
            raise ValueError(f"Terminal state {t.from_state} has an outward row ({t.action})")


@dataclass(frozen=True)
class AutoTransition:
    """An eligible follow-on move. The caller decides when to apply it."""

    action: str
    from_stage: str | None
    from_status: str | None
    to_stage: str = Stage.PUBLISHED.value
    to_status: str = Status.PUBLISHED.value

    def to_dict(self) -> dict:
        return {
            "action": self.action,
            "from_stage": self.from_stage,
            "from_status": self.from_status,
            "to_stage": self.to_stage,
            "to_status": self.to_status,
        }


@dataclass(frozen=True)
class TransitionResult:
    transition: WorkflowTransition
    from_stage: str | None
    from_status: str | None
    to_stage: str | None
    to_status: str | None
    auto_transition: AutoTransition | None = None

    def to_dict(self) -> dict:
        return {
            "action": self.transition.action,
            "from_stage": self.from_stage,
            "from_status": self.from_status,
            "to_stage": self.to_stage,
            "to_status": self.to_status,
            "auto_transition": self.auto_transition.to_dict() if self.auto_transition else None,
        }


class WorkflowEngine:
    """Stateless validator over a fixed transition table."""

    def __init__(self, transitions=CONTENT_WORKFLOW_TRANSITIONS) -> None:
        validate_table(transitions)
        self.transitions = tuple(transitions)

    def _from_matches(self, current_stage, current_status) -> list[WorkflowTransition]:
        current = {_label(current_stage), _label(current_status)} - {None}
        return [t for t in self.transitions if t.from_state in current]

    def can_transition(self, current_stage, current_status, target_state, role) -> bool:
        target = _label(target_state)
        return any(
            t.to_state == target and t.allows(role)
            for t in self._from_matches(current_stage, current_status)
        )

    def list_legal_transitions(self, current_stage, current_status, role) -> list[WorkflowTransition]:
        return [t for t in self._from_matches(current_stage, current_status) if t.allows(role)]

    def next_states(self, current_stage, current_status, role) -> list[str]:
        seen = []
        for t in self.list_legal_transitions(current_stage, current_status, role):
            if t.to_state not in seen:
                seen.append(t.to_state)
        return seen

    def find_transition(self, current_stage, current_status, action) -> WorkflowTransition | None:
        """First row for *action* leaving the current state, ignoring roles."""
        for t in self._from_matches(current_stage, current_status):
            if t.action == action:
                return t
        return None

    def targets_for(self, transition: WorkflowTransition, current_stage, current_status) -> tuple:
        """(stage, status) an item lands in after *transition*.

        The row's ``to_state`` replaces whichever dimension(s) it names;
        values shared by both enums (APPROVED, PUBLISHED, DELIVERED) set both.
        """
        stage, status = _label(current_stage), _label(current_status)
        if transition.to_state in _STAGE_VALUES:
            stage = transition.to_state
        if transition.to_state in _STATUS_VALUES:
            status = transition.to_state
        return stage, status

    def resolve_targets(self, current_stage, current_status, action, to_stage=None, to_status=None) -> tuple:
        """(stage, status) requested for *action*.

        Omitted dimensions are taken from the first *action* row whose
        derived target agrees with the dimensions that were given. With no
        agreeing row the request is returned as-is so ``execute`` rejects it.
        """
        for t in self._from_matches(current_stage, current_status):
            if t.action != action:
                continue
            stage, status = self.targets_for(t, current_stage, current_status)
            if to_stage is not None and _label(to_stage) != stage:
                continue
            if to_status is not None and _label(to_status) != status:
                continue
            return stage, status
        return (
            _label(to_stage) or _label(current_stage),
            _label(to_status) or _label(current_status),
        )

    def is_terminal(self, current_stage, current_status) -> bool:
        return bool({_label(current_stage), _label(current_status)} & TERMINAL_STATES)

    def execute(self, from_stage, from_status, to_stage, to_status, role, action) -> TransitionResult:
        """
        Validate one move.

        A row matches when its ``to_state`` is one of the two requested
        dimensions. Callers that persist the outcome use ``execute_exact``.

        Raises:
            IllegalTransition: no row matches from/to/action for *role*.
                The error echoes ``"{stage}/{status}"`` for both ends and
                the action unchanged.
        """
        targets = {_label(to_stage), _label(to_status)} - {None}
        return self._run(
            from_stage, from_status, to_stage, to_status, role, action,
            lambda t: t.to_state in targets,
        )

    def execute_exact(self, from_stage, from_status, to_stage, to_status, role, action) -> TransitionResult:
        """
        Like ``execute``, but the requested pair must equal the row's
        ``targets_for`` on BOTH dimensions. The dimension a row does not
        name keeps its current value; a shared value such as APPROVED sets
        both. The result's target is therefore always a table-derived state.

        Raises:
            IllegalTransition: same shape as ``execute``.
        """
        requested = (_label(to_stage), _label(to_status))
        return self._run(
            from_stage, from_status, to_stage, to_status, role, action,
            lambda t: self.targets_for(t, from_stage, from_status) == requested,
        )

    def _run(self, from_stage, from_status, to_stage, to_status, role, action, target_ok) -> TransitionResult:
        for t in self._from_matches(from_stage, from_status):
            if t.action == action and target_ok(t) and t.allows(role):
                logger.debug(
                    "Workflow transition %s: %s/%s -> %s/%s (role=%s)",
                    action, from_stage, from_status, to_stage, to_status, role,
                )
                return TransitionResult(
                    transition=t,
                    from_stage=_label(from_stage),
                    from_status=_label(from_status),
                    to_stage=_label(to_stage),
                    to_status=_label(to_status),
                    auto_transition=self.auto_transition_for(to_stage, to_status),
                )

        logger.info(
            "Illegal workflow transition %s: %s/%s -> %s/%s (role=%s)",
            action, from_stage, from_status, to_stage, to_status, role,
        )
        raise IllegalTransition(
            f"{_label(from_stage)}/{_label(from_status)}",
            f"{_label(to_stage)}/{_label(to_status)}",
            action,
        )

    def auto_transition_for(self, current_stage, current_status) -> AutoTransition | None:
        """Follow-on move for an item sitting in APPROVED, if the table has one."""
        stage, status = _label(current_stage), _label(current_status)
        if Stage.APPROVED.value not in (stage, status):
            return None
        for t in self._from_matches(stage, status):
            if t.auto_transition:
                return AutoTransition(action=t.action, from_stage=stage, from_status=status)
        return None

    def compute_progress(self, items) -> dict:
        """
        Aggregate delivery progress over work items (models or dicts).

        ``percent_complete`` is delivered / total * 100 rounded half up,
        and 0 for an empty list.
        """
        counts = {
            "total": 0,
            "completed": 0,
            "in_progress": 0,
            "in_review": 0,
            "approved": 0,
            "published": 0,
            "delivered": 0,
        }
        for item in items:
            stage, status = _state_of(item)
            counts["total"] += 1
            if status == Status.IN_PROGRESS.value or stage == Stage.DRAFT.value:
                counts["in_progress"] += 1
            if status == Status.REVIEW.value or stage == Stage.CONTENT_REVIEW.value:
                counts["in_review"] += 1
            if Stage.APPROVED.value in (stage, status):
                counts["approved"] += 1
            if Stage.PUBLISHED.value in (stage, status):
                counts["published"] += 1
            if Stage.DELIVERED.value in (stage, status):
                counts["delivered"] += 1

        counts["completed"] = counts["delivered"]
        total = counts["total"]
        counts["percent_complete"] = (
            int(counts["delivered"] * 100 / total + 0.5) if total else 0
        )
        return counts


def _state_of(item) -> tuple[str | None, str | None]:
    if isinstance(item, dict):
        return _label(item.get("current_stage")), _label(item.get("current_status"))
    return _label(getattr(item, "current_stage", None)), _label(getattr(item, "current_status", None))
