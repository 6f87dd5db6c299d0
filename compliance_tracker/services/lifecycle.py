"""Lifecycle state machines for organizations, engagements and controls.

Each graph maps a state to the states it may move to. Staying in the
current state is always accepted; a brand-new record may start anywhere.
"""

from collections.abc import Mapping

from ..core.errors import StateTransitionError, ValidationError
from ..models import (
    ControlStatus,
    EngagementStage,
    EngagementStatus,
    OrganizationStatus,
)
from ..models.derived import state_value


def _graph(edges: Mapping) -> dict[str, frozenset[str]]:
    return {
        state_value(source): frozenset(state_value(t) for t in targets)
        for source, targets in edges.items()
    }


ORGANIZATION_TRANSITIONS = _graph({
    OrganizationStatus.PENDING: {OrganizationStatus.ACTIVE, OrganizationStatus.DISABLED},
    OrganizationStatus.ACTIVE: {
        OrganizationStatus.PAUSED,
        OrganizationStatus.DISABLED,
        OrganizationStatus.ARCHIVED,
    },
    OrganizationStatus.PAUSED: {
        OrganizationStatus.ACTIVE,
        OrganizationStatus.DISABLED,
        OrganizationStatus.ARCHIVED,
    },
    OrganizationStatus.DISABLED: {OrganizationStatus.ACTIVE, OrganizationStatus.ARCHIVED},
    OrganizationStatus.ARCHIVED: set(),
})

ENGAGEMENT_TRANSITIONS = _graph({
    EngagementStatus.PENDING: {EngagementStatus.SCHEDULED, EngagementStatus.CLOSED},
    EngagementStatus.SCHEDULED: {EngagementStatus.ACTIVE, EngagementStatus.CLOSED},
    EngagementStatus.ACTIVE: {EngagementStatus.EXTENDED, EngagementStatus.CLOSED},
    EngagementStatus.EXTENDED: {EngagementStatus.CLOSED},
    EngagementStatus.CLOSED: set(),
})

CONTROL_TRANSITIONS = _graph({
    ControlStatus.OPEN: {ControlStatus.RESPONDED, ControlStatus.COMPLETE},
    ControlStatus.RESPONDED: {
        ControlStatus.UNDER_REVIEW,
        ControlStatus.ACTION_REQUIRED,
        ControlStatus.COMPLETE,
    },
    ControlStatus.UNDER_REVIEW: {ControlStatus.ACTION_REQUIRED, ControlStatus.COMPLETE},
    ControlStatus.ACTION_REQUIRED: {ControlStatus.RESPONDED, ControlStatus.COMPLETE},
    ControlStatus.COMPLETE: set(),
})

STAGE_ORDER: tuple[str, ...] = tuple(s.value for s in EngagementStage)


# =============================================================================
# PREDICATES
# =============================================================================


def can_transition(graph: Mapping[str, frozenset[str]], current, target) -> bool:
    current, target = state_value(current), state_value(target)
    if current == target:
        return True
    return target in graph.get(current, frozenset())


def can_advance_stage(current, target) -> bool:
    current, target = state_value(current), state_value(target)
    return STAGE_ORDER.index(target) >= STAGE_ORDER.index(current)


def is_terminal(graph: Mapping[str, frozenset[str]], state) -> bool:
    return not graph.get(state_value(state))


# =============================================================================
# CHECKS (raise on violation)
# =============================================================================


def _check(graph, entity: str, field: str, current, target) -> None:
    if state_value(target) not in graph:
        raise ValidationError.for_field(field, f"Unknown {entity} {field}: {state_value(target)}")
    if not can_transition(graph, current, target):
        raise StateTransitionError(field, state_value(current), state_value(target), entity=entity)


def check_organization_status(current, target) -> None:
    _check(ORGANIZATION_TRANSITIONS, "organization", "status", current, target)


def check_engagement_status(current, target) -> None:
    _check(ENGAGEMENT_TRANSITIONS, "engagement", "status", current, target)


def check_control_status(current, target) -> None:
    _check(CONTROL_TRANSITIONS, "control", "status", current, target)


def check_engagement_stage(current, target) -> None:
    if state_value(target) not in STAGE_ORDER:
        raise ValidationError.for_field("stage", f"Unknown engagement stage: {state_value(target)}")
    if not can_advance_stage(current, target):
        raise StateTransitionError("stage", state_value(current), state_value(target), entity="engagement")
