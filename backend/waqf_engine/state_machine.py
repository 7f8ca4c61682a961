"""
STATE MACHINE UTILITY

Allowed status transitions for waqfs and contribution tranches, built once
from an immutable adjacency mapping and shared read-only by every request.

Usage:
    machine = build_state_machine("waqf", {"active": ["paused"], "paused": ["active"]})
    machine.validate_transition("active", "paused")      # ok
    machine.validate_transition("active", "archived")    # InvalidTransitionError
    machine.transition(waqf, "paused")                   # validates, then sets waqf.status
"""

from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple
from enum import Enum
import logging

from .errors import BusinessStateError
from models import TrancheStatus, WaqfStatus

logger = logging.getLogger(__name__)


class InvalidTransitionError(BusinessStateError):
    """A status change that is not an edge of the entity's graph."""

    def __init__(self, entity: str, from_state: str, to_state: str, allowed: Optional[List[str]] = None):
        self.entity = entity
        self.from_state = from_state
        self.to_state = to_state
        self.allowed = allowed or []
        if self.allowed:
            hint = f" Allowed transitions from '{from_state}': {self.allowed}"
        else:
            hint = f" '{from_state}' is a final state."
        super().__init__(f"{entity} status cannot change from '{from_state}' to '{to_state}'.{hint}")


def _state_value(state: Any) -> str:
    return state.value if isinstance(state, Enum) else str(state)


class StateMachine:
    """
    Transition graph for one entity type.

    Same-state "transitions" are always accepted: a write that leaves the
    status untouched is not a transition.
    """

    def __init__(self, entity_name: str, graph: Mapping[str, Tuple[str, ...]], status_field: str = "status"):
        self.entity_name = entity_name
        self.status_field = status_field
        self._graph: Dict[str, Tuple[str, ...]] = dict(graph)

    def get_allowed_transitions(self, from_state: Any) -> List[str]:
        return sorted(self._graph.get(_state_value(from_state), ()))

    def can_transition(self, from_state: Any, to_state: Any) -> bool:
        from_value, to_value = _state_value(from_state), _state_value(to_state)
        return from_value == to_value or to_value in self._graph.get(from_value, ())

    def validate_transition(self, from_state: Any, to_state: Any) -> None:
        if self.can_transition(from_state, to_state):
            return
        logger.warning(
            f"[STATE_MACHINE] Rejected {self.entity_name} transition "
            f"{_state_value(from_state)} -> {_state_value(to_state)}"
        )
        raise InvalidTransitionError(
            self.entity_name,
            _state_value(from_state),
            _state_value(to_state),
            self.get_allowed_transitions(from_state),
        )

    def transition(self, entity: Any, to_state: Any) -> Dict[str, Any]:
        """Validate and apply a transition to an object's status attribute."""
        from_state = getattr(entity, self.status_field)
        self.validate_transition(from_state, to_state)
        setattr(entity, self.status_field, to_state)
        logger.info(
            f"[STATE_MACHINE] {self.entity_name}: "
            f"{_state_value(from_state)} -> {_state_value(to_state)}"
        )
        return {"from_state": _state_value(from_state), "to_state": _state_value(to_state)}

    def is_terminal(self, state: Any) -> bool:
        return not self._graph.get(_state_value(state))

    def get_graph(self) -> Dict[str, List[str]]:
        return {state: sorted(targets) for state, targets in sorted(self._graph.items())}


def build_state_machine(
    entity_name: str,
    graph: Mapping[Any, Iterable[Any]],
    status_field: str = "status",
) -> StateMachine:
    """Freeze a {state: successors} mapping (enum members or strings) into a StateMachine."""
    frozen = {
        _state_value(state): tuple(_state_value(target) for target in targets)
        for state, targets in graph.items()
    }
    for targets in list(frozen.values()):
        for target in targets:
            frozen.setdefault(target, ())
    return StateMachine(entity_name, frozen, status_field)


# =============================================================================
# GRAPHS
# =============================================================================

WAQF_STATUS_GRAPH = {
    WaqfStatus.ACTIVE: (WaqfStatus.PAUSED, WaqfStatus.COMPLETED, WaqfStatus.INACTIVE, WaqfStatus.ARCHIVED),
    WaqfStatus.PAUSED: (WaqfStatus.ACTIVE, WaqfStatus.INACTIVE, WaqfStatus.ARCHIVED),
    WaqfStatus.INACTIVE: (WaqfStatus.ACTIVE, WaqfStatus.ARCHIVED),
    WaqfStatus.COMPLETED: (WaqfStatus.ARCHIVED,),
    WaqfStatus.ARCHIVED: (),
}

TRANCHE_STATUS_GRAPH = {
    TrancheStatus.LOCKED: (
        TrancheStatus.MATURED,
        TrancheStatus.RETURNED,
        TrancheStatus.RETURN_SCHEDULED,
        TrancheStatus.ROLLED_OVER,
    ),
    TrancheStatus.MATURED: (
        TrancheStatus.RETURNED,
        TrancheStatus.RETURN_SCHEDULED,
        TrancheStatus.ROLLED_OVER,
    ),
    TrancheStatus.RETURN_SCHEDULED: (TrancheStatus.RETURNED,),
    TrancheStatus.RETURNED: (),
    TrancheStatus.ROLLED_OVER: (),
}

WAQF_STATUS_MACHINE = build_state_machine("waqf", WAQF_STATUS_GRAPH)
TRANCHE_STATUS_MACHINE = build_state_machine("tranche", TRANCHE_STATUS_GRAPH)
