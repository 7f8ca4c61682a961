"""
Status transition graphs for waqfs and tranches
"""
import pytest

from models import TrancheStatus, WaqfStatus
from waqf_engine.errors import BusinessStateError
from waqf_engine.state_machine import (
    InvalidTransitionError,
    TRANCHE_STATUS_MACHINE,
    WAQF_STATUS_MACHINE,
    build_state_machine,
)


class TestWaqfStatusGraph:
    """Waqf lifecycle transitions"""

    @pytest.mark.parametrize("from_state,to_state", [
        (WaqfStatus.ACTIVE, WaqfStatus.PAUSED),
        (WaqfStatus.ACTIVE, WaqfStatus.COMPLETED),
        (WaqfStatus.ACTIVE, WaqfStatus.INACTIVE),
        (WaqfStatus.ACTIVE, WaqfStatus.ARCHIVED),
        (WaqfStatus.PAUSED, WaqfStatus.ACTIVE),
        (WaqfStatus.PAUSED, WaqfStatus.INACTIVE),
        (WaqfStatus.PAUSED, WaqfStatus.ARCHIVED),
        (WaqfStatus.INACTIVE, WaqfStatus.ACTIVE),
        (WaqfStatus.INACTIVE, WaqfStatus.ARCHIVED),
        (WaqfStatus.COMPLETED, WaqfStatus.ARCHIVED),
    ])
    def test_allowed_transitions(self, from_state, to_state):
        WAQF_STATUS_MACHINE.validate_transition(from_state, to_state)

    @pytest.mark.parametrize("from_state,to_state", [
        (WaqfStatus.COMPLETED, WaqfStatus.ACTIVE),
        (WaqfStatus.PAUSED, WaqfStatus.COMPLETED),
        (WaqfStatus.INACTIVE, WaqfStatus.PAUSED),
        (WaqfStatus.ARCHIVED, WaqfStatus.ACTIVE),
    ])
    def test_rejected_transitions(self, from_state, to_state):
        with pytest.raises(InvalidTransitionError) as exc_info:
            WAQF_STATUS_MACHINE.validate_transition(from_state, to_state)
        assert exc_info.value.from_state == from_state.value
        assert exc_info.value.to_state == to_state.value

    def test_archived_is_terminal(self):
        assert WAQF_STATUS_MACHINE.is_terminal(WaqfStatus.ARCHIVED)
        assert not WAQF_STATUS_MACHINE.is_terminal(WaqfStatus.COMPLETED)

    def test_same_state_is_not_a_transition(self):
        WAQF_STATUS_MACHINE.validate_transition(WaqfStatus.ARCHIVED, WaqfStatus.ARCHIVED)

    def test_invalid_transition_is_business_state_error(self):
        with pytest.raises(BusinessStateError, match="Allowed transitions from 'completed'"):
            WAQF_STATUS_MACHINE.validate_transition("completed", "paused")


class TestTrancheStatusGraph:
    """Tranche lifecycle transitions"""

    def test_matured_tranche_can_be_settled(self):
        for target in (TrancheStatus.RETURNED, TrancheStatus.RETURN_SCHEDULED, TrancheStatus.ROLLED_OVER):
            assert TRANCHE_STATUS_MACHINE.can_transition(TrancheStatus.MATURED, target)

    def test_scheduled_return_only_completes(self):
        assert TRANCHE_STATUS_MACHINE.get_allowed_transitions(TrancheStatus.RETURN_SCHEDULED) == ["returned"]

    def test_settled_states_are_terminal(self):
        assert TRANCHE_STATUS_MACHINE.is_terminal(TrancheStatus.RETURNED)
        assert TRANCHE_STATUS_MACHINE.is_terminal(TrancheStatus.ROLLED_OVER)


class TestBuildStateMachine:

    def test_transition_sets_status_attribute(self):
        class Item:
            status = "draft"

        machine = build_state_machine("item", {"draft": ["published"], "published": []})
        item = Item()
        result = machine.transition(item, "published")
        assert item.status == "published"
        assert result == {"from_state": "draft", "to_state": "published"}
        assert machine.get_graph() == {"draft": ["published"], "published": []}
