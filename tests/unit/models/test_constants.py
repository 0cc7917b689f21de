"""
Unit tests for models.constants module.

Tests:
- SwitchState ordering, terminal and reminder classification
- is_valid_transition() forward-only advances and cancel rules
- OPEN_STATES contents
"""

from __future__ import annotations

import pytest

from deadman.models import (
    OPEN_STATES,
    REMINDER_STATES,
    STATE_ORDER,
    EventKind,
    ServiceName,
    SwitchState,
    TriggerKind,
    is_valid_transition,
)


class TestSwitchState:
    """SwitchState properties."""

    def test_rank_follows_state_order(self) -> None:
        assert [s.rank for s in STATE_ORDER] == [0, 1, 2, 3, 4, 5]

    def test_cancelled_has_no_rank(self) -> None:
        assert SwitchState.CANCELLED.rank == -1

    def test_terminal_states(self) -> None:
        assert SwitchState.SENT.is_terminal
        assert SwitchState.CANCELLED.is_terminal
        assert not SwitchState.TRIGGERED.is_terminal

    def test_reminder_states(self) -> None:
        assert [s for s in SwitchState if s.is_reminder] == list(REMINDER_STATES)

    @pytest.mark.parametrize(
        ("state", "expected"),
        [
            (SwitchState.ACTIVE, True),
            (SwitchState.REMINDED_3, True),
            (SwitchState.TRIGGERED, False),
            (SwitchState.SENT, False),
            (SwitchState.CANCELLED, False),
        ],
    )
    def test_can_cancel(self, state: SwitchState, expected: bool) -> None:
        assert state.can_cancel is expected

    def test_values_are_strings(self) -> None:
        assert SwitchState.REMINDED_2 == "reminded_2"

    def test_open_states_exclude_terminal(self) -> None:
        assert SwitchState.SENT not in OPEN_STATES
        assert SwitchState.CANCELLED not in OPEN_STATES
        assert SwitchState.TRIGGERED in OPEN_STATES


class TestIsValidTransition:
    """Forward-only advances."""

    def test_forward_step(self) -> None:
        assert is_valid_transition(SwitchState.ACTIVE, SwitchState.REMINDED_1)

    def test_skipping_stages_is_allowed(self) -> None:
        assert is_valid_transition(SwitchState.ACTIVE, SwitchState.TRIGGERED)

    def test_backward_is_rejected(self) -> None:
        assert not is_valid_transition(SwitchState.REMINDED_2, SwitchState.REMINDED_1)
        assert not is_valid_transition(SwitchState.REMINDED_1, SwitchState.ACTIVE)

    def test_same_state_is_rejected(self) -> None:
        assert not is_valid_transition(SwitchState.TRIGGERED, SwitchState.TRIGGERED)

    def test_nothing_leaves_terminal_states(self) -> None:
        for target in SwitchState:
            assert not is_valid_transition(SwitchState.SENT, target)
            assert not is_valid_transition(SwitchState.CANCELLED, target)

    def test_cancel_below_triggered(self) -> None:
        assert is_valid_transition(SwitchState.REMINDED_3, SwitchState.CANCELLED)

    def test_cancel_from_triggered_is_rejected(self) -> None:
        assert not is_valid_transition(SwitchState.TRIGGERED, SwitchState.CANCELLED)


class TestOtherEnums:
    def test_trigger_kinds(self) -> None:
        assert {str(k) for k in TriggerKind} == {"fixed_time", "inactivity"}

    def test_service_names(self) -> None:
        assert {str(s) for s in ServiceName} == {"evaluator", "inactivity", "cleanup"}

    def test_event_kind(self) -> None:
        assert EventKind.TEXT_NOTE == 1
