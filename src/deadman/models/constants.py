"""Shared constants for the models layer.

Defines the switch state machine, trigger kinds, service identifiers and
the relay event kinds/tags used on the wire. Placing them here avoids
circular dependencies between the models, core and services layers.

See Also:
    [Switch][deadman.models.switch.Switch]: Carries a
        [SwitchState][deadman.models.constants.SwitchState] and a trigger
        of one [TriggerKind][deadman.models.constants.TriggerKind].
    [Repository.advance()][deadman.core.repository.Repository.advance]:
        The compare-and-set primitive that enforces
        [is_valid_transition][deadman.models.constants.is_valid_transition].
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class SwitchState(StrEnum):
    """Lifecycle state of a switch.

    The non-cancelled states form a total order::

        ACTIVE < REMINDED_1 < REMINDED_2 < REMINDED_3 < TRIGGERED < SENT

    ``CANCELLED`` sits outside the order. It is reachable from any state
    below ``TRIGGERED`` and, like ``SENT``, is terminal.

    Members are strings, so compare them with ``rank`` rather than ``<``.

    Examples:
        ```python
        SwitchState.REMINDED_1.rank                      # 1
        SwitchState.SENT.is_terminal                     # True
        SwitchState.TRIGGERED.can_cancel                 # False
        ```
    """

    ACTIVE = "active"
    REMINDED_1 = "reminded_1"
    REMINDED_2 = "reminded_2"
    REMINDED_3 = "reminded_3"
    TRIGGERED = "triggered"
    SENT = "sent"
    CANCELLED = "cancelled"

    @property
    def rank(self) -> int:
        """Position in the forward order. ``CANCELLED`` has no position (-1)."""
        try:
            return STATE_ORDER.index(self)
        except ValueError:
            return -1

    @property
    def is_terminal(self) -> bool:
        """Whether the state can never change again."""
        return self in TERMINAL_STATES

    @property
    def is_reminder(self) -> bool:
        """Whether the state is one of the reminder stages."""
        return self in REMINDER_STATES

    @property
    def can_cancel(self) -> bool:
        """Whether a user cancel is still allowed from this state."""
        return not self.is_terminal and self.rank < STATE_ORDER.index(SwitchState.TRIGGERED)


STATE_ORDER: tuple[SwitchState, ...] = (
    SwitchState.ACTIVE,
    SwitchState.REMINDED_1,
    SwitchState.REMINDED_2,
    SwitchState.REMINDED_3,
    SwitchState.TRIGGERED,
    SwitchState.SENT,
)

REMINDER_STATES: tuple[SwitchState, ...] = (
    SwitchState.REMINDED_1,
    SwitchState.REMINDED_2,
    SwitchState.REMINDED_3,
)

TERMINAL_STATES: frozenset[SwitchState] = frozenset({SwitchState.SENT, SwitchState.CANCELLED})

OPEN_STATES: tuple[SwitchState, ...] = tuple(s for s in STATE_ORDER if not s.is_terminal)


def is_valid_transition(current: SwitchState, target: SwitchState) -> bool:
    """Return whether ``current -> target`` is a legal advance.

    Legal advances move strictly forward along
    [STATE_ORDER][deadman.models.constants.STATE_ORDER], or go to
    ``CANCELLED`` from a state below ``TRIGGERED``. The check-in reset
    (reminder stage back to ``ACTIVE``) is not an advance and is handled by
    [Repository.record_check_in()][deadman.core.repository.Repository.record_check_in].
    """
    if current.is_terminal:
        return False
    if target is SwitchState.CANCELLED:
        return current.can_cancel
    return target.rank > current.rank


class TriggerKind(StrEnum):
    """Which half of a switch trigger is set.

    Attributes:
        FIXED_TIME: Release at an absolute timestamp. No reminder stages.
        INACTIVITY: Release after a number of days without a check-in,
            preceded by the reminder cascade.
    """

    FIXED_TIME = "fixed_time"
    INACTIVITY = "inactivity"


class ServiceName(StrEnum):
    """Canonical service identifiers used in logging, metrics, and the CLI.

    Attributes:
        EVALUATOR: Reminder/trigger evaluation over every open switch
            ([Evaluator][deadman.services.evaluator.Evaluator]).
        INACTIVITY: Secondary check restricted to inactivity switches
            ([InactivityChecker][deadman.services.evaluator.InactivityChecker]).
        CLEANUP: Expired ephemeral state sweeper
            ([Cleanup][deadman.services.cleanup.Cleanup]).
    """

    EVALUATOR = "evaluator"
    INACTIVITY = "inactivity"
    CLEANUP = "cleanup"


class EventKind(IntEnum):
    """Relay event kinds written and read by this system.

    Attributes:
        TEXT_NOTE: Kind 1. Both sealed payload records and public trigger
            notices are regular (non-replaceable) kind 1 events, which keeps
            stored content immutable on relays. They are told apart by their
            ``t`` tag (see [PAYLOAD_TAG][deadman.models.constants.PAYLOAD_TAG]
            and [NOTICE_TAG][deadman.models.constants.NOTICE_TAG]).
    """

    TEXT_NOTE = 1


PAYLOAD_TAG = "deadman-payload"
NOTICE_TAG = "deadmansswitch"

SECONDS_PER_DAY = 86_400
