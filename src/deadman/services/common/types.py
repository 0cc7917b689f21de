"""Shared domain types for deadman services.

Lightweight dataclasses produced by query functions and passes and
consumed by services, sinks, and notifiers. Keeping them in their own
module avoids circular imports between ``queries`` and the service
packages.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from enum import StrEnum
from typing import Any

from deadman.models import Switch, SwitchState, TriggerKind


@dataclass(frozen=True, slots=True)
class RecipientsMetadata:
    """What the delivery sink learns about the recipients of a switch.

    The recipient addresses themselves live inside the encrypted payload;
    the sink only gets the owning account and the count.
    """

    account_id: str
    recipient_count: int


@dataclass(frozen=True, slots=True)
class Reminder:
    """A reminder emitted when a switch enters a reminder stage.

    Attributes:
        switch_id: The reminded switch.
        account_id: Account to remind.
        stage: 1-based reminder stage (``REMINDED_1`` is stage 1).
        state: The reminder state the switch was advanced to.
        inactivity_days: Configured interval N of the switch.
        elapsed_days: Whole days since the last check-in.
        trigger_at: Unix timestamp at which the switch will trigger if
            nobody checks in.
    """

    switch_id: str
    account_id: str
    stage: int
    state: SwitchState
    inactivity_days: int
    elapsed_days: int
    trigger_at: int

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = str(self.state)
        return data


@dataclass(frozen=True, slots=True)
class OpenSwitch:
    """An open switch joined with its account's last check-in.

    Attributes:
        switch: The switch snapshot.
        last_check_in_at: ``account.last_check_in_at`` read in the same
            query, passed to
            [Repository.advance()][deadman.core.repository.Repository.advance]
            as the check-in guard.
    """

    switch: Switch
    last_check_in_at: int

    @property
    def trigger_kind(self) -> TriggerKind:
        return self.switch.trigger.kind


class ReleaseOutcome(StrEnum):
    """Result of one [ReleaseCoordinator.release()][deadman.services.release.ReleaseCoordinator.release] call."""

    SENT = "sent"
    RETRIEVAL_FAILED = "retrieval_failed"
    DELIVERY_FAILED = "delivery_failed"
    CONFLICT = "conflict"
    IN_PROGRESS = "in_progress"
    ALREADY_HANDLED = "already_handled"


@dataclass(slots=True)
class PassSummary:
    """Counts of one evaluator pass.

    Attributes:
        scanned: Open switches read from the database.
        advanced: Successful state advances (reminders plus triggers).
        reminded: Advances into a reminder stage.
        triggered: Advances into ``TRIGGERED``.
        sent: Switches released to the sink and marked ``SENT``.
        unchanged: Switches already at their target stage.
        conflicts: Advances lost to a concurrent writer.
        failed: Switches whose evaluation raised.
        deferred: Switches left for the next pass after the deadline.
    """

    scanned: int = 0
    advanced: int = 0
    reminded: int = 0
    triggered: int = 0
    sent: int = 0
    unchanged: int = 0
    conflicts: int = 0
    failed: int = 0
    deferred: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


@dataclass(slots=True)
class CleanupSummary:
    """Rows removed by one cleanup pass."""

    expired_codes: int = 0
    check_in_logs: int = 0
    audit_logs: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.expired_codes + self.check_in_logs + self.audit_logs
