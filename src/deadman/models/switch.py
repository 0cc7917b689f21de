"""
Switch, trigger, and content reference models.

A [Switch][deadman.models.switch.Switch] is one scheduled release: a
[Trigger][deadman.models.switch.Trigger] saying *when*, a
[ContentRef][deadman.models.switch.ContentRef] saying *where the sealed
payload lives*, and a [SwitchState][deadman.models.constants.SwitchState]
saying *how far along* it is. Database parameter containers are cached at
construction, the same way every model in this package does it.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from typing import Any, NamedTuple

from ._validation import (
    require_count,
    require_hex,
    require_positive,
    require_text,
    require_type,
    require_unique_strings,
)
from .constants import SwitchState, TriggerKind


@dataclass(frozen=True, slots=True)
class Trigger:
    """Release condition of a switch: exactly one of the two fields is set.

    Attributes:
        fixed_time: Absolute Unix timestamp at which to release.
        inactivity_days: Days without a check-in after which to release.

    Raises:
        ValueError: If both or neither field is set, or
            ``inactivity_days`` is not positive.
    """

    fixed_time: int | None = None
    inactivity_days: int | None = None

    def __post_init__(self) -> None:
        if (self.fixed_time is None) == (self.inactivity_days is None):
            raise ValueError("exactly one of fixed_time or inactivity_days must be set")
        if self.fixed_time is not None:
            require_count(self.fixed_time, "fixed_time")
        if self.inactivity_days is not None:
            require_positive(self.inactivity_days, "inactivity_days")

    @property
    def kind(self) -> TriggerKind:
        """Which half of the trigger is set."""
        return TriggerKind.FIXED_TIME if self.fixed_time is not None else TriggerKind.INACTIVITY

    @classmethod
    def at(cls, timestamp: int) -> Trigger:
        return cls(fixed_time=timestamp)

    @classmethod
    def after_inactivity(cls, days: int) -> Trigger:
        return cls(inactivity_days=days)


@dataclass(frozen=True, slots=True)
class ContentRef:
    """Where a sealed payload was stored.

    Attributes:
        logical_id: Content address of the stored record, used for reads
            and for verifying what a relay returns.
        relays: The full relay set the write was attempted on, in order.
        acks: Relays that acknowledged the write, in acknowledgement order
            (late acks after quorum included). Always a subset of ``relays``.
    """

    logical_id: str
    relays: tuple[str, ...]
    acks: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        require_hex(self.logical_id, "logical_id", 64)
        require_unique_strings(self.relays, "relays")
        require_unique_strings(self.acks, "acks")
        if not self.relays:
            raise ValueError("relays must not be empty")
        unknown = set(self.acks) - set(self.relays)
        if unknown:
            raise ValueError(f"acks contain relays outside the relay set: {sorted(unknown)}")

    def to_dict(self) -> dict[str, Any]:
        """JSON-serializable form stored in the ``content_ref`` JSONB column."""
        return {
            "logical_id": self.logical_id,
            "relays": list(self.relays),
            "acks": list(self.acks),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ContentRef:
        return cls(
            logical_id=data["logical_id"],
            relays=tuple(data["relays"]),
            acks=tuple(data.get("acks", ())),
        )


class SwitchDbParams(NamedTuple):
    """Positional parameters for the switch insert statement."""

    id: str
    account_id: str
    trigger_kind: str
    fixed_time: int | None
    inactivity_days: int | None
    state: str
    content_ref: dict[str, Any]
    recipient_count: int
    created_at: int
    release_failures: int


@dataclass(frozen=True, slots=True)
class Switch:
    """Immutable snapshot of a persisted switch.

    Snapshots go stale as soon as another process advances the row; every
    state change therefore goes through
    [Repository.advance()][deadman.core.repository.Repository.advance] with
    the snapshot's ``state`` as the expected value.

    Attributes:
        id: Switch identifier (32-char hex).
        account_id: Owning account.
        trigger: Release condition.
        content_ref: Location of the sealed payload.
        recipient_count: Number of recipients, for quota display only.
        created_at: Unix timestamp of creation.
        state: Current lifecycle state.
        release_failures: Consecutive failed release attempts while
            ``TRIGGERED``.
    """

    id: str
    account_id: str
    trigger: Trigger
    content_ref: ContentRef
    recipient_count: int
    created_at: int
    state: SwitchState = SwitchState.ACTIVE
    release_failures: int = 0
    _db_params: SwitchDbParams | None = field(
        default=None, init=False, repr=False, compare=False, hash=False
    )

    def __post_init__(self) -> None:
        require_text(self.id, "id")
        require_text(self.account_id, "account_id")
        require_type(self.trigger, Trigger, "trigger")
        require_type(self.content_ref, ContentRef, "content_ref")
        require_count(self.recipient_count, "recipient_count")
        require_count(self.created_at, "created_at")
        require_count(self.release_failures, "release_failures")
        object.__setattr__(self, "state", SwitchState(self.state))
        object.__setattr__(self, "_db_params", self._compute_db_params())

    @classmethod
    def new(
        cls,
        account_id: str,
        trigger: Trigger,
        content_ref: ContentRef,
        recipient_count: int,
        created_at: int,
    ) -> Switch:
        """Create a fresh ``ACTIVE`` switch with a random id."""
        return cls(
            id=uuid.uuid4().hex,
            account_id=account_id,
            trigger=trigger,
            content_ref=content_ref,
            recipient_count=recipient_count,
            created_at=created_at,
        )

    def with_state(self, state: SwitchState) -> Switch:
        """Return a copy in *state* (local snapshot only, nothing persisted)."""
        return replace(self, state=state)

    def to_db_params(self) -> SwitchDbParams:
        assert self._db_params is not None  # noqa: S101  # Always set in __post_init__
        return self._db_params

    def _compute_db_params(self) -> SwitchDbParams:
        return SwitchDbParams(
            id=self.id,
            account_id=self.account_id,
            trigger_kind=self.trigger.kind,
            fixed_time=self.trigger.fixed_time,
            inactivity_days=self.trigger.inactivity_days,
            state=self.state,
            content_ref=self.content_ref.to_dict(),
            recipient_count=self.recipient_count,
            created_at=self.created_at,
            release_failures=self.release_failures,
        )

    @classmethod
    def from_db_params(cls, params: SwitchDbParams) -> Switch:
        """Rebuild a switch from a database row, re-running all validation."""
        return cls(
            id=params.id,
            account_id=params.account_id,
            trigger=Trigger(fixed_time=params.fixed_time, inactivity_days=params.inactivity_days),
            content_ref=ContentRef.from_dict(params.content_ref),
            recipient_count=params.recipient_count,
            created_at=params.created_at,
            state=SwitchState(params.state),
            release_failures=params.release_failures,
        )
