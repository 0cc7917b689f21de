"""Pure frozen dataclasses with zero I/O for accounts, switches, and relay records.

The models layer is the bottom of the dependency graph. Apart from
``rfc3986`` for URL parsing it depends only on the standard library. Every
model is a ``@dataclass(frozen=True, slots=True)`` validated in
``__post_init__``, so invalid instances never escape the constructor.

Attributes:
    Account: Owner of switches; carries ``last_check_in_at`` and relay URLs.
    Switch: One scheduled release with its
        [Trigger][deadman.models.switch.Trigger],
        [ContentRef][deadman.models.switch.ContentRef], and
        [SwitchState][deadman.models.constants.SwitchState].
    StoreRecord: Content-addressed record exchanged with relays.
    WireEvent: Tagged variant (``PayloadRecord | TriggerNotice | RawEvent``)
        produced once at the relay client boundary.
    Relay: Validated, normalized ``wss://`` relay URL.
"""

from .account import Account, AccountDbParams
from .constants import (
    NOTICE_TAG,
    OPEN_STATES,
    PAYLOAD_TAG,
    REMINDER_STATES,
    SECONDS_PER_DAY,
    STATE_ORDER,
    EventKind,
    ServiceName,
    SwitchState,
    TriggerKind,
    is_valid_transition,
)
from .record import StoreRecord, compute_record_id
from .relay import Relay, normalize_relay_urls
from .switch import ContentRef, Switch, SwitchDbParams, Trigger
from .wire import PayloadRecord, RawEvent, TriggerNotice, WireEvent, parse_wire_event


__all__ = [
    "NOTICE_TAG",
    "OPEN_STATES",
    "PAYLOAD_TAG",
    "REMINDER_STATES",
    "SECONDS_PER_DAY",
    "STATE_ORDER",
    "Account",
    "AccountDbParams",
    "ContentRef",
    "EventKind",
    "PayloadRecord",
    "RawEvent",
    "Relay",
    "ServiceName",
    "StoreRecord",
    "Switch",
    "SwitchDbParams",
    "SwitchState",
    "Trigger",
    "TriggerKind",
    "TriggerNotice",
    "WireEvent",
    "compute_record_id",
    "is_valid_transition",
    "normalize_relay_urls",
    "parse_wire_event",
]
