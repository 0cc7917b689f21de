"""
Typed variants of records received from relays.

Relay responses are untrusted and loosely typed (free-form tags and
content). [parse_wire_event()][deadman.models.wire.parse_wire_event] turns
a [StoreRecord][deadman.models.record.StoreRecord] into exactly one of
three variants, once, at the relay client boundary. Code above the client
pattern-matches on the variant and never inspects raw tags.

Examples:
    ```python
    match parse_wire_event(record):
        case PayloadRecord(payload=payload):
            ...
        case TriggerNotice(switch_id=switch_id):
            ...
        case RawEvent():
            ...
    ```
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from .constants import NOTICE_TAG, PAYLOAD_TAG, EventKind
from .record import StoreRecord


logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PayloadRecord:
    """A sealed switch payload with its decoded bytes."""

    record: StoreRecord
    payload: bytes


@dataclass(frozen=True, slots=True)
class TriggerNotice:
    """A public notice announcing that a switch was released."""

    record: StoreRecord
    switch_id: str | None
    message: str


@dataclass(frozen=True, slots=True)
class RawEvent:
    """Any other record, kept only for logging and diagnostics."""

    record: StoreRecord
    reason: str


WireEvent = PayloadRecord | TriggerNotice | RawEvent


def parse_wire_event(record: StoreRecord) -> WireEvent:
    """Classify *record* into a [WireEvent][deadman.models.wire.WireEvent] variant.

    A payload tag with undecodable content degrades to
    [RawEvent][deadman.models.wire.RawEvent] rather than raising, so a
    single malformed response never aborts a read.
    """
    if record.kind != EventKind.TEXT_NOTE:
        return RawEvent(record=record, reason=f"unexpected kind {record.kind}")

    topics = record.tag_values("t")
    if PAYLOAD_TAG in topics:
        try:
            payload = record.decode_payload()
        except ValueError as e:
            logger.debug("wire_payload_undecodable id=%s error=%s", record.id, e)
            return RawEvent(record=record, reason="payload content is not base64")
        return PayloadRecord(record=record, payload=payload)

    if NOTICE_TAG in topics:
        switch_ids = record.tag_values("switch")
        return TriggerNotice(
            record=record,
            switch_id=switch_ids[0] if switch_ids else None,
            message=record.content,
        )

    return RawEvent(record=record, reason="no known topic tag")
