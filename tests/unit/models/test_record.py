"""
Unit tests for models.record and models.wire modules.

Tests:
- Content address computation and tamper detection
- Payload base64 encoding and decoding
- parse_wire_event() variant classification
"""

from __future__ import annotations

import base64
from dataclasses import replace

import pytest

from deadman.models import (
    NOTICE_TAG,
    PayloadRecord,
    RawEvent,
    StoreRecord,
    TriggerNotice,
    compute_record_id,
    parse_wire_event,
)


AUTHOR = "a" * 64


class TestComputeRecordId:
    def test_deterministic(self) -> None:
        first = compute_record_id(AUTHOR, 1, 1, (("t", "x"),), "content")
        second = compute_record_id(AUTHOR, 1, 1, (("t", "x"),), "content")
        assert first == second
        assert len(first) == 64

    def test_every_field_contributes(self) -> None:
        base = compute_record_id(AUTHOR, 1, 1, (), "c")
        assert compute_record_id("b" * 64, 1, 1, (), "c") != base
        assert compute_record_id(AUTHOR, 2, 1, (), "c") != base
        assert compute_record_id(AUTHOR, 1, 2, (), "c") != base
        assert compute_record_id(AUTHOR, 1, 1, (("t", "x"),), "c") != base
        assert compute_record_id(AUTHOR, 1, 1, (), "d") != base

    def test_non_ascii_content(self) -> None:
        assert compute_record_id(AUTHOR, 1, 1, (), "héllo") != compute_record_id(
            AUTHOR, 1, 1, (), "hello"
        )


class TestStoreRecord:
    """StoreRecord construction and verification."""

    def test_build_encodes_payload(self) -> None:
        record = StoreRecord.build(b"\x00\x01secret", author=AUTHOR, created_at=10)
        assert record.content == base64.b64encode(b"\x00\x01secret").decode()
        assert record.decode_payload() == b"\x00\x01secret"
        assert record.has_valid_id()

    def test_tampered_content_fails_verification(self) -> None:
        record = StoreRecord.build(b"secret", author=AUTHOR, created_at=10)
        tampered = replace(record, content=base64.b64encode(b"other").decode())
        assert not tampered.has_valid_id()

    def test_invalid_base64(self) -> None:
        record = StoreRecord.build_text("not base64!", author=AUTHOR, created_at=1, tags=())
        with pytest.raises(ValueError, match="not base64"):
            record.decode_payload()

    def test_tag_values(self) -> None:
        record = StoreRecord.build_text(
            "x", author=AUTHOR, created_at=1, tags=(("t", "a"), ("t", "b"), ("p",))
        )
        assert record.tag_values("t") == ["a", "b"]
        assert record.tag_values("p") == []

    def test_signature_not_part_of_identity(self) -> None:
        record = StoreRecord.build(b"x", author=AUTHOR, created_at=1)
        signed = replace(record, sig="f" * 128)
        assert signed.sig == "f" * 128
        assert signed == record

    def test_invalid_sig_rejected(self) -> None:
        record = StoreRecord.build(b"x", author=AUTHOR, created_at=1)
        with pytest.raises(ValueError):
            replace(record, sig="zz")

    def test_list_tags_rejected(self) -> None:
        with pytest.raises(TypeError):
            StoreRecord(
                id="0" * 64,
                author=AUTHOR,
                created_at=1,
                kind=1,
                tags=[["t", "x"]],  # type: ignore[arg-type]
                content="",
            )


class TestParseWireEvent:
    """Variant classification at the relay boundary."""

    def test_payload_record(self) -> None:
        record = StoreRecord.build(b"payload", author=AUTHOR, created_at=1)
        event = parse_wire_event(record)
        assert isinstance(event, PayloadRecord)
        assert event.payload == b"payload"

    def test_trigger_notice(self) -> None:
        record = StoreRecord.build_text(
            "released", author=AUTHOR, created_at=1, tags=(("t", NOTICE_TAG), ("switch", "s1"))
        )
        event = parse_wire_event(record)
        assert isinstance(event, TriggerNotice)
        assert event.switch_id == "s1"
        assert event.message == "released"

    def test_notice_without_switch_tag(self) -> None:
        record = StoreRecord.build_text("x", author=AUTHOR, created_at=1, tags=(("t", NOTICE_TAG),))
        event = parse_wire_event(record)
        assert isinstance(event, TriggerNotice)
        assert event.switch_id is None

    def test_untagged_is_raw(self) -> None:
        record = StoreRecord.build_text("hello", author=AUTHOR, created_at=1, tags=())
        assert isinstance(parse_wire_event(record), RawEvent)

    def test_wrong_kind_is_raw(self) -> None:
        record = StoreRecord.build(b"payload", author=AUTHOR, created_at=1, kind=30078)
        event = parse_wire_event(record)
        assert isinstance(event, RawEvent)
        assert "kind" in event.reason

    def test_undecodable_payload_is_raw(self) -> None:
        record = StoreRecord.build_text(
            "%%%", author=AUTHOR, created_at=1, tags=(("t", "deadman-payload"),)
        )
        assert isinstance(parse_wire_event(record), RawEvent)
