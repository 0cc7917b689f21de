"""
Content-addressed relay record.

A [StoreRecord][deadman.models.record.StoreRecord] is what actually travels
to and from a relay: an opaque payload (base64 in ``content``) plus a small
amount of structured metadata. Its ``id`` is the SHA-256 of the canonical
serialization ``[0, author, created_at, kind, tags, content]``, the same
scheme relays use for event ids. Recomputing the id from a record returned
by a relay is therefore enough to detect stale, altered, or substituted
data.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import json
from dataclasses import dataclass, field

from ._validation import require_count, require_hex, require_tags, require_type
from .constants import PAYLOAD_TAG, EventKind


def compute_record_id(
    author: str,
    created_at: int,
    kind: int,
    tags: tuple[tuple[str, ...], ...],
    content: str,
) -> str:
    """Return the hex SHA-256 content address of a record.

    The serialization is compact JSON without ASCII escaping, matching the
    canonical form relays hash to produce event ids.
    """
    serialized = json.dumps(
        [0, author, created_at, kind, [list(t) for t in tags], content],
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(serialized.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class StoreRecord:
    """Immutable record exchanged with relays.

    Attributes:
        id: 64-char hex content address.
        author: 64-char hex public key of the signer.
        created_at: Unix timestamp.
        kind: Event kind (see [EventKind][deadman.models.constants.EventKind]).
        tags: Tuple of string tuples, e.g. ``(("t", "deadman-payload"),)``.
        content: Base64 of the opaque payload bytes, or free text for
            notices.
        sig: 128-char hex signature, empty until signed by a relay client.

    Use [build()][deadman.models.record.StoreRecord.build] to create a
    record; the constructor only validates.
    """

    id: str
    author: str
    created_at: int
    kind: int
    tags: tuple[tuple[str, ...], ...]
    content: str
    sig: str = field(default="", compare=False)

    def __post_init__(self) -> None:
        require_hex(self.id, "id", 64)
        require_hex(self.author, "author", 64)
        require_count(self.created_at, "created_at")
        require_count(self.kind, "kind")
        require_tags(self.tags, "tags")
        require_type(self.content, str, "content")
        if self.sig:
            require_hex(self.sig, "sig", 128)

    @classmethod
    def build(
        cls,
        payload: bytes,
        *,
        author: str,
        created_at: int,
        kind: int = EventKind.TEXT_NOTE,
        tags: tuple[tuple[str, ...], ...] = (("t", PAYLOAD_TAG),),
    ) -> StoreRecord:
        """Create an unsigned record holding *payload* with its id computed."""
        require_type(payload, bytes, "payload")
        content = base64.b64encode(payload).decode("ascii")
        record_id = compute_record_id(author, created_at, int(kind), tags, content)
        return cls(
            id=record_id,
            author=author,
            created_at=created_at,
            kind=int(kind),
            tags=tags,
            content=content,
        )

    @classmethod
    def build_text(
        cls,
        text: str,
        *,
        author: str,
        created_at: int,
        tags: tuple[tuple[str, ...], ...],
        kind: int = EventKind.TEXT_NOTE,
    ) -> StoreRecord:
        """Create an unsigned record with plain-text content."""
        record_id = compute_record_id(author, created_at, int(kind), tags, text)
        return cls(
            id=record_id, author=author, created_at=created_at, kind=int(kind), tags=tags, content=text
        )

    def has_valid_id(self) -> bool:
        """Whether ``id`` matches the content address recomputed from the fields."""
        expected = compute_record_id(self.author, self.created_at, self.kind, self.tags, self.content)
        return expected == self.id

    def tag_values(self, name: str) -> list[str]:
        """Return the first value of every tag called *name*."""
        return [t[1] for t in self.tags if len(t) > 1 and t[0] == name]

    def decode_payload(self) -> bytes:
        """Decode the base64 ``content`` back into payload bytes.

        Raises:
            ValueError: If ``content`` is not valid base64.
        """
        try:
            return base64.b64decode(self.content, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError(f"record {self.id[:8]} content is not base64: {e}") from None
