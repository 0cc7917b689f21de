"""In-process relay client for local runs and tests.

Relays are plain dicts keyed by URL. Faults are injected per URL by
adding it to ``unreachable``, ``rejecting`` or ``corrupt``, or by giving it
a delay in ``slow``; a delay longer than the timeout surfaces as
[RelayTimeoutError][deadman.core.exceptions.RelayTimeoutError], exactly
like the network backend.
"""

from __future__ import annotations

import asyncio
import base64
import hashlib
import logging
from collections.abc import Sequence
from dataclasses import replace

from deadman.core.exceptions import ProtocolError, RelayTimeoutError, TransientRelayError
from deadman.models import EventKind, StoreRecord, WireEvent, parse_wire_event

from .client import RelayClient


logger = logging.getLogger(__name__)

DEFAULT_MEMORY_AUTHOR = hashlib.sha256(b"deadman-memory-relay").hexdigest()


class MemoryRelayClient(RelayClient):
    """[RelayClient][deadman.relay.client.RelayClient] backed by in-memory dicts.

    Attributes:
        unreachable: URLs whose calls fail as refused connections.
        rejecting: URLs that accept the connection but refuse every publish.
        corrupt: URLs that return the stored record with altered content
            and the original id.
        slow: Per-URL delay in seconds applied before every call.
        publish_calls: URLs in the order ``publish`` was called.
        fetch_calls: URLs in the order ``fetch`` was called.
    """

    def __init__(self, *, author: str = DEFAULT_MEMORY_AUTHOR, timeout: float = 5.0) -> None:  # noqa: ASYNC109
        self._author = author
        self._timeout = timeout
        self._relays: dict[str, dict[str, StoreRecord]] = {}
        self.unreachable: set[str] = set()
        self.rejecting: set[str] = set()
        self.corrupt: set[str] = set()
        self.slow: dict[str, float] = {}
        self.publish_calls: list[str] = []
        self.fetch_calls: list[str] = []

    @property
    def author(self) -> str:
        return self._author

    def records(self, relay_url: str) -> dict[str, StoreRecord]:
        """Records currently held by *relay_url*, keyed by id."""
        return self._relays.setdefault(relay_url, {})

    def put(self, relay_url: str, record: StoreRecord) -> None:
        """Place *record* on a relay directly, bypassing fault injection."""
        self.records(relay_url)[record.id] = record

    async def _simulate(self, relay_url: str) -> None:
        delay = self.slow.get(relay_url, 0.0)
        if delay:
            try:
                async with asyncio.timeout(self._timeout):
                    await asyncio.sleep(delay)
            except TimeoutError as e:
                raise RelayTimeoutError(relay_url, f"timed out after {self._timeout}s") from e
        if relay_url in self.unreachable:
            raise TransientRelayError(relay_url, "connection refused")

    async def publish(self, relay_url: str, record: StoreRecord) -> None:
        self.publish_calls.append(relay_url)
        await self._simulate(relay_url)
        if relay_url in self.rejecting:
            raise TransientRelayError(relay_url, "publish rejected: blocked")
        if record.author != self._author or not record.has_valid_id():
            raise ProtocolError(f"record {record.id[:16]} does not match its content address")
        self.put(relay_url, record)
        logger.debug("memory_publish relay=%s id=%s", relay_url, record.id)

    async def fetch(
        self,
        relay_url: str,
        logical_id: str,
        kinds: Sequence[int] = (EventKind.TEXT_NOTE,),
    ) -> WireEvent | None:
        self.fetch_calls.append(relay_url)
        await self._simulate(relay_url)
        record = self.records(relay_url).get(logical_id)
        if record is None or record.kind not in {int(k) for k in kinds}:
            return None
        if relay_url in self.corrupt:
            record = replace(record, content=base64.b64encode(b"tampered").decode("ascii"))
        return parse_wire_event(record)
