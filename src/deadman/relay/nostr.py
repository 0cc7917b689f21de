"""Relay client over the Nostr wire protocol, built on nostr-sdk.

Each call opens a short-lived client scoped to one relay and shuts it
down afterwards, so a slow relay never holds a connection shared with an
unrelated payload operation. Per-URL semaphores cap how many of those
scoped connections exist against the same relay at once.

Signature verification of fetched events is mandatory: an event that fails
``verify()`` is dropped before it is converted, and the resulting
[StoreRecord][deadman.models.record.StoreRecord] is parsed into a
[WireEvent][deadman.models.wire.WireEvent] variant before leaving this
module.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import TYPE_CHECKING

from nostr_sdk import (
    Client,
    ClientBuilder,
    EventBuilder,
    EventId,
    Filter,
    Kind,
    NostrSdkError,
    NostrSigner,
    RelayUrl,
    Tag,
    Timestamp,
)

from deadman.core.exceptions import ProtocolError, RelayTimeoutError, TransientRelayError
from deadman.models import EventKind, StoreRecord, WireEvent, parse_wire_event

from .client import RelayClient


if TYPE_CHECKING:
    from nostr_sdk import Event, Keys


logger = logging.getLogger(__name__)


def _to_record(evt: Event) -> StoreRecord:
    """Convert a verified nostr-sdk event into a StoreRecord.

    Raises:
        ValueError: If a field fails model validation.
    """
    return StoreRecord(
        id=evt.id().to_hex(),
        author=evt.author().to_hex(),
        created_at=evt.created_at().as_secs(),
        kind=evt.kind().as_u16(),
        tags=tuple(tuple(tag.as_vec()) for tag in evt.tags().to_vec()),
        content=evt.content(),
        sig=evt.signature(),
    )


class NostrRelayClient(RelayClient):
    """[RelayClient][deadman.relay.client.RelayClient] speaking the Nostr protocol.

    Args:
        keys: Service signing keys. Records must be authored with
            ``keys.public_key()``.
        timeout: Bound on each whole call (connect plus request).
        max_connections_per_relay: Concurrent calls allowed per relay URL.
    """

    def __init__(
        self,
        keys: Keys,
        *,
        timeout: float = 5.0,  # noqa: ASYNC109
        max_connections_per_relay: int = 4,
    ) -> None:
        self._signer = NostrSigner.keys(keys)
        self._author = keys.public_key().to_hex()
        self._timeout = timeout
        self._max_connections_per_relay = max_connections_per_relay
        self._semaphores: dict[str, asyncio.Semaphore] = {}

    @property
    def author(self) -> str:
        return self._author

    def _semaphore(self, relay_url: str) -> asyncio.Semaphore:
        if relay_url not in self._semaphores:
            self._semaphores[relay_url] = asyncio.Semaphore(self._max_connections_per_relay)
        return self._semaphores[relay_url]

    @asynccontextmanager
    async def _session(self, relay_url: str, url: RelayUrl) -> AsyncIterator[Client]:
        """Connect a fresh client to one relay and always shut it down."""
        client = ClientBuilder().signer(self._signer).build()
        try:
            await client.add_relay(url)
            output = await client.try_connect(timedelta(seconds=self._timeout))
            if url not in output.success:
                error = output.failed.get(url, "unknown error")
                raise TransientRelayError(relay_url, f"connect failed: {error}")
            yield client
        finally:
            # nostr-sdk Rust FFI can raise arbitrary exception types during shutdown.
            with contextlib.suppress(Exception):
                await client.shutdown()

    async def _sign(self, record: StoreRecord) -> Event:
        """Sign *record* and check the signed event kept its content address."""
        if record.author != self._author:
            raise ProtocolError(
                f"record {record.id[:16]} authored by {record.author[:16]}, "
                f"client signs as {self._author[:16]}"
            )
        builder = (
            EventBuilder(Kind(record.kind), record.content)
            .tags([Tag.parse(list(t)) for t in record.tags])
            .custom_created_at(Timestamp.from_secs(record.created_at))
        )
        signed = builder.finalize(self._signer)
        # A coroutine when the binding exposes the async signer API
        event: Event = await signed if inspect.isawaitable(signed) else signed
        if event.id().to_hex() != record.id:
            raise ProtocolError(f"signed id {event.id().to_hex()[:16]} != record id {record.id[:16]}")
        return event

    async def publish(self, relay_url: str, record: StoreRecord) -> None:
        event = await self._sign(record)

        async with self._semaphore(relay_url):
            logger.debug("publish_started relay=%s id=%s", relay_url, record.id)
            try:
                url = RelayUrl.parse(relay_url)
                async with asyncio.timeout(self._timeout), self._session(relay_url, url) as client:
                    output = await client.send_event(event)
            except TimeoutError as e:
                raise RelayTimeoutError(relay_url, f"publish timed out after {self._timeout}s") from e
            except (OSError, NostrSdkError) as e:
                raise TransientRelayError(relay_url, f"publish failed: {e}") from e

        if url not in output.success:
            reason = output.failed.get(url, "no response from relay")
            logger.debug("publish_rejected relay=%s id=%s reason=%s", relay_url, record.id, reason)
            raise TransientRelayError(relay_url, f"publish rejected: {reason}")

        logger.debug("publish_acked relay=%s id=%s", relay_url, record.id)

    async def fetch(
        self,
        relay_url: str,
        logical_id: str,
        kinds: Sequence[int] = (EventKind.TEXT_NOTE,),
    ) -> WireEvent | None:
        event_filter = (
            Filter().id(EventId.parse(logical_id)).kinds([Kind(int(k)) for k in kinds]).limit(1)
        )

        async with self._semaphore(relay_url):
            logger.debug("fetch_started relay=%s id=%s", relay_url, logical_id)
            try:
                url = RelayUrl.parse(relay_url)
                async with asyncio.timeout(self._timeout), self._session(relay_url, url) as client:
                    events = await client.fetch_events(
                        event_filter, timedelta(seconds=self._timeout)
                    )
            except TimeoutError as e:
                raise RelayTimeoutError(relay_url, f"fetch timed out after {self._timeout}s") from e
            except (OSError, NostrSdkError) as e:
                raise TransientRelayError(relay_url, f"fetch failed: {e}") from e

        for evt in events.to_vec():
            try:
                if not evt.verify():
                    logger.warning("fetch_unverified relay=%s id=%s", relay_url, logical_id)
                    continue
                record = _to_record(evt)
            except (ValueError, TypeError, OverflowError) as e:
                logger.warning("fetch_invalid relay=%s id=%s error=%s", relay_url, logical_id, e)
                continue
            return parse_wire_event(record)

        logger.debug("fetch_not_found relay=%s id=%s", relay_url, logical_id)
        return None
