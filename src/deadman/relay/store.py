"""
Replicated content store over a set of independently operated relays.

Durability of a sealed payload must not depend on any single relay being
available or honest:

- [store()][deadman.relay.store.ContentStore.store] publishes one
  content-addressed record to every relay concurrently and succeeds once a
  quorum acknowledged it. Every ack is kept, in arrival order, including
  the ones that arrive after the quorum was reached.
- [retrieve()][deadman.relay.store.ContentStore.retrieve] asks relays one
  at a time (acked relays first, most recently responsive first, then the
  rest of the original set) and returns the first payload whose recomputed
  content address equals the expected id. Reads never fan out, so the
  payload is exposed to as few relays as possible.

Content is immutable: there is no update. Editing a switch stores a new
record and repoints the switch at it.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Sequence

from pydantic import BaseModel, Field

from deadman.core.exceptions import (
    ContentNotFound,
    InsufficientQuorum,
    ProtocolError,
    TransientRelayError,
)
from deadman.core.logger import Logger
from deadman.models import ContentRef, PayloadRecord, StoreRecord

from .client import RelayClient


class StoreConfig(BaseModel):
    """Quorum and read deadline of the content store."""

    quorum: int | None = Field(
        default=None,
        ge=1,
        description="Acks required per write (None = majority, capped at the relay count)",
    )
    retrieve_deadline: float = Field(
        default=30.0, ge=0.1, description="Overall deadline for one retrieval (seconds)"
    )


def required_acks(relay_count: int, quorum: int | None = None) -> int:
    """Number of acknowledgements a write to *relay_count* relays needs.

    ``None`` means majority, ``max(1, ceil(n / 2))``. A fixed quorum is
    capped at *relay_count*.
    """
    if quorum is None:
        return max(1, math.ceil(relay_count / 2))
    return max(1, min(quorum, relay_count))


class ContentStore:
    """Quorum writes and ordered-fallback reads over a [RelayClient][deadman.relay.client.RelayClient].

    The store keeps an in-process health map (monotonic time of the last
    successful call per relay) that only influences read ordering.

    Examples:
        ```python
        store = ContentStore(MemoryRelayClient(), StoreConfig())
        ref = await store.store(b"sealed", ["wss://a.example", "wss://b.example"])
        assert await store.retrieve(ref) == b"sealed"
        ```
    """

    def __init__(self, client: RelayClient, config: StoreConfig | None = None) -> None:
        self._client = client
        self._config = config or StoreConfig()
        self._last_success: dict[str, float] = {}
        self._logger = Logger("store")

    @property
    def client(self) -> RelayClient:
        return self._client

    @property
    def config(self) -> StoreConfig:
        return self._config

    def _mark_healthy(self, relay_url: str) -> None:
        self._last_success[relay_url] = time.monotonic()

    # -------------------------------------------------------------------------
    # Write Path
    # -------------------------------------------------------------------------

    async def _publish_one(self, relay_url: str, record: StoreRecord) -> tuple[str, str | None]:
        try:
            await self._client.publish(relay_url, record)
        except (TransientRelayError, ProtocolError) as e:
            return relay_url, str(e)
        except Exception as e:  # Per-relay error boundary, the other writes carry on
            return relay_url, f"{type(e).__name__}: {e}"
        return relay_url, None

    async def store(
        self,
        payload: bytes,
        relays: Sequence[str],
        *,
        created_at: int | None = None,
    ) -> ContentRef:
        """Write *payload* to every relay in *relays* concurrently.

        Args:
            payload: Opaque encrypted bytes.
            relays: Relay URLs to write to; duplicates are ignored.
            created_at: Record timestamp (current time if omitted).

        Returns:
            A [ContentRef][deadman.models.switch.ContentRef] holding the
            logical id, the relay set, and the acks in arrival order.

        Raises:
            ValueError: If *relays* is empty.
            InsufficientQuorum: If fewer relays than the quorum acknowledged.
        """
        urls = tuple(dict.fromkeys(relays))
        if not urls:
            raise ValueError("relay set must not be empty")

        required = required_acks(len(urls), self._config.quorum)
        record = StoreRecord.build(
            payload,
            author=self._client.author,
            created_at=created_at if created_at is not None else int(time.time()),
        )

        acks: list[str] = []
        tasks = [asyncio.create_task(self._publish_one(url, record)) for url in urls]
        try:
            for next_done in asyncio.as_completed(tasks):
                url, error = await next_done
                if error is not None:
                    self._logger.warning("store_relay_failed", relay=url, error=error)
                    continue
                self._mark_healthy(url)
                acks.append(url)
        finally:
            for task in tasks:
                task.cancel()

        if len(acks) < required:
            self._logger.warning(
                "store_quorum_failed",
                id=record.id[:16],
                acked=len(acks),
                required=required,
                relays=len(urls),
            )
            raise InsufficientQuorum(required, acks, urls)

        self._logger.info(
            "store_completed", id=record.id[:16], acked=len(acks), required=required, relays=len(urls)
        )
        return ContentRef(logical_id=record.id, relays=urls, acks=tuple(acks))

    # -------------------------------------------------------------------------
    # Read Path
    # -------------------------------------------------------------------------

    def read_order(self, ref: ContentRef) -> list[str]:
        """Relays in the order [retrieve()][deadman.relay.store.ContentStore.retrieve] tries them.

        Acked relays come first, most recently responsive first with ties
        broken by ack order, then the remaining relays of the original set
        in their original order.
        """
        ack_rank = {url: i for i, url in enumerate(ref.acks)}
        acked = sorted(
            ref.acks,
            key=lambda url: (-self._last_success.get(url, -math.inf), ack_rank[url]),
        )
        rest = [url for url in ref.relays if url not in ack_rank]
        return acked + rest

    async def retrieve(self, ref: ContentRef) -> bytes:
        """Fetch the payload behind *ref*, one relay at a time.

        Transport errors, missing records, and records whose content address
        does not match ``ref.logical_id`` all move on to the next relay.

        Raises:
            ContentNotFound: If no relay returned a verifiable record before
                the order was exhausted or the deadline expired.
        """
        attempted: list[str] = []
        deadline = self._config.retrieve_deadline

        try:
            async with asyncio.timeout(deadline):
                for url in self.read_order(ref):
                    attempted.append(url)
                    try:
                        event = await self._client.fetch(url, ref.logical_id)
                    except TransientRelayError as e:
                        self._logger.debug("retrieve_relay_failed", relay=url, error=str(e))
                        continue

                    if event is None:
                        self._logger.debug("retrieve_not_found", relay=url)
                        continue
                    if (
                        not isinstance(event, PayloadRecord)
                        or event.record.id != ref.logical_id
                        or not event.record.has_valid_id()
                    ):
                        self._logger.warning(
                            "retrieve_content_mismatch",
                            relay=url,
                            id=ref.logical_id[:16],
                            got=type(event).__name__,
                        )
                        continue

                    self._mark_healthy(url)
                    self._logger.debug("retrieve_completed", relay=url, attempts=len(attempted))
                    return event.payload
        except TimeoutError:
            self._logger.warning(
                "retrieve_deadline_exceeded", id=ref.logical_id[:16], attempted=len(attempted)
            )
            raise ContentNotFound(
                ref.logical_id, attempted, f"deadline of {deadline}s exceeded"
            ) from None

        raise ContentNotFound(ref.logical_id, attempted, "no relay returned a verifiable record")
