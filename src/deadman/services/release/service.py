"""Release coordinator: retrieve, deliver, and mark a triggered switch as sent.

A switch reaches ``SENT`` only after a verified retrieval from the
[ContentStore][deadman.relay.store.ContentStore] and a successful call to
the delivery sink, and only through the compare-and-set
[Repository.advance()][deadman.core.repository.Repository.advance]. Any
failure leaves the switch ``TRIGGERED``; the evaluator hands it back on
the next tick, so re-entering ``release()`` for the same switch is safe
and expected until it is sent.

Consecutive failures are counted on the switch row. Once the count is at
or past ``alert_after_failures`` the coordinator logs at critical level and
sends a single operator alert.

Examples:
    ```python
    coordinator = ReleaseCoordinator(repository, store, sink, notifier=notifier)
    outcome = await coordinator.release(switch)
    ```
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from deadman.core.exceptions import (
    ContentNotFound,
    DatabaseError,
    ProtocolError,
    SinkDeliveryError,
    StateConflict,
    TransientRelayError,
)
from deadman.core.logger import Logger
from deadman.core.metrics import RELEASE_OUTCOMES, SWITCH_TRANSITIONS
from deadman.models import NOTICE_TAG, StoreRecord, SwitchState
from deadman.services.common.queries import get_switch
from deadman.services.common.types import RecipientsMetadata, ReleaseOutcome

from .configs import ReleaseConfig


if TYPE_CHECKING:
    from deadman.core.repository import Repository
    from deadman.models import Switch
    from deadman.relay.client import RelayClient
    from deadman.relay.store import ContentStore
    from deadman.services.common.delivery import DeliverySink, Notifier


class ReleaseCoordinator:
    """Drives a ``TRIGGERED`` switch to ``SENT`` exactly once.

    Args:
        repository: Database interface for the fresh read, the ``SENT``
            advance, failure counting, and audit entries.
        store: Content store the payload is retrieved from.
        sink: Delivery sink; must be idempotent per switch id.
        notifier: Receives the escalation alert. ``None`` disables alerts
            (the critical log line is still written).
        announcer: Relay client used to publish the public release
            notice. Defaults to the store's client.
        config: Escalation threshold and announcement settings.
    """

    def __init__(
        self,
        repository: Repository,
        store: ContentStore,
        sink: DeliverySink,
        *,
        notifier: Notifier | None = None,
        announcer: RelayClient | None = None,
        config: ReleaseConfig | None = None,
    ) -> None:
        self._repository = repository
        self._store = store
        self._sink = sink
        self._notifier = notifier
        self._announcer = announcer or store.client
        self._config = config or ReleaseConfig()
        self._in_flight: set[str] = set()
        self._logger = Logger("release")

    @property
    def config(self) -> ReleaseConfig:
        return self._config

    async def release(self, switch: Switch) -> ReleaseOutcome:
        """Try to release *switch* once.

        Never raises for retrieval, delivery, or race failures; those are
        reported through the returned
        [ReleaseOutcome][deadman.services.common.types.ReleaseOutcome].
        Database errors propagate.
        """
        if switch.id in self._in_flight:
            self._logger.debug("release_in_progress", switch_id=switch.id)
            return ReleaseOutcome.IN_PROGRESS

        self._in_flight.add(switch.id)
        try:
            outcome = await self._release(switch)
        finally:
            self._in_flight.discard(switch.id)

        RELEASE_OUTCOMES.labels(outcome=outcome).inc()
        return outcome

    async def _release(self, switch: Switch) -> ReleaseOutcome:
        log = self._logger.bind(switch_id=switch.id)

        current = await get_switch(self._repository, switch.id)
        if current is None or current.state is not SwitchState.TRIGGERED:
            log.debug("release_skipped", state=current.state if current else None)
            return ReleaseOutcome.ALREADY_HANDLED

        try:
            payload = await self._store.retrieve(current.content_ref)
        except ContentNotFound as e:
            await self._record_failure(current, "retrieval", e)
            return ReleaseOutcome.RETRIEVAL_FAILED

        recipients = RecipientsMetadata(
            account_id=current.account_id, recipient_count=current.recipient_count
        )
        try:
            await self._sink.deliver(current.id, recipients, payload)
        except SinkDeliveryError as e:
            await self._record_failure(current, "delivery", e)
            return ReleaseOutcome.DELIVERY_FAILED

        try:
            await self._repository.advance(current.id, SwitchState.TRIGGERED, SwitchState.SENT)
        except StateConflict:
            log.info("release_conflict")
            return ReleaseOutcome.CONFLICT

        SWITCH_TRANSITIONS.labels(service="release", state=SwitchState.SENT).inc()
        log.info("switch_sent", account_id=current.account_id)
        await self._audit(
            current.account_id,
            "switch_sent",
            {"switch_id": current.id, "recipient_count": current.recipient_count},
        )

        if self._config.announce:
            await self._announce(current)

        return ReleaseOutcome.SENT

    async def _record_failure(self, switch: Switch, stage: str, error: Exception) -> None:
        log = self._logger.bind(switch_id=switch.id)
        failures = await self._repository.record_release_failure(switch.id, f"{stage}: {error}")
        log.warning("release_failed", stage=stage, failures=failures, error=str(error))
        await self._audit(
            switch.account_id,
            "release_failed",
            {"switch_id": switch.id, "stage": stage, "failures": failures, "error": str(error)},
        )

        # The count may skip the threshold; the persisted flag keeps the alert single
        if failures < self._config.alert_after_failures:
            return
        if not await self._repository.claim_release_alert(switch.id):
            return

        log.critical("release_escalated", failures=failures, stage=stage)
        if self._notifier is None:
            return
        try:
            await self._notifier.alert(
                "switch release failing",
                {
                    "switch_id": switch.id,
                    "account_id": switch.account_id,
                    "stage": stage,
                    "failures": failures,
                    "error": str(error),
                },
            )
        except SinkDeliveryError as e:
            log.error("alert_failed", error=str(e))

    async def _audit(self, account_id: str, action: str, details: dict[str, Any]) -> None:
        """Write an audit entry; a failed write is logged and does not undo the release."""
        try:
            await self._repository.insert_audit_log(account_id, action, details)
        except DatabaseError as e:
            self._logger.warning("audit_failed", action=action, error=str(e))

    async def _announce(self, switch: Switch) -> None:
        """Publish a public release notice to the switch's relays (best effort)."""
        notice = StoreRecord.build_text(
            self._config.announce_message,
            author=self._announcer.author,
            created_at=int(time.time()),
            tags=(("t", NOTICE_TAG), ("switch", switch.id)),
        )
        published = 0
        for url in switch.content_ref.relays:
            try:
                await self._announcer.publish(url, notice)
                published += 1
            except (TransientRelayError, ProtocolError) as e:
                self._logger.debug("announce_failed", switch_id=switch.id, relay=url, error=str(e))
        self._logger.info("release_announced", switch_id=switch.id, relays=published)
