"""
Unit tests for services.release.service module.

Tests:
- Successful release: retrieve, deliver, SENT, audit
- Non-TRIGGERED and unknown switches are left alone
- Retrieval and delivery failures keep the switch TRIGGERED and are counted
- Escalation alert sent once at or past the configured failure count
- Concurrent releases: one SENT, the rest CONFLICT or IN_PROGRESS
- Public release notice
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, patch

import pytest

from conftest import NOW, FakeRepository, RecordingNotifier, RecordingSink, make_stored_switch
from deadman.core.exceptions import QueryError
from deadman.models import NOTICE_TAG, Switch, SwitchState, Trigger
from deadman.relay import ContentStore, MemoryRelayClient
from deadman.services.common.types import ReleaseOutcome
from deadman.services.release import ReleaseConfig, ReleaseCoordinator


@pytest.fixture
def coordinator(
    fake_repository: FakeRepository,
    store: ContentStore,
    sink: RecordingSink,
    notifier: RecordingNotifier,
) -> ReleaseCoordinator:
    return ReleaseCoordinator(fake_repository, store, sink, notifier=notifier)  # type: ignore[arg-type]


async def _triggered(repository: FakeRepository, store: ContentStore, **kwargs: object) -> Switch:
    return await make_stored_switch(
        repository,
        store,
        trigger=Trigger.at(NOW - 10),
        state=SwitchState.TRIGGERED,
        **kwargs,  # type: ignore[arg-type]
    )


def _actions(repository: FakeRepository) -> list[str]:
    return [action for _, action, _ in repository.audit]


class TestRelease:
    async def test_sent(
        self,
        coordinator: ReleaseCoordinator,
        fake_repository: FakeRepository,
        store: ContentStore,
        sink: RecordingSink,
    ) -> None:
        switch = await _triggered(fake_repository, store, payload=b"letter")

        outcome = await coordinator.release(switch)

        assert outcome is ReleaseOutcome.SENT
        assert fake_repository.state_of(switch.id) is SwitchState.SENT
        assert sink.delivered == {switch.id: b"letter"}
        assert _actions(fake_repository) == ["switch_sent"]

    @pytest.mark.parametrize(
        "state", [SwitchState.ACTIVE, SwitchState.REMINDED_2, SwitchState.SENT, SwitchState.CANCELLED]
    )
    async def test_not_triggered(
        self,
        coordinator: ReleaseCoordinator,
        fake_repository: FakeRepository,
        store: ContentStore,
        sink: RecordingSink,
        state: SwitchState,
    ) -> None:
        switch = await make_stored_switch(
            fake_repository, store, trigger=Trigger.at(NOW - 10), state=state
        )

        # A stale TRIGGERED snapshot must not override the fresh read
        outcome = await coordinator.release(switch.with_state(SwitchState.TRIGGERED))

        assert outcome is ReleaseOutcome.ALREADY_HANDLED
        assert sink.calls == []
        assert fake_repository.state_of(switch.id) is state

    async def test_unknown_switch(
        self,
        coordinator: ReleaseCoordinator,
        fake_repository: FakeRepository,
        store: ContentStore,
    ) -> None:
        switch = await _triggered(fake_repository, store)
        del fake_repository.switches[switch.id]

        assert await coordinator.release(switch) is ReleaseOutcome.ALREADY_HANDLED

    async def test_audit_failure_does_not_undo(
        self,
        coordinator: ReleaseCoordinator,
        fake_repository: FakeRepository,
        store: ContentStore,
    ) -> None:
        switch = await _triggered(fake_repository, store)
        fake_repository.insert_audit_log = AsyncMock(side_effect=QueryError("down"))  # type: ignore[method-assign]

        assert await coordinator.release(switch) is ReleaseOutcome.SENT
        assert fake_repository.state_of(switch.id) is SwitchState.SENT


class TestFailures:
    async def test_retrieval_failed(
        self,
        coordinator: ReleaseCoordinator,
        fake_repository: FakeRepository,
        store: ContentStore,
        memory_client: MemoryRelayClient,
        sink: RecordingSink,
    ) -> None:
        switch = await _triggered(fake_repository, store)
        memory_client.unreachable.update(switch.content_ref.relays)

        outcome = await coordinator.release(switch)

        assert outcome is ReleaseOutcome.RETRIEVAL_FAILED
        assert fake_repository.state_of(switch.id) is SwitchState.TRIGGERED
        assert fake_repository.switches[switch.id]["release_failures"] == 1
        assert fake_repository.switches[switch.id]["last_error"].startswith("retrieval:")
        assert sink.calls == []
        assert _actions(fake_repository) == ["release_failed"]

    async def test_corrupt_everywhere(
        self,
        coordinator: ReleaseCoordinator,
        fake_repository: FakeRepository,
        store: ContentStore,
        memory_client: MemoryRelayClient,
    ) -> None:
        switch = await _triggered(fake_repository, store)
        memory_client.corrupt.update(switch.content_ref.relays)

        assert await coordinator.release(switch) is ReleaseOutcome.RETRIEVAL_FAILED

    async def test_delivery_failed(
        self,
        coordinator: ReleaseCoordinator,
        fake_repository: FakeRepository,
        store: ContentStore,
        sink: RecordingSink,
    ) -> None:
        switch = await _triggered(fake_repository, store)
        sink.failures = 1

        outcome = await coordinator.release(switch)

        assert outcome is ReleaseOutcome.DELIVERY_FAILED
        assert fake_repository.state_of(switch.id) is SwitchState.TRIGGERED
        assert fake_repository.switches[switch.id]["last_error"].startswith("delivery:")

    async def test_escalates_once(
        self,
        fake_repository: FakeRepository,
        store: ContentStore,
        sink: RecordingSink,
        notifier: RecordingNotifier,
    ) -> None:
        coordinator = ReleaseCoordinator(
            fake_repository,  # type: ignore[arg-type]
            store,
            sink,
            notifier=notifier,
            config=ReleaseConfig(alert_after_failures=2),
        )
        switch = await _triggered(fake_repository, store)
        sink.failures = 5

        for _ in range(4):
            await coordinator.release(switch)

        assert fake_repository.switches[switch.id]["release_failures"] == 4
        assert len(notifier.alerts) == 1
        subject, details = notifier.alerts[0]
        assert details["switch_id"] == switch.id
        assert details["failures"] == 2
        assert subject

    async def test_escalates_when_count_skips_threshold(
        self,
        fake_repository: FakeRepository,
        store: ContentStore,
        sink: RecordingSink,
        notifier: RecordingNotifier,
    ) -> None:
        coordinator = ReleaseCoordinator(
            fake_repository,  # type: ignore[arg-type]
            store,
            sink,
            notifier=notifier,
            config=ReleaseConfig(alert_after_failures=2),
        )
        switch = await _triggered(fake_repository, store)
        # An earlier increment committed without its reply reaching us
        fake_repository.switches[switch.id]["release_failures"] = 2
        sink.failures = 3

        for _ in range(3):
            await coordinator.release(switch)

        assert fake_repository.switches[switch.id]["release_failures"] == 5
        assert len(notifier.alerts) == 1
        assert notifier.alerts[0][1]["failures"] == 3
        assert fake_repository.switches[switch.id]["release_alerted"] is True

    async def test_escalation_without_notifier(
        self,
        fake_repository: FakeRepository,
        store: ContentStore,
        sink: RecordingSink,
    ) -> None:
        coordinator = ReleaseCoordinator(
            fake_repository,  # type: ignore[arg-type]
            store,
            sink,
            config=ReleaseConfig(alert_after_failures=1),
        )
        switch = await _triggered(fake_repository, store)
        sink.failures = 1

        with patch.object(coordinator, "_logger") as mock_logger:
            outcome = await coordinator.release(switch)

        assert outcome is ReleaseOutcome.DELIVERY_FAILED
        bound = mock_logger.bind.return_value
        assert bound.critical.call_args.args[0] == "release_escalated"

    async def test_success_after_failures(
        self,
        coordinator: ReleaseCoordinator,
        fake_repository: FakeRepository,
        store: ContentStore,
        sink: RecordingSink,
    ) -> None:
        switch = await _triggered(fake_repository, store)
        sink.failures = 2

        outcomes = [await coordinator.release(switch) for _ in range(3)]

        assert outcomes == [
            ReleaseOutcome.DELIVERY_FAILED,
            ReleaseOutcome.DELIVERY_FAILED,
            ReleaseOutcome.SENT,
        ]
        assert fake_repository.sent_transitions(switch.id) == 1


class TestConcurrency:
    async def test_same_coordinator_in_progress(
        self,
        coordinator: ReleaseCoordinator,
        fake_repository: FakeRepository,
        store: ContentStore,
    ) -> None:
        switch = await _triggered(fake_repository, store)

        outcomes = await asyncio.gather(coordinator.release(switch), coordinator.release(switch))

        assert sorted(outcomes) == sorted([ReleaseOutcome.SENT, ReleaseOutcome.IN_PROGRESS])

    async def test_two_coordinators_conflict(
        self,
        fake_repository: FakeRepository,
        store: ContentStore,
        sink: RecordingSink,
    ) -> None:
        switch = await _triggered(fake_repository, store)
        first = ReleaseCoordinator(fake_repository, store, sink)  # type: ignore[arg-type]
        second = ReleaseCoordinator(fake_repository, store, sink)  # type: ignore[arg-type]

        outcomes = await asyncio.gather(first.release(switch), second.release(switch))

        assert ReleaseOutcome.SENT in outcomes
        assert fake_repository.sent_transitions(switch.id) == 1
        assert len(sink.delivered) == 1


class TestAnnounce:
    async def test_notice_published(
        self,
        fake_repository: FakeRepository,
        store: ContentStore,
        memory_client: MemoryRelayClient,
        sink: RecordingSink,
    ) -> None:
        coordinator = ReleaseCoordinator(
            fake_repository, store, sink, config=ReleaseConfig(announce=True)  # type: ignore[arg-type]
        )
        switch = await _triggered(fake_repository, store)

        assert await coordinator.release(switch) is ReleaseOutcome.SENT

        for url in switch.content_ref.relays:
            notices = [
                r for r in memory_client.records(url).values() if NOTICE_TAG in r.tag_values("t")
            ]
            assert len(notices) == 1
            assert notices[0].tag_values("switch") == [switch.id]

    async def test_notice_failure_ignored(
        self,
        fake_repository: FakeRepository,
        store: ContentStore,
        memory_client: MemoryRelayClient,
        sink: RecordingSink,
    ) -> None:
        coordinator = ReleaseCoordinator(
            fake_repository, store, sink, config=ReleaseConfig(announce=True)  # type: ignore[arg-type]
        )
        switch = await _triggered(fake_repository, store)
        memory_client.rejecting.update(switch.content_ref.relays)

        assert await coordinator.release(switch) is ReleaseOutcome.SENT
