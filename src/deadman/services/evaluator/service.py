"""Evaluator service for deadman.

Walks every open switch once per pass and advances it to the highest stage
its clock qualifies for: the reminder cascade for inactivity-based
switches, straight to ``TRIGGERED`` for fixed-time switches. Every advance
goes through the compare-and-set
[Repository.advance()][deadman.core.repository.Repository.advance]; for
inactivity switches the advance also asserts that the account's
``last_check_in_at`` is still the value the pass read, so a check-in that
lands mid-pass always wins over a reminder or trigger computed from stale
data.

Triggered switches are handed to the
[ReleaseCoordinator][deadman.services.release.ReleaseCoordinator] in the
same pass. A switch whose release failed stays ``TRIGGERED`` and is handed
off again on every subsequent pass until it reaches ``SENT``.

Note:
    Passes are stateless: every decision is recomputed from the database
    and the current time, so several evaluator processes may run side by
    side. Losing a compare-and-set to another process is counted as a
    conflict, not an error.

See Also:
    [EvaluatorConfig][deadman.services.evaluator.EvaluatorConfig]:
        Configuration model for cascade, processing, and release.
    [target_state][deadman.services.evaluator.utils.target_state]: Pure
        stage computation used by ``_evaluate_one()``.
    [fetch_open_switch_chunk][deadman.services.common.queries.fetch_open_switch_chunk]:
        Keyset-paginated read of the open switches.

Examples:
    ```python
    from deadman.core import Repository
    from deadman.services import Evaluator

    repository = Repository.from_yaml("config/repository.yaml")
    evaluator = Evaluator.from_yaml("config/services/evaluator.yaml", repository=repository)

    async with repository:
        async with evaluator:
            await evaluator.run_forever()
    ```
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, ClassVar

from deadman.core.base_service import BaseService
from deadman.core.exceptions import SinkDeliveryError, StateConflict
from deadman.core.metrics import SWITCH_TRANSITIONS
from deadman.models import REMINDER_STATES, SECONDS_PER_DAY, ServiceName, SwitchState
from deadman.relay import ContentStore, build_relay_client
from deadman.services.common.delivery import build_delivery_sink, build_notifier
from deadman.services.common.mixins import BatchProgressMixin
from deadman.services.common.queries import count_open_switches, fetch_open_switch_chunk
from deadman.services.common.types import OpenSwitch, PassSummary, ReleaseOutcome, Reminder
from deadman.services.release import ReleaseCoordinator

from .configs import EvaluatorConfig, InactivityCheckerConfig
from .utils import target_state, trigger_at


if TYPE_CHECKING:
    from deadman.core.repository import Repository
    from deadman.services.common.delivery import Notifier


class Evaluator(BatchProgressMixin, BaseService[EvaluatorConfig]):
    """Advances open switches through the reminder cascade and releases triggered ones.

    Args:
        repository: Database interface.
        config: Service configuration.
        coordinator: Release coordinator. Built from ``config.release`` when
            omitted.
        notifier: Receives reminders and operator alerts. Built from
            ``config.notifier`` when omitted.

    See Also:
        [InactivityChecker][deadman.services.evaluator.InactivityChecker]:
            Hourly variant restricted to inactivity-based switches.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.EVALUATOR
    CONFIG_CLASS: ClassVar[type[EvaluatorConfig]] = EvaluatorConfig

    def __init__(
        self,
        repository: Repository,
        config: EvaluatorConfig | None = None,
        *,
        coordinator: ReleaseCoordinator | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        super().__init__(repository=repository, config=config)
        self._config: EvaluatorConfig
        self._init_progress()
        self._notifier: Notifier = notifier or build_notifier(self._config.notifier)
        self._coordinator = coordinator or self._build_coordinator()

    def _build_coordinator(self) -> ReleaseCoordinator:
        release = self._config.release
        store = ContentStore(build_relay_client(release.relay), release.store)
        return ReleaseCoordinator(
            self._repository,
            store,
            build_delivery_sink(release.delivery),
            notifier=self._notifier,
            config=release,
        )

    # -------------------------------------------------------------------------
    # Main Cycle
    # -------------------------------------------------------------------------

    async def run(self) -> None:
        """Execute one evaluation pass and publish its counts as gauges."""
        summary = await self.run_inactivity_pass()
        self.emit_progress_metrics()
        for name, value in summary.to_dict().items():
            self.set_gauge(name, value)

    async def run_inactivity_pass(self) -> PassSummary:
        """Evaluate every open switch once.

        Switches are read in pages of ``processing.chunk_size`` ordered by id
        and evaluated concurrently, at most ``processing.max_tasks`` at a
        time. Every switch of the pass is evaluated against the same
        ``now``, taken when the pass starts.

        After ``processing.pass_deadline`` seconds no new switch is
        started; switches not reached are counted as ``deferred`` and picked
        up by the next pass.

        Returns:
            Counts of what the pass did.
        """
        now = int(self._start_progress().started_at)
        summary = PassSummary()
        kinds = self._config.trigger_kinds
        chunk_size = self._config.processing.chunk_size
        semaphore = asyncio.Semaphore(self._config.processing.max_tasks)

        self._progress.total = await count_open_switches(self._repository, kinds)
        self._logger.info(
            "pass_started",
            total=self._progress.total,
            trigger_kinds=[str(k) for k in kinds],
            chunk_size=chunk_size,
        )

        after_id = ""
        while self.is_running:
            if self._deadline_reached():
                summary.deferred += self._progress.remaining
                self._logger.warning(
                    "pass_deadline_reached",
                    deadline_s=self._config.processing.pass_deadline,
                    deferred=summary.deferred,
                )
                break

            chunk = await fetch_open_switch_chunk(self._repository, after_id, chunk_size, kinds)
            if not chunk:
                break

            self._progress.chunks += 1
            summary.scanned += len(chunk)
            after_id = chunk[-1].switch.id

            results = await asyncio.gather(
                *(self._guarded(item, now, summary, semaphore) for item in chunk),
                return_exceptions=True,
            )
            # gather(return_exceptions=True) captures CancelledError as a result
            for r in results:
                if isinstance(r, asyncio.CancelledError):
                    raise r

            self.emit_progress_metrics()
            self._logger.debug(
                "chunk_completed",
                chunk=self._progress.chunks,
                size=len(chunk),
                remaining=self._progress.remaining,
            )

        self._logger.info("pass_completed", duration_s=self._progress.elapsed, **summary.to_dict())
        return summary

    def _deadline_reached(self) -> bool:
        return self._progress.elapsed >= self._config.processing.pass_deadline

    # -------------------------------------------------------------------------
    # Per-switch evaluation
    # -------------------------------------------------------------------------

    async def _guarded(
        self,
        item: OpenSwitch,
        now: int,
        summary: PassSummary,
        semaphore: asyncio.Semaphore,
    ) -> None:
        """Evaluate one switch; its failure is counted and never aborts the pass."""
        async with semaphore:
            self._progress.processed += 1
            if self._deadline_reached() or not self.is_running:
                summary.deferred += 1
                return
            try:
                await self._evaluate_one(item, now, summary)
                self._progress.success += 1
            except StateConflict as e:
                summary.conflicts += 1
                self._logger.debug("advance_conflict", switch_id=item.switch.id, error=str(e))
            except Exception as e:  # Per-switch error boundary
                summary.failed += 1
                self._progress.failure += 1
                self._logger.error(
                    "switch_failed",
                    switch_id=item.switch.id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def _evaluate_one(self, item: OpenSwitch, now: int, summary: PassSummary) -> None:
        switch = item.switch
        current = switch.state

        if current is SwitchState.TRIGGERED:
            # A previous release failed or was interrupted
            await self._hand_off(item, summary)
            return

        target = target_state(switch, item.last_check_in_at, now, self._config.cascade)
        if target.rank <= current.rank:
            summary.unchanged += 1
            return

        observed = item.last_check_in_at if switch.trigger.inactivity_days is not None else None
        await self._repository.advance(
            switch.id, current, target, observed_check_in=observed, at=now
        )

        summary.advanced += 1
        SWITCH_TRANSITIONS.labels(service=self.SERVICE_NAME, state=target).inc()
        self._logger.info(
            "switch_advanced",
            switch_id=switch.id,
            account_id=switch.account_id,
            from_state=current,
            to_state=target,
        )

        if target.is_reminder:
            summary.reminded += 1
            await self._remind(item, target, now)
        elif target is SwitchState.TRIGGERED:
            summary.triggered += 1
            await self._hand_off(OpenSwitch(switch.with_state(target), item.last_check_in_at), summary)

    async def _remind(self, item: OpenSwitch, state: SwitchState, now: int) -> None:
        """Emit the reminder for a switch that just entered *state*.

        A notifier failure is logged; the advance already happened and is
        not undone, so the reminder for this stage is not retried.
        """
        switch = item.switch
        assert switch.trigger.inactivity_days is not None  # noqa: S101  # Only interval switches remind
        reminder = Reminder(
            switch_id=switch.id,
            account_id=switch.account_id,
            stage=REMINDER_STATES.index(state) + 1,
            state=state,
            inactivity_days=switch.trigger.inactivity_days,
            elapsed_days=(now - item.last_check_in_at) // SECONDS_PER_DAY,
            trigger_at=trigger_at(switch, item.last_check_in_at, self._config.cascade),
        )
        try:
            await self._notifier.remind(reminder)
        except SinkDeliveryError as e:
            self._logger.warning("reminder_failed", switch_id=switch.id, state=state, error=str(e))

    async def _hand_off(self, item: OpenSwitch, summary: PassSummary) -> None:
        outcome = await self._coordinator.release(item.switch)
        if outcome is ReleaseOutcome.SENT:
            summary.sent += 1
        self._logger.debug("release_attempted", switch_id=item.switch.id, outcome=outcome)


class InactivityChecker(Evaluator):
    """Hourly pass over inactivity-based switches only.

    Same evaluation as [Evaluator][deadman.services.evaluator.Evaluator]
    with a config restricted to ``TriggerKind.INACTIVITY``. Running both is
    safe: whichever process advances a switch first wins the
    compare-and-set and the other counts a conflict.
    """

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.INACTIVITY
    CONFIG_CLASS: ClassVar[type[EvaluatorConfig]] = InactivityCheckerConfig
