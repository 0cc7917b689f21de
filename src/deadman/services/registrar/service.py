"""Switch registrar: the write path behind the web layer.

Creates switches (quota check, quorum store, insert), replaces their
content, cancels them, records check-ins, and configures account relays.
Payloads are stored before any row is written, so a failed quorum leaves
nothing persisted; an orphaned record on the relays that did acknowledge
is harmless because nothing points at it.

Every successful operation writes an audit entry.

Examples:
    ```python
    registrar = SwitchRegistrar(repository, store, TierConfig(), RelayDefaults())
    switch = await registrar.create_switch(
        "acct-1", Trigger.after_inactivity(60), sealed_payload, recipient_count=2
    )
    await registrar.check_in("acct-1")
    ```
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Any

from deadman.core.exceptions import AccountNotFound, QuotaExceeded, StateConflict
from deadman.core.logger import Logger
from deadman.models import ContentRef, Switch, SwitchState, Trigger, normalize_relay_urls
from deadman.relay import ContentStore, build_relay_client
from deadman.services.common.queries import count_active_switches, get_account, get_switch

from .configs import RegistrarConfig


if TYPE_CHECKING:
    from deadman.core.repository import Repository
    from deadman.models import Account
    from deadman.services.common.configs import RelayDefaults, TierConfig


class SwitchRegistrar:
    """Validated writes on accounts and switches.

    Args:
        repository: Database interface.
        store: Content store payloads are written to.
        tiers: Quotas and replication factor per tier.
        relay_defaults: Relays used when an account has none configured.
    """

    def __init__(
        self,
        repository: Repository,
        store: ContentStore,
        tiers: TierConfig,
        relay_defaults: RelayDefaults,
    ) -> None:
        self._repository = repository
        self._store = store
        self._tiers = tiers
        self._relay_defaults = relay_defaults
        self._logger = Logger("registrar")

    @classmethod
    def from_dict(cls, data: dict[str, Any], repository: Repository) -> SwitchRegistrar:
        """Build a registrar and its content store from a configuration dictionary."""
        config = RegistrarConfig.model_validate(data)
        store = ContentStore(build_relay_client(config.relay), config.store)
        return cls(repository, store, config.tiers, config.relay_defaults)

    # -------------------------------------------------------------------------
    # Switches
    # -------------------------------------------------------------------------

    async def create_switch(
        self,
        account_id: str,
        trigger: Trigger,
        payload: bytes,
        recipient_count: int,
        *,
        now: int | None = None,
    ) -> Switch:
        """Store *payload* and create an ``ACTIVE`` switch pointing at it.

        The tier quota is checked before the payload is stored and again,
        under a lock on the account row, when the switch is inserted.

        Raises:
            AccountNotFound: If the account does not exist.
            QuotaExceeded: If the account already has its tier's maximum of
                open switches.
            ValueError: If a fixed-time trigger is not in the future.
            InsufficientQuorum: If too few relays acknowledged the payload.
                Nothing is persisted in that case.
        """
        now = now if now is not None else int(time.time())
        if trigger.fixed_time is not None and trigger.fixed_time <= now:
            raise ValueError(f"fixed_time {trigger.fixed_time} is not in the future")

        account = await self._require_account(account_id)
        limit = self._tiers.max_active_switches(account.tier)
        active = await count_active_switches(self._repository, account_id)
        if active >= limit:
            raise QuotaExceeded(
                f"account {account_id} has {active} active switches (tier {account.tier}: {limit})"
            )

        relays = self._relays_for(account)
        ref = await self._store.store(payload, relays, created_at=now)

        switch = Switch.new(account_id, trigger, ref, recipient_count, created_at=now)
        await self._repository.insert_switch(switch, max_open=limit)

        self._logger.info(
            "switch_created",
            switch_id=switch.id,
            account_id=account_id,
            trigger_kind=trigger.kind,
            relays=len(relays),
            acks=len(ref.acks),
        )
        await self._repository.insert_audit_log(
            account_id,
            "switch_created",
            {"switch_id": switch.id, "trigger_kind": str(trigger.kind), "relays": list(relays)},
            at=now,
        )
        return switch

    async def edit_content(self, switch_id: str, payload: bytes) -> ContentRef:
        """Replace the payload of an ``ACTIVE`` switch.

        The new payload is stored on the switch's relay set first, then the
        switch is repointed. The old record is left on the relays.

        Raises:
            StateConflict: If the switch does not exist, is not ``ACTIVE``,
                or was edited concurrently.
            InsufficientQuorum: If too few relays acknowledged the new
                payload; the switch keeps its old content.
        """
        switch = await self._require_switch(switch_id)
        if switch.state is not SwitchState.ACTIVE:
            raise StateConflict(
                switch_id, f"content can only be replaced while active, not {switch.state}"
            )

        ref = await self._store.store(payload, switch.content_ref.relays)
        await self._repository.repoint_content(switch_id, ref, switch.content_ref.logical_id)

        self._logger.info("switch_edited", switch_id=switch_id, acks=len(ref.acks))
        await self._repository.insert_audit_log(
            switch.account_id, "switch_edited", {"switch_id": switch_id}
        )
        return ref

    async def cancel(self, switch_id: str) -> Switch:
        """Cancel a switch that has not triggered yet.

        Raises:
            StateConflict: If the switch does not exist, already triggered,
                or changed state concurrently.
        """
        switch = await self._require_switch(switch_id)
        if not switch.state.can_cancel:
            raise StateConflict(switch_id, f"cannot cancel a switch in state {switch.state}")

        await self._repository.advance(switch_id, switch.state, SwitchState.CANCELLED)

        self._logger.info("switch_cancelled", switch_id=switch_id, from_state=switch.state)
        await self._repository.insert_audit_log(
            switch.account_id,
            "switch_cancelled",
            {"switch_id": switch_id, "from_state": str(switch.state)},
        )
        return switch.with_state(SwitchState.CANCELLED)

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def check_in(
        self, account_id: str, method: str = "manual", *, now: int | None = None
    ) -> int:
        """Record a check-in; returns how many reminded switches went back to ``ACTIVE``.

        Raises:
            AccountNotFound: If the account does not exist.
        """
        now = now if now is not None else int(time.time())
        healed = await self._repository.record_check_in(account_id, now, method)
        await self._repository.insert_audit_log(
            account_id, "check_in", {"method": method, "healed": healed}, at=now
        )
        return healed

    async def set_relays(self, account_id: str, urls: list[str]) -> tuple[str, ...]:
        """Validate, normalize, and store an account's relay list.

        Returns:
            The normalized, de-duplicated URLs in their original order.

        Raises:
            ValueError: If a URL is not a public ``ws``/``wss`` relay URL.
            AccountNotFound: If the account does not exist.
            QuotaExceeded: If the list is longer than the tier allows.
        """
        normalized = normalize_relay_urls(urls)
        account = await self._require_account(account_id)
        limit = self._tiers.max_relays(account.tier)
        if len(normalized) > limit:
            raise QuotaExceeded(
                f"account {account_id} may configure {limit} relays (tier {account.tier}), "
                f"got {len(normalized)}"
            )

        await self._repository.set_relays(account_id, normalized)
        self._logger.info("relays_configured", account_id=account_id, count=len(normalized))
        await self._repository.insert_audit_log(
            account_id, "relays_configured", {"relays": list(normalized)}
        )
        return normalized

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _relays_for(self, account: Account) -> tuple[str, ...]:
        """Account relays, else the defaults, capped at the tier replication factor."""
        candidates = account.relay_urls or tuple(self._relay_defaults.urls)
        return candidates[: self._tiers.replication_factor(account.tier)]

    async def _require_account(self, account_id: str) -> Account:
        account = await get_account(self._repository, account_id)
        if account is None:
            raise AccountNotFound(f"account {account_id} does not exist")
        return account

    async def _require_switch(self, switch_id: str) -> Switch:
        switch = await get_switch(self._repository, switch_id)
        if switch is None:
            raise StateConflict(switch_id, "does not exist")
        return switch
