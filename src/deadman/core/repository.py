"""
Switch record repository built on the connection pool.

Holds the typed writes the services need (accounts, switches, check-ins,
audit entries), the cleanup sweeps, and
[advance()][deadman.core.repository.Repository.advance], the
compare-and-set through which every switch state change goes.

A state-changing statement states its precondition in its ``WHERE``
clause. When two processes race on one row, one updates it and the other
matches zero rows and gets a
[StateConflict][deadman.core.exceptions.StateConflict].

Reads are not here: ``services/common/queries.py`` builds them on the
plain ``fetch``/``fetchrow``/``fetchval``/``execute``/``transaction``
pass-throughs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Annotated, Any

import asyncpg  # noqa: TC002
from pydantic import BaseModel, Field

from deadman.models.constants import (
    OPEN_STATES,
    REMINDER_STATES,
    SwitchState,
    is_valid_transition,
)

from .exceptions import AccountNotFound, QuotaExceeded, StateConflict
from .logger import Logger
from .pool import Pool
from .yaml import load_yaml


if TYPE_CHECKING:
    from collections.abc import Sequence
    from contextlib import AbstractAsyncContextManager

    from deadman.models import Account, ContentRef, Switch


# Seconds; None leaves only the server-side statement_timeout
Timeout = Annotated[float, Field(ge=0.1)] | None


class RepositoryTimeoutsConfig(BaseModel):
    """Client-side timeouts, in seconds.

    Attributes:
        query: Single statements outside a transaction.
        transaction: Each statement inside a transaction.
        cleanup: Retention sweeps, which may delete many rows.
    """

    query: Timeout = 60.0
    transaction: Timeout = 30.0
    cleanup: Timeout = 90.0


_INSERT_SWITCH = """
INSERT INTO switch (
    id, account_id, trigger_kind, fixed_time, inactivity_days,
    state, content_ref, recipient_count, created_at, release_failures,
    updated_at
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $9)
"""


class RepositoryConfig(BaseModel):
    timeouts: RepositoryTimeoutsConfig = Field(default_factory=RepositoryTimeoutsConfig)


def _affected_rows(status: str) -> int:
    """Row count of a command tag such as ``"DELETE 12"``; ``0`` if there is none."""
    _, _, count = status.rpartition(" ")
    return int(count) if count.isdigit() else 0


class Repository:
    """The services' only way into PostgreSQL.

    Owns a [Pool][deadman.core.pool.Pool] and opens and closes it as an
    async context manager::

        repository = Repository.from_yaml("config/repository.yaml")
        async with repository:
            await repository.insert_account(account)
            await repository.advance(switch.id, SwitchState.ACTIVE, SwitchState.REMINDED_1)
    """

    def __init__(self, pool: Pool | None = None, config: RepositoryConfig | None = None) -> None:
        self._pool = pool if pool is not None else Pool()
        self._config = config if config is not None else RepositoryConfig()
        self._logger = Logger("repository")

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Repository:
        """Build from ``{"pool": {...}, "timeouts": {...}}``; both keys are optional."""
        rest = dict(config_dict)
        pool_dict = rest.pop("pool", None)
        return cls(
            pool=Pool.from_dict(pool_dict) if pool_dict is not None else None,
            config=RepositoryConfig.model_validate(rest),
        )

    @classmethod
    def from_yaml(cls, config_path: str) -> Repository:
        return cls.from_dict(load_yaml(config_path))

    @property
    def config(self) -> RepositoryConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Pass-through queries
    # -------------------------------------------------------------------------

    def _or_default(self, timeout: float | None) -> float | None:
        return self._config.timeouts.query if timeout is None else timeout

    async def fetch(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        return await self._pool.fetch(query, *args, timeout=self._or_default(timeout))

    async def fetchrow(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> asyncpg.Record | None:
        return await self._pool.fetchrow(query, *args, timeout=self._or_default(timeout))

    async def fetchval(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> Any:
        return await self._pool.fetchval(query, *args, timeout=self._or_default(timeout))

    async def execute(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> str:
        """Run a statement and return its command tag."""
        return await self._pool.execute(query, *args, timeout=self._or_default(timeout))

    def transaction(self) -> AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]:
        """A pooled connection inside ``BEGIN``/``COMMIT``, rolled back on error."""
        return self._pool.transaction()

    # -------------------------------------------------------------------------
    # Accounts
    # -------------------------------------------------------------------------

    async def insert_account(self, account: Account) -> bool:
        """Insert an account if it does not exist yet.

        Returns:
            ``True`` if a row was inserted, ``False`` if the id was taken.
        """
        params = account.to_db_params()
        inserted = await self._pool.fetchval(
            """
            INSERT INTO account (id, tier, last_check_in_at, relay_urls, created_at)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (id) DO NOTHING
            RETURNING id
            """,
            *params,
            timeout=self._config.timeouts.query,
        )
        self._logger.debug("account_inserted", account_id=account.id, inserted=inserted is not None)
        return inserted is not None

    async def set_relays(self, account_id: str, relay_urls: Sequence[str]) -> None:
        """Replace the ordered relay list of an account.

        Raises:
            AccountNotFound: If no such account exists.
        """
        updated = await self._pool.fetchval(
            "UPDATE account SET relay_urls = $2 WHERE id = $1 RETURNING id",
            account_id,
            list(relay_urls),
            timeout=self._config.timeouts.query,
        )
        if updated is None:
            raise AccountNotFound(f"account {account_id} does not exist")
        self._logger.debug("relays_updated", account_id=account_id, count=len(relay_urls))

    async def record_check_in(self, account_id: str, at: int, method: str = "manual") -> int:
        """Record a check-in and heal the account's reminded switches.

        In a single transaction: bumps ``last_check_in_at`` (never
        backwards), appends a ``check_in_log`` row, and resets every
        ``REMINDED_*`` switch of the account to ``ACTIVE``. Switches that are
        ``TRIGGERED`` or terminal are left untouched.

        Args:
            account_id: Account checking in.
            at: Unix timestamp of the check-in.
            method: How the user checked in (``manual``, ``email_link``, ...).

        Returns:
            Number of switches reset to ``ACTIVE``.

        Raises:
            AccountNotFound: If no such account exists.
        """
        timeout = self._config.timeouts.transaction
        reminded = [str(s) for s in REMINDER_STATES]

        async with self._pool.transaction() as conn:
            updated = await conn.fetchval(
                """
                UPDATE account
                SET last_check_in_at = GREATEST(last_check_in_at, $2)
                WHERE id = $1
                RETURNING id
                """,
                account_id,
                at,
                timeout=timeout,
            )
            if updated is None:
                raise AccountNotFound(f"account {account_id} does not exist")

            await conn.execute(
                "INSERT INTO check_in_log (account_id, checked_in_at, method) VALUES ($1, $2, $3)",
                account_id,
                at,
                method,
                timeout=timeout,
            )

            healed = await conn.fetch(
                """
                UPDATE switch
                SET state = $2, updated_at = $3
                WHERE account_id = $1 AND state = ANY($4::text[])
                RETURNING id
                """,
                account_id,
                str(SwitchState.ACTIVE),
                at,
                reminded,
                timeout=timeout,
            )

        self._logger.info("check_in_recorded", account_id=account_id, healed=len(healed))
        return len(healed)

    # -------------------------------------------------------------------------
    # Switches
    # -------------------------------------------------------------------------

    async def insert_switch(self, switch: Switch, *, max_open: int | None = None) -> None:
        """Insert a new switch row. Its content must already be stored.

        With *max_open*, the account row is locked and its open switches
        counted in the same transaction, so concurrent inserts for one
        account cannot overshoot the quota.

        Raises:
            AccountNotFound: With *max_open*, if the account does not exist.
            QuotaExceeded: If the account already has *max_open* open switches.
        """
        if max_open is None:
            await self._pool.execute(
                _INSERT_SWITCH, *switch.to_db_params(), timeout=self._config.timeouts.query
            )
        else:
            timeout = self._config.timeouts.transaction
            async with self._pool.transaction() as conn:
                locked = await conn.fetchval(
                    "SELECT id FROM account WHERE id = $1 FOR UPDATE",
                    switch.account_id,
                    timeout=timeout,
                )
                if locked is None:
                    raise AccountNotFound(f"account {switch.account_id} does not exist")
                open_count = await conn.fetchval(
                    "SELECT count(*) FROM switch WHERE account_id = $1 AND state = ANY($2::text[])",
                    switch.account_id,
                    [str(s) for s in OPEN_STATES],
                    timeout=timeout,
                )
                if open_count >= max_open:
                    raise QuotaExceeded(
                        f"account {switch.account_id} has {open_count} active switches "
                        f"(limit {max_open})"
                    )
                await conn.execute(_INSERT_SWITCH, *switch.to_db_params(), timeout=timeout)
        self._logger.debug("switch_inserted", switch_id=switch.id, account_id=switch.account_id)

    async def advance(
        self,
        switch_id: str,
        expected: SwitchState,
        target: SwitchState,
        *,
        observed_check_in: int | None = None,
        at: int | None = None,
    ) -> None:
        """Atomically move a switch from *expected* to *target*.

        The update only applies while the row is still in *expected*. With
        ``observed_check_in`` set, it also requires the owning account's
        ``last_check_in_at`` to be unchanged, so a decision computed from a
        stale check-in loses against a concurrent check-in.

        Args:
            switch_id: Switch to advance.
            expected: State the caller observed.
            target: State to move to.
            observed_check_in: ``last_check_in_at`` the decision was based on.
            at: Unix timestamp written to ``updated_at`` (database clock if
                omitted).

        Raises:
            ValueError: If ``expected -> target`` is not a legal transition.
            StateConflict: If the row no longer matches the preconditions.
        """
        if not is_valid_transition(expected, target):
            raise ValueError(f"illegal transition {expected} -> {target}")

        query = """
            UPDATE switch
            SET state = $3,
                updated_at = COALESCE($4, EXTRACT(EPOCH FROM NOW())::BIGINT)
            WHERE id = $1 AND state = $2
        """
        args: list[Any] = [switch_id, str(expected), str(target), at]
        if observed_check_in is not None:
            query += (
                " AND (SELECT a.last_check_in_at FROM account a"
                " WHERE a.id = switch.account_id) = $5"
            )
            args.append(observed_check_in)
        query += " RETURNING id"

        updated = await self._pool.fetchval(query, *args, timeout=self._config.timeouts.query)
        if updated is None:
            raise StateConflict(switch_id, f"expected {expected} for {target}")

        self._logger.debug("switch_advanced", switch_id=switch_id, old=expected, new=target)

    async def repoint_content(
        self, switch_id: str, new_ref: ContentRef, expected_logical_id: str
    ) -> None:
        """Point an ``ACTIVE`` switch at newly stored content.

        Raises:
            StateConflict: If the switch left ``ACTIVE`` or was repointed
                by someone else since *expected_logical_id* was read.
        """
        updated = await self._pool.fetchval(
            """
            UPDATE switch
            SET content_ref = $2, updated_at = EXTRACT(EPOCH FROM NOW())::BIGINT
            WHERE id = $1 AND state = $3 AND content_ref->>'logical_id' = $4
            RETURNING id
            """,
            switch_id,
            new_ref.to_dict(),
            str(SwitchState.ACTIVE),
            expected_logical_id,
            timeout=self._config.timeouts.query,
        )
        if updated is None:
            raise StateConflict(switch_id, "content can only be replaced while active")
        self._logger.debug(
            "content_repointed",
            switch_id=switch_id,
            old=expected_logical_id[:16],
            new=new_ref.logical_id[:16],
        )

    async def record_release_failure(self, switch_id: str, error: str) -> int:
        """Increment the consecutive release failure count of a ``TRIGGERED`` switch.

        The increment is never re-sent after a lost connection.

        Returns:
            The new count, or ``0`` if the switch is no longer ``TRIGGERED``.
        """
        count = await self._pool.fetchval(
            """
            UPDATE switch
            SET release_failures = release_failures + 1, last_error = $3
            WHERE id = $1 AND state = $2
            RETURNING release_failures
            """,
            switch_id,
            str(SwitchState.TRIGGERED),
            error,
            timeout=self._config.timeouts.query,
            replay=False,
        )
        return int(count) if count is not None else 0

    async def claim_release_alert(self, switch_id: str) -> bool:
        """Mark the operator alert of a switch as sent, once.

        Returns:
            ``True`` for the single caller that flipped the flag.
        """
        claimed = await self._pool.fetchval(
            "UPDATE switch SET release_alerted = TRUE WHERE id = $1 AND NOT release_alerted "
            "RETURNING id",
            switch_id,
            timeout=self._config.timeouts.query,
        )
        return claimed is not None

    # -------------------------------------------------------------------------
    # Audit
    # -------------------------------------------------------------------------

    async def insert_audit_log(
        self,
        account_id: str,
        action: str,
        details: dict[str, Any] | None = None,
        *,
        at: int | None = None,
    ) -> None:
        await self._pool.execute(
            """
            INSERT INTO audit_log (account_id, action, details, created_at)
            VALUES ($1, $2, $3, COALESCE($4, EXTRACT(EPOCH FROM NOW())::BIGINT))
            """,
            account_id,
            action,
            details or {},
            at,
            timeout=self._config.timeouts.query,
        )

    # -------------------------------------------------------------------------
    # Cleanup Operations
    # -------------------------------------------------------------------------

    async def delete_expired_codes(self, now: int) -> int:
        """Delete one-time codes that expired or were already consumed."""
        status = await self._pool.execute(
            "DELETE FROM one_time_code WHERE expires_at < $1 OR consumed_at IS NOT NULL",
            now,
            timeout=self._config.timeouts.cleanup,
        )
        return _affected_rows(status)

    async def delete_check_in_logs_before(self, before: int) -> int:
        status = await self._pool.execute(
            "DELETE FROM check_in_log WHERE checked_in_at < $1",
            before,
            timeout=self._config.timeouts.cleanup,
        )
        return _affected_rows(status)

    async def delete_audit_logs_before(self, before: int) -> int:
        status = await self._pool.execute(
            "DELETE FROM audit_log WHERE created_at < $1",
            before,
            timeout=self._config.timeouts.cleanup,
        )
        return _affected_rows(status)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def connect(self) -> None:
        await self._pool.connect()
        self._logger.debug("repository_connected")

    async def close(self) -> None:
        await self._pool.close()
        self._logger.debug("repository_closed")

    async def __aenter__(self) -> Repository:
        await self.connect()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    def __repr__(self) -> str:
        db = self._pool.config.database
        state = "connected" if self._pool.is_connected else "idle"
        return f"<Repository {db.user}@{db.host}:{db.port}/{db.database} {state}>"
