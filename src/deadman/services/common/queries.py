"""Domain read queries for deadman services.

All read SQL used by services is centralized here. Each function accepts
a [Repository][deadman.core.repository.Repository] and returns typed
results; writes and state changes go through the repository's own
methods instead.

Rows that fail model construction are logged and skipped rather than
aborting a pass: a single corrupt row must not stop every other switch
from being evaluated.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import TYPE_CHECKING, Any

from deadman.models import (
    OPEN_STATES,
    Account,
    Switch,
    SwitchDbParams,
    TriggerKind,
)

from .types import OpenSwitch


if TYPE_CHECKING:
    from deadman.core.repository import Repository

logger = logging.getLogger(__name__)


_SWITCH_COLUMNS = """
    s.id, s.account_id, s.trigger_kind, s.fixed_time, s.inactivity_days,
    s.state, s.content_ref, s.recipient_count, s.created_at, s.release_failures
"""


# =============================================================================
# Private helpers
# =============================================================================


def _switch_from_row(row: Any) -> Switch:
    return Switch.from_db_params(
        SwitchDbParams(
            id=row["id"],
            account_id=row["account_id"],
            trigger_kind=row["trigger_kind"],
            fixed_time=row["fixed_time"],
            inactivity_days=row["inactivity_days"],
            state=row["state"],
            content_ref=row["content_ref"],
            recipient_count=row["recipient_count"],
            created_at=row["created_at"],
            release_failures=row["release_failures"],
        )
    )


def _kinds(trigger_kinds: Sequence[TriggerKind] | None) -> list[str]:
    return [str(k) for k in (trigger_kinds or tuple(TriggerKind))]


# =============================================================================
# Switch queries
# =============================================================================


async def fetch_open_switch_chunk(
    repository: Repository,
    after_id: str,
    limit: int,
    trigger_kinds: Sequence[TriggerKind] | None = None,
) -> list[OpenSwitch]:
    """Fetch the next page of open switches, keyset-paginated on ``id``.

    Open means not ``SENT`` and not ``CANCELLED``. Each switch comes with
    its account's ``last_check_in_at`` read in the same statement.

    Args:
        repository: Database interface.
        after_id: Last id of the previous page (``""`` for the first page).
        limit: Page size.
        trigger_kinds: Restrict to these trigger kinds (all if ``None``).
    """
    rows = await repository.fetch(
        f"""
        SELECT {_SWITCH_COLUMNS}, a.last_check_in_at
        FROM switch s
        JOIN account a ON a.id = s.account_id
        WHERE s.state = ANY($1::text[])
          AND s.trigger_kind = ANY($2::text[])
          AND s.id > $3
        ORDER BY s.id ASC
        LIMIT $4
        """,  # noqa: S608
        [str(s) for s in OPEN_STATES],
        _kinds(trigger_kinds),
        after_id,
        limit,
    )
    switches: list[OpenSwitch] = []
    for row in rows:
        try:
            switches.append(
                OpenSwitch(switch=_switch_from_row(row), last_check_in_at=row["last_check_in_at"])
            )
        except (ValueError, TypeError, KeyError) as e:
            logger.warning("Skipping invalid switch row %s: %s", row["id"], e)
    return switches


async def count_open_switches(
    repository: Repository, trigger_kinds: Sequence[TriggerKind] | None = None
) -> int:
    count = await repository.fetchval(
        "SELECT count(*) FROM switch WHERE state = ANY($1::text[]) AND trigger_kind = ANY($2::text[])",
        [str(s) for s in OPEN_STATES],
        _kinds(trigger_kinds),
    )
    return int(count or 0)


async def get_switch(repository: Repository, switch_id: str) -> Switch | None:
    """Read one switch fresh from the database, or ``None`` if it does not exist."""
    row = await repository.fetchrow(
        f"SELECT {_SWITCH_COLUMNS} FROM switch s WHERE s.id = $1",  # noqa: S608
        switch_id,
    )
    if row is None:
        return None
    return _switch_from_row(row)


async def count_active_switches(repository: Repository, account_id: str) -> int:
    """Count an account's open switches, the figure the tier quota limits."""
    count = await repository.fetchval(
        "SELECT count(*) FROM switch WHERE account_id = $1 AND state = ANY($2::text[])",
        account_id,
        [str(s) for s in OPEN_STATES],
    )
    return int(count or 0)


# =============================================================================
# Account queries
# =============================================================================


async def get_account(repository: Repository, account_id: str) -> Account | None:
    row = await repository.fetchrow(
        """
        SELECT id, tier, last_check_in_at, relay_urls, created_at
        FROM account
        WHERE id = $1
        """,
        account_id,
    )
    if row is None:
        return None
    return Account(
        id=row["id"],
        tier=row["tier"],
        last_check_in_at=row["last_check_in_at"],
        relay_urls=tuple(row["relay_urls"] or ()),
        created_at=row["created_at"],
    )
