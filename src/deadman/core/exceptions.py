"""Deadman exception hierarchy.

Typed exceptions for every failure category, so callers can tell a
transient relay hiccup (retry next tick) from a quorum failure (abort the
user's request) from an expected compare-and-set race (skip quietly),
while ``CancelledError`` propagates untouched.

Exception hierarchy:

```text
DeadmanError (base -- never raised directly)
├── ConfigurationError       -- config validation, missing keys, bad YAML
├── DatabaseError            -- pool/repository/query failures
│   ├── ConnectionPoolError  -- transient: pool exhausted, network blip
│   └── QueryError           -- permanent: bad SQL, constraint violation
├── TransientRelayError      -- relay refused, dropped, or rejected a call
│   └── RelayTimeoutError    -- relay call exceeded its timeout
├── ProtocolError            -- malformed or mis-signed wire data
├── StorageError             -- replicated content store failures
│   ├── InsufficientQuorum   -- write acknowledged by too few relays
│   └── ContentNotFound      -- no relay returned a verifiable record
├── StateConflict            -- compare-and-set lost a race
├── AccountNotFound          -- referenced account does not exist
├── QuotaExceeded            -- tier limit reached
└── SinkDeliveryError        -- delivery sink rejected or failed
```

See Also:
    [Repository.advance()][deadman.core.repository.Repository.advance]:
        Raises [StateConflict][deadman.core.exceptions.StateConflict].
    [ContentStore][deadman.relay.store.ContentStore]: Raises
        [InsufficientQuorum][deadman.core.exceptions.InsufficientQuorum] and
        [ContentNotFound][deadman.core.exceptions.ContentNotFound].
    [Evaluator][deadman.services.evaluator.Evaluator]: Counts every
        per-switch failure in the pass summary instead of raising.
"""

from __future__ import annotations

from collections.abc import Sequence


class DeadmanError(Exception):
    """Base exception for all deadman errors. Never raised directly."""


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(DeadmanError):
    """Invalid or missing configuration (YAML, env vars, CLI flags)."""


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class DatabaseError(DeadmanError):
    """Base for all database-related errors."""


class ConnectionPoolError(DatabaseError, ConnectionError):
    """Transient database error: pool exhausted, connection refused, network blip.

    Also a builtin ``ConnectionError`` so generic connection handlers (the
    CLI boundary among them) catch it.
    """


class QueryError(DatabaseError):
    """Permanent database error: bad SQL, constraint violation, data integrity.

    Callers should NOT retry -- the query itself is wrong.
    """


# ---------------------------------------------------------------------------
# Relays
# ---------------------------------------------------------------------------


class TransientRelayError(DeadmanError):
    """A single relay call failed in a way worth retrying later.

    Covers refused connections, dropped sockets, and relays rejecting a
    publish. Never surfaced to a user as a final failure; the
    [ContentStore][deadman.relay.store.ContentStore] falls back to the next
    relay and the evaluator retries on the next tick.

    Attributes:
        relay_url: The relay the call was made to.
    """

    def __init__(self, relay_url: str, message: str) -> None:
        super().__init__(f"{relay_url}: {message}")
        self.relay_url = relay_url


class RelayTimeoutError(TransientRelayError):
    """A relay call exceeded its timeout."""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ProtocolError(DeadmanError):
    """Malformed wire data, or a signed event whose id differs from the record's."""


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageError(DeadmanError):
    """Base for replicated content store failures."""


class InsufficientQuorum(StorageError):  # noqa: N818
    """A write was acknowledged by fewer relays than the quorum requires.

    Raised at switch creation time; the caller must not persist the switch.

    Attributes:
        required: Acks needed.
        acked: Relays that did acknowledge, in ack order.
        relays: The full relay set attempted.
    """

    def __init__(self, required: int, acked: Sequence[str], relays: Sequence[str]) -> None:
        super().__init__(
            f"quorum not reached: {len(acked)}/{len(relays)} relays acknowledged, "
            f"{required} required"
        )
        self.required = required
        self.acked = tuple(acked)
        self.relays = tuple(relays)


class ContentNotFound(StorageError):  # noqa: N818
    """No relay produced a record matching the expected content address.

    Attributes:
        logical_id: Content address that was looked up.
        attempted: Relays tried before giving up, in order.
    """

    def __init__(self, logical_id: str, attempted: Sequence[str], reason: str) -> None:
        super().__init__(f"content {logical_id[:16]} not found after {len(attempted)} relays: {reason}")
        self.logical_id = logical_id
        self.attempted = tuple(attempted)


# ---------------------------------------------------------------------------
# Switch lifecycle
# ---------------------------------------------------------------------------


class StateConflict(DeadmanError):  # noqa: N818
    """A compare-and-set found the row in a different state than expected.

    Always recoverable: another evaluator, coordinator, or user action got
    there first. Callers skip the switch for this tick.

    Attributes:
        switch_id: The switch whose update lost the race.
    """

    def __init__(self, switch_id: str, message: str) -> None:
        super().__init__(f"switch {switch_id}: {message}")
        self.switch_id = switch_id


class AccountNotFound(DeadmanError):  # noqa: N818
    """The referenced account does not exist."""


class QuotaExceeded(DeadmanError):  # noqa: N818
    """A tier limit (active switches, relays) would be exceeded."""


# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------


class SinkDeliveryError(DeadmanError):
    """The delivery sink failed after a successful retrieval.

    The switch stays ``TRIGGERED`` and delivery is retried on a later tick.
    """
