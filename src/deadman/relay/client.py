"""
Relay client interface and backend selection.

A [RelayClient][deadman.relay.client.RelayClient] talks to one relay per
call and carries no policy: no retries, no fallback, no quorum. Those
belong to the [ContentStore][deadman.relay.store.ContentStore].

The implementation is chosen once at startup from
[RelayClientConfig.backend][deadman.relay.client.RelayClientConfig]
through [build_relay_client()][deadman.relay.client.build_relay_client]
and injected into every component that needs it.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Literal

from nostr_sdk import NostrSdkError
from pydantic import BaseModel, Field

from deadman.core.exceptions import ConfigurationError
from deadman.models import EventKind, StoreRecord, WireEvent
from deadman.utils.keys import ENV_PRIVATE_KEY, load_keys_from_env


class RelayClientConfig(BaseModel):
    """Relay transport configuration.

    The signing key is never part of the configuration; it is read from
    the environment variable named by ``keys_env`` when the ``nostr``
    backend is built.
    """

    backend: Literal["nostr", "memory"] = Field(
        default="nostr", description="Relay transport implementation"
    )
    timeout: float = Field(
        default=5.0, ge=0.1, le=120.0, description="Per-call relay timeout (seconds)"
    )
    max_connections_per_relay: int = Field(
        default=4, ge=1, le=64, description="Concurrent calls allowed against one relay URL"
    )
    keys_env: str = Field(
        default=ENV_PRIVATE_KEY,
        min_length=1,
        description="Environment variable name for the signing key",
    )


class RelayClient(ABC):
    """One-relay-at-a-time transport.

    Every call is bounded by the configured timeout and makes exactly one
    attempt. Implementations raise
    [TransientRelayError][deadman.core.exceptions.TransientRelayError]
    (or [RelayTimeoutError][deadman.core.exceptions.RelayTimeoutError])
    for anything the relay did wrong.
    """

    @property
    @abstractmethod
    def author(self) -> str:
        """Hex public key that records published through this client are authored with."""

    @abstractmethod
    async def publish(self, relay_url: str, record: StoreRecord) -> None:
        """Publish *record* to *relay_url*; return only once the relay acknowledged it."""

    @abstractmethod
    async def fetch(
        self,
        relay_url: str,
        logical_id: str,
        kinds: Sequence[int] = (EventKind.TEXT_NOTE,),
    ) -> WireEvent | None:
        """Look up the record with id *logical_id* on *relay_url*.

        Returns ``None`` when the relay answered without a matching,
        verifiable record.
        """


def build_relay_client(config: RelayClientConfig) -> RelayClient:
    """Instantiate the backend named in *config*.

    Raises:
        ConfigurationError: For the ``nostr`` backend, if the signing key
            environment variable is missing or does not hold a valid key.
    """
    if config.backend == "memory":
        from .memory import MemoryRelayClient  # noqa: PLC0415

        return MemoryRelayClient(timeout=config.timeout)

    from .nostr import NostrRelayClient  # noqa: PLC0415

    try:
        keys = load_keys_from_env(config.keys_env)
    except (ValueError, NostrSdkError) as e:
        raise ConfigurationError(f"cannot load signing key from {config.keys_env}: {e}") from e

    return NostrRelayClient(
        keys=keys,
        timeout=config.timeout,
        max_connections_per_relay=config.max_connections_per_relay,
    )
