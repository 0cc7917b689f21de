"""Relay transport and the replicated content store.

Attributes:
    RelayClient: One-relay-per-call transport interface.
    NostrRelayClient: nostr-sdk implementation (imported lazily by
        [build_relay_client()][deadman.relay.client.build_relay_client]).
    MemoryRelayClient: In-process implementation with fault injection.
    ContentStore: Quorum writes and ordered-fallback reads.
"""

from .client import RelayClient, RelayClientConfig, build_relay_client
from .memory import MemoryRelayClient
from .store import ContentStore, StoreConfig, required_acks


__all__ = [
    "ContentStore",
    "MemoryRelayClient",
    "RelayClient",
    "RelayClientConfig",
    "StoreConfig",
    "build_relay_client",
    "required_acks",
]
