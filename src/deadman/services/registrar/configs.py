"""Switch registrar configuration models."""

from __future__ import annotations

from pydantic import BaseModel, Field

from deadman.relay import RelayClientConfig, StoreConfig
from deadman.services.common.configs import RelayDefaults, TierConfig


class RegistrarConfig(BaseModel):
    """Write-path configuration used by the web layer.

    Attributes:
        tiers: Quotas and replication factor per billing tier.
        relay_defaults: Relays for accounts without their own list.
        relay: Relay client used to store payloads.
        store: Quorum and read deadline of the content store.
    """

    tiers: TierConfig = Field(default_factory=TierConfig)
    relay_defaults: RelayDefaults = Field(default_factory=RelayDefaults)
    relay: RelayClientConfig = Field(default_factory=RelayClientConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
