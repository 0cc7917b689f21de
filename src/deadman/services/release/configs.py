"""Release coordinator configuration models.

See Also:
    [ReleaseCoordinator][deadman.services.release.ReleaseCoordinator]: The
        class that consumes this configuration.
"""

from __future__ import annotations

from pydantic import BaseModel, Field

from deadman.relay.client import RelayClientConfig
from deadman.relay.store import StoreConfig
from deadman.services.common.configs import DeliveryConfig


class ReleaseConfig(BaseModel):
    """Everything the release path needs: relays, store policy, sink, and escalation.

    Attributes:
        relay: Relay transport used to read payloads back.
        store: Quorum and read deadline.
        delivery: Where released payloads are handed off.
        alert_after_failures: Consecutive failed releases of one switch
            after which an operator alert is sent (once).
        announce: Publish a public release notice to the switch's relays
            after it was sent.
    """

    relay: RelayClientConfig = Field(default_factory=RelayClientConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    delivery: DeliveryConfig = Field(default_factory=DeliveryConfig)
    alert_after_failures: int = Field(default=3, ge=1, le=1000)
    announce: bool = Field(default=False)
    announce_message: str = Field(
        default="A dead man's switch has been released.", min_length=1, max_length=1000
    )
