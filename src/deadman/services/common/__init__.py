"""Shared infrastructure for deadman services.

Attributes:
    configs: Tier limits, reminder cascade, relay defaults, batch knobs,
        and webhook endpoints.
    types: [PassSummary][deadman.services.common.types.PassSummary],
        [Reminder][deadman.services.common.types.Reminder],
        [ReleaseOutcome][deadman.services.common.types.ReleaseOutcome] and
        the other small types exchanged between services.
    delivery: Delivery sink and notifier protocols plus their webhook and
        log implementations.
    mixins: [BatchProgress][deadman.services.common.mixins.BatchProgress]
        tracking for batch passes.
    queries: Read queries shared by every service.
"""

from .configs import (
    CascadeConfig,
    DeliveryConfig,
    NotifierConfig,
    ProcessingConfig,
    RelayDefaults,
    TierConfig,
    TierLimits,
    WebhookConfig,
)
from .delivery import (
    DeliverySink,
    LoggingNotifier,
    Notifier,
    WebhookDeliverySink,
    WebhookNotifier,
    build_delivery_sink,
    build_notifier,
)
from .mixins import BatchProgress, BatchProgressMixin
from .queries import (
    count_active_switches,
    count_open_switches,
    fetch_open_switch_chunk,
    get_account,
    get_switch,
)
from .types import (
    CleanupSummary,
    OpenSwitch,
    PassSummary,
    RecipientsMetadata,
    ReleaseOutcome,
    Reminder,
)


__all__ = [
    "BatchProgress",
    "BatchProgressMixin",
    "CascadeConfig",
    "CleanupSummary",
    "DeliveryConfig",
    "DeliverySink",
    "LoggingNotifier",
    "Notifier",
    "NotifierConfig",
    "OpenSwitch",
    "PassSummary",
    "ProcessingConfig",
    "RecipientsMetadata",
    "RelayDefaults",
    "ReleaseOutcome",
    "Reminder",
    "TierConfig",
    "TierLimits",
    "WebhookConfig",
    "WebhookDeliverySink",
    "WebhookNotifier",
    "build_delivery_sink",
    "build_notifier",
    "count_active_switches",
    "count_open_switches",
    "fetch_open_switch_chunk",
    "get_account",
    "get_switch",
]
