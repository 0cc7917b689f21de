"""Evaluator service configuration models.

See Also:
    [Evaluator][deadman.services.evaluator.Evaluator]: The service class
        that consumes these configurations.
    [BaseServiceConfig][deadman.core.base_service.BaseServiceConfig]:
        Base class providing ``interval``, ``max_consecutive_failures``,
        and ``metrics`` fields.
"""

from __future__ import annotations

from pydantic import Field, field_validator

from deadman.core.base_service import BaseServiceConfig
from deadman.models import TriggerKind
from deadman.services.common.configs import CascadeConfig, NotifierConfig, ProcessingConfig
from deadman.services.release.configs import ReleaseConfig


class EvaluatorConfig(BaseServiceConfig):
    """Evaluator service configuration.

    Attributes:
        trigger_kinds: Which switches this evaluator walks.
        cascade: Reminder and trigger thresholds.
        processing: Page size, concurrency, and pass deadline.
        release: Relay, store, and delivery settings of the release path.
        notifier: Where reminders and operator alerts go.
    """

    interval: float = Field(default=1800.0, ge=60.0, description="Seconds between passes")
    trigger_kinds: list[TriggerKind] = Field(
        default_factory=lambda: [TriggerKind.FIXED_TIME, TriggerKind.INACTIVITY], min_length=1
    )
    cascade: CascadeConfig = Field(default_factory=CascadeConfig)
    processing: ProcessingConfig = Field(default_factory=ProcessingConfig)
    release: ReleaseConfig = Field(default_factory=ReleaseConfig)
    notifier: NotifierConfig = Field(default_factory=NotifierConfig)

    @field_validator("trigger_kinds")
    @classmethod
    def _dedupe(cls, v: list[TriggerKind]) -> list[TriggerKind]:
        return list(dict.fromkeys(v))


class InactivityCheckerConfig(EvaluatorConfig):
    """Secondary check: interval-based switches only, hourly."""

    interval: float = Field(default=3600.0, ge=60.0, description="Seconds between passes")
    trigger_kinds: list[TriggerKind] = Field(
        default_factory=lambda: [TriggerKind.INACTIVITY], min_length=1
    )
