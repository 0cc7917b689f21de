"""Shared configuration models for deadman services.

Tier limits, the reminder cascade, relay defaults, batch processing knobs,
and the webhook endpoints of the delivery sink and notifier. Every model
has defaults, so a YAML file only needs the keys it overrides.

Examples:
    ```yaml
    cascade:
      reminder_fractions: [0.5, 0.75, 0.87]
      trigger_fraction: 1.0
      trigger_margin_hours: 6
    tiers:
      tiers:
        free: {replication_factor: 1, max_active_switches: 2, max_relays: 1}
    ```
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, Field, field_validator, model_validator

from deadman.models import normalize_relay_urls


# =============================================================================
# Tiers
# =============================================================================


class TierLimits(BaseModel):
    """Quota and replication limits of one billing tier."""

    replication_factor: int = Field(ge=1, description="Relays each payload is written to")
    max_active_switches: int = Field(ge=0, description="Open switches allowed per account")
    max_relays: int = Field(ge=1, description="Relay URLs an account may configure")


def _default_tiers() -> dict[str, TierLimits]:
    return {
        "free": TierLimits(replication_factor=1, max_active_switches=2, max_relays=1),
        "premium": TierLimits(replication_factor=10, max_active_switches=100, max_relays=10),
        "lifetime": TierLimits(replication_factor=3, max_active_switches=50, max_relays=3),
    }


class TierConfig(BaseModel):
    """Tier table consumed from billing.

    Unknown tier names fall back to ``default_tier`` so an account with a
    tier this deployment does not know yet still gets the most restrictive
    limits rather than an error.
    """

    tiers: dict[str, TierLimits] = Field(default_factory=_default_tiers)
    default_tier: str = Field(default="free", min_length=1)

    @model_validator(mode="after")
    def _default_tier_exists(self) -> TierConfig:
        if self.default_tier not in self.tiers:
            raise ValueError(f"default_tier {self.default_tier!r} is not in tiers")
        return self

    def limits(self, tier: str) -> TierLimits:
        return self.tiers.get(tier) or self.tiers[self.default_tier]

    def replication_factor(self, tier: str) -> int:
        return self.limits(tier).replication_factor

    def max_active_switches(self, tier: str) -> int:
        return self.limits(tier).max_active_switches

    def max_relays(self, tier: str) -> int:
        return self.limits(tier).max_relays


# =============================================================================
# Reminder Cascade
# =============================================================================


class CascadeConfig(BaseModel):
    """Reminder and trigger thresholds for inactivity-based switches.

    Thresholds are fractions of the switch's interval N (in days). With the
    defaults and N = 60, reminders fire after 30, 45 and 52.2 days and the
    trigger after 60 days plus ``trigger_margin_hours``.

    Attributes:
        reminder_fractions: One fraction per reminder stage, mapped in order
            to ``REMINDED_1`` .. ``REMINDED_3``. Fewer entries means fewer
            reminder stages.
        trigger_fraction: Fraction of N at which the switch triggers.
        trigger_margin_hours: Grace period added to the trigger threshold.
    """

    reminder_fractions: list[float] = Field(default_factory=lambda: [0.5, 0.75, 0.87])
    trigger_fraction: float = Field(default=1.0, gt=0.0, le=10.0)
    trigger_margin_hours: float = Field(default=0.0, ge=0.0)

    @field_validator("reminder_fractions")
    @classmethod
    def _validate_fractions(cls, v: list[float]) -> list[float]:
        if len(v) > 3:  # noqa: PLR2004
            raise ValueError(f"at most 3 reminder stages are supported, got {len(v)}")
        if any(f <= 0 for f in v):
            raise ValueError("reminder fractions must be positive")
        if any(b <= a for a, b in zip(v, v[1:], strict=False)):
            raise ValueError(f"reminder fractions must be strictly increasing: {v}")
        return v

    @model_validator(mode="after")
    def _reminders_before_trigger(self) -> CascadeConfig:
        if self.reminder_fractions and self.reminder_fractions[-1] >= self.trigger_fraction:
            raise ValueError(
                f"last reminder fraction {self.reminder_fractions[-1]} must be below "
                f"trigger_fraction {self.trigger_fraction}"
            )
        return self


# =============================================================================
# Relays
# =============================================================================


class RelayDefaults(BaseModel):
    """Relays used for accounts that have not configured their own."""

    urls: list[str] = Field(
        default_factory=lambda: [
            "wss://relay.damus.io",
            "wss://nos.lol",
            "wss://relay.nostr.band",
        ],
        min_length=1,
    )

    @field_validator("urls")
    @classmethod
    def _normalize(cls, v: list[str]) -> list[str]:
        return list(normalize_relay_urls(v))


# =============================================================================
# Processing
# =============================================================================


class ProcessingConfig(BaseModel):
    """Batch pass knobs shared by the evaluator services."""

    chunk_size: int = Field(default=100, ge=1, le=10_000, description="Switches per page")
    max_tasks: int = Field(default=10, ge=1, le=200, description="Switches evaluated concurrently")
    pass_deadline: float = Field(
        default=600.0, ge=1.0, description="No new switch is started after this many seconds"
    )


# =============================================================================
# Webhooks
# =============================================================================


class WebhookConfig(BaseModel):
    """An HTTP endpoint that receives JSON posts."""

    url: str = Field(min_length=1)
    timeout: float = Field(default=10.0, ge=0.1, le=300.0)
    max_response_size: int = Field(default=64 * 1024, ge=1024)

    @field_validator("url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"webhook url must be http(s): {v}")
        return v


class DeliveryConfig(BaseModel):
    """Where released payloads are handed off."""

    webhook: WebhookConfig | None = None


class NotifierConfig(BaseModel):
    """Where reminders and operator alerts go.

    ``log`` only writes them to the service log, which is enough when an
    external system tails the logs.
    """

    backend: Literal["log", "webhook"] = "log"
    webhook: WebhookConfig | None = None

    @model_validator(mode="after")
    def _webhook_required(self) -> NotifierConfig:
        if self.backend == "webhook" and self.webhook is None:
            raise ValueError("notifier backend 'webhook' requires a webhook section")
        return self
