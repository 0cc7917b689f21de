"""Delivery sink and notifier boundaries.

The core never sends email itself. Released payloads go to a
[DeliverySink][deadman.services.common.delivery.DeliverySink], reminders and
operator alerts to a [Notifier][deadman.services.common.delivery.Notifier].
Both are protocols; the webhook implementations here post JSON to an
external mailer, and [LoggingNotifier][deadman.services.common.delivery.LoggingNotifier]
only writes to the log.

The sink must be idempotent per switch id: a switch whose ``SENT``
advance failed after a successful delivery is delivered again on the next
tick. The webhook sink sends the switch id as ``Idempotency-Key`` and
treats a ``409 Conflict`` answer as "already delivered".
"""

from __future__ import annotations

import base64
from typing import Any, Protocol

import aiohttp

from deadman.core.exceptions import ConfigurationError, SinkDeliveryError
from deadman.core.logger import Logger
from deadman.utils.http import post_json

from .configs import DeliveryConfig, NotifierConfig, WebhookConfig
from .types import RecipientsMetadata, Reminder


_HTTP_CONFLICT = 409


class DeliverySink(Protocol):
    async def deliver(
        self, switch_id: str, recipients: RecipientsMetadata, payload: bytes
    ) -> None:
        """Hand *payload* off for delivery. Raises ``SinkDeliveryError`` on failure."""
        ...


class Notifier(Protocol):
    async def remind(self, reminder: Reminder) -> None: ...

    async def alert(self, subject: str, details: dict[str, Any]) -> None: ...


async def _post(config: WebhookConfig, body: dict[str, Any], headers: dict[str, str]) -> int:
    try:
        status, _ = await post_json(
            config.url,
            body,
            headers=headers,
            timeout=config.timeout,
            max_response_size=config.max_response_size,
        )
    except (aiohttp.ClientError, TimeoutError, ValueError) as e:
        raise SinkDeliveryError(f"POST {config.url} failed: {e}") from e
    return status


class WebhookDeliverySink:
    """Posts released payloads to an HTTP endpoint.

    Body::

        {"switch_id": ..., "account_id": ..., "recipient_count": ...,
         "payload": "<base64>"}
    """

    def __init__(self, config: WebhookConfig) -> None:
        self._config = config
        self._logger = Logger("delivery")

    async def deliver(
        self, switch_id: str, recipients: RecipientsMetadata, payload: bytes
    ) -> None:
        body = {
            "switch_id": switch_id,
            "account_id": recipients.account_id,
            "recipient_count": recipients.recipient_count,
            "payload": base64.b64encode(payload).decode("ascii"),
        }
        status = await _post(self._config, body, {"Idempotency-Key": switch_id})

        if status == _HTTP_CONFLICT:
            self._logger.info("delivery_duplicate", switch_id=switch_id)
            return
        if not 200 <= status < 300:  # noqa: PLR2004
            raise SinkDeliveryError(f"delivery of {switch_id} rejected with status {status}")
        self._logger.info("delivery_accepted", switch_id=switch_id, status=status)


class WebhookNotifier:
    """Posts reminders and alerts as ``{"type": "reminder" | "alert", ...}``."""

    def __init__(self, config: WebhookConfig) -> None:
        self._config = config

    async def remind(self, reminder: Reminder) -> None:
        body = {"type": "reminder", **reminder.to_dict()}
        key = f"{reminder.switch_id}:{reminder.state}"
        status = await _post(self._config, body, {"Idempotency-Key": key})
        if not 200 <= status < 300 and status != _HTTP_CONFLICT:  # noqa: PLR2004
            raise SinkDeliveryError(f"reminder for {reminder.switch_id} rejected: {status}")

    async def alert(self, subject: str, details: dict[str, Any]) -> None:
        status = await _post(
            self._config, {"type": "alert", "subject": subject, "details": details}, {}
        )
        if not 200 <= status < 300:  # noqa: PLR2004
            raise SinkDeliveryError(f"alert {subject!r} rejected: {status}")


class LoggingNotifier:
    """Writes reminders and alerts to the log only."""

    def __init__(self) -> None:
        self._logger = Logger("notifier")

    async def remind(self, reminder: Reminder) -> None:
        self._logger.info("reminder", **reminder.to_dict())

    async def alert(self, subject: str, details: dict[str, Any]) -> None:
        self._logger.critical("operator_alert", subject=subject, **details)


def build_delivery_sink(config: DeliveryConfig) -> DeliverySink:
    """Build the configured sink.

    Raises:
        ConfigurationError: If no sink is configured. Releasing into the
            void would mark switches ``SENT`` without delivering them.
    """
    if config.webhook is None:
        raise ConfigurationError("release.delivery.webhook must be configured")
    return WebhookDeliverySink(config.webhook)


def build_notifier(config: NotifierConfig) -> Notifier:
    if config.backend == "webhook" and config.webhook is not None:
        return WebhookNotifier(config.webhook)
    return LoggingNotifier()
