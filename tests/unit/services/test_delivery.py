"""
Unit tests for services.common.delivery module.

Tests:
- WebhookDeliverySink body, idempotency key, 409 handling, failures
- WebhookNotifier reminders and alerts
- LoggingNotifier
- build_delivery_sink() / build_notifier()
"""

from __future__ import annotations

import base64
from unittest.mock import patch

import pytest

from conftest import WebhookEndpoint
from deadman.core.exceptions import ConfigurationError, SinkDeliveryError
from deadman.models import SwitchState
from deadman.services.common.configs import DeliveryConfig, NotifierConfig, WebhookConfig
from deadman.services.common.delivery import (
    LoggingNotifier,
    WebhookDeliverySink,
    WebhookNotifier,
    build_delivery_sink,
    build_notifier,
)
from deadman.services.common.types import RecipientsMetadata, Reminder


RECIPIENTS = RecipientsMetadata(account_id="acct-1", recipient_count=2)
REMINDER = Reminder(
    switch_id="s1",
    account_id="acct-1",
    stage=1,
    state=SwitchState.REMINDED_1,
    inactivity_days=60,
    elapsed_days=31,
    trigger_at=1_800_000_000,
)


class TestWebhookDeliverySink:
    async def test_delivers(self, webhook: WebhookEndpoint) -> None:
        sink = WebhookDeliverySink(WebhookConfig(url=webhook.url))

        await sink.deliver("s1", RECIPIENTS, b"\x00sealed")

        headers, body = webhook.requests[0]
        assert headers["Idempotency-Key"] == "s1"
        assert body["switch_id"] == "s1"
        assert body["recipient_count"] == 2
        assert base64.b64decode(body["payload"]) == b"\x00sealed"

    async def test_conflict_means_delivered(self, webhook: WebhookEndpoint) -> None:
        webhook.status = 409
        await WebhookDeliverySink(WebhookConfig(url=webhook.url)).deliver("s1", RECIPIENTS, b"x")

    async def test_server_error(self, webhook: WebhookEndpoint) -> None:
        webhook.status = 503
        with pytest.raises(SinkDeliveryError, match="503"):
            await WebhookDeliverySink(WebhookConfig(url=webhook.url)).deliver(
                "s1", RECIPIENTS, b"x"
            )

    async def test_unreachable(self) -> None:
        sink = WebhookDeliverySink(WebhookConfig(url="http://127.0.0.1:1/deliver", timeout=2.0))
        with pytest.raises(SinkDeliveryError, match="failed"):
            await sink.deliver("s1", RECIPIENTS, b"x")


class TestWebhookNotifier:
    async def test_reminder(self, webhook: WebhookEndpoint) -> None:
        await WebhookNotifier(WebhookConfig(url=webhook.url)).remind(REMINDER)

        headers, body = webhook.requests[0]
        assert body["type"] == "reminder"
        assert body["stage"] == 1
        assert headers["Idempotency-Key"] == "s1:reminded_1"

    async def test_alert(self, webhook: WebhookEndpoint) -> None:
        await WebhookNotifier(WebhookConfig(url=webhook.url)).alert("failing", {"switch_id": "s1"})

        _, body = webhook.requests[0]
        assert body == {"type": "alert", "subject": "failing", "details": {"switch_id": "s1"}}

    async def test_alert_rejected(self, webhook: WebhookEndpoint) -> None:
        webhook.status = 500
        with pytest.raises(SinkDeliveryError):
            await WebhookNotifier(WebhookConfig(url=webhook.url)).alert("failing", {})


class TestLoggingNotifier:
    async def test_logs(self) -> None:
        notifier = LoggingNotifier()
        with patch.object(notifier, "_logger") as mock_logger:
            await notifier.remind(REMINDER)
            await notifier.alert("failing", {"switch_id": "s1"})

        assert mock_logger.info.call_args.args[0] == "reminder"
        assert mock_logger.critical.call_args.args[0] == "operator_alert"


class TestBuilders:
    def test_sink_requires_webhook(self) -> None:
        with pytest.raises(ConfigurationError):
            build_delivery_sink(DeliveryConfig())

    def test_sink(self) -> None:
        sink = build_delivery_sink(DeliveryConfig(webhook=WebhookConfig(url="https://mail.test/d")))
        assert isinstance(sink, WebhookDeliverySink)

    def test_notifier_default_logs(self) -> None:
        assert isinstance(build_notifier(NotifierConfig()), LoggingNotifier)

    def test_notifier_webhook(self) -> None:
        config = NotifierConfig(backend="webhook", webhook=WebhookConfig(url="https://mail.test/n"))
        assert isinstance(build_notifier(config), WebhookNotifier)
