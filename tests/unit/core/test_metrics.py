"""
Unit tests for core.metrics module.

Tests:
- MetricsConfig defaults and port validation
- MetricsServer lifecycle and exposition endpoint
- Labelled transition and release counters
"""

from __future__ import annotations

import socket

import aiohttp
import pytest
from pydantic import ValidationError

from deadman.core.metrics import (
    RELEASE_OUTCOMES,
    SWITCH_TRANSITIONS,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("127.0.0.1", 0))
        return int(s.getsockname()[1])


class TestMetricsConfig:
    def test_defaults(self) -> None:
        config = MetricsConfig()
        assert config.enabled is False
        assert config.port == 8000
        assert config.path == "/metrics"

    def test_privileged_port_rejected(self) -> None:
        with pytest.raises(ValidationError):
            MetricsConfig(port=80)


class TestMetricsServer:
    async def test_disabled_is_noop(self) -> None:
        server = await start_metrics_server(MetricsConfig(enabled=False))
        assert not server.is_running
        await server.stop()

    async def test_serves_exposition(self) -> None:
        port = _free_port()
        server = MetricsServer(MetricsConfig(enabled=True, port=port, path="/m"))
        await server.start()
        try:
            SWITCH_TRANSITIONS.labels(service="evaluator", state="reminded_1").inc()
            async with (
                aiohttp.ClientSession() as session,
                session.get(f"http://127.0.0.1:{port}/m") as resp,
            ):
                body = await resp.text()
                assert resp.status == 200
                assert resp.headers["Content-Type"].startswith("text/plain")
        finally:
            await server.stop()

        assert "switch_transitions_total" in body
        assert not server.is_running

    async def test_stop_without_start(self) -> None:
        await MetricsServer(MetricsConfig(enabled=True)).stop()


class TestCounters:
    def test_release_outcome_increments(self) -> None:
        child = RELEASE_OUTCOMES.labels(outcome="sent")
        before = child._value.get()
        child.inc()
        assert child._value.get() == before + 1
