"""
Prometheus instrumentation of the deadman passes.

The metric objects below live in the default registry and are shared by
every service of the process. The loop in
[BaseService.run_forever()][deadman.core.base_service.BaseService.run_forever]
feeds the generic ones; services publish their own numbers through
``set_gauge()`` and ``inc_counter()``.

Metrics:
    SERVICE_INFO:            Which service this process runs.
    SERVICE_GAUGE:           Latest value of a named per-service reading.
    SERVICE_COUNTER:         Running total of a named per-service event.
    CYCLE_DURATION_SECONDS:  Wall time of a successful pass.
    SWITCH_TRANSITIONS:      State advances this process won, by target state.
    RELEASE_OUTCOMES:        Release attempts, by outcome.
"""

from __future__ import annotations

from aiohttp import web
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)
from pydantic import BaseModel, Field


class MetricsConfig(BaseModel):
    """Where ``/metrics`` is served.

    The endpoint exists only for looping services with ``enabled: true``;
    a ``--once`` run exits before any scrape could happen. Bind
    ``0.0.0.0`` inside a container.
    """

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = Field(default=8000, ge=1024, le=65535)
    path: str = Field(default="/metrics", pattern=r"^/")


SERVICE_INFO = Info("service", "Service running in this process")

# Upper buckets cover an evaluator pass running into its deadline
CYCLE_DURATION_SECONDS = Histogram(
    "cycle_duration_seconds",
    "Wall time of a successful pass",
    ["service"],
    buckets=(0.5, 1, 5, 10, 30, 60, 120, 300, 600, 1800),
)

SERVICE_GAUGE = Gauge(
    "service_gauge",
    "Latest value of a named service reading",
    ["service", "name"],
)

SERVICE_COUNTER = Counter(
    "service_counter",
    "Running total of a named service event",
    ["service", "name"],
)

SWITCH_TRANSITIONS = Counter(
    "switch_transitions",
    "Switch state advances won by this process",
    ["service", "state"],
)

RELEASE_OUTCOMES = Counter(
    "release_outcomes",
    "Release coordinator results",
    ["outcome"],
)


async def _exposition(_request: web.Request) -> web.Response:
    return web.Response(body=generate_latest(), headers={"Content-Type": CONTENT_TYPE_LATEST})


class MetricsServer:
    """aiohttp endpoint answering Prometheus scrapes.

    ``start()`` does nothing when metrics are disabled, and ``stop()`` is
    safe on a server that never started, so callers need no branching.
    """

    def __init__(self, config: MetricsConfig) -> None:
        self._config = config
        self._runner: web.AppRunner | None = None

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    async def start(self) -> None:
        """Bind ``host:port``.

        Raises:
            OSError: The address is already taken.
        """
        if self._runner is not None or not self._config.enabled:
            return

        app = web.Application()
        app.router.add_get(self._config.path, _exposition)
        runner = web.AppRunner(app, access_log=None)
        await runner.setup()
        site = web.TCPSite(runner, self._config.host, self._config.port)
        await site.start()
        self._runner = runner

    async def stop(self) -> None:
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()


async def start_metrics_server(config: MetricsConfig | None = None) -> MetricsServer:
    """A started [MetricsServer][deadman.core.metrics.MetricsServer]; the caller stops it."""
    server = MetricsServer(config if config is not None else MetricsConfig())
    await server.start()
    return server
