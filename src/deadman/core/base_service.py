"""
Lifecycle shared by the periodic deadman passes.

A service is one kind of pass (evaluation, inactivity check, cleanup) that
either runs once from an external scheduler or loops on its own with
[run_forever()][deadman.core.base_service.BaseService.run_forever]. The
loop sleeps ``interval`` seconds between passes, wakes up early on a
shutdown request, and gives up after ``max_consecutive_failures`` failed
passes in a row.

Services keep no state between passes. Everything is re-read through the
[Repository][deadman.core.repository.Repository], which is what makes it
safe to run several instances of the same service.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any, ClassVar, Generic, Self, TypeVar, cast

from pydantic import BaseModel, Field

from deadman.models.constants import ServiceName

from .logger import Logger
from .metrics import (
    CYCLE_DURATION_SECONDS,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    MetricsConfig,
)
from .repository import Repository
from .yaml import load_yaml


class BaseServiceConfig(BaseModel):
    """Loop settings every service config inherits.

    Attributes:
        interval: Seconds to sleep between two passes.
        max_consecutive_failures: Failed passes in a row after which
            ``run_forever()`` returns; ``0`` never gives up.
        metrics: Prometheus exposition.
    """

    interval: float = Field(default=1800.0, ge=60.0)
    max_consecutive_failures: int = Field(default=5, ge=0)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)


ConfigT = TypeVar("ConfigT", bound=BaseServiceConfig)


class BaseService(ABC, Generic[ConfigT]):
    """One periodic pass over the database.

    Subclasses set ``SERVICE_NAME`` and ``CONFIG_CLASS`` and implement
    [run()][deadman.core.base_service.BaseService.run]. Extra keyword
    arguments of a subclass constructor (injected collaborators such as a
    release coordinator) are forwarded by the factory methods.

    Typical use::

        async with repository:
            async with service:
                await service.run_forever()
    """

    SERVICE_NAME: ClassVar[ServiceName]
    CONFIG_CLASS: ClassVar[type[BaseModel]]

    def __init__(self, repository: Repository, config: ConfigT | None = None) -> None:
        self._repository = repository
        self._config = cast("ConfigT", config if config is not None else self.CONFIG_CLASS())
        self._logger = Logger(self.SERVICE_NAME)
        self._stop = asyncio.Event()

    @classmethod
    def from_dict(cls, data: dict[str, Any], repository: Repository, **kwargs: Any) -> Self:
        config = cast("ConfigT", cls.CONFIG_CLASS.model_validate(data))
        return cls(repository=repository, config=config, **kwargs)

    @classmethod
    def from_yaml(cls, config_path: str, repository: Repository, **kwargs: Any) -> Self:
        return cls.from_dict(load_yaml(config_path), repository=repository, **kwargs)

    @property
    def config(self) -> ConfigT:
        return self._config

    @abstractmethod
    async def run(self) -> None:
        """Do one pass and return.

        Long passes check
        [is_running][deadman.core.base_service.BaseService.is_running] so a
        shutdown request stops them from starting new work.
        """

    # -------------------------------------------------------------------------
    # Shutdown
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return not self._stop.is_set()

    def request_shutdown(self) -> None:
        """Ask the loop to stop after the current pass. Safe from signal handlers."""
        self._stop.set()

    async def wait(self, timeout: float) -> bool:  # noqa: ASYNC109
        """Sleep up to *timeout* seconds; ``True`` if shutdown was requested meanwhile."""
        try:
            async with asyncio.timeout(timeout):
                await self._stop.wait()
        except TimeoutError:
            return False
        return True

    async def __aenter__(self) -> Self:
        self._stop.clear()
        self._logger.info("service_started")
        return self

    async def __aexit__(
        self,
        _exc_type: type[BaseException] | None,
        _exc_val: BaseException | None,
        _exc_tb: TracebackType | None,
    ) -> None:
        self._stop.set()
        self._logger.info("service_stopped")

    # -------------------------------------------------------------------------
    # Loop
    # -------------------------------------------------------------------------

    async def _timed_pass(self) -> Exception | None:
        """Run one pass and record its metrics; the failure, if any, is returned."""
        started = time.monotonic()
        try:
            await self.run()
        except (asyncio.CancelledError, KeyboardInterrupt, SystemExit):
            raise
        except Exception as e:  # Loop error boundary, the next pass starts from scratch
            self.inc_counter("cycles_failed")
            self.inc_counter(f"errors_{type(e).__name__}")
            return e

        self.inc_counter("cycles_success")
        self.set_gauge("last_cycle_timestamp", time.time())
        if self._config.metrics.enabled:
            CYCLE_DURATION_SECONDS.labels(service=self.SERVICE_NAME).observe(
                time.monotonic() - started
            )
        return None

    async def run_forever(self) -> None:
        """Repeat [run()][deadman.core.base_service.BaseService.run] every ``interval`` seconds.

        Returns on a shutdown request, or once ``max_consecutive_failures``
        passes in a row have raised. ``CancelledError`` is never counted as
        a failure and always propagates.
        """
        interval = self._config.interval
        limit = self._config.max_consecutive_failures
        if self._config.metrics.enabled:
            SERVICE_INFO.info({"service": self.SERVICE_NAME})
        self._logger.info("loop_started", interval=interval, failure_limit=limit)

        streak = 0
        while self.is_running:
            error = await self._timed_pass()
            if error is None:
                streak = 0
                self._logger.info("cycle_completed", next_cycle_s=interval)
            else:
                streak += 1
                self._logger.error(
                    "cycle_failed",
                    error=str(error),
                    error_type=type(error).__name__,
                    consecutive_failures=streak,
                )
            self.set_gauge("consecutive_failures", streak)

            if limit and streak >= limit:
                self._logger.critical("failure_limit_reached", failures=streak, limit=limit)
                break
            if await self.wait(interval):
                break

        self._logger.info("loop_stopped")

    # -------------------------------------------------------------------------
    # Metrics
    # -------------------------------------------------------------------------

    def set_gauge(self, name: str, value: float) -> None:
        """Set ``service_gauge{service, name}``; no-op while metrics are disabled."""
        if self._config.metrics.enabled:
            SERVICE_GAUGE.labels(service=self.SERVICE_NAME, name=name).set(value)

    def inc_counter(self, name: str, value: float = 1) -> None:
        if self._config.metrics.enabled:
            SERVICE_COUNTER.labels(service=self.SERVICE_NAME, name=name).inc(value)
