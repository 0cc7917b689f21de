"""Service mixins.

A mixin adds one capability to a
[BaseService][deadman.core.base_service.BaseService] subclass and is set
up by an ``_init_*()`` call in the service constructor.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING


@dataclass(slots=True)
class BatchProgress:
    """Counters of the pass in flight.

    ``started_at`` is wall-clock time and doubles as the single ``now``
    every switch of the pass is evaluated against. ``elapsed`` runs on the
    monotonic clock, so a clock adjustment never moves the pass deadline.
    """

    started_at: float = 0.0
    total: int = 0
    processed: int = 0
    success: int = 0
    failure: int = 0
    chunks: int = 0
    _clock_start: float = field(default=0.0, repr=False)

    @classmethod
    def start(cls) -> BatchProgress:
        return cls(started_at=time.time(), _clock_start=time.monotonic())

    @property
    def remaining(self) -> int:
        """Switches counted at the start that no worker has picked up yet."""
        return max(self.total - self.processed, 0)

    @property
    def elapsed(self) -> float:
        return round(time.monotonic() - self._clock_start, 1)

    def gauges(self) -> dict[str, int]:
        return {
            "total": self.total,
            "processed": self.processed,
            "remaining": self.remaining,
            "success": self.success,
            "failure": self.failure,
        }


class BatchProgressMixin:
    """Progress tracking for services that walk the switches in chunks.

    ``_start_progress()`` opens a fresh tracker at the top of every pass;
    ``emit_progress_metrics()`` publishes it as service gauges.
    """

    _progress: BatchProgress

    if TYPE_CHECKING:

        def set_gauge(self, name: str, value: float) -> None: ...

    def _init_progress(self) -> None:
        self._progress = BatchProgress()

    def _start_progress(self) -> BatchProgress:
        self._progress = BatchProgress.start()
        return self._progress

    def emit_progress_metrics(self) -> None:
        for name, value in self._progress.gauges().items():
            self.set_gauge(name, value)
