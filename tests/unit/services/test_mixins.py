"""
Unit tests for services.common.mixins module.

Tests:
- BatchProgress start, remaining, and gauges
- BatchProgressMixin publishing through set_gauge
"""

from __future__ import annotations

import time
from unittest.mock import MagicMock

from deadman.services.common.mixins import BatchProgress, BatchProgressMixin


class TestBatchProgress:
    def test_start_stamps_wall_clock(self) -> None:
        before = time.time()
        progress = BatchProgress.start()
        assert before <= progress.started_at <= time.time()
        assert progress.elapsed < 1.0

    def test_remaining_never_negative(self) -> None:
        progress = BatchProgress(total=3, processed=5)
        assert progress.remaining == 0

    def test_gauges(self) -> None:
        progress = BatchProgress(total=10, processed=4, success=3, failure=1)
        assert progress.gauges() == {
            "total": 10,
            "processed": 4,
            "remaining": 6,
            "success": 3,
            "failure": 1,
        }


class _Service(BatchProgressMixin):
    def __init__(self) -> None:
        self.set_gauge = MagicMock()
        self._init_progress()


class TestBatchProgressMixin:
    def test_start_replaces_tracker(self) -> None:
        service = _Service()
        service._progress.total = 7
        progress = service._start_progress()
        assert progress is service._progress
        assert progress.total == 0

    def test_emit_progress_metrics(self) -> None:
        service = _Service()
        service._start_progress().total = 2
        service.emit_progress_metrics()
        published = {c.args[0]: c.args[1] for c in service.set_gauge.call_args_list}
        assert published["total"] == 2
        assert published["remaining"] == 2
