"""Cleanup service for deadman.

Reclaims rows nothing reads anymore: one-time codes that expired or were
consumed, and check-in and audit log rows older than their retention
window. Switches and accounts are never touched.

Each delete runs independently; a failing one is logged and recorded in
the [CleanupSummary][deadman.services.common.types.CleanupSummary] while
the others still run.

Examples:
    ```python
    from deadman.core import Repository
    from deadman.services import Cleanup

    repository = Repository.from_yaml("config/repository.yaml")
    cleanup = Cleanup.from_yaml("config/services/cleanup.yaml", repository=repository)

    async with repository:
        async with cleanup:
            await cleanup.run_forever()
    ```
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable
from typing import ClassVar

from deadman.core.base_service import BaseService
from deadman.core.exceptions import DatabaseError
from deadman.models import SECONDS_PER_DAY, ServiceName
from deadman.services.common.types import CleanupSummary

from .configs import CleanupConfig


class Cleanup(BaseService[CleanupConfig]):
    """Daily sweep of expired codes and old log rows."""

    SERVICE_NAME: ClassVar[ServiceName] = ServiceName.CLEANUP
    CONFIG_CLASS: ClassVar[type[CleanupConfig]] = CleanupConfig

    async def run(self) -> None:
        summary = await self.run_cleanup_pass()
        self.set_gauge("expired_codes", summary.expired_codes)
        self.set_gauge("check_in_logs", summary.check_in_logs)
        self.set_gauge("audit_logs", summary.audit_logs)
        self.inc_counter("total_deleted", summary.total)

    async def run_cleanup_pass(self) -> CleanupSummary:
        """Run every delete once and return how many rows each removed."""
        now = int(time.time())
        summary = CleanupSummary()

        summary.expired_codes = await self._delete(
            "expired_codes", summary, lambda: self._repository.delete_expired_codes(now)
        )

        if self._config.check_in_log_retention_days is not None:
            cutoff = now - self._config.check_in_log_retention_days * SECONDS_PER_DAY
            summary.check_in_logs = await self._delete(
                "check_in_logs",
                summary,
                lambda: self._repository.delete_check_in_logs_before(cutoff),
            )

        if self._config.audit_log_retention_days is not None:
            audit_cutoff = now - self._config.audit_log_retention_days * SECONDS_PER_DAY
            summary.audit_logs = await self._delete(
                "audit_logs",
                summary,
                lambda: self._repository.delete_audit_logs_before(audit_cutoff),
            )

        self._logger.info(
            "cleanup_completed",
            expired_codes=summary.expired_codes,
            check_in_logs=summary.check_in_logs,
            audit_logs=summary.audit_logs,
            errors=len(summary.errors),
        )
        return summary

    async def _delete(
        self, target: str, summary: CleanupSummary, delete: Callable[[], Awaitable[int]]
    ) -> int:
        try:
            count = await delete()
        except DatabaseError as e:
            self._logger.error("cleanup_failed", target=target, error=str(e))
            summary.errors.append(f"{target}: {e}")
            return 0
        if count:
            self._logger.debug("rows_deleted", target=target, count=count)
        return count
