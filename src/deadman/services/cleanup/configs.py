"""Cleanup service configuration models.

See Also:
    [Cleanup][deadman.services.cleanup.Cleanup]: The service class that
        consumes these configurations.
"""

from __future__ import annotations

from pydantic import Field

from deadman.core.base_service import BaseServiceConfig


class CleanupConfig(BaseServiceConfig):
    """Cleanup service configuration.

    Attributes:
        check_in_log_retention_days: Age after which check-in log rows are
            deleted. ``None`` keeps them forever.
        audit_log_retention_days: Age after which audit rows are deleted.
            ``None`` (the default) keeps them forever.
    """

    interval: float = Field(default=86_400.0, ge=60.0, description="Seconds between passes")
    check_in_log_retention_days: int | None = Field(default=90, ge=1)
    audit_log_retention_days: int | None = Field(default=None, ge=1)
