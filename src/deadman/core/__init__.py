"""Core layer: database access, service lifecycle, logging, and metrics.

Depends only on ``deadman.models`` and is depended upon by
``deadman.services``.

Attributes:
    Pool: Async PostgreSQL connection pool with retry/backoff.
        See [Pool][deadman.core.pool.Pool].
    Repository: Typed writes plus the compare-and-set
        [advance()][deadman.core.repository.Repository.advance] primitive.
        Services use [Repository][deadman.core.repository.Repository],
        never [Pool][deadman.core.pool.Pool] directly.
    BaseService: Generic base class with
        [run()][deadman.core.base_service.BaseService.run] /
        [run_forever()][deadman.core.base_service.BaseService.run_forever]
        lifecycle, factory methods, and metrics.
    Logger: Structured logger with key=value and JSON output.
    MetricsServer: Prometheus ``/metrics`` endpoint.
    load_yaml: Safe YAML loading with ``yaml.safe_load()``.

Examples:
    ```python
    from deadman.core import Repository

    repository = Repository.from_yaml("config/repository.yaml")
    async with repository:
        await repository.record_check_in(account_id, now)
    ```
"""

from .base_service import BaseService, BaseServiceConfig, ConfigT
from .exceptions import (
    AccountNotFound,
    ConfigurationError,
    ConnectionPoolError,
    ContentNotFound,
    DatabaseError,
    DeadmanError,
    InsufficientQuorum,
    ProtocolError,
    QueryError,
    QuotaExceeded,
    RelayTimeoutError,
    SinkDeliveryError,
    StateConflict,
    StorageError,
    TransientRelayError,
)
from .logger import Logger, StructuredFormatter, format_kv_pairs
from .metrics import (
    CYCLE_DURATION_SECONDS,
    RELEASE_OUTCOMES,
    SERVICE_COUNTER,
    SERVICE_GAUGE,
    SERVICE_INFO,
    SWITCH_TRANSITIONS,
    MetricsConfig,
    MetricsServer,
    start_metrics_server,
)
from .pool import (
    DatabaseConfig,
    Pool,
    PoolConfig,
    PoolLimitsConfig,
    PoolRetryConfig,
    ServerSettingsConfig,
)
from .repository import Repository, RepositoryConfig, RepositoryTimeoutsConfig
from .yaml import load_yaml


__all__ = [
    "CYCLE_DURATION_SECONDS",
    "RELEASE_OUTCOMES",
    "SERVICE_COUNTER",
    "SERVICE_GAUGE",
    "SERVICE_INFO",
    "SWITCH_TRANSITIONS",
    "AccountNotFound",
    "BaseService",
    "BaseServiceConfig",
    "ConfigT",
    "ConfigurationError",
    "ConnectionPoolError",
    "ContentNotFound",
    "DatabaseConfig",
    "DatabaseError",
    "DeadmanError",
    "InsufficientQuorum",
    "Logger",
    "MetricsConfig",
    "MetricsServer",
    "Pool",
    "PoolConfig",
    "PoolLimitsConfig",
    "PoolRetryConfig",
    "ProtocolError",
    "QueryError",
    "QuotaExceeded",
    "RelayTimeoutError",
    "Repository",
    "RepositoryConfig",
    "RepositoryTimeoutsConfig",
    "ServerSettingsConfig",
    "SinkDeliveryError",
    "StateConflict",
    "StorageError",
    "StructuredFormatter",
    "TransientRelayError",
    "format_kv_pairs",
    "load_yaml",
    "start_metrics_server",
]
