"""
PostgreSQL access for deadman on top of an asyncpg pool.

A process opens one [Pool][deadman.core.pool.Pool] and every service query
goes through it. New connections get JSON/JSONB codecs, so ``content_ref``
and audit ``details`` come back as dicts.

Only losing the connection is retried, with the backoff of
[PoolRetryConfig][deadman.core.pool.PoolRetryConfig]; when attempts run
out the last error surfaces as
[ConnectionPoolError][deadman.core.exceptions.ConnectionPoolError]. A
statement the server rejects becomes a
[QueryError][deadman.core.exceptions.QueryError] on the first attempt.

Examples:
    ```python
    pool = Pool.from_yaml("config/repository.yaml")

    async with pool:
        open_switches = await pool.fetchval("SELECT count(*) FROM switch")
    ```
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Any, Literal, TypeVar, cast

import asyncpg
from pydantic import BaseModel, Field, SecretStr, model_validator

from .exceptions import ConnectionPoolError, QueryError
from .logger import Logger
from .yaml import load_yaml


T = TypeVar("T")

_QueryMethod = Literal["fetch", "fetchrow", "fetchval", "execute"]

_DEFAULT_PASSWORD_ENV = "DB_PASSWORD"  # pragma: allowlist secret

# Raised by asyncpg when the socket under a pooled connection went away
_CONNECTION_LOST: tuple[type[Exception], ...] = (
    asyncpg.InterfaceError,
    asyncpg.ConnectionDoesNotExistError,
)


async def _register_json_codecs(conn: asyncpg.Connection[asyncpg.Record]) -> None:
    for type_name in ("jsonb", "json"):
        await conn.set_type_codec(
            type_name, encoder=json.dumps, decoder=json.loads, schema="pg_catalog"
        )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class DatabaseConfig(BaseModel):
    """Where the deadman database lives.

    ``password`` is filled from the environment variable named by
    ``password_env`` and is never read from YAML.
    """

    host: str = Field(default="localhost", min_length=1)
    port: int = Field(default=5432, ge=1, le=65535)
    database: str = Field(default="deadman", min_length=1)
    user: str = Field(default="deadman", min_length=1)
    password_env: str = Field(default=_DEFAULT_PASSWORD_ENV, min_length=1)
    password: SecretStr

    @model_validator(mode="before")
    @classmethod
    def _password_from_env(cls, data: Any) -> Any:
        if not isinstance(data, dict) or data.get("password") is not None:
            return data
        name = data.get("password_env") or _DEFAULT_PASSWORD_ENV
        secret = os.environ.get(name)
        if not secret:
            raise ValueError(f"{name} is not set; the database password is read from it")
        return {**data, "password": SecretStr(secret)}


class PoolLimitsConfig(BaseModel):
    """Pool size, connection recycling, and how long to wait for a free connection."""

    min_size: int = Field(default=1, ge=1, le=100)
    max_size: int = Field(default=10, ge=1, le=200)
    max_queries: int = Field(
        default=50_000, ge=100, description="Queries served before a connection is replaced"
    )
    idle_lifetime: float = Field(
        default=300.0, ge=0.0, description="Seconds an idle connection is kept open"
    )
    acquire_timeout: float = Field(
        default=10.0, ge=0.1, description="Seconds to wait for a free connection"
    )

    @model_validator(mode="after")
    def _sizes_ordered(self) -> PoolLimitsConfig:
        if self.max_size < self.min_size:
            raise ValueError(f"max_size {self.max_size} is below min_size {self.min_size}")
        return self


class PoolRetryConfig(BaseModel):
    """Backoff applied when the connection is lost.

    Retry *n* (counting from 0) waits ``base_delay * 2**n`` with
    ``exponential`` backoff or ``base_delay * (n + 1)`` with ``linear``,
    never longer than ``max_delay``.
    """

    max_attempts: int = Field(default=3, ge=1, le=10)
    base_delay: float = Field(default=1.0, ge=0.1)
    max_delay: float = Field(default=10.0, ge=0.1)
    backoff: Literal["exponential", "linear"] = "exponential"

    @model_validator(mode="after")
    def _delays_ordered(self) -> PoolRetryConfig:
        if self.max_delay < self.base_delay:
            raise ValueError(f"max_delay {self.max_delay} is below base_delay {self.base_delay}")
        return self

    def delay(self, retry: int) -> float:
        factor = 2**retry if self.backoff == "exponential" else retry + 1
        return float(min(self.base_delay * factor, self.max_delay))


class ServerSettingsConfig(BaseModel):
    """Session settings sent with every new connection.

    ``statement_timeout_ms`` is enforced by the server on top of the
    client-side timeouts of the repository; ``0`` disables it.
    """

    application_name: str = Field(default="deadman", min_length=1)
    timezone: str = Field(default="UTC", min_length=1)
    statement_timeout_ms: int = Field(default=60_000, ge=0)

    def to_server_settings(self) -> dict[str, str]:
        return {
            "application_name": self.application_name,
            "timezone": self.timezone,
            "statement_timeout": str(self.statement_timeout_ms),
        }


class PoolConfig(BaseModel):
    database: DatabaseConfig = Field(default_factory=lambda: DatabaseConfig.model_validate({}))
    limits: PoolLimitsConfig = Field(default_factory=PoolLimitsConfig)
    retry: PoolRetryConfig = Field(default_factory=PoolRetryConfig)
    server_settings: ServerSettingsConfig = Field(default_factory=ServerSettingsConfig)


# ---------------------------------------------------------------------------
# Pool
# ---------------------------------------------------------------------------


class Pool:
    """The process-wide asyncpg pool.

    Services do not hold a pool themselves; the
    [Repository][deadman.core.repository.Repository] owns one and adds
    per-operation timeouts on top.
    """

    def __init__(self, config: PoolConfig | None = None) -> None:
        self._config = config or PoolConfig()
        self._pool: asyncpg.Pool[asyncpg.Record] | None = None
        self._is_connected = False
        self._lock = asyncio.Lock()
        self._logger = Logger("pool")

    @classmethod
    def from_yaml(cls, config_path: str) -> Pool:
        return cls.from_dict(load_yaml(config_path))

    @classmethod
    def from_dict(cls, config_dict: dict[str, Any]) -> Pool:
        return cls(config=PoolConfig.model_validate(config_dict))

    @property
    def config(self) -> PoolConfig:
        return self._config

    @property
    def is_connected(self) -> bool:
        return self._is_connected

    async def _retrying(
        self,
        label: str,
        call: Callable[[], Awaitable[T]],
        transient: tuple[type[Exception], ...],
    ) -> T:
        """Await ``call()`` again after each *transient* failure, up to ``retry.max_attempts``."""
        retry = self._config.retry
        attempt = 0
        while True:
            try:
                return await call()
            except transient as e:
                attempt += 1
                if attempt >= retry.max_attempts:
                    self._logger.error(f"{label}_gave_up", attempts=attempt, error=str(e))
                    raise ConnectionPoolError(
                        f"{label} failed after {attempt} attempts: {e}"
                    ) from e
                delay = retry.delay(attempt - 1)
                self._logger.warning(
                    f"{label}_retry", attempt=attempt, delay_s=delay, error=str(e)
                )
                await asyncio.sleep(delay)

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    async def _create_pool(self) -> asyncpg.Pool[asyncpg.Record]:
        db = self._config.database
        limits = self._config.limits
        return await asyncpg.create_pool(
            host=db.host,
            port=db.port,
            database=db.database,
            user=db.user,
            password=db.password.get_secret_value(),
            min_size=limits.min_size,
            max_size=limits.max_size,
            max_queries=limits.max_queries,
            max_inactive_connection_lifetime=limits.idle_lifetime,
            timeout=limits.acquire_timeout,
            init=_register_json_codecs,
            server_settings=self._config.server_settings.to_server_settings(),
        )

    async def connect(self) -> None:
        """Open the asyncpg pool. A second call is a no-op.

        Raises:
            ConnectionPoolError: The server stayed unreachable for every attempt.
        """
        async with self._lock:
            if self._is_connected:
                return
            db = self._config.database
            self._logger.info("connecting", host=db.host, port=db.port, database=db.database)
            self._pool = await self._retrying(
                "connect", self._create_pool, (asyncpg.PostgresError, OSError)
            )
            self._is_connected = True
            self._logger.info("connected", max_size=self._config.limits.max_size)

    async def close(self) -> None:
        async with self._lock:
            pool, self._pool = self._pool, None
            self._is_connected = False
            if pool is not None:
                await pool.close()
                self._logger.info("closed")

    async def __aenter__(self) -> Pool:
        await self.connect()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()

    # -------------------------------------------------------------------------
    # Connections
    # -------------------------------------------------------------------------

    def acquire(self) -> AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]:
        """Borrow a connection for the duration of an ``async with`` block.

        Raises:
            RuntimeError: ``connect()`` has not been called.
        """
        if self._pool is None or not self._is_connected:
            raise RuntimeError("Pool not connected; call connect() first")
        return cast(
            "AbstractAsyncContextManager[asyncpg.Connection[asyncpg.Record]]",
            self._pool.acquire(),
        )

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection[asyncpg.Record]]:
        """Borrow a connection with an open transaction; an exception rolls it back."""
        async with self.acquire() as conn, conn.transaction():
            yield conn

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    async def _run(
        self,
        method: _QueryMethod,
        query: str,
        args: tuple[Any, ...],
        timeout: float | None,  # noqa: ASYNC109
        *,
        replay: bool = True,
    ) -> Any:
        async def once() -> Any:
            # A fresh connection per attempt; a broken one goes back to asyncpg
            async with self.acquire() as conn:
                try:
                    return await getattr(conn, method)(query, *args, timeout=timeout)
                except _CONNECTION_LOST:
                    raise
                except asyncpg.PostgresError as e:
                    raise QueryError(f"{method} rejected: {e}") from e

        if replay:
            return await self._retrying(method, once, _CONNECTION_LOST)
        try:
            return await once()
        except _CONNECTION_LOST as e:
            # The statement may have committed before the connection dropped
            raise ConnectionPoolError(
                f"{method} lost its connection and was not replayed: {e}"
            ) from e

    async def fetch(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> list[asyncpg.Record]:
        return cast("list[asyncpg.Record]", await self._run("fetch", query, args, timeout))

    async def fetchrow(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> asyncpg.Record | None:
        return cast("asyncpg.Record | None", await self._run("fetchrow", query, args, timeout))

    async def fetchval(
        self,
        query: str,
        *args: Any,
        timeout: float | None = None,  # noqa: ASYNC109
        replay: bool = True,
    ) -> Any:
        """First column of the first row.

        Pass ``replay=False`` for a statement that must not run twice, such
        as a counter increment: a lost connection then raises
        ``ConnectionPoolError`` instead of re-sending it.
        """
        return await self._run("fetchval", query, args, timeout, replay=replay)

    async def execute(
        self, query: str, *args: Any, timeout: float | None = None  # noqa: ASYNC109
    ) -> str:
        """Run a statement and return asyncpg's status tag, e.g. ``"DELETE 3"``."""
        return cast("str", await self._run("execute", query, args, timeout))

    def __repr__(self) -> str:
        db = self._config.database
        return f"Pool({db.user}@{db.host}:{db.port}/{db.database}, connected={self._is_connected})"
