"""
Pytest configuration and shared fixtures for deadman tests.

Provides:
- Mock fixtures for Pool and asyncpg connections
- FakeRepository: in-memory repository with the same compare-and-set
  semantics as the real one, driven through the real query functions
- Recording delivery sink and notifier
- Memory relay client and content store
- Local webhook endpoint for sink and notifier tests
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from aiohttp import web

from deadman.core.exceptions import (
    AccountNotFound,
    QuotaExceeded,
    SinkDeliveryError,
    StateConflict,
)
from deadman.core.pool import DatabaseConfig, Pool, PoolConfig
from deadman.core.repository import Repository
from deadman.models import (
    OPEN_STATES,
    REMINDER_STATES,
    ContentRef,
    Switch,
    SwitchState,
    Trigger,
    is_valid_transition,
)
from deadman.relay import ContentStore, MemoryRelayClient, StoreConfig
from deadman.services.common.types import RecipientsMetadata, Reminder


NOW = int(time.time())
DAY = 86_400
RELAYS = (
    "wss://relay-a.example.com",
    "wss://relay-b.example.com",
    "wss://relay-c.example.com",
)


# ============================================================================
# Logging Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_logging() -> None:
    """Configure logging for tests."""
    logging.basicConfig(level=logging.DEBUG)


# ============================================================================
# Pool / asyncpg Mocks
# ============================================================================


@pytest.fixture
def mock_connection() -> MagicMock:
    """Create a mock asyncpg connection."""
    conn = MagicMock()
    conn.fetch = AsyncMock(return_value=[])
    conn.fetchrow = AsyncMock(return_value=None)
    conn.fetchval = AsyncMock(return_value=1)
    conn.execute = AsyncMock(return_value="OK")

    mock_transaction = MagicMock()
    mock_transaction.__aenter__ = AsyncMock(return_value=conn)
    mock_transaction.__aexit__ = AsyncMock(return_value=None)
    conn.transaction = MagicMock(return_value=mock_transaction)

    return conn


@pytest.fixture
def mock_asyncpg_pool(mock_connection: MagicMock) -> MagicMock:
    """Create a mock asyncpg pool."""
    pool = MagicMock()
    pool.close = AsyncMock()

    mock_acquire = MagicMock()
    mock_acquire.__aenter__ = AsyncMock(return_value=mock_connection)
    mock_acquire.__aexit__ = AsyncMock(return_value=None)
    pool.acquire = MagicMock(return_value=mock_acquire)

    return pool


@pytest.fixture
def mock_pool(
    mock_asyncpg_pool: MagicMock, mock_connection: MagicMock, monkeypatch: pytest.MonkeyPatch
) -> Pool:
    """Create a Pool with mocked internals."""
    monkeypatch.setenv("DB_PASSWORD", "test_password")

    config = PoolConfig(
        database=DatabaseConfig(host="localhost", port=5432, database="test_db", user="test_user")
    )
    pool = Pool(config=config)
    pool._pool = mock_asyncpg_pool
    pool._is_connected = True
    pool._mock_connection = mock_connection  # type: ignore[attr-defined]

    return pool


@pytest.fixture
def mock_repository(mock_pool: Pool) -> Repository:
    """Create a Repository with a mocked pool."""
    return Repository(pool=mock_pool)


# ============================================================================
# Fake Repository
# ============================================================================


class FakeRepository:
    """In-memory repository with the real compare-and-set semantics.

    Rows are plain dicts shaped like the SQL rows, so the functions in
    ``deadman.services.common.queries`` run unchanged against it.
    """

    def __init__(self) -> None:
        self.accounts: dict[str, dict[str, Any]] = {}
        self.switches: dict[str, dict[str, Any]] = {}
        self.transitions: list[tuple[str, SwitchState, SwitchState]] = []
        self.audit: list[tuple[str, str, dict[str, Any]]] = []
        self.check_ins: list[tuple[str, int, str]] = []
        self.one_time_codes: list[dict[str, Any]] = []
        self.check_in_log_times: list[int] = []
        self.audit_log_times: list[int] = []
        self._lock = asyncio.Lock()

    # -- seeding ---------------------------------------------------------

    def add_account(
        self,
        account_id: str = "acct-1",
        *,
        tier: str = "free",
        last_check_in_at: int = NOW,
        relay_urls: tuple[str, ...] = (),
    ) -> None:
        self.accounts[account_id] = {
            "id": account_id,
            "tier": tier,
            "last_check_in_at": last_check_in_at,
            "relay_urls": list(relay_urls),
            "created_at": NOW - 365 * DAY,
        }

    def add_switch(self, switch: Switch) -> Switch:
        row = dict(switch.to_db_params()._asdict())
        row["updated_at"] = switch.created_at
        row["last_error"] = None
        row["release_alerted"] = False
        self.switches[switch.id] = row
        return switch

    def state_of(self, switch_id: str) -> SwitchState:
        return SwitchState(self.switches[switch_id]["state"])

    def sent_transitions(self, switch_id: str) -> int:
        return sum(
            1 for sid, _, new in self.transitions if sid == switch_id and new is SwitchState.SENT
        )

    # -- repository write API -------------------------------------------

    async def insert_account(self, account: Any) -> bool:
        if account.id in self.accounts:
            return False
        self.add_account(
            account.id,
            tier=account.tier,
            last_check_in_at=account.last_check_in_at,
            relay_urls=account.relay_urls,
        )
        return True

    async def set_relays(self, account_id: str, relay_urls: Any) -> None:
        if account_id not in self.accounts:
            raise AccountNotFound(f"account {account_id} does not exist")
        self.accounts[account_id]["relay_urls"] = list(relay_urls)

    async def record_check_in(self, account_id: str, at: int, method: str = "manual") -> int:
        async with self._lock:
            account = self.accounts.get(account_id)
            if account is None:
                raise AccountNotFound(f"account {account_id} does not exist")
            account["last_check_in_at"] = max(account["last_check_in_at"], at)
            self.check_ins.append((account_id, at, method))
            healed = 0
            for row in self.switches.values():
                if row["account_id"] == account_id and row["state"] in REMINDER_STATES:
                    row["state"] = SwitchState.ACTIVE
                    row["updated_at"] = at
                    healed += 1
            return healed

    async def insert_switch(self, switch: Switch, *, max_open: int | None = None) -> None:
        # Let concurrent callers interleave before the locked section
        await asyncio.sleep(0)
        async with self._lock:
            if max_open is not None:
                open_count = sum(
                    1
                    for row in self.switches.values()
                    if row["account_id"] == switch.account_id
                    and SwitchState(row["state"]) in OPEN_STATES
                )
                if open_count >= max_open:
                    raise QuotaExceeded(f"account {switch.account_id} is at {max_open}")
            self.add_switch(switch)

    async def advance(
        self,
        switch_id: str,
        expected: SwitchState,
        target: SwitchState,
        *,
        observed_check_in: int | None = None,
        at: int | None = None,
    ) -> None:
        if not is_valid_transition(expected, target):
            raise ValueError(f"illegal transition {expected} -> {target}")
        # Let concurrent callers interleave before the atomic section
        await asyncio.sleep(0)
        async with self._lock:
            row = self.switches.get(switch_id)
            if row is None or row["state"] != expected:
                raise StateConflict(switch_id, f"expected {expected} for {target}")
            if observed_check_in is not None:
                account = self.accounts[row["account_id"]]
                if account["last_check_in_at"] != observed_check_in:
                    raise StateConflict(switch_id, "check-in changed")
            row["state"] = target
            row["updated_at"] = at if at is not None else NOW
            self.transitions.append((switch_id, expected, target))

    async def repoint_content(
        self, switch_id: str, new_ref: ContentRef, expected_logical_id: str
    ) -> None:
        async with self._lock:
            row = self.switches.get(switch_id)
            if (
                row is None
                or row["state"] != SwitchState.ACTIVE
                or row["content_ref"]["logical_id"] != expected_logical_id
            ):
                raise StateConflict(switch_id, "content can only be replaced while active")
            row["content_ref"] = new_ref.to_dict()

    async def record_release_failure(self, switch_id: str, error: str) -> int:
        row = self.switches.get(switch_id)
        if row is None or row["state"] != SwitchState.TRIGGERED:
            return 0
        row["release_failures"] += 1
        row["last_error"] = error
        return int(row["release_failures"])

    async def claim_release_alert(self, switch_id: str) -> bool:
        row = self.switches[switch_id]
        if row["release_alerted"]:
            return False
        row["release_alerted"] = True
        return True

    async def insert_audit_log(
        self,
        account_id: str,
        action: str,
        details: dict[str, Any] | None = None,
        *,
        at: int | None = None,
    ) -> None:
        self.audit.append((account_id, action, details or {}))

    async def delete_expired_codes(self, now: int) -> int:
        keep = [
            c for c in self.one_time_codes if c["expires_at"] >= now and c["consumed_at"] is None
        ]
        removed = len(self.one_time_codes) - len(keep)
        self.one_time_codes = keep
        return removed

    async def delete_check_in_logs_before(self, before: int) -> int:
        keep = [t for t in self.check_in_log_times if t >= before]
        removed = len(self.check_in_log_times) - len(keep)
        self.check_in_log_times = keep
        return removed

    async def delete_audit_logs_before(self, before: int) -> int:
        keep = [t for t in self.audit_log_times if t >= before]
        removed = len(self.audit_log_times) - len(keep)
        self.audit_log_times = keep
        return removed

    # -- generic read facade used by the query functions ------------------

    async def fetch(self, query: str, *args: Any, timeout: float | None = None) -> list[Any]:  # noqa: ASYNC109
        if "JOIN account" not in query:
            raise AssertionError(f"unexpected fetch: {query}")
        states, kinds, after_id, limit = args
        rows = [
            {**row, "last_check_in_at": self.accounts[row["account_id"]]["last_check_in_at"]}
            for sid, row in sorted(self.switches.items())
            if row["state"] in states and row["trigger_kind"] in kinds and sid > after_id
        ]
        return rows[:limit]

    async def fetchrow(self, query: str, *args: Any, timeout: float | None = None) -> Any:  # noqa: ASYNC109
        if "FROM switch" in query:
            row = self.switches.get(args[0])
            return dict(row) if row is not None else None
        if "FROM account" in query:
            return self.accounts.get(args[0])
        raise AssertionError(f"unexpected fetchrow: {query}")

    async def fetchval(self, query: str, *args: Any, timeout: float | None = None) -> Any:  # noqa: ASYNC109
        if "account_id = $1" in query:
            account_id, states = args
            return sum(
                1
                for row in self.switches.values()
                if row["account_id"] == account_id and row["state"] in states
            )
        if "count(*) FROM switch" in query:
            states, kinds = args
            return sum(
                1
                for row in self.switches.values()
                if row["state"] in states and row["trigger_kind"] in kinds
            )
        raise AssertionError(f"unexpected fetchval: {query}")


@pytest.fixture
def fake_repository() -> FakeRepository:
    """Empty in-memory repository with one free-tier account ``acct-1``."""
    repository = FakeRepository()
    repository.add_account("acct-1")
    return repository


# ============================================================================
# Delivery / Notifier Fakes
# ============================================================================


class RecordingSink:
    """Delivery sink that is idempotent per switch id, like a real one must be.

    Set ``failures`` to make the next N deliveries raise ``SinkDeliveryError``.
    """

    def __init__(self) -> None:
        self.delivered: dict[str, bytes] = {}
        self.calls: list[str] = []
        self.failures = 0

    async def deliver(self, switch_id: str, recipients: RecipientsMetadata, payload: bytes) -> None:
        self.calls.append(switch_id)
        await asyncio.sleep(0)
        if self.failures > 0:
            self.failures -= 1
            raise SinkDeliveryError("sink unavailable")
        self.delivered.setdefault(switch_id, payload)


class RecordingNotifier:
    def __init__(self) -> None:
        self.reminders: list[Reminder] = []
        self.alerts: list[tuple[str, dict[str, Any]]] = []
        self.fail = False

    async def remind(self, reminder: Reminder) -> None:
        if self.fail:
            raise SinkDeliveryError("notifier unavailable")
        self.reminders.append(reminder)

    async def alert(self, subject: str, details: dict[str, Any]) -> None:
        self.alerts.append((subject, details))


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# ============================================================================
# Relay Fixtures
# ============================================================================


@pytest.fixture
def memory_client() -> MemoryRelayClient:
    """Memory relay client with a short timeout."""
    return MemoryRelayClient(timeout=0.2)


@pytest.fixture
def store(memory_client: MemoryRelayClient) -> ContentStore:
    """Content store over the memory client, majority quorum."""
    return ContentStore(memory_client, StoreConfig(retrieve_deadline=2.0))


# ============================================================================
# Sample Data
# ============================================================================


async def make_stored_switch(
    repository: FakeRepository,
    store: ContentStore,
    *,
    trigger: Trigger,
    payload: bytes = b"sealed-payload",
    account_id: str = "acct-1",
    state: SwitchState = SwitchState.ACTIVE,
    relays: tuple[str, ...] = RELAYS,
) -> Switch:
    """Store *payload* on the relays and insert a switch pointing at it."""
    ref = await store.store(payload, relays, created_at=NOW - 100 * DAY)
    switch = Switch.new(account_id, trigger, ref, recipient_count=2, created_at=NOW - 100 * DAY)
    return repository.add_switch(switch.with_state(state))


# ============================================================================
# Webhook Endpoint
# ============================================================================


class WebhookEndpoint:
    """Local aiohttp endpoint recording every JSON body posted to it."""

    def __init__(self) -> None:
        self.requests: list[tuple[dict[str, str], dict[str, Any]]] = []
        self.status = 200
        self.response_body: Any = {"ok": True}
        self.url = ""

    async def handle(self, request: web.Request) -> web.Response:
        self.requests.append((dict(request.headers), await request.json()))
        if isinstance(self.response_body, bytes):
            return web.Response(status=self.status, body=self.response_body)
        return web.json_response(self.response_body, status=self.status)


@pytest.fixture
async def webhook() -> AsyncIterator[WebhookEndpoint]:
    """Start a webhook endpoint on a free local port."""
    endpoint = WebhookEndpoint()
    app = web.Application()
    app.router.add_post("/hook", endpoint.handle)
    runner = web.AppRunner(app, access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, "127.0.0.1", 0)
    await site.start()
    port = site._server.sockets[0].getsockname()[1]  # type: ignore[union-attr]
    endpoint.url = f"http://127.0.0.1:{port}/hook"
    try:
        yield endpoint
    finally:
        await runner.cleanup()
