"""Shared test fixtures for the proactive push test suite."""

import os
import pytest
from datetime import UTC, datetime, timedelta
from typing import Any

# Settings are read at import time
os.environ.setdefault("CRON_SECRET", "test-secret")
os.environ.setdefault("TIMEZONE", "Asia/Seoul")

from config.constants import NotificationType, Priority
from notifications.types import (
    NotificationCandidate,
    PushMessage,
    PushTicket,
    PushToken,
)


# ── Database Pool Mock ──


class FakeRecord(dict):
    """Mimics asyncpg.Record: supports both dict-style and attribute access."""
    def __getattr__(self, key):
        try:
            return self[key]
        except KeyError:
            raise AttributeError(key)


class FakeConnection:
    """Mock asyncpg connection with configurable return values."""

    def __init__(self):
        self.execute_results: list[str] = ["UPDATE 1"]
        self.fetch_results: list[list[dict]] = [[]]
        self.fetchrow_result: dict | None = None
        self.fetchval_result: Any = None
        self._execute_calls: list[tuple] = []
        self._executemany_calls: list[tuple] = []
        self._fetch_calls: list[tuple] = []
        self._fetchrow_calls: list[tuple] = []
        self._fetchval_calls: list[tuple] = []
        self.transactions = 0

    async def execute(self, query, *args):
        self._execute_calls.append((query, args))
        return self.execute_results[0] if self.execute_results else "UPDATE 0"

    async def executemany(self, query, args):
        self._executemany_calls.append((query, list(args)))

    async def fetch(self, query, *args):
        self._fetch_calls.append((query, args))
        result = self.fetch_results.pop(0) if self.fetch_results else []
        return [FakeRecord(r) for r in result]

    async def fetchrow(self, query, *args):
        self._fetchrow_calls.append((query, args))
        return FakeRecord(self.fetchrow_result) if self.fetchrow_result else None

    async def fetchval(self, query, *args):
        self._fetchval_calls.append((query, args))
        return self.fetchval_result

    def transaction(self):
        self.transactions += 1
        return FakeTransaction()


class FakeTransaction:
    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


class FakePool:
    """Mock asyncpg.Pool that yields a FakeConnection."""

    def __init__(self):
        self.conn = FakeConnection()

    def acquire(self):
        return FakePoolContext(self.conn)


class FakePoolContext:
    def __init__(self, conn):
        self.conn = conn

    async def __aenter__(self):
        return self.conn

    async def __aexit__(self, *args):
        pass


@pytest.fixture
def fake_pool():
    """Provide a mock database pool."""
    return FakePool()


@pytest.fixture
def fake_conn(fake_pool):
    """Direct access to the underlying FakeConnection."""
    return fake_pool.conn


# ── In-memory stand-ins for the store, tokens and provider ──


class InMemoryKV:
    """KVRepository with the same interface, backed by a dict."""

    def __init__(self):
        self.data: dict[tuple[str, str], Any] = {}
        self.update_calls = 0

    async def get(self, user_id, key):
        return self.data.get((user_id, key))

    async def get_many(self, user_id, keys):
        return {k: self.data[(user_id, k)] for k in keys if (user_id, k) in self.data}

    async def set(self, user_id, key, value):
        self.data[(user_id, key)] = value

    async def update(self, user_id, keys, mutate):
        self.update_calls += 1
        current = await self.get_many(user_id, keys)
        updates = mutate(current)
        for key, value in updates.items():
            self.data[(user_id, key)] = value
        return updates


class InMemoryTokenRepo:
    """PushTokenRepository backed by a dict of token -> (user_id, active)."""

    def __init__(self, tokens: dict[str, list[str]] | None = None):
        self.tokens: dict[str, tuple[str, bool]] = {}
        for user_id, user_tokens in (tokens or {}).items():
            for token in user_tokens:
                self.tokens[token] = (user_id, True)
        self.deactivate_calls: list[list[str]] = []

    async def get_active(self, user_id):
        return [
            PushToken(user_id=uid, token=token)
            for token, (uid, active) in self.tokens.items()
            if uid == user_id and active
        ]

    async def deactivate(self, tokens):
        self.deactivate_calls.append(list(tokens))
        changed = 0
        for token in tokens:
            if token in self.tokens and self.tokens[token][1]:
                self.tokens[token] = (self.tokens[token][0], False)
                changed += 1
        return changed

    def is_active(self, token):
        return self.tokens[token][1]


class FakePushProvider:
    """Records batches; per-token verdicts are configurable."""

    def __init__(self):
        self.batches: list[list[PushMessage]] = []
        self.rejected: set[str] = set()
        self.dead: set[str] = set()
        self.fail_for: set[str] = set()

    @property
    def sent_messages(self) -> list[PushMessage]:
        return [m for batch in self.batches for m in batch]

    async def send(self, token, title, body, data):
        tickets = await self.send_batch([PushMessage(to=token, title=title, body=body, data=data)])
        return tickets[0]

    async def send_batch(self, messages):
        if any(m.to in self.fail_for for m in messages):
            raise ConnectionError("push provider unreachable")
        self.batches.append(list(messages))
        tickets = []
        for m in messages:
            if m.to in self.dead:
                tickets.append(PushTicket(accepted=False, permanent_failure=True, error="DeviceNotRegistered"))
            elif m.to in self.rejected:
                tickets.append(PushTicket(accepted=False, error="MessageRateExceeded"))
            else:
                tickets.append(PushTicket(accepted=True, ticket_id=f"ticket-{len(tickets)}"))
        return tickets


@pytest.fixture
def memory_kv():
    return InMemoryKV()


@pytest.fixture
def push_provider():
    return FakePushProvider()


# ── Candidate factory ──


def make_candidate(
    id: str = "c1",
    type: NotificationType = NotificationType.SCHEDULE_REMINDER,
    priority: Priority = Priority.MEDIUM,
    title: str = "Meeting soon",
    message: str = "Your meeting starts in 20 minutes",
    **kwargs,
) -> NotificationCandidate:
    return NotificationCandidate(
        id=id, type=type, priority=priority, title=title, message=message, **kwargs
    )


@pytest.fixture
def candidate_factory():
    return make_candidate


# ── Timestamp helpers ──


@pytest.fixture
def now():
    """Noon in Seoul (03:00 UTC), inside the default active hours."""
    return datetime(2026, 3, 10, 3, 0, tzinfo=UTC)


@pytest.fixture
def past(now):
    return now - timedelta(hours=1)


@pytest.fixture
def future(now):
    return now + timedelta(hours=1)
