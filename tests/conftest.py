"""Shared pytest fixtures.

Service and API tests run against an in-memory stand-in for the asyncpg pool.
``FakeConnection`` answers queries by SQL fragment and records every call,
commit and rollback so tests can assert what was written and whether the
transaction committed.
"""

import os

# Settings are read at import time; keep throttling out of the way of tests.
os.environ.setdefault("RATE_LIMIT", "10000/minute")
os.environ.setdefault("API_KEY_HASH_SECRET", "test-secret")

from contextlib import asynccontextmanager
from typing import Any, List, Tuple

import httpx
import pytest
import pytest_asyncio

from services.election_api.auth import CurrentUser
from services.election_api.database import database


def normalize_sql(query: str) -> str:
    return " ".join(query.split())


class FakeTransaction:
    """Async context manager mimicking ``asyncpg.Connection.transaction()``."""

    def __init__(self, conn: "FakeConnection"):
        self.conn = conn

    async def __aenter__(self):
        self.conn.in_transaction = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.conn.in_transaction = False
        if exc_type is None:
            self.conn.commits += 1
        else:
            self.conn.rollbacks += 1
        return False


class FakeConnection:
    """Scripted asyncpg connection.

    Register answers with ``on(fragment, result)``. ``result`` may be a plain
    value, a callable receiving the query arguments, or an exception instance
    to raise. Later registrations take precedence over earlier ones.
    """

    def __init__(self):
        self.handlers: List[Tuple[str, Any]] = []
        self.calls: List[Tuple[str, str, tuple]] = []
        self.commits = 0
        self.rollbacks = 0
        self.in_transaction = False

    def on(self, fragment: str, result: Any) -> "FakeConnection":
        self.handlers.insert(0, (normalize_sql(fragment), result))
        return self

    def _answer(self, method: str, query: str, args: tuple):
        sql = normalize_sql(query)
        self.calls.append((method, sql, args))
        for fragment, result in self.handlers:
            if fragment in sql:
                if isinstance(result, BaseException):
                    raise result
                if callable(result):
                    return result(*args)
                return result
        return None

    def queries(self, fragment: str) -> List[Tuple[str, str, tuple]]:
        fragment = normalize_sql(fragment)
        return [call for call in self.calls if fragment in call[1]]

    async def fetchrow(self, query: str, *args):
        return self._answer("fetchrow", query, args)

    async def fetch(self, query: str, *args):
        result = self._answer("fetch", query, args)
        return [] if result is None else result

    async def fetchval(self, query: str, *args):
        return self._answer("fetchval", query, args)

    async def execute(self, query: str, *args):
        result = self._answer("execute", query, args)
        return "OK" if result is None else result

    async def executemany(self, query: str, args_list):
        for args in args_list:
            self._answer("executemany", query, tuple(args))

    def transaction(self) -> FakeTransaction:
        return FakeTransaction(self)


class FakePool:
    """Hands out the same FakeConnection for every acquire."""

    def __init__(self, conn: FakeConnection):
        self.conn = conn

    @asynccontextmanager
    async def _acquire(self):
        yield self.conn

    def acquire(self):
        return self._acquire()

    async def close(self):
        pass


@pytest.fixture
def fake_conn() -> FakeConnection:
    return FakeConnection()


@pytest.fixture
def fake_db(monkeypatch, fake_conn):
    """Point the global database at a FakePool for the duration of a test."""
    monkeypatch.setattr(database, "pool", FakePool(fake_conn))
    return database


@pytest.fixture
def creator() -> CurrentUser:
    return CurrentUser(user_id=7, email="creator@example.com", roles=["Voter"])


@pytest.fixture
def admin() -> CurrentUser:
    return CurrentUser(user_id=1, email="admin@example.com", roles=["Admin"])


@pytest_asyncio.fixture
async def api_client(fake_db):
    """HTTP client bound to the ASGI app without running its lifespan."""
    from services.election_api.main import app

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "api: test drives the HTTP application"
    )
