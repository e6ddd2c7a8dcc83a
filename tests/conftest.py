"""Shared fixtures for the test suite."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest
from httpx import ASGITransport, AsyncClient

from nutriplanr.db import get_session_factory
from nutriplanr.main import app
from nutriplanr.onboarding.models import BiologicalSex, Profile
from nutriplanr.onboarding.state_machine import OnboardingSession
from nutriplanr.onboarding.store import AppStateStore, MemoryBlobStore


# ---------------------------------------------------------------------------
# Fake DB session (no real Postgres needed)
# ---------------------------------------------------------------------------

class FakeSession:
    """Minimal stand-in for AsyncSession used by providers and blob stores."""

    def __init__(self, rows: list[dict[str, Any]] | None = None, error: Exception | None = None):
        self._rows = rows or []
        self._error = error
        self.executed: list[tuple[str, dict | None]] = []
        self.commits = 0

    async def execute(self, stmt, params=None):
        if self._error is not None:
            raise self._error
        self.executed.append((str(stmt), params))
        return FakeResult(self._rows)

    async def commit(self):
        self.commits += 1

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        pass


class FakeResult:
    def __init__(self, rows: list[dict[str, Any]]):
        self._rows = rows
        self._keys = list(rows[0].keys()) if rows else []

    def keys(self):
        return self._keys

    def fetchall(self):
        return [tuple(r[k] for k in self._keys) for r in self._rows]

    def fetchone(self):
        rows = self.fetchall()
        return rows[0] if rows else None


# ---------------------------------------------------------------------------
# Fake health provider
# ---------------------------------------------------------------------------

class FakeHealthProvider:
    """Configurable provider. Values may be exceptions (raised by the fetch)."""

    def __init__(
        self,
        height: Any = None,
        weight: Any = None,
        age: Any = None,
        sex: Any = None,
        authorized: bool = True,
        grant: bool = True,
        delays: dict[str, float] | None = None,
        gate: asyncio.Event | None = None,
    ):
        self.values = {"height": height, "weight": weight, "age": age, "sex": sex}
        self.authorized = authorized
        self.grant = grant
        self.delays = delays or {}
        self.gate = gate
        self.settled: list[str] = []
        self.auth_requests = 0
        self.fetch_calls = 0

    async def check_authorization(self) -> bool:
        return self.authorized

    async def request_authorization(self) -> bool:
        self.auth_requests += 1
        return self.grant

    async def _fetch(self, field: str):
        self.fetch_calls += 1
        if self.gate is not None:
            await self.gate.wait()
        await asyncio.sleep(self.delays.get(field, 0))
        self.settled.append(field)
        value = self.values[field]
        if isinstance(value, Exception):
            raise value
        return value

    async def fetch_height(self):
        return await self._fetch("height")

    async def fetch_weight(self):
        return await self._fetch("weight")

    async def fetch_age(self):
        return await self._fetch("age")

    async def fetch_sex(self):
        return await self._fetch("sex")


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

def make_profile(**overrides: Any) -> Profile:
    defaults: dict[str, Any] = dict(height=72.0, weight=180.0, age=30, sex=BiologicalSex.unspecified)
    defaults.update(overrides)
    return Profile(**defaults)


@pytest.fixture()
def blob_store():
    return MemoryBlobStore()


@pytest.fixture()
def store(blob_store):
    return AppStateStore(blob_store)


@pytest.fixture()
def onboarding(store):
    return OnboardingSession(store, profile=make_profile())


@pytest.fixture()
def fake_session():
    """Return a FakeSession with no rows (override _rows in tests if needed)."""
    return FakeSession()


@pytest.fixture()
async def client(store, onboarding, fake_session):
    app.state.store = store
    app.state.onboarding = onboarding
    app.dependency_overrides[get_session_factory] = lambda: (lambda: fake_session)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
