"""Shared fixtures for Chatkeep tests."""

from __future__ import annotations

import pytest
import pytest_asyncio

from chatkeep.clock import ManualClock
from chatkeep.events.bus import EventBus
from chatkeep.events.payloads import EventPayload
from chatkeep.lifecycle.retry import RetryableOperation
from chatkeep.models.config import StoreConfig
from chatkeep.models.session import SessionStatus
from chatkeep.store.pool import StorePool
from chatkeep.store.sessions import SessionStore

T0 = 1_700_000_000_000


@pytest.fixture
def config(tmp_path):
    """StoreConfig with a temp database path."""
    return StoreConfig(db_path=str(tmp_path / "test.db"))


@pytest.fixture
def clock():
    """A ManualClock starting at a fixed instant."""
    return ManualClock(start_ms=T0)


@pytest.fixture
def event_bus():
    """EventBus with a .collected list for asserting events."""
    bus = EventBus()
    collected: list[EventPayload] = []

    def _collect(payload: EventPayload) -> None:
        collected.append(payload)

    bus.subscribe_all(_collect)
    bus.collected = collected  # type: ignore[attr-defined]
    return bus


@pytest_asyncio.fixture
async def pool(config):
    """StorePool for the test database. Closed after each test."""
    p = StorePool()
    yield p
    await p.close_all()


@pytest_asyncio.fixture
async def store(config, pool, clock, event_bus):
    """Initialized SessionStore on a temp SQLite database, driven by the manual clock."""
    s = SessionStore(config, pool=pool, clock=clock, event_bus=event_bus)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture
def sleeps():
    """Records every delay requested by a RetryableOperation."""
    return []


@pytest.fixture
def no_wait_retry(sleeps):
    """Factory for RetryableOperation instances that record delays instead of sleeping."""

    async def _sleep(seconds: float) -> None:
        sleeps.append(seconds)

    def _make(max_attempts: int = 3, delay_ms: int = 5_000) -> RetryableOperation:
        return RetryableOperation(max_attempts=max_attempts, delay_ms=delay_ms, sleep=_sleep)

    return _make


class FakeSweepStore:
    """
    Hand-written stand-in for SessionStore's sweep and count methods.

    ``archive_counts`` / ``delete_counts`` map population (``"prod"``/``"demo"``)
    to the count returned, or to an exception instance raised on every call.
    """

    def __init__(
        self,
        archive_counts: dict[str, int | Exception] | None = None,
        delete_counts: dict[str, int | Exception] | None = None,
        counts: dict[SessionStatus | None, int] | None = None,
        count_error: Exception | None = None,
    ) -> None:
        self.archive_counts = archive_counts or {"prod": 0, "demo": 0}
        self.delete_counts = delete_counts or {"prod": 0, "demo": 0}
        self.counts = counts or {}
        self.count_error = count_error
        self.calls: list[tuple[str, float, bool | None]] = []
        self.archive_ceilings: list[float | None] = []

    async def archive_old_sessions(
        self, days: float, *, demo: bool | None = None, max_days: float | None = None
    ) -> int:
        self.calls.append(("archive", days, demo))
        self.archive_ceilings.append(max_days)
        return self._answer(self.archive_counts, demo)

    async def delete_old_sessions(self, days: float, *, demo: bool | None = None) -> int:
        self.calls.append(("delete", days, demo))
        return self._answer(self.delete_counts, demo)

    async def count_sessions(
        self,
        *,
        status: SessionStatus | None = None,
        demo: bool | None = None,
    ) -> int:
        if self.count_error is not None:
            raise self.count_error
        return self.counts.get(status, 0)

    @staticmethod
    def _answer(table: dict[str, int | Exception], demo: bool | None) -> int:
        value = table["demo" if demo else "prod"]
        if isinstance(value, Exception):
            raise value
        return value
