"""Shared test fixtures for the lazyfeed test suite."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from datetime import UTC, datetime

import aiosqlite
import pytest

from lazyfeed.store import SQLiteStore
from tests.fakes import FakeFetcher, FixedClock, MemoryStore


@pytest.fixture()
def clock() -> FixedClock:
    """Clock frozen at 2025-01-01 10:30 UTC (a Wednesday)."""
    return FixedClock(datetime(2025, 1, 1, 10, 30, tzinfo=UTC))


@pytest.fixture()
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture()
async def sqlite_store() -> AsyncGenerator[SQLiteStore, None]:
    """SQLiteStore over an in-memory database."""
    async with aiosqlite.connect(":memory:") as db:
        store = SQLiteStore(db)
        await store.init_db()
        yield store
