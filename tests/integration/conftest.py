"""Integration test fixtures.

Provides a Starlette app wired with in-memory SQLite, a real Fetcher over a
respx-mocked httpx client, and a frozen clock. Requests go through
httpx.ASGITransport, so routing, query parsing and header rendering are all
exercised.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable, Iterator

import aiosqlite
import httpx
import pytest
import respx

from lazyfeed.authorizer import AllowPolicy
from lazyfeed.config import Settings
from lazyfeed.fetcher import Fetcher
from lazyfeed.server import create_app
from lazyfeed.state import AppState
from lazyfeed.store import SQLiteStore
from tests.fakes import FixedClock


@pytest.fixture()
def upstream() -> Iterator[respx.MockRouter]:
    """Mocked upstream hosts for the real Fetcher."""
    with respx.mock(assert_all_called=False) as router:
        yield router


@pytest.fixture()
async def store() -> AsyncGenerator[SQLiteStore, None]:
    async with aiosqlite.connect(":memory:") as db:
        sqlite_store = SQLiteStore(db)
        await sqlite_store.init_db()
        yield sqlite_store


@pytest.fixture()
async def make_client(
    store: SQLiteStore, clock: FixedClock, upstream: respx.MockRouter
) -> AsyncGenerator[Callable[..., httpx.AsyncClient], None]:
    """Factory building an app client for a given ``allowed_domains`` setting."""
    opened: list[httpx.AsyncClient] = []

    def _make(allowed_domains: str | None = None) -> httpx.AsyncClient:
        policy = AllowPolicy.from_setting(allowed_domains)
        upstream_client = httpx.AsyncClient(follow_redirects=False)
        state = AppState(
            settings=Settings(),
            store=store,
            fetcher=Fetcher(upstream_client, policy),
            policy=policy,
            clock=clock,
        )
        app = create_app(state=state)
        client = httpx.AsyncClient(
            transport=httpx.ASGITransport(app=app), base_url="http://lazyfeed.test"
        )
        opened.extend([upstream_client, client])
        return client

    yield _make

    for client in opened:
        await client.aclose()


@pytest.fixture()
def client(make_client: Callable[..., httpx.AsyncClient]) -> httpx.AsyncClient:
    """App client with no domain restriction."""
    return make_client()
