"""HTTP server entrypoint.

Responsibilities (and nothing more):
- Configure structlog
- Create AppState inside the Starlette lifespan context manager
- Register the ``/lazyfeed`` route
- Start uvicorn
"""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

import aiosqlite
import structlog
import uvicorn
from starlette.applications import Starlette
from starlette.routing import Route

from lazyfeed import __version__
from lazyfeed.authorizer import AllowPolicy
from lazyfeed.config import Settings
from lazyfeed.fetcher import Fetcher, build_http_client
from lazyfeed.handler import handle
from lazyfeed.state import AppState
from lazyfeed.store import SQLiteStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from starlette.requests import Request
    from starlette.responses import Response

log = structlog.get_logger()


# ---------------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------------


def _setup_logging(settings: Settings) -> None:
    """Configure structlog. Called once at startup before any log statements."""
    log_level = logging.getLevelNamesMapping()[settings.logging.level]

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if settings.logging.format == "json":
        processors = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = [*shared_processors, structlog.dev.ConsoleRenderer()]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def _open_state(settings: Settings) -> AsyncGenerator[AppState, None]:
    """Create and tear down all shared resources for the server's lifetime."""
    policy = AllowPolicy.from_setting(settings.feeds.allowed_domains)
    http_client = build_http_client(settings.fetcher)

    db_path = Path(settings.store.db_path).expanduser()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    db = await aiosqlite.connect(str(db_path))
    store = SQLiteStore(db)
    await store.init_db()

    fetcher = Fetcher(http_client, policy, max_redirects=settings.fetcher.max_redirects)

    state = AppState(
        settings=settings,
        store=store,
        fetcher=fetcher,
        policy=policy,
    )

    log.info(
        "server_started",
        version=__version__,
        db_path=str(db_path),
        domains_restricted=not policy.unrestricted,
    )

    try:
        yield state
    finally:
        await http_client.aclose()
        await db.close()
        log.info("server_stopping")


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


async def lazyfeed_endpoint(request: Request) -> Response:
    state: AppState = request.app.state.lazyfeed
    try:
        return await handle(request.query_params, state)
    except Exception:
        log.error("request_unexpected_error", path=request.url.path, exc_info=True)
        raise


def create_app(settings: Settings | None = None, state: AppState | None = None) -> Starlette:
    """Build the Starlette application.

    When *state* is given it is used as-is and the lifespan opens nothing;
    tests rely on this to inject in-memory stores and fetchers.
    """
    settings = settings or (state.settings if state is not None else Settings())

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncGenerator[None, None]:
        if state is not None:
            app.state.lazyfeed = state
            yield
            return
        async with _open_state(settings) as opened:
            app.state.lazyfeed = opened
            yield

    app = Starlette(
        routes=[Route("/lazyfeed", lazyfeed_endpoint, methods=["GET"])],
        lifespan=lifespan,
    )
    if state is not None:
        # ASGI clients without lifespan support (httpx.ASGITransport) still see it
        app.state.lazyfeed = state
    return app


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def main() -> None:
    settings = Settings()
    _setup_logging(settings)

    log.info("server_starting", version=__version__, host=settings.server.host)
    uvicorn.run(
        create_app(settings),
        host=settings.server.host,
        port=settings.server.port,
        log_config=None,  # Disable uvicorn's default logging; structlog handles it
    )


if __name__ == "__main__":
    main()
