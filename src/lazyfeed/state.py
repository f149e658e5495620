"""Application state container.

AppState is created once at server startup (inside the Starlette lifespan)
and handed to the request handler through ``request.app.state``.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING

from lazyfeed.authorizer import AllowPolicy
from lazyfeed.engine import utc_now

if TYPE_CHECKING:
    from lazyfeed.config import Settings
    from lazyfeed.protocols import FetcherProtocol, StoreProtocol


@dataclass
class AppState:
    """Holds all shared runtime state. Passed to every request handler."""

    settings: Settings
    store: StoreProtocol
    fetcher: FetcherProtocol
    policy: AllowPolicy = field(default_factory=lambda: AllowPolicy(unrestricted=True))
    clock: Callable[[], datetime] = utc_now
    # Engine-level bound on the upstream fetch, on top of the httpx timeout
    fetch_timeout: float | None = None
