"""Protocol interfaces for swappable components.

The freshness engine references these protocols, not the concrete
implementations. This allows:
- Tests to use lightweight in-memory implementations
- Other key-value backends to be swapped in without changing the engine
"""

from __future__ import annotations

from typing import Any, Protocol


class StoreProtocol(Protocol):
    """String-keyed store of JSON-serialisable records. No locking."""

    async def get(self, key: str) -> dict[str, Any] | None: ...

    async def put(self, key: str, value: dict[str, Any]) -> None: ...


class FetcherProtocol(Protocol):
    """Interface for the upstream feed fetcher.

    Returns the response body on a 2xx response and raises on anything else.
    """

    async def fetch(self, url: str) -> str: ...
