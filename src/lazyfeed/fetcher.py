"""HTTP feed fetcher with per-hop origin checks.

All upstream I/O goes through a single Fetcher instance shared across
requests. The Fetcher receives an httpx.AsyncClient via constructor
injection; the server lifespan owns the client lifecycle.
"""

from __future__ import annotations

from typing import TYPE_CHECKING
from urllib.parse import urljoin

import httpx
import structlog

from lazyfeed.authorizer import AllowPolicy, authorize
from lazyfeed.errors import ErrorCode, LazyFeedError

if TYPE_CHECKING:
    from lazyfeed.config import FetcherSettings

log = structlog.get_logger()


def build_http_client(settings: FetcherSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=False,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={
            "User-Agent": settings.user_agent,
            "Accept": "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8",
        },
        limits=httpx.Limits(
            max_connections=20,
            max_keepalive_connections=10,
        ),
    )


class Fetcher:
    """Upstream fetcher implementing FetcherProtocol.

    Redirects are followed by hand so that every hop is checked against the
    same allow-list that admitted the original URL.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        policy: AllowPolicy | None = None,
        max_redirects: int = 3,
    ) -> None:
        self._client = client
        self._policy = policy or AllowPolicy(unrestricted=True)
        self._max_redirects = max_redirects

    async def fetch(self, url: str) -> str:
        """Fetch *url* and return the body text of a 2xx response.

        Raises LazyFeedError on redirect violations, network errors and
        non-2xx responses.
        """
        current_url = url

        try:
            for hop in range(self._max_redirects + 1):
                if hop > 0 and not authorize(current_url, self._policy).allowed:
                    log.warning("redirect_blocked", url=url, location=current_url)
                    raise LazyFeedError(
                        code=ErrorCode.URL_NOT_ALLOWED,
                        message=f"redirect to {current_url} is not allowed",
                        recoverable=False,
                    )

                response = await self._client.get(current_url)

                if response.is_redirect and "location" in response.headers:
                    if hop == self._max_redirects:
                        raise LazyFeedError(
                            code=ErrorCode.TOO_MANY_REDIRECTS,
                            message=f"too many redirects fetching {url}",
                            recoverable=False,
                        )
                    current_url = urljoin(current_url, response.headers["location"])
                    continue

                if not response.is_success:
                    raise LazyFeedError(
                        code=ErrorCode.UPSTREAM_STATUS,
                        message=f"fetch failed with status {response.status_code}",
                    )

                log.info(
                    "fetch_complete",
                    url=url,
                    status_code=response.status_code,
                    content_length=len(response.content),
                )
                return response.text

        except LazyFeedError:
            raise
        except httpx.TimeoutException as exc:
            raise LazyFeedError(
                code=ErrorCode.UPSTREAM_TIMEOUT,
                message=f"timed out fetching {url}",
            ) from exc
        except httpx.HTTPError as exc:
            raise LazyFeedError(
                code=ErrorCode.UPSTREAM_UNREACHABLE,
                message=f"network error fetching {url}: {exc}",
            ) from exc

        # Unreachable but satisfies the type checker
        raise LazyFeedError(
            code=ErrorCode.TOO_MANY_REDIRECTS,
            message="redirect loop",
            recoverable=False,
        )
