"""Request handler for the ``/lazyfeed`` endpoint.

Validates the query, consults the origin allow-list, runs the freshness
engine and renders its Resolution as an HTTP response. No Starlette routing
here: server.py wires the route.
"""

from __future__ import annotations

import re
from typing import TYPE_CHECKING

import structlog
from starlette.responses import PlainTextResponse, Response

from lazyfeed.authorizer import Decision, authorize
from lazyfeed.engine import Outcome, Resolution, check_params, resolve_request
from lazyfeed.models.cache import format_instant

if TYPE_CHECKING:
    from collections.abc import Mapping
    from datetime import datetime

    from lazyfeed.state import AppState

FEED_MEDIA_TYPE = "application/xml"

_LINE_BREAKS = re.compile(r"[\r\n]+")


def _header_value(value: str) -> str:
    """Header-safe rendering of free text such as upstream error messages."""
    return _LINE_BREAKS.sub(" ", value).encode("latin-1", "replace").decode("latin-1")


def build_headers(resolution: Resolution, now: datetime) -> dict[str, str]:
    """Diagnostic headers for a resolution that reached the store at *now*."""
    headers = {
        "x-cache-key": resolution.key or "",
        "x-cron-expression": _header_value(resolution.cron or ""),
        "x-feed-url": _header_value(resolution.url or ""),
        "x-current-time": format_instant(now),
    }

    if resolution.last_fetched is not None:
        headers["x-last-fetched"] = format_instant(resolution.last_fetched)
        headers["x-cache-age-seconds"] = str(resolution.cache_age_seconds)

    if resolution.next_fetch is not None:
        headers["x-next-fetch"] = format_instant(resolution.next_fetch)

    if resolution.cache_status is not None:
        headers["x-cache-status"] = resolution.cache_status

    if resolution.fetched:
        headers["x-fetched-at"] = format_instant(now)

    if resolution.fetch_error is not None:
        headers["x-fetch-error"] = _header_value(resolution.fetch_error)

    return headers


def render(resolution: Resolution) -> Response:
    """Turn a Resolution into a Starlette response."""
    now = resolution.now
    if resolution.key is None or now is None:
        # Rejected before any store access: bare 400
        return PlainTextResponse(resolution.response_body, status_code=resolution.status_code)

    return Response(
        content=resolution.response_body,
        status_code=resolution.status_code,
        headers=build_headers(resolution, now),
        media_type=FEED_MEDIA_TYPE,
    )


async def handle(params: Mapping[str, str], state: AppState) -> Response:
    """Handle one ``/lazyfeed`` request."""
    url = params.get("url")
    cron = params.get("cron")
    log = structlog.get_logger().bind(feed_url=url, cron=cron)

    checked = check_params(url, cron)
    if isinstance(checked, Outcome):
        log.info("request_rejected", outcome=checked)
        return render(Resolution(outcome=checked, url=url, cron=cron))

    authorization = authorize(checked.url, state.policy)
    if authorization.decision is Decision.MALFORMED:
        log.info("request_rejected", reason="malformed_url")
        return PlainTextResponse("Invalid URL format", status_code=400)
    if authorization.decision is Decision.DENY:
        log.warning("domain_not_allowed", hostname=authorization.hostname)
        return PlainTextResponse(
            f"Domain {authorization.hostname} is not allowed", status_code=403
        )

    resolution = await resolve_request(
        checked,
        store=state.store,
        fetcher=state.fetcher,
        now=state.clock,
        fetch_timeout=state.fetch_timeout,
    )
    return render(resolution)
