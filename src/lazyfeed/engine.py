"""Freshness engine: decides between cached content and an upstream fetch.

Freshness is pull-based. Every call recomputes whether a refetch is due from
the stored ``lastFetched`` and the cron schedule; there is no background timer.
``lastFetched`` only advances on a successful fetch, so a failing upstream is
retried by the next request that arrives after the missed fire time.

Two concurrent calls for the same key may both fetch and both write. Writes
are whole-record overwrites, so last writer wins.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from enum import StrEnum
from typing import TYPE_CHECKING
from urllib.parse import quote

import structlog
from pydantic import ValidationError

from lazyfeed.errors import InvalidCronError, LazyFeedError
from lazyfeed.models.cache import CacheRecord
from lazyfeed.schedule import CronSchedule

if TYPE_CHECKING:
    from collections.abc import Callable

    from lazyfeed.protocols import FetcherProtocol, StoreProtocol

log = structlog.get_logger()

# Characters encodeURIComponent leaves alone, beyond ASCII letters and digits
_KEY_SAFE_CHARS = "-_.!~*'()"


class Outcome(StrEnum):
    MISSING_PARAMS = "missing_params"
    INVALID_CRON = "invalid_cron"
    FETCHED_FRESH = "fetched_fresh"
    REFETCHED_FRESH = "refetched_fresh"
    SERVED_CACHED = "served_cached"
    SERVED_STALE = "served_stale"
    FETCH_FAILED_NO_CACHE = "fetch_failed_no_cache"
    NO_CACHE_AVAILABLE = "no_cache_available"


# outcome → (HTTP status, x-cache-status)
_OUTCOME_STATUS: dict[Outcome, tuple[int, str | None]] = {
    Outcome.MISSING_PARAMS: (400, None),
    Outcome.INVALID_CRON: (400, None),
    Outcome.FETCHED_FRESH: (200, "miss"),
    Outcome.REFETCHED_FRESH: (200, "miss"),
    Outcome.SERVED_CACHED: (200, "hit"),
    Outcome.SERVED_STALE: (200, "stale"),
    Outcome.FETCH_FAILED_NO_CACHE: (502, "error"),
    Outcome.NO_CACHE_AVAILABLE: (404, "error"),
}

_OUTCOME_BODY: dict[Outcome, str] = {
    Outcome.MISSING_PARAMS: "url and cron are required",
    Outcome.INVALID_CRON: "invalid cron expression",
    Outcome.FETCH_FAILED_NO_CACHE: "failed to fetch RSS",
    Outcome.NO_CACHE_AVAILABLE: "no cache available",
}


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(UTC)


def cache_key(url: str, cron: str) -> str:
    """Build the store key for a (feed URL, cron expression) pair.

    Both parts are percent-encoded with the encodeURIComponent alphabet, so
    ``:`` and ``%`` never appear unescaped and distinct pairs never collide.
    """
    encoded_url = quote(url, safe=_KEY_SAFE_CHARS)
    encoded_cron = quote(cron, safe=_KEY_SAFE_CHARS)
    return f"meta:{encoded_url}:{encoded_cron}"


@dataclass(frozen=True)
class Resolution:
    """Result of one freshness decision, ready to be rendered."""

    outcome: Outcome
    url: str | None = None
    cron: str | None = None
    key: str | None = None
    now: datetime | None = None
    body: str | None = None
    last_fetched: datetime | None = None
    next_fetch: datetime | None = None
    fetch_error: str | None = None

    @property
    def status_code(self) -> int:
        return _OUTCOME_STATUS[self.outcome][0]

    @property
    def cache_status(self) -> str | None:
        return _OUTCOME_STATUS[self.outcome][1]

    @property
    def fetched(self) -> bool:
        return self.outcome in (Outcome.FETCHED_FRESH, Outcome.REFETCHED_FRESH)

    @property
    def response_body(self) -> str:
        """Body to send: feed content for 200s, a fixed message otherwise."""
        if self.outcome in _OUTCOME_BODY:
            return _OUTCOME_BODY[self.outcome]
        return self.body or ""

    @property
    def cache_age_seconds(self) -> int | None:
        if self.last_fetched is None or self.now is None:
            return None
        return math.floor((self.now - self.last_fetched).total_seconds())


@dataclass(frozen=True)
class FeedRequest:
    """A request whose inputs passed validation, with its parsed schedule."""

    url: str
    cron: str
    schedule: CronSchedule


def check_params(url: str | None, cron: str | None) -> FeedRequest | Outcome:
    """Validate request inputs. Returns a client-error outcome, or the usable request."""
    if not url or not cron:
        return Outcome.MISSING_PARAMS
    try:
        schedule = CronSchedule.parse(cron)
    except InvalidCronError:
        return Outcome.INVALID_CRON
    return FeedRequest(url=url, cron=cron, schedule=schedule)


def _load_record(raw: dict | None, key: str) -> CacheRecord:
    if raw is None:
        return CacheRecord()
    try:
        return CacheRecord.model_validate(raw)
    except ValidationError:
        log.warning("cache_record_invalid", key=key, exc_info=True)
        return CacheRecord()


async def _fetch(fetcher: FetcherProtocol, url: str, timeout: float | None) -> str:
    if timeout is None:
        return await fetcher.fetch(url)
    try:
        return await asyncio.wait_for(fetcher.fetch(url), timeout=timeout)
    except TimeoutError as exc:
        raise TimeoutError(f"fetch timed out after {timeout:g}s") from exc


async def resolve(
    url: str | None,
    cron: str | None,
    *,
    store: StoreProtocol,
    fetcher: FetcherProtocol,
    now: Callable[[], datetime] = utc_now,
    fetch_timeout: float | None = None,
) -> Resolution:
    """Serve *url* from *store* or refetch it, as the cron schedule dictates.

    Upstream failures never raise: they become ``SERVED_STALE`` when a
    previous body exists and ``FETCH_FAILED_NO_CACHE`` otherwise.
    """
    checked = check_params(url, cron)
    if isinstance(checked, Outcome):
        return Resolution(outcome=checked, url=url, cron=cron)
    return await resolve_request(
        checked, store=store, fetcher=fetcher, now=now, fetch_timeout=fetch_timeout
    )


async def resolve_request(
    request: FeedRequest,
    *,
    store: StoreProtocol,
    fetcher: FetcherProtocol,
    now: Callable[[], datetime] = utc_now,
    fetch_timeout: float | None = None,
) -> Resolution:
    """``resolve`` for inputs already validated by ``check_params``."""
    url, cron, schedule = request.url, request.cron, request.schedule
    key = cache_key(url, cron)
    current = now()
    if current.tzinfo is None:
        current = current.replace(tzinfo=UTC)

    bound = log.bind(key=key, feed_url=url, cron=cron)
    try:
        raw = await store.get(key)
    except Exception:
        bound.warning("store_read_failed", exc_info=True)
        raw = None
    stored = _load_record(raw, key)

    next_fetch: datetime | None = None
    if stored.last_fetched is None:
        should_fetch = True
    else:
        next_fetch = schedule.next_after(stored.last_fetched)
        should_fetch = current >= next_fetch

    base = Resolution(
        outcome=Outcome.SERVED_CACHED,
        url=url,
        cron=cron,
        key=key,
        now=current,
        last_fetched=stored.last_fetched,
        next_fetch=next_fetch,
    )

    if not should_fetch:
        if stored.cache is not None:
            bound.info("feed_cache_hit", next_fetch=next_fetch)
            return replace(base, outcome=Outcome.SERVED_CACHED, body=stored.cache)
        # Not due but nothing to serve: the record and schedule disagree
        bound.warning("feed_no_cache_anomaly", last_fetched=stored.last_fetched)
        return replace(base, outcome=Outcome.NO_CACHE_AVAILABLE)

    bound.info("feed_fetch_due", first_fetch=stored.last_fetched is None)
    try:
        body = await _fetch(fetcher, url, fetch_timeout)
    except Exception as exc:
        message = str(exc) or type(exc).__name__
        failure = bound.bind(error=message)
        if isinstance(exc, LazyFeedError):
            failure = failure.bind(error_code=exc.code, recoverable=exc.recoverable)
        if stored.cache is not None:
            failure.warning("feed_served_stale")
            return replace(
                base, outcome=Outcome.SERVED_STALE, body=stored.cache, fetch_error=message
            )
        failure.warning("feed_fetch_failed")
        return replace(base, outcome=Outcome.FETCH_FAILED_NO_CACHE, fetch_error=message)

    record = CacheRecord(last_fetched=current, cache=body)
    try:
        await store.put(key, record.to_json_dict())
    except Exception:
        bound.warning("store_write_failed", exc_info=True)

    outcome = Outcome.FETCHED_FRESH if stored.last_fetched is None else Outcome.REFETCHED_FRESH
    bound.info("feed_fetched", outcome=outcome, content_length=len(body))
    return replace(base, outcome=outcome, body=body)

