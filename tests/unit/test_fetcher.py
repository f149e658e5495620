"""Unit tests for lazyfeed.fetcher."""

from __future__ import annotations

import httpx
import pytest
import respx

from lazyfeed.authorizer import AllowPolicy
from lazyfeed.config import FetcherSettings
from lazyfeed.errors import ErrorCode, LazyFeedError
from lazyfeed.fetcher import Fetcher, build_http_client

FEED = "https://example.com/feed.xml"
RESTRICTED = AllowPolicy.from_setting("*.example.com")

# ---------------------------------------------------------------------------
# build_http_client
# ---------------------------------------------------------------------------


class TestBuildHttpClient:
    async def test_client_configuration(self) -> None:
        settings = FetcherSettings(timeout_seconds=5.0, user_agent="lazyfeed/test")
        async with build_http_client(settings) as client:
            assert isinstance(client, httpx.AsyncClient)
            # follow_redirects is False (we handle redirects manually)
            assert client.follow_redirects is False
            assert client.timeout.read == 5.0
            assert client.headers["User-Agent"] == "lazyfeed/test"


# ---------------------------------------------------------------------------
# Fetcher
# ---------------------------------------------------------------------------


class TestFetcher:
    async def test_successful_fetch(self) -> None:
        with respx.mock:
            respx.get(FEED).mock(return_value=httpx.Response(200, text="<rss>ok</rss>"))
            async with httpx.AsyncClient() as client:
                result = await Fetcher(client).fetch(FEED)
                assert result == "<rss>ok</rss>"

    async def test_non_2xx_raises_error(self) -> None:
        with respx.mock:
            respx.get(FEED).mock(return_value=httpx.Response(500))
            async with httpx.AsyncClient() as client:
                with pytest.raises(LazyFeedError) as exc_info:
                    await Fetcher(client).fetch(FEED)
                assert exc_info.value.code == ErrorCode.UPSTREAM_STATUS
                assert exc_info.value.message == "fetch failed with status 500"
                assert exc_info.value.recoverable is True

    async def test_404_raises_error(self) -> None:
        with respx.mock:
            respx.get(FEED).mock(return_value=httpx.Response(404))
            async with httpx.AsyncClient() as client:
                with pytest.raises(LazyFeedError) as exc_info:
                    await Fetcher(client).fetch(FEED)
                assert exc_info.value.message == "fetch failed with status 404"

    async def test_network_error_raises_error(self) -> None:
        with respx.mock:
            respx.get(FEED).mock(side_effect=httpx.ConnectError("Connection refused"))
            async with httpx.AsyncClient() as client:
                with pytest.raises(LazyFeedError) as exc_info:
                    await Fetcher(client).fetch(FEED)
                assert exc_info.value.code == ErrorCode.UPSTREAM_UNREACHABLE
                assert "Connection refused" in exc_info.value.message

    async def test_timeout_raises_error(self) -> None:
        with respx.mock:
            respx.get(FEED).mock(side_effect=httpx.ReadTimeout("read timed out"))
            async with httpx.AsyncClient() as client:
                with pytest.raises(LazyFeedError) as exc_info:
                    await Fetcher(client).fetch(FEED)
                assert exc_info.value.code == ErrorCode.UPSTREAM_TIMEOUT

    async def test_redirect_followed(self) -> None:
        with respx.mock:
            respx.get("https://example.com/old").mock(
                return_value=httpx.Response(301, headers={"location": "https://example.com/new"})
            )
            respx.get("https://example.com/new").mock(
                return_value=httpx.Response(200, text="Redirected content")
            )
            async with httpx.AsyncClient() as client:
                result = await Fetcher(client, RESTRICTED).fetch("https://example.com/old")
                assert result == "Redirected content"

    async def test_relative_redirect_resolved(self) -> None:
        with respx.mock:
            respx.get("https://example.com/old").mock(
                return_value=httpx.Response(302, headers={"location": "/new-path"})
            )
            respx.get("https://example.com/new-path").mock(
                return_value=httpx.Response(200, text="Relative redirect content")
            )
            async with httpx.AsyncClient() as client:
                result = await Fetcher(client).fetch("https://example.com/old")
                assert result == "Relative redirect content"

    async def test_redirect_to_disallowed_domain(self) -> None:
        with respx.mock:
            respx.get("https://example.com/redirect").mock(
                return_value=httpx.Response(301, headers={"location": "https://evil.com/steal"})
            )
            async with httpx.AsyncClient() as client:
                with pytest.raises(LazyFeedError) as exc_info:
                    await Fetcher(client, RESTRICTED).fetch("https://example.com/redirect")
                assert exc_info.value.code == ErrorCode.URL_NOT_ALLOWED

    async def test_unrestricted_policy_follows_any_redirect(self) -> None:
        with respx.mock:
            respx.get("https://example.com/moved").mock(
                return_value=httpx.Response(301, headers={"location": "https://cdn.test/feed"})
            )
            respx.get("https://cdn.test/feed").mock(return_value=httpx.Response(200, text="cdn"))
            async with httpx.AsyncClient() as client:
                assert await Fetcher(client).fetch("https://example.com/moved") == "cdn"

    async def test_too_many_redirects(self) -> None:
        with respx.mock:
            # 4 redirects (max is 3)
            for i in range(4):
                respx.get(f"https://example.com/r{i}").mock(
                    return_value=httpx.Response(
                        301, headers={"location": f"https://example.com/r{i + 1}"}
                    )
                )
            respx.get("https://example.com/r4").mock(return_value=httpx.Response(200, text="Final"))
            async with httpx.AsyncClient() as client:
                with pytest.raises(LazyFeedError) as exc_info:
                    await Fetcher(client, max_redirects=3).fetch("https://example.com/r0")
                assert exc_info.value.code == ErrorCode.TOO_MANY_REDIRECTS
