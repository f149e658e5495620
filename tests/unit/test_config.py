"""Unit tests for configuration defaults and environment overrides."""

from __future__ import annotations

import platformdirs
import pytest

from lazyfeed.authorizer import AllowPolicy
from lazyfeed.config import _DEFAULT_DATA_DIR, _DEFAULT_DB_PATH, Settings, StoreSettings


class TestPlatformDefaults:
    """Verify config defaults use platformdirs instead of hardcoded Unix paths."""

    def test_default_data_dir_matches_platformdirs(self) -> None:
        expected = platformdirs.user_data_dir("lazyfeed")
        assert expected == _DEFAULT_DATA_DIR

    def test_default_db_path_under_data_dir(self) -> None:
        assert _DEFAULT_DB_PATH.startswith(_DEFAULT_DATA_DIR)
        assert _DEFAULT_DB_PATH.endswith("store.db")

    def test_store_settings_uses_platform_default(self) -> None:
        assert StoreSettings().db_path == _DEFAULT_DB_PATH


class TestEnvironmentOverrides:
    def test_allowed_domains_default_is_unrestricted(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("LAZYFEED__FEEDS__ALLOWED_DOMAINS", raising=False)
        settings = Settings()
        assert settings.feeds.allowed_domains is None
        assert AllowPolicy.from_setting(settings.feeds.allowed_domains).unrestricted

    def test_allowed_domains_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LAZYFEED__FEEDS__ALLOWED_DOMAINS", "*.example.com, test.com")
        settings = Settings()
        policy = AllowPolicy.from_setting(settings.feeds.allowed_domains)
        assert policy.patterns == ("*.example.com", "test.com")

    def test_nested_port_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LAZYFEED__SERVER__PORT", "9090")
        assert Settings().server.port == 9090

    def test_constructor_args_win(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("LAZYFEED__FETCHER__TIMEOUT_SECONDS", "3")
        settings = Settings(fetcher={"timeout_seconds": 7.5})
        assert settings.fetcher.timeout_seconds == 7.5
