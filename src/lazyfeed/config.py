"""Configuration loading.

Settings are loaded in priority order (highest first):
  1. Environment variables  (LAZYFEED__FEEDS__ALLOWED_DOMAINS=*.example.com)
  2. lazyfeed.yaml          (searched in cwd, then platform config dir)
  3. Hardcoded defaults

The config file is optional; every field has a default.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Literal

import platformdirs
from pydantic import BaseModel, Field
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

from lazyfeed import __version__

_DEFAULT_DATA_DIR = platformdirs.user_data_dir("lazyfeed")
_DEFAULT_DB_PATH = str(Path(_DEFAULT_DATA_DIR) / "store.db")


def _find_config_file() -> str | None:
    """Return the path of the first lazyfeed.yaml found, or None."""
    candidates = [
        Path("lazyfeed.yaml"),
        Path(platformdirs.user_config_dir("lazyfeed")) / "lazyfeed.yaml",
    ]
    for path in candidates:
        if path.exists():
            return str(path)
    return None


class ServerSettings(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080


class FeedSettings(BaseModel):
    # None or "unlimited" allows every host; "" allows none.
    allowed_domains: str | None = None


class FetcherSettings(BaseModel):
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_redirects: int = Field(default=3, ge=0)
    user_agent: str = f"lazyfeed/{__version__}"


class StoreSettings(BaseModel):
    db_path: str = _DEFAULT_DB_PATH


class LoggingSettings(BaseModel):
    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "text"] = "json"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        # Double-underscore separates nesting: LAZYFEED__SERVER__PORT=9090
        env_prefix="LAZYFEED__",
        env_nested_delimiter="__",
        yaml_file=_find_config_file(),
        yaml_file_encoding="utf-8",
    )

    server: ServerSettings = ServerSettings()
    feeds: FeedSettings = FeedSettings()
    fetcher: FetcherSettings = FetcherSettings()
    store: StoreSettings = StoreSettings()
    logging: LoggingSettings = LoggingSettings()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
        **kwargs: Any,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (
            init_settings,  # Constructor args (highest priority)
            env_settings,  # Environment variables
            YamlConfigSettingsSource(settings_cls),  # YAML file
            # dotenv and file secrets intentionally excluded
        )
