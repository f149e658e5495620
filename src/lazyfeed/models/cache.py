from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator


def format_instant(value: datetime) -> str:
    """Render a UTC instant as ``2025-01-01T10:00:00.000Z``."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=UTC)
    return value.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class CacheRecord(BaseModel):
    """Stored state for one (feed URL, cron expression) pair.

    Serialised with the camelCase keys ``lastFetched`` and ``cache``. A
    successful fetch always writes both fields as one value.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    last_fetched: datetime | None = Field(default=None, alias="lastFetched")
    cache: str | None = None  # Raw feed body, opaque

    @field_validator("last_fetched")
    @classmethod
    def ensure_utc(cls, v: datetime | None) -> datetime | None:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v

    @field_serializer("last_fetched")
    def serialize_last_fetched(self, v: datetime | None) -> str | None:
        return format_instant(v) if v is not None else None

    def to_json_dict(self) -> dict:
        """Return the JSON-compatible dict written to the store."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
