from __future__ import annotations

from lazyfeed.models.cache import CacheRecord, format_instant

__all__ = [
    # cache
    "CacheRecord",
    "format_instant",
]
