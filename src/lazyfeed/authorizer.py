"""Origin authorization for upstream feed URLs.

The allow-list comes from configuration and is either unrestricted (unset or
the literal ``"unlimited"``) or a comma-separated list of exact hostnames and
``*.example.com`` wildcards. Host comparisons go through ``safe_compare`` so
response timing does not reveal how much of a pattern a hostname matched.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import urlsplit

UNLIMITED = "unlimited"


class Decision(StrEnum):
    ALLOW = "allow"
    DENY = "deny"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class Authorization:
    decision: Decision
    hostname: str | None = None  # Set whenever the URL was parsed

    @property
    def allowed(self) -> bool:
        return self.decision is Decision.ALLOW


@dataclass(frozen=True)
class AllowPolicy:
    """Immutable allow-list built once from configuration."""

    unrestricted: bool
    patterns: tuple[str, ...] = ()

    @classmethod
    def from_setting(cls, value: str | None) -> AllowPolicy:
        if value is None or value == UNLIMITED:
            return cls(unrestricted=True)
        patterns = tuple(
            pattern
            for pattern in (part.strip().lower() for part in value.split(","))
            if pattern
        )
        return cls(unrestricted=False, patterns=patterns)


def safe_compare(a: str, b: str) -> bool:
    """Compare two strings doing the same work for every input of a given length.

    Walks up to the longer length, folding the length mismatch and every
    per-position code point difference into one accumulator.
    """
    max_length = max(len(a), len(b))
    result = len(a) ^ len(b)
    for i in range(max_length):
        a_char = ord(a[i]) if i < len(a) else 0
        b_char = ord(b[i]) if i < len(b) else 0
        result |= a_char ^ b_char
    return result == 0


def _matches(hostname: str, pattern: str) -> bool:
    if pattern.startswith("*."):
        base_domain = pattern[2:]
        suffix = "." + base_domain
        return safe_compare(hostname, base_domain) or (
            len(hostname) > len(suffix) and safe_compare(hostname[-len(suffix) :], suffix)
        )
    return safe_compare(hostname, pattern)


def _parse_hostname(url: str) -> str | None:
    """Return the lowercased hostname, or None if *url* is not an absolute URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return None
    if not parts.scheme or not parts.netloc:
        return None
    return (parts.hostname or "").lower()


def authorize(url: str, policy: AllowPolicy) -> Authorization:
    """Decide whether *url* may be fetched under *policy*.

    An unrestricted policy allows without looking at the URL at all.
    """
    if policy.unrestricted:
        return Authorization(Decision.ALLOW)

    hostname = _parse_hostname(url)
    if hostname is None:
        return Authorization(Decision.MALFORMED)

    if not policy.patterns:
        return Authorization(Decision.DENY, hostname)

    # Evaluate every pattern; no early exit on the first match
    allowed = False
    for pattern in policy.patterns:
        allowed = _matches(hostname, pattern) or allowed

    return Authorization(Decision.ALLOW if allowed else Decision.DENY, hostname)
