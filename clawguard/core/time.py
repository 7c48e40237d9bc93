"""clawguard.core.time

Timestamps are aware UTC everywhere: in session expiry, the lockdown record
and the audit log. Anything that needs a fake clock takes a `Clock`.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(tz=UTC)


def as_utc(dt: datetime) -> datetime:
    """Naive values are taken to be UTC already."""

    return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt.astimezone(UTC)


def parse_dt(value: str) -> datetime:
    """Parse ISO-8601 (`Z` suffix allowed). Raises ValueError on garbage."""

    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return as_utc(datetime.fromisoformat(text))


def isoformat(dt: datetime) -> str:
    return as_utc(dt).isoformat()
