"""UTC time helpers and the injectable clock.

Every timestamp the engine stores or compares is tz-aware UTC. Components take
a `Clock` so tests can pin and advance time.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol

UTC = timezone.utc


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    def now(self) -> datetime:
        return utc_now()


def utc_now() -> datetime:
    return datetime.now(UTC)


def coerce_utc(value: datetime, *, assume_naive_is_utc: bool = True) -> datetime:
    """Return `value` as tz-aware UTC.

    Postgres drivers may hand back naive timestamps; those are read as UTC
    unless `assume_naive_is_utc` is False, in which case they are rejected.
    """
    if value.tzinfo is None or value.utcoffset() is None:
        if not assume_naive_is_utc:
            raise ValueError(f"Naive datetime not allowed here: {value.isoformat()}")
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def isoformat_z(value: datetime) -> str:
    """`2026-01-01T09:00:00Z` style rendering used by the CLI."""
    return coerce_utc(value).isoformat().replace("+00:00", "Z")


def parse_iso8601(value: str) -> datetime:
    """Parse operator-supplied timestamps. Accepts a `Z` suffix; naive means UTC."""
    text = value.strip()
    if text[-1:] in ("Z", "z"):
        text = text[:-1] + "+00:00"
    return coerce_utc(datetime.fromisoformat(text))


def millis(value: int | float) -> timedelta:
    return timedelta(milliseconds=value)
