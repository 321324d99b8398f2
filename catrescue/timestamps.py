"""Timestamp value type and the converters used at the persistence boundary.

Every timestamp inside the service is a timezone-aware UTC ``datetime``.
Stores see one of three wire shapes:

* ``{"seconds": int, "nanoseconds": int}`` pairs (document records),
* ISO-8601 strings (JSON responses, legacy records),
* integer epoch microseconds (sortable SQL columns).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)
_TICK = timedelta(microseconds=1)


def utcnow() -> datetime:
    return datetime.now(UTC)


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def advance(previous: datetime, now: datetime) -> datetime:
    """Return ``now`` unless it does not move past ``previous``; then step one tick."""
    now = ensure_utc(now)
    previous = ensure_utc(previous)
    if now > previous:
        return now
    return previous + _TICK


def to_epoch_us(value: datetime) -> int:
    delta = ensure_utc(value) - _EPOCH
    return (delta.days * 86400 + delta.seconds) * 1_000_000 + delta.microseconds


def from_epoch_us(value: int) -> datetime:
    return _EPOCH + timedelta(microseconds=int(value))


def to_store(value: datetime) -> dict[str, int]:
    micros = to_epoch_us(value)
    seconds, rem_us = divmod(micros, 1_000_000)
    return {"seconds": seconds, "nanoseconds": rem_us * 1000}


def to_iso(value: datetime) -> str:
    return ensure_utc(value).isoformat()


def from_store(value: Any) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, dict):
        seconds = value.get("seconds", value.get("_seconds"))
        nanos = value.get("nanoseconds", value.get("_nanoseconds", 0))
        if isinstance(seconds, bool) or not isinstance(seconds, int | float):
            raise ValueError(f"invalid timestamp record: {value!r}")
        return from_epoch_us(int(seconds) * 1_000_000 + int(nanos or 0) // 1000)
    if isinstance(value, str) and value.strip():
        raw = value.strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        return ensure_utc(datetime.fromisoformat(raw))
    raise ValueError(f"invalid timestamp value: {value!r}")
