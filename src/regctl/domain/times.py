"""Time sentinels and helpers shared by every lifecycle computation.

Deletion is modelled as a comparable sentinel on a single field rather than a
nullable flag: a live resource has ``deletion_time == END_OF_TIME``. All
instants are timezone-aware UTC so comparisons are total.

Storage uses fixed-width ISO strings (see :func:`to_iso`) which sort
lexicographically in time order.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

START_OF_TIME = datetime(1970, 1, 1, tzinfo=UTC)
END_OF_TIME = datetime(9999, 12, 31, 23, 59, 59, 999999, tzinfo=UTC)

_ISO_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime.

    Naive datetimes are rejected: an implicit local clock is exactly what
    the projection layer must never depend on.
    """
    if value.tzinfo is None:
        msg = f"Naive datetime not allowed: {value!r}"
        raise ValueError(msg)
    return value.astimezone(UTC)


def to_iso(value: datetime) -> str:
    """Fixed-width UTC ISO string (``2000-06-06T22:00:00.000000Z``)."""
    return ensure_utc(value).strftime(_ISO_FORMAT)


def from_iso(raw: str) -> datetime:
    """Parse an ISO 8601 string into an aware UTC datetime."""
    if raw.endswith("Z"):
        raw = raw[:-1] + "+00:00"
    parsed = datetime.fromisoformat(raw)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def plus(instant: datetime, delta: timedelta) -> datetime:
    """Add *delta* to *instant*, saturating at the sentinels."""
    if instant >= END_OF_TIME:
        return END_OF_TIME
    try:
        result = instant + delta
    except OverflowError:
        return END_OF_TIME if delta > timedelta(0) else START_OF_TIME
    return min(max(result, START_OF_TIME), END_OF_TIME)


def plus_years(instant: datetime, years: int) -> datetime:
    """Add calendar years, clamping Feb 29 to Feb 28 where needed."""
    if instant >= END_OF_TIME:
        return END_OF_TIME
    target_year = instant.year + years
    if target_year > END_OF_TIME.year:
        return END_OF_TIME
    try:
        return instant.replace(year=target_year)
    except ValueError:
        return instant.replace(year=target_year, day=28)


def earliest(first: datetime, second: datetime) -> datetime:
    return first if first <= second else second
