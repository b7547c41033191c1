from __future__ import annotations

import datetime as dt
from typing import Any, Iterator

UTC = dt.timezone.utc


def utcnow() -> dt.datetime:
    return dt.datetime.now(UTC)


def ensure_utc(value: dt.datetime | dt.date) -> dt.datetime:
    """Naive datetimes and bare dates are taken as UTC."""
    if not isinstance(value, dt.datetime):
        return dt.datetime(value.year, value.month, value.day, tzinfo=UTC)
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_datetime(value: Any) -> dt.datetime | None:
    if value is None:
        return None
    if isinstance(value, (dt.datetime, dt.date)):
        return ensure_utc(value)
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        # Support "Z" suffix.
        s = s.replace("Z", "+00:00")
        try:
            return ensure_utc(dt.datetime.fromisoformat(s))
        except ValueError:
            return None
    return None


def month_start(d: dt.datetime | dt.date) -> dt.datetime:
    return dt.datetime(d.year, d.month, 1, tzinfo=UTC)


def next_month_start(d: dt.datetime | dt.date) -> dt.datetime:
    if d.month == 12:
        return dt.datetime(d.year + 1, 1, 1, tzinfo=UTC)
    return dt.datetime(d.year, d.month + 1, 1, tzinfo=UTC)


def month_end(d: dt.datetime | dt.date) -> dt.datetime:
    """Last representable instant of the month containing `d`."""
    return next_month_start(d) - dt.timedelta(microseconds=1)


def iter_months(start: dt.datetime | dt.date, end: dt.datetime | dt.date) -> Iterator[dt.datetime]:
    """Month starts from the month of `start` through the month of `end`, inclusive."""
    cur = month_start(start)
    last = month_start(end)
    while cur <= last:
        yield cur
        cur = next_month_start(cur)


def same_month(a: dt.datetime | dt.date, b: dt.datetime | dt.date) -> bool:
    return a.year == b.year and a.month == b.month


def month_key(d: dt.datetime | dt.date) -> str:
    """Provider price-map key, "YYYY-MM"."""
    return f"{d.year:04d}-{d.month:02d}"


def month_label(d: dt.datetime | dt.date) -> str:
    """Display key, "MM/YYYY"."""
    return f"{d.month:02d}/{d.year:04d}"


def parse_month_label(label: str) -> dt.datetime:
    month_s, year_s = label.split("/", 1)
    return dt.datetime(int(year_s), int(month_s), 1, tzinfo=UTC)
