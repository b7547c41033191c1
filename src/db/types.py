from __future__ import annotations

import datetime as dt
from decimal import Decimal

from sqlalchemy.types import DateTime as _DateTime
from sqlalchemy.types import String, TypeDecorator

from src.utils.time import UTC


class UTCDateTime(TypeDecorator):
    """
    Timestamps go in as UTC and come out tz-aware UTC.

    Naive values are assumed to already be UTC. Microseconds are preserved, so two rows
    written from the same instant compare equal after a round trip.
    """

    impl = _DateTime
    cache_ok = True

    def process_bind_param(self, value: dt.datetime | None, dialect):
        if value is None:
            return None
        v = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return v.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(self, value: dt.datetime | None, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)


class Money(TypeDecorator):
    """
    Exact Decimal column stored as its canonical string.

    SQLite has no native decimal type; going through REAL would make metric results
    depend on float rounding.
    """

    impl = String(48)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        d = value if isinstance(value, Decimal) else Decimal(str(value))
        return format(d, "f")

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return Decimal(str(value))
