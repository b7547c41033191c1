from __future__ import annotations

import bisect
import datetime as dt
from decimal import Decimal
from typing import Any, Iterable, Sequence

from src.utils.time import ensure_utc

ZERO = Decimal("0")


def signed_quantity(txn: Any) -> Decimal:
    """+quantity for BUY, -quantity for SELL."""
    qty = Decimal(txn.quantity)
    return qty if str(txn.type).upper() == "BUY" else -qty


def sort_transactions(transactions: Iterable[Any]) -> list[Any]:
    """Ascending by date; ties keep insertion order via id (None ids sort last)."""

    def _key(t: Any) -> tuple[dt.datetime, int, int]:
        tid = getattr(t, "id", None)
        return (ensure_utc(t.date), 0 if tid is not None else 1, int(tid or 0))

    return sorted(transactions, key=_key)


def shares_at_date(transactions: Iterable[Any], as_of: dt.datetime | dt.date) -> Decimal:
    """
    Shares held at `as_of` (inclusive): Σ BUY.quantity − Σ SELL.quantity over transactions
    dated on or before `as_of`.

    Input order does not matter. A negative result means the history itself is inconsistent;
    it is returned as-is.
    """
    cutoff = ensure_utc(as_of)
    total = ZERO
    for t in transactions:
        if ensure_utc(t.date) <= cutoff:
            total += signed_quantity(t)
    return total


class PositionTimeline:
    """
    Repeated point-in-time share queries over one transaction history.

    Sorts once and keeps running totals, so each `shares_at` is a binary search.
    """

    def __init__(self, transactions: Iterable[Any]):
        ordered = sort_transactions(transactions)
        self.transactions: Sequence[Any] = ordered
        self._dates: list[dt.datetime] = [ensure_utc(t.date) for t in ordered]
        self._running: list[Decimal] = []
        total = ZERO
        for t in ordered:
            total += signed_quantity(t)
            self._running.append(total)

    def __len__(self) -> int:
        return len(self._dates)

    @property
    def first_date(self) -> dt.datetime | None:
        return self._dates[0] if self._dates else None

    @property
    def last_date(self) -> dt.datetime | None:
        return self._dates[-1] if self._dates else None

    def shares_at(self, as_of: dt.datetime | dt.date) -> Decimal:
        i = bisect.bisect_right(self._dates, ensure_utc(as_of))
        return self._running[i - 1] if i else ZERO
