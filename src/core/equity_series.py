from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from market_data.fx import FxConverter
from market_data.gateway import MarketDataGateway
from src.core.metrics import weighted_average_buy_price
from src.core.positions import PositionTimeline
from src.utils.money import ZERO, round2
from src.utils.time import (
    ensure_utc,
    iter_months,
    month_end,
    month_key,
    month_label,
    month_start,
    parse_month_label,
    same_month,
    utcnow,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EquityPoint:
    month: str  # "MM/YYYY"
    value: Decimal
    dividends: Decimal
    invested: Decimal

    def as_json(self) -> dict[str, Any]:
        return {
            "month": self.month,
            "value": float(self.value),
            "dividends": float(self.dividends),
            "invested": float(self.invested),
        }


@dataclass(frozen=True)
class PortfolioPoint:
    month: str  # "MM/YYYY"
    value: Decimal
    invested: Decimal

    def as_json(self) -> dict[str, Any]:
        return {"month": self.month, "value": float(self.value), "invested": float(self.invested)}


def monthly_equity_series(
    gateway: MarketDataGateway,
    symbol: str,
    transactions: Iterable[Any],
    dividends: Iterable[Any],
    *,
    stop_when_zero: bool = False,
    now: dt.datetime | None = None,
) -> list[EquityPoint]:
    """
    Month-by-month market value of one holding, from the month of its first transaction
    through the current month.

    Shares are taken at the last instant of each month ("now" for the current month) and
    priced with that month's close; the current month falls back to a live quote. Months
    with no shares are skipped, or end the series when `stop_when_zero` is set and the
    position was open earlier. Months without a resolvable price are left out.
    """
    timeline = PositionTimeline(transactions)
    if not len(timeline):
        return []

    end = ensure_utc(now) if now is not None else utcnow()
    start = month_start(timeline.first_date)
    if start > end:
        return []

    divs = [(ensure_utc(d.date), Decimal(d.amount)) for d in dividends]
    closes = gateway.get_monthly_closes(symbol, start.date(), end.date())

    out: list[EquityPoint] = []
    had_position = False
    for m in iter_months(start, end):
        current = same_month(m, end)
        at = end if current else month_end(m)
        shares = timeline.shares_at(at)
        if shares <= 0:
            if stop_when_zero and had_position:
                break
            continue
        had_position = True

        price = closes.get(month_key(m))
        if price is None and current:
            price = gateway.get_current_price(symbol)
        if price is None:
            logger.debug("No close for %s in %s; month skipped", symbol, month_key(m))
            continue

        month_divs = sum((amt for when, amt in divs if m <= when <= at), ZERO)
        avg = weighted_average_buy_price(timeline.transactions, at)
        out.append(
            EquityPoint(
                month=month_label(m),
                value=round2(Decimal(price) * shares),
                dividends=round2(month_divs),
                invested=round2(shares * avg),
            )
        )
    return out


def aggregate_portfolio_series(
    series_by_investment: Iterable[tuple[str, list[EquityPoint]]],
    display_currency: str,
    fx: FxConverter,
    *,
    start: dt.datetime | dt.date | None = None,
    end: dt.datetime | dt.date | None = None,
) -> list[PortfolioPoint]:
    """
    Sum per-investment series into one portfolio curve in `display_currency`.

    Values are bucketed per month by the investment's currency; foreign buckets are converted
    at that month's FX close. A month whose conversion has no rate is dropped rather than
    reported with a partial total.
    """
    lo = ensure_utc(start) if start is not None else None
    hi = ensure_utc(end) if end is not None else None
    target = display_currency.upper()

    buckets: dict[str, dict[str, list[Decimal]]] = {}
    for currency, series in series_by_investment:
        ccy = (currency or target).upper()
        for p in series:
            month_date = parse_month_label(p.month)
            if lo is not None and month_date < lo:
                continue
            if hi is not None and month_date > hi:
                continue
            slot = buckets.setdefault(p.month, {}).setdefault(ccy, [ZERO, ZERO])
            slot[0] += p.value
            slot[1] += p.invested

    out: list[PortfolioPoint] = []
    for month in sorted(buckets, key=parse_month_label):
        month_date = parse_month_label(month)
        value = ZERO
        invested = ZERO
        complete = True
        for ccy, (v, inv) in buckets[month].items():
            if ccy == target:
                value += v
                invested += inv
                continue
            if v > 0:
                converted = fx.convert(v, ccy, target, month_date)
                if converted is None:
                    complete = False
                    break
                value += converted
            if inv > 0:
                converted = fx.convert(inv, ccy, target, month_date)
                if converted is None:
                    complete = False
                    break
                invested += converted
        if not complete:
            logger.warning("Dropping %s from portfolio series: no %s FX rate", month, target)
            continue
        out.append(PortfolioPoint(month=month, value=round2(value), invested=round2(invested)))
    return out
