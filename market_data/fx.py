from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal
from typing import Callable

from market_data.gateway import MarketDataGateway, month_key
from market_data.symbols import fx_pair_symbol, normalize_currency

logger = logging.getLogger(__name__)


def _utc_today() -> dt.date:
    return dt.datetime.now(dt.timezone.utc).date()


def _month_bounds(d: dt.date) -> tuple[dt.date, dt.date]:
    first = dt.date(d.year, d.month, 1)
    nxt = dt.date(d.year + 1, 1, 1) if d.month == 12 else dt.date(d.year, d.month + 1, 1)
    return first, nxt - dt.timedelta(days=1)


class FxConverter:
    """
    Point-in-time currency conversion through Yahoo FX pairs ("USDBRL=X").

    `as_of=None` uses the live quote; otherwise the monthly close of the month containing
    `as_of`. Returns None when no rate is available; callers must not treat that as zero.
    """

    def __init__(self, gateway: MarketDataGateway, *, today: Callable[[], dt.date] | None = None):
        self.gateway = gateway
        self._today = today or _utc_today

    def rate(self, from_ccy: str, to_ccy: str, as_of: dt.date | dt.datetime | None = None) -> Decimal | None:
        src = normalize_currency(from_ccy)
        dst = normalize_currency(to_ccy)
        if src == dst:
            return Decimal("1")
        pair = fx_pair_symbol(src, dst)
        if as_of is None:
            return self.gateway.get_current_price(pair)

        d = as_of.date() if isinstance(as_of, dt.datetime) else as_of
        first, last = _month_bounds(d)
        closes = self.gateway.get_monthly_closes(pair, first, last)
        rate = closes.get(month_key(d))
        if rate is None and first <= self._today() <= last:
            rate = self.gateway.get_current_price(pair)
        return rate

    def convert(
        self,
        amount: Decimal,
        from_ccy: str,
        to_ccy: str,
        as_of: dt.date | dt.datetime | None = None,
    ) -> Decimal | None:
        r = self.rate(from_ccy, to_ccy, as_of)
        if r is None:
            logger.warning("No FX rate %s->%s as of %s", from_ccy, to_ccy, as_of or "now")
            return None
        return Decimal(amount) * r
