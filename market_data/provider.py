from __future__ import annotations

import datetime as dt
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from market_data.exceptions import DataNotFoundError
from market_data.symbols import yahoo_symbol

logger = logging.getLogger(__name__)

UTC = dt.timezone.utc


@dataclass(frozen=True)
class Quote:
    symbol: str
    price: Decimal | None
    currency: str | None = None


@dataclass(frozen=True)
class PricePoint:
    date: dt.date
    close: Decimal


@dataclass(frozen=True)
class DividendEvent:
    """One provider-reported dividend: ex-date (tz-aware UTC) and raw per-share amount."""

    date: dt.datetime
    amount: Decimal


class MarketDataProvider(ABC):
    name = "provider"

    @abstractmethod
    def quote(self, symbol: str) -> Quote:
        raise NotImplementedError

    @abstractmethod
    def history(self, symbol: str, start: dt.date, end: dt.date, interval: str = "1mo") -> list[PricePoint]:
        raise NotImplementedError

    @abstractmethod
    def corporate_actions(
        self,
        symbol: str,
        start: dt.datetime,
        end: dt.datetime,
        kind: str = "dividend",
    ) -> list[DividendEvent]:
        raise NotImplementedError


def _to_decimal(value: Any) -> Decimal | None:
    if value is None:
        return None
    try:
        d = Decimal(str(value))
    except Exception:
        return None
    if not d.is_finite():
        return None
    return d


def _to_utc_datetime(ts: Any) -> dt.datetime:
    # pandas Timestamp or datetime; naive values are taken as UTC.
    if hasattr(ts, "to_pydatetime"):
        ts = ts.to_pydatetime()
    if isinstance(ts, dt.datetime):
        if ts.tzinfo is None:
            return ts.replace(tzinfo=UTC)
        return ts.astimezone(UTC)
    if isinstance(ts, dt.date):
        return dt.datetime(ts.year, ts.month, ts.day, tzinfo=UTC)
    raise TypeError(f"Unsupported timestamp: {ts!r}")


class YahooFinanceProvider(MarketDataProvider):
    name = "yfinance"

    def _ticker(self, symbol: str):
        try:
            import yfinance as yf  # type: ignore
        except Exception as e:  # pragma: no cover
            raise RuntimeError("yfinance is required for market data fetching.") from e
        return yf.Ticker(yahoo_symbol(symbol))

    def _normalize_column_name(self, col: Any) -> str:
        # yfinance can return MultiIndex columns (e.g. ("Close", "AAPL")) depending on version.
        if isinstance(col, tuple):
            parts = [str(p).strip() for p in col if p is not None and str(p).strip()]
            for p in parts:
                if p.lower() in {"open", "high", "low", "close", "adj close", "volume", "dividends", "stock splits"}:
                    return p.lower()
            return parts[0].lower() if parts else ""
        return str(col).strip().lower()

    def quote(self, symbol: str) -> Quote:
        tk = self._ticker(symbol)
        info = tk.info or {}
        price = _to_decimal(info.get("regularMarketPrice"))
        if price is None:
            logger.info("No regularMarketPrice for %s", symbol)
        return Quote(symbol=symbol, price=price, currency=info.get("currency"))

    def history(self, symbol: str, start: dt.date, end: dt.date, interval: str = "1mo") -> list[PricePoint]:
        """
        Closing prices for [start, end] (end inclusive) at the given interval.

        Monthly bars are stamped with the first day of the month; the close is the last
        close inside that month.
        """
        tk = self._ticker(symbol)
        df = tk.history(
            start=start.isoformat(),
            end=(end + dt.timedelta(days=1)).isoformat(),
            interval=interval,
            auto_adjust=False,
            actions=False,
        )
        if df is None or getattr(df, "empty", True):
            raise DataNotFoundError(f"No price history returned for {symbol}.")

        df = df.copy()
        df.columns = [self._normalize_column_name(c) for c in df.columns]
        if "close" not in df.columns:
            raise DataNotFoundError(f"{symbol}: missing close column.")

        points: list[PricePoint] = []
        for idx, close in df["close"].items():
            px = _to_decimal(close)
            if px is None or px <= 0:
                continue
            points.append(PricePoint(date=_to_utc_datetime(idx).date(), close=px))
        if not points:
            raise DataNotFoundError(f"No usable rows after cleaning for {symbol}.")
        points.sort(key=lambda p: p.date)
        return points

    def corporate_actions(
        self,
        symbol: str,
        start: dt.datetime,
        end: dt.datetime,
        kind: str = "dividend",
    ) -> list[DividendEvent]:
        if kind != "dividend":
            raise ValueError(f"Unsupported corporate action kind: {kind}")
        tk = self._ticker(symbol)
        series = tk.dividends
        if series is None or getattr(series, "empty", True):
            return []

        lo = _to_utc_datetime(start)
        hi = _to_utc_datetime(end)
        events: list[DividendEvent] = []
        for idx, amount in series.items():
            when = _to_utc_datetime(idx)
            if when < lo or when > hi:
                continue
            amt = _to_decimal(amount)
            if amt is None or amt <= 0:
                continue
            events.append(DividendEvent(date=when, amount=amt))
        events.sort(key=lambda e: e.date)
        return events
