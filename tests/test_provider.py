from __future__ import annotations

import datetime as dt
import sys
import types
from decimal import Decimal

import pytest

pd = pytest.importorskip("pandas")

from market_data.exceptions import DataNotFoundError
from market_data.provider import YahooFinanceProvider
from src.utils.time import UTC


class _Ticker:
    instances: list["_Ticker"] = []

    def __init__(self, symbol):
        self.symbol = symbol
        self.info = {"regularMarketPrice": 187.5, "currency": "USD"}
        self.dividends = pd.Series(
            [0.24, 0.25, 0.25],
            index=pd.to_datetime(["2023-11-10", "2024-02-09", "2024-05-10"]).tz_localize("America/New_York"),
        )
        self.history_calls = []
        _Ticker.instances.append(self)

    def history(self, start, end, interval, auto_adjust, actions):
        self.history_calls.append((start, end, interval))
        idx = pd.to_datetime(["2024-01-01", "2024-02-01", "2024-03-01"])
        return pd.DataFrame({"Open": [1.0, 2.0, 3.0], "Close": [180.0, float("nan"), 171.25]}, index=idx)


@pytest.fixture()
def fake_yf(monkeypatch):
    _Ticker.instances = []
    fake = types.SimpleNamespace(Ticker=_Ticker)
    monkeypatch.setitem(sys.modules, "yfinance", fake)
    return fake


def test_quote_uses_regular_market_price(fake_yf):
    q = YahooFinanceProvider().quote("brk.b")
    assert q.price == Decimal("187.5")
    assert q.currency == "USD"
    assert _Ticker.instances[-1].symbol == "BRK-B"


def test_quote_without_price_is_none(fake_yf, monkeypatch):
    monkeypatch.setattr(_Ticker, "__init__", lambda self, symbol: setattr(self, "info", {}))
    assert YahooFinanceProvider().quote("AAPL").price is None


def test_history_returns_clean_monthly_closes(fake_yf):
    points = YahooFinanceProvider().history("AAPL", dt.date(2024, 1, 1), dt.date(2024, 3, 31))
    assert [(p.date, p.close) for p in points] == [
        (dt.date(2024, 1, 1), Decimal("180.0")),
        (dt.date(2024, 3, 1), Decimal("171.25")),
    ]
    # End date is inclusive.
    assert _Ticker.instances[-1].history_calls == [("2024-01-01", "2024-04-01", "1mo")]


def test_empty_history_raises_not_found(fake_yf, monkeypatch):
    monkeypatch.setattr(_Ticker, "history", lambda self, **kw: pd.DataFrame())
    with pytest.raises(DataNotFoundError):
        YahooFinanceProvider().history("AAPL", dt.date(2024, 1, 1), dt.date(2024, 3, 31))


def test_dividends_filtered_to_window_in_utc(fake_yf):
    events = YahooFinanceProvider().corporate_actions(
        "AAPL", dt.datetime(2024, 1, 1, tzinfo=UTC), dt.datetime(2024, 12, 31, tzinfo=UTC)
    )
    assert [e.date for e in events] == [
        dt.datetime(2024, 2, 9, 5, 0, tzinfo=UTC),
        dt.datetime(2024, 5, 10, 4, 0, tzinfo=UTC),
    ]
    assert [e.amount for e in events] == [Decimal("0.25"), Decimal("0.25")]
    assert all(e.date.tzinfo is not None for e in events)


def test_only_dividends_are_supported(fake_yf):
    with pytest.raises(ValueError):
        YahooFinanceProvider().corporate_actions(
            "AAPL", dt.datetime(2024, 1, 1, tzinfo=UTC), dt.datetime(2024, 2, 1, tzinfo=UTC), kind="split"
        )
