from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from market_data.provider import PricePoint
from src.core.dashboard import DashboardService, get_date_range_for_period
from src.core.errors import ValidationFailure
from src.core.ledger import add_dividend, add_transaction, create_investment
from src.utils.time import UTC

NOW = dt.datetime(2024, 7, 15, 12, 0, tzinfo=UTC)


def _d(y, m, d):
    return dt.datetime(y, m, d, tzinfo=UTC)


def _create(store, gateway, symbol, currency, shares, price, date, current=None):
    inv = create_investment(
        store,
        gateway,
        "u1",
        {"symbol": symbol, "name": symbol, "currency": currency, "shares": shares, "buy_price": price, "date": date},
    )
    if current is not None:
        inv.current_price = Decimal(current)
        store.session.commit()
    return inv


@pytest.mark.parametrize(
    "period,start,end",
    [
        ("6-months", _d(2024, 2, 1), NOW),
        ("current-year", _d(2024, 1, 1), NOW),
        ("last-year", _d(2023, 1, 1), dt.datetime(2023, 12, 31, 23, 59, 59, tzinfo=UTC)),
        ("5-years", _d(2019, 7, 1), NOW),
        ("all-time", _d(1970, 1, 1), NOW),
    ],
)
def test_period_ranges(period, start, end):
    assert get_date_range_for_period(period, NOW) == (start, end)


def test_six_months_crosses_year_boundary():
    start, _ = get_date_range_for_period("6-months", _d(2024, 3, 10))
    assert start == _d(2023, 10, 1)


def test_invalid_period():
    with pytest.raises(ValidationFailure):
        get_date_range_for_period("forever", NOW)


def test_summary_single_currency(store, session, gateway):
    a = _create(store, gateway, "AAPL", "USD", "10", "100", "2024-01-02", current="150")
    add_transaction(store, gateway, a.id, {"type": "SELL", "quantity": "5", "price": "120", "date": "2024-03-01", "tax": "2"})
    add_dividend(store, a.id, {"amount": "10", "tax": "3", "date": "2024-04-01"})
    _create(store, gateway, "KO", "USD", "4", "50", "2024-01-02", current="40")

    summary = DashboardService(store, gateway).portfolio_summary("u1", "USD")

    # AAPL: 5 held * 150; invested 5/10 of 1000. KO: 4 * 40; invested 200.
    assert summary.total_value == Decimal("910.00")
    assert summary.total_invested == Decimal("700.00")
    assert summary.dividends == Decimal("7.00")
    assert summary.gain_loss == Decimal("315.00")
    assert summary.best.symbol == "AAPL"
    assert summary.unconverted == []


def test_summary_converts_foreign_investments(store, session, gateway, provider):
    _create(store, gateway, "AAPL", "USD", "1", "100", "2024-01-02", current="100")
    _create(store, gateway, "PETR4.SA", "BRL", "10", "40", "2024-01-02", current="50")
    provider.prices["BRLUSD=X"] = Decimal("0.2")

    summary = DashboardService(store, gateway).portfolio_summary("u1", "usd")

    assert summary.currency == "USD"
    assert summary.total_value == Decimal("200.00")
    assert summary.total_invested == Decimal("180.00")
    assert summary.best.symbol == "PETR4.SA"


def test_summary_reports_unconvertible_investments(store, session, gateway):
    _create(store, gateway, "AAPL", "USD", "1", "100", "2024-01-02")
    _create(store, gateway, "PETR4.SA", "BRL", "10", "40", "2024-01-02")

    summary = DashboardService(store, gateway).portfolio_summary("u1", "USD")

    assert summary.total_value == Decimal("100.00")
    assert summary.unconverted == ["PETR4.SA"]


def test_summary_without_investments(store, gateway):
    summary = DashboardService(store, gateway).portfolio_summary("nobody", "BRL")
    assert summary.as_json()["best_performing_investment"] == {"symbol": "N/A", "profit": 0.0, "profit_percentage": 0.0}
    assert summary.total_value == 0


def test_chart_aggregates_and_caches(store, session, gateway, provider, clock):
    _create(store, gateway, "AAPL", "USD", "10", "100", "2024-05-02")
    provider.histories["AAPL"] = [
        PricePoint(date=dt.date(2024, 5, 1), close=Decimal("110")),
        PricePoint(date=dt.date(2024, 6, 1), close=Decimal("120")),
        PricePoint(date=dt.date(2024, 7, 1), close=Decimal("130")),
    ]
    svc = DashboardService(store, gateway, cache_ttl_s=60, clock=clock)

    chart = svc.portfolio_chart("u1", "current-year", "USD", now=NOW)

    assert [(p.month, p.value, p.invested) for p in chart.values] == [
        ("05/2024", Decimal("1100.00"), Decimal("1000.00")),
        ("06/2024", Decimal("1200.00"), Decimal("1000.00")),
        ("07/2024", Decimal("1300.00"), Decimal("1000.00")),
    ]
    assert svc.portfolio_chart("u1", "current-year", "usd", now=NOW) is chart
    assert len(provider.calls_for("history")) == 1

    assert svc.invalidate_user("u1") == 1
    svc.portfolio_chart("u1", "last-year", "USD", now=NOW)
    assert svc.portfolio_chart("u1", "last-year", "USD", now=NOW).values == []


def test_chart_rejects_invalid_period(store, gateway):
    with pytest.raises(ValidationFailure):
        DashboardService(store, gateway).portfolio_chart("u1", "10-years")


def test_service_context_runs_chart_sweeper(store, gateway):
    with DashboardService(store, gateway, cache_ttl_s=60) as svc:
        assert svc.charts.sweeping
    assert not svc.charts.sweeping
