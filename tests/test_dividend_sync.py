from __future__ import annotations

import datetime as dt
from decimal import Decimal

import pytest

from market_data.provider import DividendEvent
from src.core.dividend_sync import DividendSyncResult, sync_investment_dividends
from src.core.errors import NotFoundError
from src.core.settings import WithholdingPolicy
from src.db.models import Dividend, Investment, Transaction
from src.utils.time import UTC

NOW = dt.datetime(2024, 3, 1, tzinfo=UTC)
EX_DATE = dt.datetime(2024, 2, 9, tzinfo=UTC)


def _d(y, m, d):
    return dt.datetime(y, m, d, tzinfo=UTC)


def _investment(session, *, symbol="AAPL", currency="USD", txns=(("BUY", "20", _d(2024, 1, 2)),)):
    inv = Investment(
        user_id="u1",
        symbol=symbol,
        name=symbol,
        type="STOCK",
        currency=currency,
        current_price=Decimal("100"),
        shares=Decimal("0"),
    )
    session.add(inv)
    session.flush()
    for kind, qty, when in txns:
        session.add(Transaction(investment_id=inv.id, type=kind, quantity=Decimal(qty), price=Decimal("100"), date=when))
        inv.shares += Decimal(qty) if kind == "BUY" else -Decimal(qty)
    session.commit()
    return inv


def _dividends(session, inv_id):
    return session.query(Dividend).filter(Dividend.investment_id == inv_id).order_by(Dividend.date.asc()).all()


def test_creates_dividend_scaled_by_shares_with_withholding(store, session, gateway, provider):
    inv = _investment(session)
    provider.dividend_events["AAPL"] = [DividendEvent(date=EX_DATE, amount=Decimal("0.50"))]

    res = sync_investment_dividends(store, gateway, inv.id, now=NOW)

    assert (res.created, res.updated, res.deleted, res.errors) == (1, 0, 0, [])
    assert res.status == "SUCCESS"
    [div] = _dividends(session, inv.id)
    assert div.amount == Decimal("10")
    assert div.tax == Decimal("3")
    assert div.date == EX_DATE
    assert div.observation == "Auto-synced dividend for AAPL on 2024-02-09"


def test_second_run_is_a_no_op(store, session, gateway, provider):
    inv = _investment(session)
    provider.dividend_events["AAPL"] = [DividendEvent(date=EX_DATE, amount=Decimal("0.50"))]
    sync_investment_dividends(store, gateway, inv.id, now=NOW)

    res = sync_investment_dividends(store, gateway, inv.id, now=NOW)

    assert (res.created, res.updated, res.deleted, res.errors) == (0, 0, 0, [])
    assert len(_dividends(session, inv.id)) == 1


def test_window_starts_at_latest_stored_dividend(store, session, gateway, provider):
    inv = _investment(session)
    provider.dividend_events["AAPL"] = [DividendEvent(date=EX_DATE, amount=Decimal("0.50"))]
    sync_investment_dividends(store, gateway, inv.id, now=NOW)
    sync_investment_dividends(store, gateway, inv.id, now=NOW)

    starts = [c[2] for c in provider.calls_for("corporate_actions")]
    assert starts == [_d(2024, 1, 2), EX_DATE]


def test_changed_amount_updates_existing_row(store, session, gateway, provider):
    inv = _investment(session)
    provider.dividend_events["AAPL"] = [DividendEvent(date=EX_DATE, amount=Decimal("0.50"))]
    sync_investment_dividends(store, gateway, inv.id, now=NOW)

    provider.dividend_events["AAPL"] = [DividendEvent(date=EX_DATE, amount=Decimal("0.60"))]
    res = sync_investment_dividends(store, gateway, inv.id, now=NOW)

    assert (res.created, res.updated, res.deleted) == (0, 1, 0)
    [div] = _dividends(session, inv.id)
    assert div.amount == Decimal("12")
    assert div.tax == Decimal("3.6")


def test_event_without_shares_deletes_matching_row(store, session, gateway, provider):
    inv = _investment(session, txns=(("BUY", "20", _d(2024, 1, 2)), ("SELL", "20", _d(2024, 2, 1))))
    session.add(Dividend(investment_id=inv.id, amount=Decimal("10"), date=EX_DATE, tax=Decimal("3")))
    session.commit()
    provider.dividend_events["AAPL"] = [DividendEvent(date=EX_DATE, amount=Decimal("0.50"))]

    res = sync_investment_dividends(store, gateway, inv.id, now=NOW)

    assert (res.created, res.updated, res.deleted) == (0, 0, 1)
    assert _dividends(session, inv.id) == []


def test_event_without_shares_and_no_row_is_skipped(store, session, gateway, provider):
    inv = _investment(session, txns=(("BUY", "5", _d(2024, 1, 2)), ("SELL", "5", _d(2024, 2, 1))))
    provider.dividend_events["AAPL"] = [DividendEvent(date=EX_DATE, amount=Decimal("1"))]

    res = sync_investment_dividends(store, gateway, inv.id, now=NOW)

    assert (res.created, res.updated, res.deleted, res.errors) == (0, 0, 0, [])
    assert _dividends(session, inv.id) == []


def test_currency_outside_withholding_pays_no_tax(store, session, gateway, provider):
    inv = _investment(session, symbol="PETR4.SA", currency="BRL")
    provider.dividend_events["PETR4.SA"] = [DividendEvent(date=EX_DATE, amount=Decimal("1.234567891"))]

    sync_investment_dividends(store, gateway, inv.id, now=NOW)

    [div] = _dividends(session, inv.id)
    assert div.amount == Decimal("24.691358")
    assert div.tax == 0


def test_custom_withholding_policy(store, session, gateway, provider):
    inv = _investment(session)
    provider.dividend_events["AAPL"] = [DividendEvent(date=EX_DATE, amount=Decimal("0.50"))]
    policy = WithholdingPolicy(rate=Decimal("0.15"), currencies=frozenset({"USD", "BRL"}))

    sync_investment_dividends(store, gateway, inv.id, policy=policy, now=NOW)

    [div] = _dividends(session, inv.id)
    assert div.tax == Decimal("1.5")


def test_one_bad_event_does_not_abort_the_rest(store, session, gateway, provider):
    inv = _investment(session)
    provider.dividend_events["AAPL"] = [
        DividendEvent(date=_d(2024, 1, 20), amount=None),
        DividendEvent(date=EX_DATE, amount=Decimal("0.50")),
    ]

    res = sync_investment_dividends(store, gateway, inv.id, now=NOW)

    assert res.created == 1
    assert len(res.errors) == 1
    assert res.status == "PARTIAL"
    assert len(_dividends(session, inv.id)) == 1


def test_no_transactions_is_a_no_op(store, session, gateway, provider):
    inv = _investment(session, txns=())
    res = sync_investment_dividends(store, gateway, inv.id, now=NOW)
    assert res.as_json() == {"status": "SUCCESS", "created": 0, "updated": 0, "deleted": 0, "errors": []}
    assert provider.calls == []


def test_provider_failure_yields_empty_result(store, session, gateway, provider):
    inv = _investment(session)
    provider.failures["corporate_actions"] = [RuntimeError("down")] * 3
    res = sync_investment_dividends(store, gateway, inv.id, now=NOW)
    assert (res.created, res.updated, res.deleted, res.errors) == (0, 0, 0, [])


def test_missing_investment(store, gateway):
    with pytest.raises(NotFoundError):
        sync_investment_dividends(store, gateway, 999, now=NOW)


def test_status_values():
    assert DividendSyncResult().status == "SUCCESS"
    assert DividendSyncResult(created=1, errors=["x"]).status == "PARTIAL"
    assert DividendSyncResult(errors=["x"]).status == "ERROR"
