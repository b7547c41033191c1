from __future__ import annotations

import datetime as dt
from decimal import Decimal

from market_data.fx import FxConverter
from market_data.provider import PricePoint


def test_same_currency_is_identity(gateway, provider):
    fx = FxConverter(gateway)
    assert fx.convert(Decimal("12.5"), "usd", "USD") == Decimal("12.5")
    assert provider.calls == []


def test_live_conversion_uses_pair_quote(gateway, provider):
    provider.prices["USDBRL=X"] = Decimal("5.5")
    fx = FxConverter(gateway)
    assert fx.convert(Decimal("100"), "USD", "BRL") == Decimal("550.0")
    assert provider.calls_for("quote") == [("quote", "USDBRL=X")]


def test_historical_conversion_uses_month_close(gateway, provider):
    provider.histories["BRLUSD=X"] = [
        PricePoint(date=dt.date(2024, 2, 1), close=Decimal("0.20")),
        PricePoint(date=dt.date(2024, 3, 1), close=Decimal("0.25")),
    ]
    fx = FxConverter(gateway)
    assert fx.rate("BRL", "USD", dt.date(2024, 3, 15)) == Decimal("0.25")
    assert fx.convert(Decimal("400"), "BRL", "USD", dt.datetime(2024, 2, 1)) == Decimal("80.00")


def test_missing_rate_is_none(gateway):
    fx = FxConverter(gateway)
    assert fx.convert(Decimal("1"), "USD", "BRL", dt.date(2020, 1, 1)) is None
    assert fx.convert(Decimal("1"), "USD", "BRL") is None


def test_current_month_without_close_uses_live_quote(gateway, provider):
    provider.prices["USDBRL=X"] = Decimal("5")
    fx = FxConverter(gateway, today=lambda: dt.date(2024, 4, 30))

    assert fx.rate("USD", "BRL", dt.datetime(2024, 4, 2, tzinfo=dt.timezone.utc)) == Decimal("5")
    assert fx.rate("USD", "BRL", dt.date(2024, 3, 31)) is None
    assert provider.calls_for("quote") == [("quote", "USDBRL=X")]
