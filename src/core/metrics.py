from __future__ import annotations

import datetime as dt
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable

from src.core.errors import ValidationFailure
from src.utils.time import ensure_utc

ZERO = Decimal("0")
HUNDRED = Decimal("100")
ONE = Decimal("1")


@dataclass(frozen=True)
class InvestmentMetrics:
    avg_buy_price: Decimal
    total_invested: Decimal
    total_quantity_bought: Decimal
    shares: Decimal
    current_price: Decimal
    current_value: Decimal
    total_dividends: Decimal
    realized_gain_loss: Decimal
    unrealized_gain_loss: Decimal
    total_profit_loss: Decimal
    profit_loss_percentage: Decimal
    return_on_investment: Decimal

    def as_json(self) -> dict[str, Any]:
        return {
            "avg_buy_price": float(self.avg_buy_price),
            "total_invested": float(self.total_invested),
            "total_quantity_bought": float(self.total_quantity_bought),
            "shares": float(self.shares),
            "current_price": float(self.current_price),
            "current_value": float(self.current_value),
            "total_dividends": float(self.total_dividends),
            "realized_gain_loss": float(self.realized_gain_loss),
            "unrealized_gain_loss": float(self.unrealized_gain_loss),
            "total_profit_loss": float(self.total_profit_loss),
            "profit_loss_percentage": float(self.profit_loss_percentage),
            "return_on_investment": float(self.return_on_investment),
        }


def _dec(value: Any) -> Decimal:
    return ZERO if value is None else Decimal(value)


def _is_buy(txn: Any) -> bool:
    return str(txn.type).upper() == "BUY"


def validate_transactions(transactions: Iterable[Any]) -> list[Any]:
    out = list(transactions)
    for t in out:
        kind = str(getattr(t, "type", "")).upper()
        if kind not in {"BUY", "SELL"}:
            raise ValidationFailure(f"Unknown transaction type: {getattr(t, 'type', None)!r}")
        if t.quantity is None or Decimal(t.quantity) <= 0:
            raise ValidationFailure(f"Transaction quantity must be positive (got {t.quantity}).")
        if t.price is None or Decimal(t.price) < 0:
            raise ValidationFailure(f"Transaction price must be >= 0 (got {t.price}).")
        if getattr(t, "tax", None) is not None and Decimal(t.tax) < 0:
            raise ValidationFailure(f"Transaction tax must be >= 0 (got {t.tax}).")
        if getattr(t, "date", None) is None:
            raise ValidationFailure("Transaction date is required.")
    return out


def validate_dividends(dividends: Iterable[Any]) -> list[Any]:
    out = list(dividends)
    for d in out:
        if d.amount is None or Decimal(d.amount) < 0:
            raise ValidationFailure(f"Dividend amount must be >= 0 (got {d.amount}).")
        if getattr(d, "tax", None) is not None and Decimal(d.tax) < 0:
            raise ValidationFailure(f"Dividend tax must be >= 0 (got {d.tax}).")
    return out


def _buy_totals(transactions: Iterable[Any], as_of: dt.datetime | None = None) -> tuple[Decimal, Decimal]:
    cost = ZERO
    qty = ZERO
    cutoff = ensure_utc(as_of) if as_of is not None else None
    for t in transactions:
        if not _is_buy(t):
            continue
        if cutoff is not None and ensure_utc(t.date) > cutoff:
            continue
        q = Decimal(t.quantity)
        cost += q * Decimal(t.price) + _dec(t.tax)
        qty += q
    return cost, qty


def weighted_average_buy_price(transactions: Iterable[Any], as_of: dt.datetime | dt.date | None = None) -> Decimal:
    """Σ(q*price + fees) / Σ q over BUYs dated on or before `as_of` (all BUYs when None)."""
    cost, qty = _buy_totals(transactions, ensure_utc(as_of) if as_of is not None else None)
    if qty == 0:
        return ZERO
    return cost / qty


def realized_profit_loss(sell: Any, transactions: Iterable[Any]) -> Decimal:
    """
    Realized P&L of one SELL against the weighted average buy price of all BUYs up to
    and including the sell date: q*price − q*avg − tax.
    """
    if _is_buy(sell):
        raise ValidationFailure("Realized P&L is only defined for SELL transactions.")
    q = Decimal(sell.quantity)
    avg = weighted_average_buy_price(transactions, sell.date)
    return q * Decimal(sell.price) - q * avg - _dec(sell.tax)


def compute_metrics(
    transactions: Iterable[Any],
    dividends: Iterable[Any],
    sell_gain_loss: Iterable[Any],
    current_price: Decimal,
    shares: Decimal,
) -> InvestmentMetrics:
    txns = validate_transactions(transactions)
    divs = validate_dividends(dividends)
    if current_price is None or Decimal(current_price) < 0:
        raise ValidationFailure(f"current_price must be >= 0 (got {current_price}).")

    price = Decimal(current_price)
    held = Decimal(shares)

    total_invested, total_qty = _buy_totals(txns)
    avg_buy_price = total_invested / total_qty if total_qty != 0 else ZERO
    current_value = held * price
    total_dividends = sum((Decimal(d.amount) - _dec(d.tax) for d in divs), ZERO)
    realized = sum((Decimal(s.realized_profit_loss) for s in sell_gain_loss), ZERO)
    unrealized = current_value - avg_buy_price * held
    total_pl = unrealized + total_dividends + realized

    if total_invested == 0:
        pl_pct = ZERO
        roi = ZERO
    else:
        pl_pct = total_pl / total_invested * HUNDRED
        roi = ((current_value + total_dividends + realized) / total_invested - ONE) * HUNDRED

    return InvestmentMetrics(
        avg_buy_price=avg_buy_price,
        total_invested=total_invested,
        total_quantity_bought=total_qty,
        shares=held,
        current_price=price,
        current_value=current_value,
        total_dividends=total_dividends,
        realized_gain_loss=realized,
        unrealized_gain_loss=unrealized,
        total_profit_loss=total_pl,
        profit_loss_percentage=pl_pct,
        return_on_investment=roi,
    )
