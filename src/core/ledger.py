from __future__ import annotations

import datetime as dt
import logging
from decimal import Decimal
from typing import Any, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from market_data.gateway import MarketDataGateway
from market_data.symbols import normalize_symbol
from src.core.dividend_sync import DividendSyncResult, sync_investment_dividends
from src.core.errors import ValidationFailure
from src.core.metrics import realized_profit_loss
from src.core.positions import signed_quantity
from src.core.settings import WithholdingPolicy
from src.core.store import InvestmentStore
from src.db.audit import log_change, snapshot
from src.db.models import Dividend, Investment, SellGainLoss, Transaction
from src.utils.time import ensure_utc

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

InvestmentKind = Literal["STOCK", "ETF", "CRYPTO", "FUND", "REAL_ESTATE", "OTHER"]
Currency = Literal["USD", "BRL"]


class _Input(BaseModel):
    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    @field_validator("date", mode="after", check_fields=False)
    @classmethod
    def _utc(cls, v: dt.datetime) -> dt.datetime:
        return ensure_utc(v)


class InvestmentInput(_Input):
    symbol: str = Field(min_length=1, max_length=32)
    name: str = Field(min_length=1, max_length=200)
    type: InvestmentKind = "STOCK"
    currency: Currency = "USD"
    shares: Decimal = Field(gt=0)
    buy_price: Decimal = Field(ge=0)
    date: dt.datetime
    fees: Optional[Decimal] = Field(default=None, ge=0)

    @field_validator("symbol")
    @classmethod
    def _symbol(cls, v: str) -> str:
        return normalize_symbol(v)


class InvestmentUpdate(_Input):
    symbol: Optional[str] = Field(default=None, min_length=1, max_length=32)
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    type: Optional[InvestmentKind] = None

    @field_validator("symbol")
    @classmethod
    def _symbol(cls, v: Optional[str]) -> Optional[str]:
        return normalize_symbol(v) if v is not None else None


class TransactionInput(_Input):
    type: Literal["BUY", "SELL"]
    quantity: Decimal = Field(gt=0)
    price: Decimal = Field(ge=0)
    date: dt.datetime
    tax: Optional[Decimal] = Field(default=None, ge=0)
    observation: Optional[str] = None


class DividendInput(_Input):
    amount: Decimal = Field(ge=0)
    date: dt.datetime
    tax: Optional[Decimal] = Field(default=None, ge=0)
    observation: Optional[str] = None


def _parse(model: Type[M], data: Any) -> M:
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise ValidationFailure(str(e)) from e


INVESTMENT_FIELDS = ("symbol", "name", "type", "currency", "current_price", "shares")
TRANSACTION_FIELDS = ("investment_id", "type", "quantity", "price", "date", "tax", "observation")
DIVIDEND_FIELDS = ("investment_id", "amount", "date", "tax", "observation")


def _investment_json(inv: Investment, **extra: Any) -> dict[str, Any]:
    return snapshot(inv, INVESTMENT_FIELDS, **extra)


def _txn_json(t: Transaction, **extra: Any) -> dict[str, Any]:
    return snapshot(t, TRANSACTION_FIELDS, **extra)


def _dividend_json(d: Dividend) -> dict[str, Any]:
    return snapshot(d, DIVIDEND_FIELDS)


def _resync(
    store: InvestmentStore,
    gateway: MarketDataGateway,
    investment_id: int,
    policy: WithholdingPolicy | None,
) -> DividendSyncResult:
    res = sync_investment_dividends(store, gateway, investment_id, policy=policy)
    if res.errors:
        logger.warning("Dividend resync for investment %s finished %s", investment_id, res.status)
    return res


def create_investment(
    store: InvestmentStore,
    gateway: MarketDataGateway,
    user_id: str,
    data: InvestmentInput | dict[str, Any],
    *,
    policy: WithholdingPolicy | None = None,
    actor: str = "user",
) -> Investment:
    """Create an investment with its opening BUY; the buy price seeds `current_price`."""
    inp = _parse(InvestmentInput, data)

    def _create(s: InvestmentStore) -> Investment:
        inv = s.add(
            Investment(
                user_id=user_id,
                symbol=inp.symbol,
                name=inp.name,
                type=inp.type,
                currency=inp.currency,
                current_price=inp.buy_price,
                shares=inp.shares,
            )
        )
        s.flush()
        txn = s.add(
            Transaction(
                investment_id=inv.id,
                type="BUY",
                quantity=inp.shares,
                price=inp.buy_price,
                date=inp.date,
                tax=inp.fees,
            )
        )
        s.flush()
        log_change(
            s.session,
            actor=actor,
            action="CREATE",
            entity="Investment",
            entity_id=inv.id,
            new=_investment_json(inv, opening_transaction_id=txn.id),
        )
        return inv

    inv = store.run_atomic(_create)
    _resync(store, gateway, inv.id, policy)
    return inv


def add_transaction(
    store: InvestmentStore,
    gateway: MarketDataGateway,
    investment_id: int,
    data: TransactionInput | dict[str, Any],
    *,
    user_id: str | None = None,
    policy: WithholdingPolicy | None = None,
    actor: str = "user",
) -> Transaction:
    """
    Record a BUY or SELL.

    In one unit: the transaction row, the shares increment, the purge of dividends dated after
    the transaction and, for a SELL, its realized P&L row. Dividends are then resynced.
    """
    inp = _parse(TransactionInput, data)
    inv = store.get_investment(investment_id, user_id=user_id)

    def _add(s: InvestmentStore) -> Transaction:
        history = s.find_transactions(inv.id)
        txn = s.add(
            Transaction(
                investment_id=inv.id,
                type=inp.type,
                quantity=inp.quantity,
                price=inp.price,
                date=inp.date,
                tax=inp.tax,
                observation=inp.observation,
            )
        )
        s.flush()
        old_shares = inv.shares
        inv.shares = Decimal(inv.shares) + signed_quantity(txn)
        purged = s.delete_dividends_after(inv.id, inp.date)

        realized = None
        if inp.type == "SELL":
            realized = realized_profit_loss(txn, history + [txn])
            s.add(SellGainLoss(investment_id=inv.id, transaction_id=txn.id, realized_profit_loss=realized))

        log_change(
            s.session,
            actor=actor,
            action="CREATE",
            entity="Transaction",
            entity_id=txn.id,
            old={"shares": format(old_shares, "f")},
            new=_txn_json(txn, shares=inv.shares, realized_profit_loss=realized),
            note=f"purged {purged} dividend(s) after {inp.date.date().isoformat()}" if purged else None,
        )
        return txn

    txn = store.run_atomic(_add)
    _resync(store, gateway, inv.id, policy)
    return txn


def delete_transaction(
    store: InvestmentStore,
    gateway: MarketDataGateway,
    investment_id: int,
    transaction_id: int,
    *,
    user_id: str | None = None,
    policy: WithholdingPolicy | None = None,
    actor: str = "user",
) -> None:
    """Undo a transaction: reverse its share effect, purge later dividends, then resync."""
    inv = store.get_investment(investment_id, user_id=user_id)
    txn = store.get_transaction(inv.id, transaction_id)

    def _delete(s: InvestmentStore) -> None:
        old = _txn_json(txn, shares=inv.shares)
        inv.shares = Decimal(inv.shares) - signed_quantity(txn)
        when = ensure_utc(txn.date)
        purged = s.delete_dividends_after(inv.id, when)
        s.delete(txn)
        log_change(
            s.session,
            actor=actor,
            action="DELETE",
            entity="Transaction",
            entity_id=transaction_id,
            old=old,
            new={"shares": format(inv.shares, "f")},
            note=f"purged {purged} dividend(s) after {when.date().isoformat()}" if purged else None,
        )

    store.run_atomic(_delete)
    _resync(store, gateway, inv.id, policy)


def add_dividend(
    store: InvestmentStore,
    investment_id: int,
    data: DividendInput | dict[str, Any],
    *,
    user_id: str | None = None,
    actor: str = "user",
) -> Dividend:
    inp = _parse(DividendInput, data)
    inv = store.get_investment(investment_id, user_id=user_id)

    def _add(s: InvestmentStore) -> Dividend:
        div = s.upsert_dividend(
            Dividend(
                investment_id=inv.id,
                amount=inp.amount,
                date=inp.date,
                tax=inp.tax,
                observation=inp.observation,
            )
        )
        s.flush()
        log_change(
            s.session,
            actor=actor,
            action="CREATE",
            entity="Dividend",
            entity_id=div.id,
            new=_dividend_json(div),
        )
        return div

    return store.run_atomic(_add)


def delete_dividend(
    store: InvestmentStore,
    investment_id: int,
    dividend_id: int,
    *,
    user_id: str | None = None,
    actor: str = "user",
) -> None:
    inv = store.get_investment(investment_id, user_id=user_id)
    div = store.get_dividend(inv.id, dividend_id)

    def _delete(s: InvestmentStore) -> None:
        old = _dividend_json(div)
        s.delete_dividend(div)
        log_change(
            s.session, actor=actor, action="DELETE", entity="Dividend", entity_id=dividend_id, old=old
        )

    store.run_atomic(_delete)


def update_investment(
    store: InvestmentStore,
    investment_id: int,
    data: InvestmentUpdate | dict[str, Any],
    *,
    user_id: str | None = None,
    actor: str = "user",
) -> Investment:
    """Rename/retag an investment. Only symbol, name and type are editable."""
    inp = _parse(InvestmentUpdate, data)
    inv = store.get_investment(investment_id, user_id=user_id)

    def _update(s: InvestmentStore) -> Investment:
        old = _investment_json(inv)
        for k, v in inp.model_dump(exclude_none=True).items():
            setattr(inv, k, v)
        log_change(
            s.session,
            actor=actor,
            action="UPDATE",
            entity="Investment",
            entity_id=inv.id,
            old=old,
            new=_investment_json(inv),
        )
        return inv

    return store.run_atomic(_update)


def delete_investment(
    store: InvestmentStore,
    investment_id: int,
    *,
    user_id: str | None = None,
    actor: str = "user",
) -> None:
    """Delete an investment together with its transactions, dividends and sell records."""
    inv = store.get_investment(investment_id, user_id=user_id)

    def _delete(s: InvestmentStore) -> None:
        old = _investment_json(inv)
        s.delete(inv)
        log_change(
            s.session, actor=actor, action="DELETE", entity="Investment", entity_id=investment_id, old=old
        )

    store.run_atomic(_delete)


def refresh_current_prices(
    store: InvestmentStore,
    gateway: MarketDataGateway,
    user_id: str,
    *,
    actor: str = "system",
) -> list[str]:
    """
    Pull a live quote for every investment of `user_id` and store it as `current_price`.

    Returns the symbols whose price could not be resolved; their stored price is left as is.
    """
    failed: list[str] = []

    def _refresh(s: InvestmentStore) -> int:
        changed = 0
        for inv in s.list_investments(user_id):
            price = gateway.get_current_price(inv.symbol)
            if price is None:
                failed.append(inv.symbol)
                continue
            if Decimal(inv.current_price) != price:
                inv.current_price = price
                changed += 1
        log_change(
            s.session,
            actor=actor,
            action="REFRESH",
            entity="InvestmentPrices",
            entity_id=user_id,
            old=None,
            new={"updated": changed, "failed": list(failed)},
        )
        return changed

    changed = store.run_atomic(_refresh)
    if failed:
        logger.warning("Price refresh for %s: no quote for %s", user_id, ", ".join(failed))
    logger.info("Price refresh for %s: %s updated, %s failed", user_id, changed, len(failed))
    return failed
