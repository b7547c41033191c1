from __future__ import annotations

import datetime as dt
from decimal import Decimal
from typing import Any, Optional

try:
    from sqlalchemy import JSON, Enum, ForeignKey, Index, Integer, String, Text
    from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
except Exception as e:  # pragma: no cover
    raise RuntimeError(
        "Failed to import SQLAlchemy.\n\n"
        "Install the project dependencies into a virtualenv:\n"
        "  python -m venv .venv\n"
        "  source .venv/bin/activate\n"
        "  pip install -e .\n\n"
        f"Original error: {type(e).__name__}: {e}"
    ) from e

from src.db.types import Money, UTCDateTime
from src.utils.time import utcnow


class Base(DeclarativeBase):
    pass


InvestmentType = Enum("STOCK", "ETF", "CRYPTO", "FUND", "REAL_ESTATE", "OTHER", name="investment_type")
CurrencyType = Enum("USD", "BRL", name="currency")
TxnType = Enum("BUY", "SELL", name="txn_type")

ZERO = Decimal("0")


class Investment(Base):
    __tablename__ = "investments"
    __table_args__ = (Index("ix_investments_user_symbol", "user_id", "symbol"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    type: Mapped[str] = mapped_column(InvestmentType, nullable=False)
    currency: Mapped[str] = mapped_column(CurrencyType, nullable=False, default="USD")
    current_price: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    # Running total maintained by the ledger on every transaction create/delete.
    shares: Mapped[Decimal] = mapped_column(Money, nullable=False, default=ZERO)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    transactions: Mapped[list["Transaction"]] = relationship(
        back_populates="investment", cascade="all, delete-orphan"
    )
    dividends: Mapped[list["Dividend"]] = relationship(
        back_populates="investment", cascade="all, delete-orphan"
    )
    sell_gain_loss: Mapped[list["SellGainLoss"]] = relationship(
        back_populates="investment", cascade="all, delete-orphan"
    )


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (Index("ix_transactions_investment_date", "investment_id", "date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    investment_id: Mapped[int] = mapped_column(ForeignKey("investments.id", ondelete="CASCADE"), nullable=False)
    type: Mapped[str] = mapped_column(TxnType, nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Money, nullable=False)
    price: Mapped[Decimal] = mapped_column(Money, nullable=False)
    date: Mapped[dt.datetime] = mapped_column(UTCDateTime, nullable=False)
    tax: Mapped[Optional[Decimal]] = mapped_column(Money)
    observation: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    investment: Mapped["Investment"] = relationship(back_populates="transactions")
    sell_gain_loss: Mapped[Optional["SellGainLoss"]] = relationship(
        back_populates="transaction", cascade="all, delete-orphan"
    )


class Dividend(Base):
    __tablename__ = "dividends"
    __table_args__ = (Index("ix_dividends_investment_date", "investment_id", "date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    investment_id: Mapped[int] = mapped_column(ForeignKey("investments.id", ondelete="CASCADE"), nullable=False)
    # Already scaled by shares held on the ex-date.
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    date: Mapped[dt.datetime] = mapped_column(UTCDateTime, nullable=False)
    tax: Mapped[Optional[Decimal]] = mapped_column(Money)
    observation: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    updated_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    investment: Mapped["Investment"] = relationship(back_populates="dividends")


class SellGainLoss(Base):
    __tablename__ = "sell_gain_loss"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    investment_id: Mapped[int] = mapped_column(ForeignKey("investments.id", ondelete="CASCADE"), nullable=False)
    transaction_id: Mapped[int] = mapped_column(
        ForeignKey("transactions.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    realized_profit_loss: Mapped[Decimal] = mapped_column(Money, nullable=False)
    created_at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)

    investment: Mapped["Investment"] = relationship(back_populates="sell_gain_loss")
    transaction: Mapped["Transaction"] = relationship(back_populates="sell_gain_loss")


class AuditLog(Base):
    __tablename__ = "audit_log"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    at: Mapped[dt.datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
    actor: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    entity: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[Optional[str]] = mapped_column(String(64))
    old_json: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    new_json: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON)
    note: Mapped[Optional[str]] = mapped_column(Text)
