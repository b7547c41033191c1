from __future__ import annotations

import datetime as dt
from contextlib import contextmanager
from typing import Any, Callable, Iterator, Optional, TypeVar

from sqlalchemy.orm import Session

from src.core.errors import NotFoundError
from src.db.models import Dividend, Investment, SellGainLoss, Transaction
from src.utils.time import ensure_utc

T = TypeVar("T")


class InvestmentStore:
    """
    Persistence seam for the engine: keyed loads, dividend upsert/delete and an atomic scope.

    Everything goes through one SQLAlchemy session; nothing here commits except `atomic`.
    """

    def __init__(self, session: Session):
        self.session = session

    # Transactional scope ---------------------------------------------------------

    @contextmanager
    def atomic(self) -> Iterator[Session]:
        """Commit on success, roll back everything on any exception."""
        try:
            yield self.session
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def run_atomic(self, fn: Callable[["InvestmentStore"], T]) -> T:
        with self.atomic():
            return fn(self)

    # Investments -----------------------------------------------------------------

    def get_investment(self, investment_id: int, *, user_id: Optional[str] = None) -> Investment:
        q = self.session.query(Investment).filter(Investment.id == investment_id)
        if user_id is not None:
            q = q.filter(Investment.user_id == user_id)
        inv = q.one_or_none()
        if inv is None:
            raise NotFoundError("Investment", investment_id)
        return inv

    def list_investments(self, user_id: str) -> list[Investment]:
        return (
            self.session.query(Investment)
            .filter(Investment.user_id == user_id)
            .order_by(Investment.symbol.asc(), Investment.id.asc())
            .all()
        )

    # Child records ---------------------------------------------------------------

    def find_transactions(self, investment_id: int, *, descending: bool = False) -> list[Transaction]:
        q = self.session.query(Transaction).filter(Transaction.investment_id == investment_id)
        if descending:
            q = q.order_by(Transaction.date.desc(), Transaction.id.desc())
        else:
            q = q.order_by(Transaction.date.asc(), Transaction.id.asc())
        return q.all()

    def get_transaction(self, investment_id: int, transaction_id: int) -> Transaction:
        txn = (
            self.session.query(Transaction)
            .filter(Transaction.id == transaction_id, Transaction.investment_id == investment_id)
            .one_or_none()
        )
        if txn is None:
            raise NotFoundError("Transaction", transaction_id)
        return txn

    def find_dividends(self, investment_id: int, *, descending: bool = True) -> list[Dividend]:
        q = self.session.query(Dividend).filter(Dividend.investment_id == investment_id)
        if descending:
            q = q.order_by(Dividend.date.desc(), Dividend.id.desc())
        else:
            q = q.order_by(Dividend.date.asc(), Dividend.id.asc())
        return q.all()

    def get_dividend(self, investment_id: int, dividend_id: int) -> Dividend:
        div = (
            self.session.query(Dividend)
            .filter(Dividend.id == dividend_id, Dividend.investment_id == investment_id)
            .one_or_none()
        )
        if div is None:
            raise NotFoundError("Dividend", dividend_id)
        return div

    def find_sell_events(self, investment_id: int) -> list[SellGainLoss]:
        return (
            self.session.query(SellGainLoss)
            .filter(SellGainLoss.investment_id == investment_id)
            .order_by(SellGainLoss.id.asc())
            .all()
        )

    def upsert_dividend(self, record: Dividend) -> Dividend:
        self.session.add(record)
        return record

    def delete_dividend(self, record: Dividend) -> None:
        self.session.delete(record)

    def delete_dividends_after(self, investment_id: int, after: dt.datetime) -> int:
        """Delete dividends dated strictly after `after`. Returns the number removed."""
        doomed = (
            self.session.query(Dividend)
            .filter(Dividend.investment_id == investment_id, Dividend.date > ensure_utc(after))
            .all()
        )
        for d in doomed:
            self.session.delete(d)
        return len(doomed)

    def add(self, obj: Any) -> Any:
        self.session.add(obj)
        return obj

    def delete(self, obj: Any) -> None:
        self.session.delete(obj)

    def flush(self) -> None:
        self.session.flush()
