from __future__ import annotations

import datetime as dt
import sys
from decimal import Decimal
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from market_data.exceptions import DataNotFoundError
from market_data.gateway import GatewaySettings, MarketDataGateway
from market_data.provider import DividendEvent, MarketDataProvider, PricePoint, Quote
from src.core.store import InvestmentStore
from src.db.models import Base


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += float(seconds)


class FakeProvider(MarketDataProvider):
    """
    Scripted provider. `failures[method]` is a list of exceptions raised (in order) before
    the scripted data is returned.
    """

    name = "fake"

    def __init__(self):
        self.prices: dict[str, Decimal | None] = {}
        self.histories: dict[str, list[PricePoint]] = {}
        self.dividend_events: dict[str, list[DividendEvent]] = {}
        self.failures: dict[str, list[Exception]] = {}
        self.calls: list[tuple] = []

    def _maybe_fail(self, method: str) -> None:
        pending = self.failures.get(method) or []
        if pending:
            raise pending.pop(0)

    def calls_for(self, method: str) -> list[tuple]:
        return [c for c in self.calls if c[0] == method]

    def quote(self, symbol: str) -> Quote:
        self.calls.append(("quote", symbol))
        self._maybe_fail("quote")
        return Quote(symbol=symbol, price=self.prices.get(symbol))

    def history(self, symbol: str, start: dt.date, end: dt.date, interval: str = "1mo") -> list[PricePoint]:
        self.calls.append(("history", symbol, start, end))
        self._maybe_fail("history")
        points = [p for p in self.histories.get(symbol, []) if start <= p.date <= end]
        if not points:
            raise DataNotFoundError(f"no history for {symbol}")
        return points

    def corporate_actions(self, symbol: str, start: dt.datetime, end: dt.datetime, kind: str = "dividend"):
        self.calls.append(("corporate_actions", symbol, start, end))
        self._maybe_fail("corporate_actions")
        return [e for e in self.dividend_events.get(symbol, []) if start <= e.date <= end]


@pytest.fixture()
def session() -> Session:
    engine = create_engine("sqlite:///:memory:", future=True)
    Base.metadata.create_all(bind=engine)
    SessionLocal = sessionmaker(bind=engine, class_=Session, autoflush=False, autocommit=False)
    with SessionLocal() as s:
        yield s


@pytest.fixture()
def store(session) -> InvestmentStore:
    return InvestmentStore(session)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def sleeps() -> list[float]:
    return []


@pytest.fixture()
def gateway(provider, clock, sleeps) -> MarketDataGateway:
    return MarketDataGateway(
        provider,
        settings=GatewaySettings(cache_ttl_s=900, max_retries=3, retry_delay_s=1.0),
        clock=clock,
        sleep=sleeps.append,
    )
