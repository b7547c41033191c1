from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Optional

from market_data.cache import TTLCache
from market_data.fx import FxConverter
from market_data.gateway import MarketDataGateway
from market_data.symbols import normalize_currency
from src.core.equity_series import PortfolioPoint, aggregate_portfolio_series, monthly_equity_series
from src.core.errors import ValidationFailure
from src.core.metrics import compute_metrics
from src.core.store import InvestmentStore
from src.utils.money import ZERO, round2
from src.utils.time import UTC, ensure_utc, utcnow

logger = logging.getLogger(__name__)

PERIODS = ("6-months", "current-year", "last-year", "5-years", "all-time")
DEFAULT_PERIOD = "6-months"


def get_date_range_for_period(period: str, now: dt.datetime | None = None) -> tuple[dt.datetime, dt.datetime]:
    if period not in PERIODS:
        raise ValidationFailure(f"Invalid period: {period!r} (expected one of {', '.join(PERIODS)})")
    now = ensure_utc(now) if now is not None else utcnow()
    y, m = now.year, now.month
    if period == "6-months":
        back_y, back_m = divmod((y * 12 + m - 1) - 5, 12)
        return dt.datetime(back_y, back_m + 1, 1, tzinfo=UTC), now
    if period == "current-year":
        return dt.datetime(y, 1, 1, tzinfo=UTC), now
    if period == "last-year":
        return dt.datetime(y - 1, 1, 1, tzinfo=UTC), dt.datetime(y - 1, 12, 31, 23, 59, 59, tzinfo=UTC)
    if period == "5-years":
        return dt.datetime(y - 5, m, 1, tzinfo=UTC), now
    return dt.datetime(1970, 1, 1, tzinfo=UTC), now


@dataclass(frozen=True)
class BestInvestment:
    symbol: str
    profit: Decimal
    profit_percentage: Decimal

    def as_json(self) -> dict[str, Any]:
        return {"symbol": self.symbol, "profit": float(self.profit), "profit_percentage": float(self.profit_percentage)}


NO_BEST = BestInvestment(symbol="N/A", profit=ZERO, profit_percentage=ZERO)


@dataclass(frozen=True)
class PortfolioSummary:
    currency: str
    total_value: Decimal
    total_invested: Decimal
    gain_loss: Decimal
    dividends: Decimal
    best: BestInvestment
    # Investments whose amounts were left out because no FX rate was available.
    unconverted: list[str] = field(default_factory=list)

    def as_json(self) -> dict[str, Any]:
        return {
            "currency": self.currency,
            "total_value": float(self.total_value),
            "total_invested": float(self.total_invested),
            "gain_loss": float(self.gain_loss),
            "dividends": float(self.dividends),
            "best_performing_investment": self.best.as_json(),
            "unconverted": list(self.unconverted),
        }


@dataclass(frozen=True)
class PortfolioChart:
    currency: str
    period: str
    values: list[PortfolioPoint]

    def as_json(self) -> dict[str, Any]:
        return {"currency": self.currency, "period": self.period, "values": [p.as_json() for p in self.values]}


class DashboardService:
    """Portfolio-level cards and the monthly portfolio chart for one user, in a display currency."""

    def __init__(
        self,
        store: InvestmentStore,
        gateway: MarketDataGateway,
        *,
        fx: Optional[FxConverter] = None,
        cache_ttl_s: float = 15 * 60,
        clock: Callable[[], float] | None = None,
    ):
        self.store = store
        self.gateway = gateway
        self.fx = fx or FxConverter(gateway)
        self.charts: TTLCache[PortfolioChart] = TTLCache(cache_ttl_s, name="dashboard_chart", clock=clock)

    def start(self) -> "DashboardService":
        self.charts.start_sweeper()
        return self

    def close(self) -> None:
        self.charts.stop_sweeper()

    def __enter__(self) -> "DashboardService":
        return self.start()

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    def invalidate_user(self, user_id: str) -> int:
        prefix = f"{user_id}|"
        return self.charts.invalidate_where(lambda k: str(k).startswith(prefix))

    def portfolio_summary(self, user_id: str, currency: str = "USD") -> PortfolioSummary:
        target = normalize_currency(currency)
        total_value = ZERO
        total_invested = ZERO
        total_dividends = ZERO
        total_realized = ZERO
        best = NO_BEST
        best_pct: Decimal | None = None
        unconverted: list[str] = []

        for inv in self.store.list_investments(user_id):
            m = compute_metrics(
                self.store.find_transactions(inv.id),
                self.store.find_dividends(inv.id),
                self.store.find_sell_events(inv.id),
                inv.current_price,
                inv.shares,
            )

            def conv(amount: Decimal) -> Decimal | None:
                if inv.currency == target or amount == 0:
                    return amount
                return self.fx.convert(amount, inv.currency, target)

            if m.shares > 0:
                # Invested capital still tied up in the position, pro rata to shares held.
                held_invested = (
                    m.shares / m.total_quantity_bought * m.total_invested if m.total_quantity_bought > 0 else ZERO
                )
                value = conv(m.current_value)
                invested = conv(held_invested)
                if value is None or invested is None:
                    unconverted.append(inv.symbol)
                else:
                    total_value += value
                    total_invested += invested
                if best_pct is None or m.profit_loss_percentage > best_pct:
                    best_pct = m.profit_loss_percentage
                    best = BestInvestment(
                        symbol=inv.symbol,
                        profit=round2(m.total_profit_loss),
                        profit_percentage=round2(m.profit_loss_percentage),
                    )

            divs = conv(m.total_dividends)
            realized = conv(m.realized_gain_loss)
            if divs is None or realized is None:
                if inv.symbol not in unconverted:
                    unconverted.append(inv.symbol)
                continue
            total_dividends += divs
            total_realized += realized

        if unconverted:
            logger.warning("Portfolio summary for %s excludes %s (no FX rate)", user_id, ", ".join(unconverted))

        gain_loss = (total_value - total_invested) + total_dividends + total_realized
        return PortfolioSummary(
            currency=target,
            total_value=round2(total_value),
            total_invested=round2(total_invested),
            gain_loss=round2(gain_loss),
            dividends=round2(total_dividends),
            best=best,
            unconverted=unconverted,
        )

    def portfolio_chart(
        self,
        user_id: str,
        period: str = DEFAULT_PERIOD,
        currency: str = "USD",
        *,
        now: dt.datetime | None = None,
    ) -> PortfolioChart:
        start, end = get_date_range_for_period(period, now)
        target = normalize_currency(currency)
        key = f"{user_id}|{period}|{target}"
        hit, cached = self.charts.lookup(key)
        if hit:
            return cached

        series = []
        for inv in self.store.list_investments(user_id):
            points = monthly_equity_series(
                self.gateway,
                inv.symbol,
                self.store.find_transactions(inv.id),
                self.store.find_dividends(inv.id, descending=False),
                stop_when_zero=False,
                now=now,
            )
            series.append((inv.currency, points))

        chart = PortfolioChart(
            currency=target,
            period=period,
            values=aggregate_portfolio_series(series, target, self.fx, start=start, end=end),
        )
        self.charts.set(key, chart)
        return chart
