from __future__ import annotations

import json
import logging
from typing import Any, Optional

import typer
from dotenv import load_dotenv

app = typer.Typer(help="Portfolio tracker CLI")


def _bootstrap():
    load_dotenv()
    from src.core.settings import TrackerSettings

    settings = TrackerSettings.from_env()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return settings


def _gateway(settings):
    from market_data import MarketDataGateway, YahooFinanceProvider

    return MarketDataGateway(YahooFinanceProvider(), settings=settings.gateway_settings())


def _echo(payload: Any) -> None:
    typer.echo(json.dumps(payload, indent=2, default=str))


def _fail(e: Exception) -> None:
    typer.echo(f"Error: {e}", err=True)
    raise typer.Exit(code=2)


@app.command("init-db")
def init_db_cmd():
    _bootstrap()
    from src.db.init_db import init_db

    url = init_db()
    typer.echo(f"Initialized database: {url}")


@app.command("refresh-prices")
def refresh_prices_cmd(
    user: str = typer.Option(..., help="Owner user id"),
    actor: str = typer.Option("cli", help="Audit actor"),
):
    settings = _bootstrap()
    from src.core.ledger import refresh_current_prices
    from src.core.store import InvestmentStore
    from src.db.session import get_session

    with _gateway(settings) as gateway, get_session() as session:
        failed = refresh_current_prices(InvestmentStore(session), gateway, user, actor=actor)
    _echo({"failed": failed})
    if failed:
        raise typer.Exit(code=1)


@app.command("sync-dividends")
def sync_dividends_cmd(
    user: str = typer.Option(..., help="Owner user id"),
    investment_id: Optional[int] = typer.Option(None, "--investment", help="Only this investment"),
):
    settings = _bootstrap()
    from src.core.dividend_sync import sync_investment_dividends
    from src.core.errors import TrackerError
    from src.core.store import InvestmentStore
    from src.db.session import get_session

    out: dict[str, Any] = {}
    with _gateway(settings) as gateway, get_session() as session:
        store = InvestmentStore(session)
        try:
            if investment_id is not None:
                targets = [store.get_investment(investment_id, user_id=user)]
            else:
                targets = store.list_investments(user)
        except TrackerError as e:
            _fail(e)
        for inv in targets:
            res = sync_investment_dividends(store, gateway, inv.id, policy=settings.withholding)
            out[inv.symbol] = res.as_json()
    _echo(out)


@app.command("metrics")
def metrics_cmd(
    investment_id: int = typer.Option(..., "--investment", help="Investment id"),
    user: Optional[str] = typer.Option(None, help="Owner user id"),
):
    _bootstrap()
    from src.core.errors import TrackerError
    from src.core.metrics import compute_metrics
    from src.core.store import InvestmentStore
    from src.db.session import get_session

    with get_session() as session:
        store = InvestmentStore(session)
        try:
            inv = store.get_investment(investment_id, user_id=user)
            m = compute_metrics(
                store.find_transactions(inv.id),
                store.find_dividends(inv.id),
                store.find_sell_events(inv.id),
                inv.current_price,
                inv.shares,
            )
        except TrackerError as e:
            _fail(e)
        _echo({"symbol": inv.symbol, "currency": inv.currency, **m.as_json()})


@app.command("series")
def series_cmd(
    investment_id: int = typer.Option(..., "--investment", help="Investment id"),
    user: Optional[str] = typer.Option(None, help="Owner user id"),
    stop_when_zero: bool = typer.Option(False, help="End the series once the position is closed"),
):
    settings = _bootstrap()
    from src.core.equity_series import monthly_equity_series
    from src.core.errors import TrackerError
    from src.core.store import InvestmentStore
    from src.db.session import get_session

    with _gateway(settings) as gateway, get_session() as session:
        store = InvestmentStore(session)
        try:
            inv = store.get_investment(investment_id, user_id=user)
        except TrackerError as e:
            _fail(e)
        points = monthly_equity_series(
            gateway,
            inv.symbol,
            store.find_transactions(inv.id),
            store.find_dividends(inv.id, descending=False),
            stop_when_zero=stop_when_zero,
        )
        _echo({"symbol": inv.symbol, "currency": inv.currency, "values": [p.as_json() for p in points]})


@app.command("dashboard")
def dashboard_cmd(
    user: str = typer.Option(..., help="Owner user id"),
    currency: str = typer.Option("USD", help="Display currency (USD|BRL)"),
    period: Optional[str] = typer.Option(None, help="6-months|current-year|last-year|5-years|all-time; adds the chart"),
):
    settings = _bootstrap()
    from src.core.dashboard import DashboardService
    from src.core.errors import TrackerError
    from src.core.store import InvestmentStore
    from src.db.session import get_session
    from src.utils.money import format_money

    with _gateway(settings) as gateway, get_session() as session, DashboardService(
        InvestmentStore(session), gateway, cache_ttl_s=settings.dashboard_cache_ttl_s
    ) as svc:
        try:
            summary = svc.portfolio_summary(user, currency)
            payload: dict[str, Any] = summary.as_json()
            payload["display"] = {
                "total_value": format_money(summary.total_value, summary.currency),
                "total_invested": format_money(summary.total_invested, summary.currency),
                "gain_loss": format_money(summary.gain_loss, summary.currency),
                "dividends": format_money(summary.dividends, summary.currency),
            }
            if period:
                payload["chart"] = svc.portfolio_chart(user, period, currency).as_json()
        except (TrackerError, ValueError) as e:
            _fail(e)
    _echo(payload)


if __name__ == "__main__":
    app()
