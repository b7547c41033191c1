from __future__ import annotations

import datetime as dt
import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

from market_data.gateway import MarketDataGateway
from src.core.positions import shares_at_date
from src.core.settings import WithholdingPolicy
from src.core.store import InvestmentStore
from src.db.models import Dividend
from src.utils.money import ZERO, quantize
from src.utils.time import ensure_utc, utcnow

logger = logging.getLogger(__name__)

AMOUNT_PLACES = 6


@dataclass
class DividendSyncResult:
    created: int = 0
    updated: int = 0
    deleted: int = 0
    errors: list[str] = field(default_factory=list)

    @property
    def status(self) -> str:
        if not self.errors:
            return "SUCCESS"
        if self.created or self.updated or self.deleted:
            return "PARTIAL"
        return "ERROR"

    def as_json(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "created": self.created,
            "updated": self.updated,
            "deleted": self.deleted,
            "errors": list(self.errors),
        }


def auto_sync_observation(symbol: str, when: dt.datetime) -> str:
    return f"Auto-synced dividend for {symbol} on {ensure_utc(when).date().isoformat()}"


def sync_investment_dividends(
    store: InvestmentStore,
    gateway: MarketDataGateway,
    investment_id: int,
    *,
    policy: WithholdingPolicy | None = None,
    now: dt.datetime | None = None,
) -> DividendSyncResult:
    """
    Reconcile stored dividends of one investment with the provider's dividend history.

    Each provider event is scaled by the shares held on its ex-date. Stored rows are matched by
    exact (UTC) date: matched rows are updated when amount or tax changed, unmatched events are
    created, and events falling on a date with no shares held remove any matching row.

    Per-event failures are collected in `errors`; the remaining events are still processed.
    """
    policy = policy or WithholdingPolicy()
    end = ensure_utc(now) if now is not None else utcnow()
    result = DividendSyncResult()

    inv = store.get_investment(investment_id)
    transactions = store.find_transactions(investment_id)
    if not transactions:
        return result
    stored = store.find_dividends(investment_id, descending=True)

    start = ensure_utc(stored[0].date) if stored else ensure_utc(transactions[0].date)
    events = gateway.get_dividend_events(inv.symbol, start, end)
    if not events:
        logger.info("No dividend events for %s between %s and %s", inv.symbol, start.date(), end.date())
        return result

    by_date: dict[dt.datetime, Dividend] = {}
    for d in stored:
        by_date.setdefault(ensure_utc(d.date), d)

    withhold = policy.applies_to(inv.currency)
    with store.atomic():
        for ev in events:
            try:
                when = ensure_utc(ev.date)
                existing = by_date.get(when)
                shares = shares_at_date(transactions, when)
                if shares <= 0:
                    if existing is not None:
                        store.delete_dividend(existing)
                        del by_date[when]
                        result.deleted += 1
                    continue

                amount = quantize(Decimal(ev.amount) * shares, AMOUNT_PLACES)
                tax = quantize(amount * policy.rate, AMOUNT_PLACES) if withhold else ZERO

                if existing is not None:
                    if Decimal(existing.amount) != amount or Decimal(existing.tax or ZERO) != tax:
                        existing.amount = amount
                        existing.tax = tax
                        store.upsert_dividend(existing)
                        result.updated += 1
                    continue

                row = Dividend(
                    investment_id=inv.id,
                    amount=amount,
                    date=when,
                    tax=tax,
                    observation=auto_sync_observation(inv.symbol, when),
                )
                store.upsert_dividend(row)
                by_date[when] = row
                result.created += 1
            except Exception as e:
                msg = f"{inv.symbol} {getattr(ev, 'date', None)}: {type(e).__name__}: {e}"
                logger.warning("Dividend sync event failed: %s", msg)
                result.errors.append(msg)

    logger.info(
        "Dividend sync %s (investment %s): created=%s updated=%s deleted=%s errors=%s",
        inv.symbol,
        inv.id,
        result.created,
        result.updated,
        result.deleted,
        len(result.errors),
    )
    return result
