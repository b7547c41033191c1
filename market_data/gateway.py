from __future__ import annotations

import datetime as dt
import logging
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, TypeVar

from market_data.cache import TTLCache
from market_data.exceptions import DataNotFoundError, FetchError
from market_data.provider import DividendEvent, MarketDataProvider
from market_data.symbols import normalize_symbol

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class GatewaySettings:
    cache_ttl_s: float = 15 * 60
    max_retries: int = 3
    retry_delay_s: float = 1.0


def _iso(value: dt.date | dt.datetime) -> str:
    return value.isoformat()


def month_key(d: dt.date | dt.datetime) -> str:
    return f"{d.year:04d}-{d.month:02d}"


class MarketDataGateway:
    """
    Caching, de-duplicating front for a MarketDataProvider.

    - quotes are cached per symbol; dividend and monthly-close windows per (symbol, start, end)
    - concurrent callers for one key share a single provider call
    - transient provider errors are retried with linear backoff (retry_delay_s * attempt)
    - a failed lookup is logged and reported as None / empty, never cached
    """

    def __init__(
        self,
        provider: MarketDataProvider,
        *,
        settings: GatewaySettings | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], None] | None = None,
    ):
        self.provider = provider
        self.settings = settings or GatewaySettings()
        ttl = self.settings.cache_ttl_s
        self._sleep = sleep or time.sleep
        self.quotes: TTLCache[Decimal] = TTLCache(ttl, name="quotes", clock=clock)
        self.dividends: TTLCache[list[DividendEvent]] = TTLCache(ttl, name="dividends", clock=clock)
        self.closes: TTLCache[dict[str, Decimal]] = TTLCache(ttl, name="monthly_closes", clock=clock)
        self._pending: dict[str, Future] = {}
        self._pending_lock = threading.Lock()

    # Lifecycle -------------------------------------------------------------------

    def start(self) -> "MarketDataGateway":
        for c in self._caches():
            c.start_sweeper()
        return self

    def close(self) -> None:
        for c in self._caches():
            c.stop_sweeper()

    def __enter__(self) -> "MarketDataGateway":
        return self.start()

    def __exit__(self, *_exc: Any) -> None:
        self.close()

    def _caches(self) -> tuple[TTLCache, ...]:
        return (self.quotes, self.dividends, self.closes)

    # Public lookups --------------------------------------------------------------

    def get_current_price(self, symbol: str) -> Decimal | None:
        sym = normalize_symbol(symbol)
        if not sym:
            return None
        return self._cached_call(self.quotes, sym, lambda: self._fetch_price(sym))

    def get_dividend_events(self, symbol: str, start: dt.datetime, end: dt.datetime) -> list[DividendEvent]:
        sym = normalize_symbol(symbol)
        if not sym:
            return []
        key = f"dividends|{sym}|{_iso(start)}|{_iso(end)}"
        out = self._cached_call(self.dividends, key, lambda: self._fetch_dividends(sym, start, end))
        return list(out or [])

    def get_monthly_closes(self, symbol: str, start: dt.date, end: dt.date) -> dict[str, Decimal]:
        """Month-end closes keyed by "YYYY-MM"."""
        sym = normalize_symbol(symbol)
        if not sym:
            return {}
        key = f"closes|{sym}|{_iso(start)}|{_iso(end)}"
        out = self._cached_call(self.closes, key, lambda: self._fetch_monthly_closes(sym, start, end))
        return dict(out or {})

    # Cache maintenance -----------------------------------------------------------

    def invalidate(self, symbol: str) -> None:
        sym = normalize_symbol(symbol)
        self.quotes.invalidate(sym)
        self.dividends.invalidate_where(lambda k: str(k).split("|")[1:2] == [sym])
        self.closes.invalidate_where(lambda k: str(k).split("|")[1:2] == [sym])

    def clear_cache(self) -> None:
        for c in self._caches():
            c.clear()
        with self._pending_lock:
            self._pending.clear()

    def cache_stats(self) -> dict[str, Any]:
        stats = {c.name: c.stats().to_dict() for c in self._caches()}
        with self._pending_lock:
            stats["pending_requests"] = len(self._pending)
        return stats

    # Internals -------------------------------------------------------------------

    def _cached_call(self, cache: TTLCache, key: str, fetch: Callable[[], T | None]) -> T | None:
        # The pending map is keyed exactly like the cache.
        hit, value = cache.lookup(key)
        if hit:
            return value

        owner = False
        with self._pending_lock:
            fut = self._pending.get(key)
            if fut is None:
                hit, value = cache.lookup(key)
                if hit:
                    return value
                fut = Future()
                self._pending[key] = fut
                owner = True

        if not owner:
            return fut.result()

        try:
            result = fetch()
            if result is not None:
                cache.set(key, result)
            fut.set_result(result)
        except BaseException as e:
            fut.set_exception(e)
            raise
        finally:
            with self._pending_lock:
                if self._pending.get(key) is fut:
                    del self._pending[key]
        return result

    def _with_retry(self, what: str, call: Callable[[], T]) -> T:
        max_retries = max(1, int(self.settings.max_retries))
        last_err: Exception | None = None
        for attempt in range(1, max_retries + 1):
            try:
                return call()
            except DataNotFoundError:
                raise
            except Exception as e:
                last_err = e
                if attempt >= max_retries:
                    break
                delay = float(self.settings.retry_delay_s) * attempt
                logger.warning(
                    "Retry %s/%s for %s in %.1fs (%s)", attempt, max_retries, what, delay, type(e).__name__
                )
                self._sleep(delay)
        raise FetchError(
            f"{what} failed after {max_retries} attempts: {type(last_err).__name__}: {last_err}",
            attempts=max_retries,
            last_error=last_err,
        )

    def _fetch_price(self, symbol: str) -> Decimal | None:
        try:
            quote = self._with_retry(f"quote {symbol}", lambda: self.provider.quote(symbol))
        except (FetchError, DataNotFoundError) as e:
            logger.warning("Failed to fetch price for %s: %s", symbol, e)
            return None
        if quote is None or quote.price is None:
            return None
        return Decimal(quote.price)

    def _fetch_dividends(self, symbol: str, start: dt.datetime, end: dt.datetime) -> list[DividendEvent] | None:
        try:
            events = self._with_retry(
                f"dividends {symbol}", lambda: self.provider.corporate_actions(symbol, start, end, kind="dividend")
            )
        except (FetchError, DataNotFoundError) as e:
            logger.warning("Failed to fetch dividends for %s: %s", symbol, e)
            return None
        return sorted(events or [], key=lambda ev: ev.date)

    def _fetch_monthly_closes(self, symbol: str, start: dt.date, end: dt.date) -> dict[str, Decimal] | None:
        start_d = start.date() if isinstance(start, dt.datetime) else start
        end_d = end.date() if isinstance(end, dt.datetime) else end
        try:
            points = self._with_retry(
                f"history {symbol}", lambda: self.provider.history(symbol, start_d, end_d, interval="1mo")
            )
        except (FetchError, DataNotFoundError) as e:
            logger.warning("Failed to fetch monthly closes for %s: %s", symbol, e)
            return None
        closes: dict[str, Decimal] = {}
        for p in sorted(points or [], key=lambda x: x.date):
            # A trailing partial-month bar overwrites the month-start bar of the same month.
            closes[month_key(p.date)] = Decimal(p.close)
        return closes
