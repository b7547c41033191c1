from __future__ import annotations

__all__ = [
    "YahooFinanceProvider",
    "MarketDataProvider",
    "MarketDataGateway",
    "GatewaySettings",
    "FxConverter",
    "TTLCache",
    "Quote",
    "PricePoint",
    "DividendEvent",
    "MarketDataError",
    "DataNotFoundError",
    "FetchError",
    "normalize_symbol",
    "yahoo_symbol",
]

from market_data.cache import TTLCache
from market_data.exceptions import DataNotFoundError, FetchError, MarketDataError
from market_data.fx import FxConverter
from market_data.gateway import GatewaySettings, MarketDataGateway
from market_data.provider import DividendEvent, MarketDataProvider, PricePoint, Quote, YahooFinanceProvider
from market_data.symbols import normalize_symbol, yahoo_symbol
