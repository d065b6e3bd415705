"""
Crypto Market Cache - read-through local cache for cryptocurrency market data.

Market listings and per-coin detail are fetched from CoinGecko, stored in
SQLite, and served locally while they are within their time-to-live.
"""

__version__ = "0.1.0"
__license__ = "MIT"

from crypto_market_cache.core.clock import Clock, SystemClock, ManualClock
from crypto_market_cache.data.errors import MarketCacheError, RemoteFetchError, StoreError
from crypto_market_cache.data.models import MarketRecord, DetailRecord
from crypto_market_cache.data.service import DataService, create_data_service

__all__ = [
    "__version__",
    "__license__",
    "Clock",
    "SystemClock",
    "ManualClock",
    "MarketCacheError",
    "RemoteFetchError",
    "StoreError",
    "MarketRecord",
    "DetailRecord",
    "DataService",
    "create_data_service",
]
