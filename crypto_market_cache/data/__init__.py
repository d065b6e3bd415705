"""Data layer for the market cache.

Provides the cache store, the remote CoinGecko source, the two read-through
cache coordinators and the service that wires them together.
"""

from .models import (
    MarketRecord,
    DetailRecord,
    MarketRow,
    DetailRow,
    DetailMarketData,
    APIResponse,
)
from .errors import MarketCacheError, RemoteFetchError, StoreError
from .database import DatabaseManager
from .cache import CacheConfig, RequestCoalescer
from .markets import MarketListingCache
from .details import CoinDetailCache
from .sources import MarketDataSource, DetailDataSource

__all__ = [
    'MarketRecord',
    'DetailRecord',
    'MarketRow',
    'DetailRow',
    'DetailMarketData',
    'APIResponse',
    'MarketCacheError',
    'RemoteFetchError',
    'StoreError',
    'DatabaseManager',
    'CacheConfig',
    'RequestCoalescer',
    'MarketListingCache',
    'CoinDetailCache',
    'MarketDataSource',
    'DetailDataSource',
]
