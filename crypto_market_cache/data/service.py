"""Market data service: the cache coordinators wired to a store and a source."""

from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

from ..core.clock import Clock, SystemClock
from ..core.config import ConfigManager
from .cache import CacheConfig, RequestCoalescer
from .clients.coingecko import CoinGeckoClient, DEFAULT_BASE_URL
from .database import DatabaseManager
from .details import CoinDetailCache
from .errors import StoreError
from .markets import MarketListingCache
from .models import MarketRecord, DetailRecord
from .sources import MarketDataSource, DetailDataSource

logger = logging.getLogger(__name__)


class DataService:
    """Entry point for listing and detail reads.

    ``get_*`` serve from the local store while it is fresh; ``refresh_*``
    always go to the remote source. Neither ever falls back to stale data
    when the source fails.
    """

    def __init__(self, db_manager: DatabaseManager,
                 market_source: MarketDataSource,
                 detail_source: Optional[DetailDataSource] = None,
                 clock: Optional[Clock] = None,
                 cache_config: Optional[CacheConfig] = None):
        """Initialize data service.

        Args:
            db_manager: Cache store
            market_source: Remote source for listings
            detail_source: Remote source for coin detail; defaults to
                ``market_source`` when it implements both
            clock: Time source for freshness checks and write stamps
            cache_config: TTLs and single-flight switch
        """
        if detail_source is None:
            if not isinstance(market_source, DetailDataSource):
                raise TypeError("detail_source is required when market_source cannot fetch detail")
            detail_source = market_source

        self.db_manager = db_manager
        self.market_source = market_source
        self.detail_source = detail_source
        self.clock = clock or SystemClock()
        self.cache_config = cache_config or CacheConfig()

        self.coalescer = RequestCoalescer() if self.cache_config.single_flight else None
        self.markets = MarketListingCache(
            db_manager, market_source, self.clock, self.cache_config, self.coalescer
        )
        self.details = CoinDetailCache(
            db_manager, detail_source, self.clock, self.cache_config, self.coalescer
        )
        self._initialized = False

    async def initialize(self):
        """Initialize the store and start remote clients."""
        if self._initialized:
            return

        await self.db_manager.initialize()

        for source in self._sources():
            start = getattr(source, 'start', None)
            if start is not None:
                await start()

        self._initialized = True
        logger.info("Data service initialized")

    async def shutdown(self):
        """Stop remote clients and close the store."""
        if not self._initialized:
            return

        for source in self._sources():
            stop = getattr(source, 'stop', None)
            if stop is not None:
                await stop()

        await self.db_manager.close()

        self._initialized = False
        logger.info("Data service shutdown")

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()

    def _sources(self) -> List[Any]:
        if self.detail_source is self.market_source:
            return [self.market_source]
        return [self.market_source, self.detail_source]

    async def get_markets(self, page: int, page_size: int, currency: str = "usd") -> List[MarketRecord]:
        """Get a page of market listings, from cache while fresh."""
        return await self.markets.get(page, page_size, currency)

    async def refresh_markets(self, page: int, page_size: int, currency: str = "usd") -> List[MarketRecord]:
        """Fetch a page of market listings from the source and cache it."""
        return await self.markets.force_refresh(page, page_size, currency)

    async def get_detail(self, coin_id: str, currency: str = "usd") -> DetailRecord:
        """Get coin detail, from cache while fresh."""
        return await self.details.get(coin_id, currency)

    async def refresh_detail(self, coin_id: str, currency: str = "usd") -> DetailRecord:
        """Fetch coin detail from the source and cache it."""
        return await self.details.force_refresh(coin_id, currency)

    async def purge_expired(self) -> Dict[str, int]:
        """Delete rows older than their TTL.

        Housekeeping only; reads never depend on it.

        Returns:
            Deleted row counts keyed by table
        """
        now = self.clock.now_ms()

        markets = await self.db_manager.delete_expired_markets(now - self.cache_config.market_ttl_ms)
        details = await self.db_manager.delete_expired_details(now - self.cache_config.detail_ttl_ms)

        logger.info(f"Purged {markets} market and {details} detail records")
        return {'markets': markets, 'details': details}

    async def health_check(self) -> Dict[str, Any]:
        """Perform health check on the store and remote sources.

        Returns:
            Dictionary with health status of each component
        """
        health: Dict[str, Any] = {
            'database': False,
            'api_clients': {},
        }

        try:
            health['cached_markets'] = await self.db_manager.count_markets()
            health['cached_details'] = await self.db_manager.count_details()
            health['database'] = True
        except StoreError as e:
            logger.error(f"Database health check failed: {e}")

        for source in self._sources():
            check = getattr(source, 'health_check', None)
            if check is not None:
                name = getattr(getattr(source, 'data_source', None), 'value', type(source).__name__)
                health['api_clients'][name] = await check()

        if self.coalescer is not None:
            health['single_flight'] = self.coalescer.get_stats()

        return health


def create_data_service(config: ConfigManager, clock: Optional[Clock] = None) -> DataService:
    """Build a DataService backed by SQLite and CoinGecko from configuration."""
    db_manager = DatabaseManager(
        Path(config.get('database.path', 'data/market_cache.db')),
        timeout=float(config.get('database.timeout', 5.0))
    )

    api_key = config.get('api.key')

    client = CoinGeckoClient(
        # YAML reads an all-digit key as int
        api_key=str(api_key) if api_key not in (None, '') else None,
        base_url=config.get('api.base_url', DEFAULT_BASE_URL),
        timeout=int(config.get('api.timeout', 30)),
        max_retries=int(config.get('api.max_retries', 2)),
        requests_per_minute=config.get('api.requests_per_minute'),
    )

    cache_config = CacheConfig(
        market_ttl_ms=int(config.get('cache.market_ttl_ms', CacheConfig.market_ttl_ms)),
        detail_ttl_ms=int(config.get('cache.detail_ttl_ms', CacheConfig.detail_ttl_ms)),
        single_flight=bool(config.get('cache.single_flight', True)),
    )

    return DataService(db_manager, client, clock=clock, cache_config=cache_config)
