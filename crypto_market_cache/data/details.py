"""Read-through cache for single coin detail records."""

from typing import Optional
import logging

from ..core.clock import Clock, SystemClock
from .cache import CacheConfig, RequestCoalescer, cache_key_for_detail, is_fresh, run_single_flight
from .database import DatabaseManager
from .errors import RemoteFetchError, StoreError
from .mappers import detail_row_to_record
from .markets import normalize_currency
from .models import DetailRecord
from .sources import DetailDataSource

logger = logging.getLogger(__name__)


class CoinDetailCache:
    """Serves coin detail from the store while fresh, else from the source.

    The store keeps one record per coin id, projected into the currency of
    the request that last wrote it.
    """

    def __init__(self, store: DatabaseManager, source: DetailDataSource,
                 clock: Optional[Clock] = None, config: Optional[CacheConfig] = None,
                 coalescer: Optional[RequestCoalescer] = None):
        self.store = store
        self.source = source
        self.clock = clock or SystemClock()
        self.config = config or CacheConfig()
        self.coalescer = coalescer

    @property
    def ttl_ms(self) -> int:
        return self.config.detail_ttl_ms

    async def get(self, coin_id: str, currency: str) -> DetailRecord:
        """Get detail for ``coin_id``, fetching when absent or stale.

        Raises:
            RemoteFetchError: If a fetch was needed and failed
            StoreError: If the fetched record could not be written
        """
        coin_id = _normalize_id(coin_id)
        currency = normalize_currency(currency)
        now = self.clock.now_ms()

        cached = await self._read(coin_id)
        if cached is not None and is_fresh(cached.updated_at, now, self.ttl_ms):
            logger.debug(f"Cache hit for {coin_id} detail")
            return cached

        logger.debug(f"Cache {'stale' if cached else 'miss'} for {coin_id} detail")
        return await self._fetch(coin_id, currency, now, forced=False)

    async def force_refresh(self, coin_id: str, currency: str) -> DetailRecord:
        """Fetch and store detail regardless of what the cache holds.

        Never joins a read-through fetch already in flight for the same coin.
        """
        coin_id = _normalize_id(coin_id)
        currency = normalize_currency(currency)
        now = self.clock.now_ms()

        logger.debug(f"Forced refresh of {coin_id} detail ({currency})")
        return await self._fetch(coin_id, currency, now, forced=True)

    async def _read(self, coin_id: str) -> Optional[DetailRecord]:
        try:
            return await self.store.get_detail(coin_id)
        except StoreError as e:
            logger.warning(f"Cache read failed for {coin_id}, treating as miss: {e}")
            return None

    async def _fetch(self, coin_id: str, currency: str, now: int, forced: bool) -> DetailRecord:
        key = cache_key_for_detail(coin_id, currency, forced)
        return await run_single_flight(
            self.coalescer, key,
            lambda: self._fetch_and_store(coin_id, currency, now)
        )

    async def _fetch_and_store(self, coin_id: str, currency: str, now: int) -> DetailRecord:
        try:
            row = await self.source.fetch_detail(coin_id)
        except RemoteFetchError as e:
            logger.warning(f"Failed to fetch detail for {coin_id}: {e}")
            raise
        except Exception as e:
            logger.warning(f"Failed to fetch detail for {coin_id}: {e}")
            raise RemoteFetchError(f"Failed to fetch detail for {coin_id}", cause=e)

        if currency not in row.market_data.current_price:
            logger.info(f"No {currency} price for {coin_id}, numeric fields left empty")

        record = detail_row_to_record(row, currency, now)
        await self.store.upsert_detail(record)
        return record


def _normalize_id(coin_id: str) -> str:
    if not coin_id or not coin_id.strip():
        raise ValueError("coin_id must be non-empty")
    return coin_id.strip()
