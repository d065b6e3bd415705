"""Read-through cache for paged market listings."""

from typing import List, Optional
import logging

from ..core.clock import Clock, SystemClock
from .cache import (
    CacheConfig,
    RequestCoalescer,
    cache_key_for_markets,
    page_is_fresh,
    page_offset,
    run_single_flight,
)
from .database import DatabaseManager
from .errors import RemoteFetchError, StoreError
from .mappers import market_rows_to_records
from .models import MarketRecord
from .sources import MarketDataSource

logger = logging.getLogger(__name__)


def normalize_currency(currency: str) -> str:
    if not currency or not currency.strip():
        raise ValueError("currency must be a non-empty code")
    return currency.strip().lower()


class MarketListingCache:
    """Serves market listing pages from the store while fresh, else from the source.

    Pages are windows over the store ordered by market cap, so a page is
    ``LIMIT page_size OFFSET (page - 1) * page_size``. When rank order shifts
    between writes a coin can show up on two adjacent pages or on neither.
    That is accepted; callers that page through should de-duplicate by id.
    A page read before the pages ahead of it are cached finds nothing at its
    offset, so it never counts as a hit.
    """

    def __init__(self, store: DatabaseManager, source: MarketDataSource,
                 clock: Optional[Clock] = None, config: Optional[CacheConfig] = None,
                 coalescer: Optional[RequestCoalescer] = None):
        self.store = store
        self.source = source
        self.clock = clock or SystemClock()
        self.config = config or CacheConfig()
        self.coalescer = coalescer

    @property
    def ttl_ms(self) -> int:
        return self.config.market_ttl_ms

    async def get(self, page: int, page_size: int, currency: str) -> List[MarketRecord]:
        """Get a page of market records, fetching when the cached page is stale.

        Args:
            page: 1-based page number
            page_size: Rows per page
            currency: Quote currency

        Returns:
            Cached records if the page is fresh, otherwise the fetched records

        Raises:
            RemoteFetchError: If a fetch was needed and failed
            StoreError: If fetched records could not be written
        """
        currency = normalize_currency(currency)
        offset = page_offset(page, page_size)
        now = self.clock.now_ms()

        cached = await self._read_page(page_size, offset)
        if page_is_fresh(cached, now, self.ttl_ms):
            logger.debug(f"Cache hit for markets page {page} (size {page_size}, {currency})")
            return cached

        logger.debug(f"Cache miss for markets page {page} ({len(cached)} cached rows not all fresh)")
        return await self._fetch(page, page_size, currency, now, forced=False)

    async def force_refresh(self, page: int, page_size: int, currency: str) -> List[MarketRecord]:
        """Fetch and store a page regardless of what the cache holds.

        Concurrent forced refreshes of the same page share one fetch, but never
        join a read-through fetch already in flight.
        """
        currency = normalize_currency(currency)
        page_offset(page, page_size)
        now = self.clock.now_ms()

        logger.debug(f"Forced refresh of markets page {page} (size {page_size}, {currency})")
        return await self._fetch(page, page_size, currency, now, forced=True)

    async def _read_page(self, limit: int, offset: int) -> List[MarketRecord]:
        try:
            return await self.store.query_markets(limit, offset)
        except StoreError as e:
            logger.warning(f"Cache read failed, treating as miss: {e}")
            return []

    async def _fetch(self, page: int, page_size: int, currency: str, now: int,
                     forced: bool) -> List[MarketRecord]:
        key = cache_key_for_markets(page, page_size, currency, forced)
        return await run_single_flight(
            self.coalescer, key,
            lambda: self._fetch_and_store(page, page_size, currency, now)
        )

    async def _fetch_and_store(self, page: int, page_size: int, currency: str,
                               now: int) -> List[MarketRecord]:
        try:
            rows = await self.source.fetch_markets(currency, page_size, page)
        except RemoteFetchError as e:
            logger.warning(f"Failed to fetch markets page {page} ({currency}): {e}")
            raise
        except Exception as e:
            logger.warning(f"Failed to fetch markets page {page} ({currency}): {e}")
            raise RemoteFetchError(f"Failed to fetch markets page {page}", cause=e)

        records = market_rows_to_records(rows, now)
        await self.store.upsert_markets(records)
        logger.info(f"Stored {len(records)} market records for page {page} ({currency})")
        return records
