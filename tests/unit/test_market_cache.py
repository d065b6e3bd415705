"""Tests for the market listing read-through cache."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from crypto_market_cache.data.cache import CacheConfig, RequestCoalescer
from crypto_market_cache.data.errors import RemoteFetchError, StoreError
from crypto_market_cache.data.markets import MarketListingCache, normalize_currency


async def _until(predicate):
    while not predicate():
        await asyncio.sleep(0.001)


def _joined(coalescer: RequestCoalescer) -> int:
    stats = coalescer.get_stats()
    return stats['started'] + stats['coalesced']


@pytest.fixture
def market_cache(temp_db, fake_source, clock, cache_config):
    return MarketListingCache(temp_db, fake_source, clock, cache_config, RequestCoalescer())


class TestMarketListingCache:
    """Test cache hits, misses and refreshes for market pages."""

    async def test_miss_fetches_and_stores(self, market_cache, fake_source, temp_db, clock):
        clock.set(1_000)

        records = await market_cache.get(1, 2, "usd")

        assert [r.id for r in records] == ["bitcoin", "ethereum"]
        assert all(r.updated_at == 1_000 for r in records)
        assert fake_source.market_calls == [("usd", 2, 1)]
        assert await temp_db.count_markets() == 2

    async def test_fresh_page_served_from_cache(self, market_cache, fake_source, clock):
        first = await market_cache.get(1, 2, "usd")

        clock.advance(59_999)
        second = await market_cache.get(1, 2, "usd")

        assert second == first
        assert len(fake_source.market_calls) == 1

    async def test_page_stale_at_exact_ttl(self, market_cache, fake_source, clock):
        await market_cache.get(1, 2, "usd")

        clock.advance(60_000)
        records = await market_cache.get(1, 2, "usd")

        assert len(fake_source.market_calls) == 2
        assert all(r.updated_at == 60_000 for r in records)

    async def test_one_stale_row_refetches_whole_page(self, market_cache, fake_source,
                                                      temp_db, clock):
        await market_cache.get(1, 2, "usd")

        # Rewrite only bitcoin later so the page holds mixed ages
        clock.set(30_000)
        stale_mix = await temp_db.query_markets(1, 0)
        stale_mix[0].updated_at = 30_000
        await temp_db.upsert_markets(stale_mix)

        clock.set(61_000)
        records = await market_cache.get(1, 2, "usd")

        assert len(fake_source.market_calls) == 2
        assert all(r.updated_at == 61_000 for r in records)

    async def test_short_last_page_is_cached(self, market_cache, fake_source, clock):
        await market_cache.get(1, 2, "usd")
        await market_cache.get(2, 2, "usd")
        first = await market_cache.get(3, 2, "usd")
        assert [r.id for r in first] == ["cardano"]

        clock.advance(1_000)
        second = await market_cache.get(3, 2, "usd")

        assert second == first
        assert len(fake_source.market_calls) == 3

    async def test_page_ahead_of_cached_pages_is_never_a_hit(self, market_cache, fake_source):
        await market_cache.get(3, 2, "usd")
        again = await market_cache.get(3, 2, "usd")

        assert [r.id for r in again] == ["cardano"]
        assert len(fake_source.market_calls) == 2

    async def test_empty_result_is_never_a_hit(self, market_cache, fake_source):
        assert await market_cache.get(10, 2, "usd") == []
        assert await market_cache.get(10, 2, "usd") == []
        assert len(fake_source.market_calls) == 2

    async def test_force_refresh_bypasses_fresh_cache(self, market_cache, fake_source, clock):
        clock.set(1_000)
        first = await market_cache.get(1, 2, "usd")

        clock.set(2_000)
        refreshed = await market_cache.force_refresh(1, 2, "usd")

        assert len(fake_source.market_calls) == 2
        assert [r.id for r in refreshed] == [r.id for r in first]
        assert all(r.updated_at > f.updated_at for r, f in zip(refreshed, first))

    async def test_fetch_error_leaves_cache_untouched(self, market_cache, fake_source,
                                                      temp_db, clock):
        await market_cache.get(1, 2, "usd")
        before = await temp_db.query_markets(10, 0)

        clock.advance(120_000)
        fake_source.error = RemoteFetchError("HTTP 503")

        with pytest.raises(RemoteFetchError):
            await market_cache.get(1, 2, "usd")
        with pytest.raises(RemoteFetchError):
            await market_cache.force_refresh(1, 2, "usd")

        assert await temp_db.query_markets(10, 0) == before

    async def test_no_stale_fallback(self, market_cache, fake_source, clock):
        await market_cache.get(1, 2, "usd")

        clock.advance(60_000)
        fake_source.error = RemoteFetchError("connection reset")

        with pytest.raises(RemoteFetchError, match="connection reset"):
            await market_cache.get(1, 2, "usd")

    async def test_unexpected_source_error_is_wrapped(self, market_cache, fake_source):
        fake_source.error = KeyError("current_price")

        with pytest.raises(RemoteFetchError) as exc_info:
            await market_cache.get(1, 2, "usd")

        assert isinstance(exc_info.value.cause, KeyError)
        assert exc_info.value.__cause__ is exc_info.value.cause

    async def test_store_read_error_treated_as_miss(self, market_cache, fake_source, temp_db, caplog):
        temp_db.query_markets = AsyncMock(side_effect=StoreError("database is locked"))

        records = await market_cache.get(1, 2, "usd")

        assert [r.id for r in records] == ["bitcoin", "ethereum"]
        assert len(fake_source.market_calls) == 1
        assert "treating as miss" in caplog.text

    async def test_store_write_error_propagates(self, market_cache, temp_db):
        temp_db.upsert_markets = AsyncMock(side_effect=StoreError("disk full"))

        with pytest.raises(StoreError, match="disk full"):
            await market_cache.get(1, 2, "usd")

    async def test_currency_is_normalized(self, market_cache, fake_source):
        await market_cache.get(1, 2, " USD ")
        assert fake_source.market_calls == [("usd", 2, 1)]

    @pytest.mark.parametrize("page,page_size,currency", [
        (0, 2, "usd"),
        (1, 0, "usd"),
        (1, 2, ""),
    ])
    async def test_invalid_arguments(self, market_cache, fake_source, page, page_size, currency):
        with pytest.raises(ValueError):
            await market_cache.get(page, page_size, currency)
        assert fake_source.market_calls == []

    async def test_timeline(self, market_cache, fake_source, clock):
        """Fetch at t=0, hit at t=30s, refetch at t=61s."""
        clock.set(0)
        first = await market_cache.get(1, 2, "usd")
        assert all(r.updated_at == 0 for r in first)

        clock.set(30_000)
        hit = await market_cache.get(1, 2, "usd")
        assert hit == first
        assert len(fake_source.market_calls) == 1

        clock.set(61_000)
        refetched = await market_cache.get(1, 2, "usd")
        assert len(fake_source.market_calls) == 2
        assert all(r.updated_at == 61_000 for r in refetched)

    async def test_rank_shift_between_pages(self, market_cache, fake_source, clock,
                                            market_row_factory):
        """A coin that moves up between writes can appear on two pages."""
        page_one = await market_cache.get(1, 2, "usd")
        assert [r.id for r in page_one] == ["bitcoin", "ethereum"]

        # solana overtakes ethereum before page 2 is fetched
        fake_source.markets = [
            market_row_factory("bitcoin", 1_000_000.0),
            market_row_factory("solana", 600_000.0),
            market_row_factory("ethereum", 500_000.0),
            market_row_factory("tether", 100_000.0),
        ]
        page_two = await market_cache.get(2, 2, "usd")
        assert [r.id for r in page_two] == ["ethereum", "tether"]

        seen = {r.id for r in page_one} | {r.id for r in page_two}
        assert "solana" not in seen
        assert [r.id for r in page_one + page_two].count("ethereum") == 2

    async def test_concurrent_misses_fetch_once(self, market_cache, fake_source):
        fake_source.gate = asyncio.Event()

        tasks = [asyncio.create_task(market_cache.get(1, 2, "usd")) for _ in range(4)]
        await asyncio.wait_for(_until(lambda: _joined(market_cache.coalescer) == 4), timeout=5)
        fake_source.gate.set()

        results = await asyncio.gather(*tasks)

        assert len(fake_source.market_calls) == 1
        assert all(r == results[0] for r in results)

    async def test_force_refresh_does_not_join_in_flight_get(self, market_cache, fake_source, clock):
        fake_source.gate = asyncio.Event()

        pending_get = asyncio.create_task(market_cache.get(1, 2, "usd"))
        await asyncio.wait_for(_until(lambda: len(fake_source.market_calls) == 1), timeout=5)

        clock.advance(1)
        pending_refresh = asyncio.create_task(market_cache.force_refresh(1, 2, "usd"))
        await asyncio.wait_for(_until(lambda: len(fake_source.market_calls) == 2), timeout=5)

        fake_source.gate.set()
        read, refreshed = await asyncio.gather(pending_get, pending_refresh)

        assert all(r.updated_at == 0 for r in read)
        assert all(r.updated_at == 1 for r in refreshed)

    async def test_concurrent_forced_refreshes_share_one_fetch(self, market_cache, fake_source):
        fake_source.gate = asyncio.Event()

        tasks = [asyncio.create_task(market_cache.force_refresh(1, 2, "usd")) for _ in range(3)]
        await asyncio.wait_for(_until(lambda: _joined(market_cache.coalescer) == 3), timeout=5)
        fake_source.gate.set()
        await asyncio.gather(*tasks)

        assert len(fake_source.market_calls) == 1

    async def test_concurrent_misses_without_single_flight(self, temp_db, fake_source, clock):
        cache = MarketListingCache(temp_db, fake_source, clock,
                                   CacheConfig(single_flight=False), coalescer=None)
        fake_source.gate = asyncio.Event()

        tasks = [asyncio.create_task(cache.get(1, 2, "usd")) for _ in range(3)]
        await asyncio.wait_for(_until(lambda: len(fake_source.market_calls) == 3), timeout=5)
        fake_source.gate.set()
        await asyncio.gather(*tasks)

        assert len(fake_source.market_calls) == 3


def test_normalize_currency():
    assert normalize_currency("EUR") == "eur"
    with pytest.raises(ValueError):
        normalize_currency("   ")
