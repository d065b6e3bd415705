"""
Pytest configuration and shared fixtures for the test suite.

Provides a manual clock, a temporary SQLite store, scripted in-memory
sources standing in for CoinGecko, and sample payloads.
"""

import asyncio
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from click.testing import CliRunner

from crypto_market_cache.core.clock import ManualClock
from crypto_market_cache.core.context import AppContext, set_context
from crypto_market_cache.data.cache import CacheConfig
from crypto_market_cache.data.database import DatabaseManager
from crypto_market_cache.data.errors import RemoteFetchError
from crypto_market_cache.data.models import MarketRow, DetailRow
from crypto_market_cache.data.sources import MarketDataSource, DetailDataSource


def make_market_row(coin_id: str, market_cap: Optional[float], price: float = 1.0) -> MarketRow:
    return MarketRow(
        id=coin_id,
        symbol=coin_id[:3],
        name=coin_id.title(),
        image=f"https://img.example/{coin_id}.png",
        current_price=price,
        market_cap=market_cap,
        price_change_percentage_24h=1.5,
        high_24h=price * 1.1,
        low_24h=price * 0.9,
    )


class FakeSource(MarketDataSource, DetailDataSource):
    """Scripted source that counts calls and can be told to fail or stall."""

    def __init__(self):
        self.markets: List[MarketRow] = []
        self.details: Dict[str, DetailRow] = {}
        self.market_calls: List[tuple] = []
        self.detail_calls: List[str] = []
        self.error: Optional[Exception] = None
        self.gate: Optional[asyncio.Event] = None

    async def _maybe_block(self):
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error

    async def fetch_markets(self, currency: str, page_size: int, page: int) -> List[MarketRow]:
        self.market_calls.append((currency, page_size, page))
        await self._maybe_block()
        start = (page - 1) * page_size
        return list(self.markets[start:start + page_size])

    async def fetch_detail(self, coin_id: str) -> DetailRow:
        self.detail_calls.append(coin_id)
        await self._maybe_block()
        if coin_id not in self.details:
            raise RemoteFetchError(f"GET coins/{coin_id} returned HTTP 404")
        return self.details[coin_id]


@pytest.fixture(autouse=True)
def fresh_app_context():
    """Give every test its own application context."""
    set_context(AppContext())
    yield


@pytest.fixture
def cli_runner():
    """Create a Click CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
async def temp_db(temp_dir):
    """Create a temporary database for testing."""
    db_manager = DatabaseManager(temp_dir / "cache.db")
    await db_manager.initialize()

    yield db_manager

    await db_manager.close()


@pytest.fixture
def clock():
    return ManualClock(0)


@pytest.fixture
def cache_config():
    return CacheConfig(market_ttl_ms=60_000, detail_ttl_ms=300_000, single_flight=True)


@pytest.fixture
def market_row_factory():
    return make_market_row


@pytest.fixture
def sample_market_rows():
    """Five coins ranked by market cap."""
    return [
        make_market_row("bitcoin", 1_000_000.0, 50_000.0),
        make_market_row("ethereum", 500_000.0, 3_000.0),
        make_market_row("tether", 100_000.0, 1.0),
        make_market_row("solana", 50_000.0, 150.0),
        make_market_row("cardano", 10_000.0, 0.45),
    ]


@pytest.fixture
def sample_detail_json():
    """A trimmed ``coins/bitcoin`` payload."""
    return {
        "id": "bitcoin",
        "symbol": "btc",
        "name": "Bitcoin",
        "image": {
            "thumb": "https://img.example/bitcoin/thumb.png",
            "small": "https://img.example/bitcoin/small.png",
            "large": "https://img.example/bitcoin/large.png",
        },
        "market_data": {
            "current_price": {"usd": 50000, "eur": 46000},
            "market_cap": {"usd": 1000000000000, "eur": 920000000000},
            "price_change_percentage_24h": 2.5,
            "high_24h": {"usd": 51000, "eur": 47000},
            "low_24h": {"usd": 49000, "eur": 45000},
            "sparkline_7d": {"price": [48000.0, 49000.5, 50000.0]},
        },
    }


@pytest.fixture
def sample_detail_row(sample_detail_json):
    return DetailRow.from_json(sample_detail_json)


@pytest.fixture
def fake_source(sample_market_rows, sample_detail_row):
    source = FakeSource()
    source.markets = list(sample_market_rows)
    source.details = {"bitcoin": sample_detail_row}
    return source
