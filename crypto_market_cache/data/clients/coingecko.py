"""CoinGecko API client implementation."""

from typing import Dict, List, Optional
import logging

from ..api_client import BaseAPIClient, APIClientConfig, RateLimitConfig
from ..errors import RemoteFetchError
from ..models import MarketRow, DetailRow, DataSource
from ..sources import MarketDataSource, DetailDataSource

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.coingecko.com/api/v3"


class CoinGeckoClient(BaseAPIClient, MarketDataSource, DetailDataSource):
    """CoinGecko API client serving market listings and coin detail."""

    def __init__(self, api_key: Optional[str] = None, base_url: str = DEFAULT_BASE_URL,
                 timeout: int = 30, max_retries: int = 2,
                 requests_per_minute: Optional[int] = None):
        """Initialize CoinGecko client.

        Args:
            api_key: Optional CoinGecko demo API key for higher rate limits
            base_url: API root, overridable for proxies and tests
            timeout: Total request timeout in seconds
            max_retries: Transport-level retries per request
            requests_per_minute: Client-side limit; defaults by key tier
        """
        # CoinGecko rate limits (free tier vs demo key)
        if requests_per_minute is None:
            requests_per_minute = 30 if api_key else 10

        config = APIClientConfig(
            base_url=base_url,
            api_key=api_key,
            timeout=timeout,
            max_retries=max_retries,
            rate_limit=RateLimitConfig(requests_per_minute=requests_per_minute),
            headers={
                "Accept": "application/json",
                "User-Agent": "CryptoMarketCache/0.1"
            }
        )

        super().__init__(config, DataSource.COINGECKO)

    def _get_auth_headers(self) -> Dict[str, str]:
        """Get authentication headers for CoinGecko API.

        Returns:
            Dictionary of authentication headers
        """
        if self.config.api_key:
            return {"x-cg-demo-api-key": self.config.api_key}
        return {}

    async def fetch_markets(self, currency: str, page_size: int, page: int) -> List[MarketRow]:
        """Fetch one page of ``coins/markets`` ranked by market cap.

        Args:
            currency: Quote currency
            page_size: Rows per page
            page: 1-based page number

        Returns:
            List of MarketRow instances in rank order
        """
        params = {
            "vs_currency": currency.lower(),
            "order": "market_cap_desc",
            "per_page": page_size,
            "page": page,
            "sparkline": "false",
            "price_change_percentage": "24h",
        }

        data = await self._get_json("coins/markets", params=params)

        if not isinstance(data, list):
            raise RemoteFetchError(f"Malformed coins/markets payload: expected list, got {type(data).__name__}")

        rows = [MarketRow.from_json(item) for item in data]
        logger.debug(f"Fetched {len(rows)} market rows (page={page}, per_page={page_size}, {currency})")
        return rows

    async def fetch_detail(self, coin_id: str) -> DetailRow:
        """Fetch ``coins/{id}`` with market data and the 7 day sparkline.

        Args:
            coin_id: CoinGecko coin id, e.g. ``bitcoin``

        Returns:
            DetailRow with per-currency price maps
        """
        params = {
            "localization": "false",
            "tickers": "false",
            "market_data": "true",
            "community_data": "false",
            "developer_data": "false",
            "sparkline": "true",
        }

        data = await self._get_json(f"coins/{coin_id}", params=params)
        row = DetailRow.from_json(data)
        logger.debug(f"Fetched detail for {coin_id}")
        return row

    async def health_check(self) -> bool:
        """Check if CoinGecko API is healthy.

        Returns:
            True if API is healthy, False otherwise
        """
        try:
            response = await self._make_request("GET", "ping")
            return (
                response.is_success
                and isinstance(response.data, dict)
                and "gecko_says" in response.data
            )
        except RemoteFetchError as e:
            logger.error(f"CoinGecko health check failed: {e}")
            return False
