"""Remote source interfaces consumed by the cache coordinators."""

from abc import ABC, abstractmethod
from typing import List

from .models import MarketRow, DetailRow


class MarketDataSource(ABC):
    """Authoritative source of paged market listings."""

    @abstractmethod
    async def fetch_markets(self, currency: str, page_size: int, page: int) -> List[MarketRow]:
        """Fetch one page of market rows ranked by market cap.

        Args:
            currency: Quote currency code, e.g. ``usd``
            page_size: Number of rows per page
            page: 1-based page number

        Returns:
            Rows in rank order

        Raises:
            RemoteFetchError: On any transport or payload failure
        """
        pass


class DetailDataSource(ABC):
    """Authoritative source of per-coin detail."""

    @abstractmethod
    async def fetch_detail(self, coin_id: str) -> DetailRow:
        """Fetch detail for one coin, with prices keyed by currency.

        Raises:
            RemoteFetchError: On any transport or payload failure
        """
        pass
