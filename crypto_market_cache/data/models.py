"""Data models for cached market listings, coin detail and remote payloads."""

from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any, List
import json

from .errors import RemoteFetchError


class DataSource(Enum):
    """Supported data sources."""
    COINGECKO = "coingecko"


def _optional_float(value: Any) -> Optional[float]:
    """Coerce a JSON number to float, keeping ``None`` as absent."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise TypeError(f"expected a number, got {value!r}")
    return float(value)


def _currency_map(value: Any) -> Optional[Dict[str, float]]:
    """Coerce a ``{currency: number}`` object, dropping null entries."""
    if value is None:
        return None
    if not isinstance(value, dict):
        raise TypeError(f"expected an object keyed by currency, got {type(value).__name__}")
    return {
        str(currency).lower(): float(amount)
        for currency, amount in value.items()
        if amount is not None
    }


def _require(data: Dict[str, Any], key: str, kind: str) -> Any:
    if key not in data or data[key] is None:
        raise RemoteFetchError(f"Malformed {kind} payload: missing '{key}'")
    return data[key]


@dataclass
class MarketRecord:
    """One row of a market listing as held in the local cache."""

    id: str
    symbol: str
    name: str
    image_url: str
    current_price: float
    market_cap: Optional[float] = None
    change_24h_pct: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    updated_at: int = 0  # epoch ms of the local cache write

    @property
    def updated_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.updated_at / 1000, tz=timezone.utc)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MarketRecord':
        """Create instance from dictionary."""
        return cls(**data)


@dataclass
class DetailRecord:
    """Coin detail projected into a single currency."""

    id: str
    symbol: str
    name: str
    image_small: str = ""
    current_price: float = 0.0
    market_cap: Optional[float] = None
    change_24h_pct: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None
    sparkline_7d: List[float] = field(default_factory=list)
    updated_at: int = 0  # epoch ms of the local cache write

    @property
    def updated_at_datetime(self) -> datetime:
        return datetime.fromtimestamp(self.updated_at / 1000, tz=timezone.utc)

    def sparkline_json(self) -> str:
        """Serialize the 7 day series for storage."""
        return json.dumps(self.sparkline_7d)

    @staticmethod
    def parse_sparkline(raw: Optional[str]) -> List[float]:
        """Inverse of :meth:`sparkline_json`; empty or missing gives ``[]``."""
        if not raw:
            return []
        return [float(v) for v in json.loads(raw)]

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DetailRecord':
        """Create instance from dictionary."""
        data = dict(data)
        data['sparkline_7d'] = list(data.get('sparkline_7d') or [])
        return cls(**data)


@dataclass
class MarketRow:
    """A ``coins/markets`` entry as returned by the remote API."""

    id: str
    symbol: str
    name: str
    image: str
    current_price: float
    market_cap: Optional[float] = None
    price_change_percentage_24h: Optional[float] = None
    high_24h: Optional[float] = None
    low_24h: Optional[float] = None

    @classmethod
    def from_json(cls, data: Any) -> 'MarketRow':
        """Validate and convert one raw JSON object.

        Raises:
            RemoteFetchError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise RemoteFetchError(f"Malformed market row: expected object, got {type(data).__name__}")

        try:
            price = data.get('current_price')
            return cls(
                id=str(_require(data, 'id', 'market row')),
                symbol=str(_require(data, 'symbol', 'market row')),
                name=str(_require(data, 'name', 'market row')),
                image=str(data.get('image') or ""),
                # Delisted coins report a null price
                current_price=float(price) if price is not None else 0.0,
                market_cap=_optional_float(data.get('market_cap')),
                price_change_percentage_24h=_optional_float(data.get('price_change_percentage_24h')),
                high_24h=_optional_float(data.get('high_24h')),
                low_24h=_optional_float(data.get('low_24h')),
            )
        except (TypeError, ValueError) as e:
            raise RemoteFetchError(f"Malformed market row {data.get('id')!r}", cause=e)


@dataclass
class DetailMarketData:
    """The ``market_data`` block of a ``coins/{id}`` response."""

    current_price: Dict[str, float] = field(default_factory=dict)
    market_cap: Optional[Dict[str, float]] = None
    price_change_percentage_24h: Optional[float] = None
    high_24h: Optional[Dict[str, float]] = None
    low_24h: Optional[Dict[str, float]] = None
    sparkline_7d: Optional[List[float]] = None

    @classmethod
    def from_json(cls, data: Any) -> 'DetailMarketData':
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise RemoteFetchError("Malformed detail payload: 'market_data' is not an object")

        try:
            sparkline = data.get('sparkline_7d')
            series = None
            if isinstance(sparkline, dict) and sparkline.get('price') is not None:
                series = [float(v) for v in sparkline['price'] if v is not None]

            return cls(
                current_price=_currency_map(data.get('current_price')) or {},
                market_cap=_currency_map(data.get('market_cap')),
                price_change_percentage_24h=_optional_float(data.get('price_change_percentage_24h')),
                high_24h=_currency_map(data.get('high_24h')),
                low_24h=_currency_map(data.get('low_24h')),
                sparkline_7d=series,
            )
        except (TypeError, ValueError) as e:
            raise RemoteFetchError("Malformed detail payload: bad 'market_data'", cause=e)


@dataclass
class DetailRow:
    """A ``coins/{id}`` response reduced to the fields the cache needs."""

    id: str
    symbol: str
    name: str
    image: Dict[str, str] = field(default_factory=dict)
    market_data: DetailMarketData = field(default_factory=DetailMarketData)

    @classmethod
    def from_json(cls, data: Any) -> 'DetailRow':
        """Validate and convert a raw JSON object.

        Raises:
            RemoteFetchError: If required fields are missing or mistyped
        """
        if not isinstance(data, dict):
            raise RemoteFetchError(f"Malformed detail payload: expected object, got {type(data).__name__}")

        image = data.get('image') or {}
        if not isinstance(image, dict):
            raise RemoteFetchError("Malformed detail payload: 'image' is not an object")

        return cls(
            id=str(_require(data, 'id', 'detail')),
            symbol=str(_require(data, 'symbol', 'detail')),
            name=str(_require(data, 'name', 'detail')),
            image={str(k): str(v) for k, v in image.items() if v is not None},
            market_data=DetailMarketData.from_json(data.get('market_data')),
        )


@dataclass
class APIResponse:
    """Wrapper for API responses with metadata."""

    data: Any
    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    response_time: float = 0.0
    data_source: DataSource = DataSource.COINGECKO
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def is_success(self) -> bool:
        """Check if response was successful."""
        return 200 <= self.status_code < 300

    def to_json(self) -> str:
        """Convert response data to JSON string."""
        return json.dumps(self.data, default=str)
