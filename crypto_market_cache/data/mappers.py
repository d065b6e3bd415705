"""Conversions from remote rows to cache records."""

from typing import List

from .models import MarketRow, DetailRow, MarketRecord, DetailRecord


def market_row_to_record(row: MarketRow, updated_at: int) -> MarketRecord:
    """Build a cache record from a listing row, stamped with the local write time."""
    return MarketRecord(
        id=row.id,
        symbol=row.symbol,
        name=row.name,
        image_url=row.image,
        current_price=row.current_price,
        market_cap=row.market_cap,
        change_24h_pct=row.price_change_percentage_24h,
        high_24h=row.high_24h,
        low_24h=row.low_24h,
        updated_at=updated_at,
    )


def market_rows_to_records(rows: List[MarketRow], updated_at: int) -> List[MarketRecord]:
    return [market_row_to_record(row, updated_at) for row in rows]


def detail_row_to_record(row: DetailRow, currency: str, updated_at: int) -> DetailRecord:
    """Project a detail row into one currency.

    A currency missing from the per-currency maps yields ``current_price=0.0``
    and ``None`` for the other currency-keyed fields instead of failing.
    """
    currency = currency.lower()
    market = row.market_data

    def pick(prices):
        return prices.get(currency) if prices else None

    return DetailRecord(
        id=row.id,
        symbol=row.symbol,
        name=row.name,
        image_small=row.image.get('small', ""),
        current_price=market.current_price.get(currency, 0.0),
        market_cap=pick(market.market_cap),
        change_24h_pct=market.price_change_percentage_24h,
        high_24h=pick(market.high_24h),
        low_24h=pick(market.low_24h),
        sparkline_7d=list(market.sparkline_7d or []),
        updated_at=updated_at,
    )
