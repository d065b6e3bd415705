"""Tests for data models and row mappers."""

from datetime import datetime, timezone

import pytest

from crypto_market_cache.data.errors import RemoteFetchError
from crypto_market_cache.data.mappers import detail_row_to_record, market_row_to_record
from crypto_market_cache.data.models import (
    APIResponse,
    DetailRecord,
    DetailRow,
    MarketRecord,
    MarketRow,
)


@pytest.fixture
def market_json():
    return {
        "id": "bitcoin",
        "symbol": "btc",
        "name": "Bitcoin",
        "image": "https://img.example/bitcoin.png",
        "current_price": 50000,
        "market_cap": 1000000000000,
        "market_cap_rank": 1,
        "price_change_percentage_24h": -1.5,
        "high_24h": 51000,
        "low_24h": 49000,
        "total_volume": 30000000000,
    }


class TestMarketRow:
    """Test MarketRow parsing."""

    def test_from_json(self, market_json):
        row = MarketRow.from_json(market_json)

        assert row.id == "bitcoin"
        assert row.image == "https://img.example/bitcoin.png"
        assert row.current_price == 50000.0
        assert isinstance(row.current_price, float)
        assert row.market_cap == 1e12
        assert row.price_change_percentage_24h == -1.5

    def test_nullable_fields(self, market_json):
        market_json.update(current_price=None, market_cap=None, high_24h=None,
                           low_24h=None, price_change_percentage_24h=None, image=None)

        row = MarketRow.from_json(market_json)

        assert row.current_price == 0.0
        assert row.market_cap is None
        assert row.high_24h is None
        assert row.image == ""

    @pytest.mark.parametrize("missing", ["id", "symbol", "name"])
    def test_missing_required_field(self, market_json, missing):
        del market_json[missing]

        with pytest.raises(RemoteFetchError, match=missing):
            MarketRow.from_json(market_json)

    def test_wrong_type(self, market_json):
        market_json["market_cap"] = "lots"

        with pytest.raises(RemoteFetchError) as exc_info:
            MarketRow.from_json(market_json)

        assert isinstance(exc_info.value.cause, ValueError)

    def test_not_an_object(self):
        with pytest.raises(RemoteFetchError):
            MarketRow.from_json(["bitcoin"])


class TestDetailRow:
    """Test DetailRow parsing."""

    def test_from_json(self, sample_detail_json):
        row = DetailRow.from_json(sample_detail_json)

        assert row.id == "bitcoin"
        assert row.image["small"] == "https://img.example/bitcoin/small.png"
        assert row.market_data.current_price == {"usd": 50000.0, "eur": 46000.0}
        assert row.market_data.sparkline_7d == [48000.0, 49000.5, 50000.0]

    def test_without_market_data(self):
        row = DetailRow.from_json({"id": "newcoin", "symbol": "new", "name": "New"})

        assert row.image == {}
        assert row.market_data.current_price == {}
        assert row.market_data.market_cap is None
        assert row.market_data.sparkline_7d is None

    def test_null_prices_are_dropped(self, sample_detail_json):
        sample_detail_json["market_data"]["current_price"]["gbp"] = None

        row = DetailRow.from_json(sample_detail_json)
        assert "gbp" not in row.market_data.current_price

    def test_currency_keys_lowercased(self, sample_detail_json):
        sample_detail_json["market_data"]["current_price"] = {"USD": 1}

        row = DetailRow.from_json(sample_detail_json)
        assert row.market_data.current_price == {"usd": 1.0}

    def test_bad_market_data(self, sample_detail_json):
        sample_detail_json["market_data"]["current_price"] = [1, 2]

        with pytest.raises(RemoteFetchError):
            DetailRow.from_json(sample_detail_json)

    def test_missing_id(self, sample_detail_json):
        del sample_detail_json["id"]

        with pytest.raises(RemoteFetchError):
            DetailRow.from_json(sample_detail_json)


class TestMappers:
    """Test row to record conversion."""

    def test_market_row_to_record(self, market_json):
        record = market_row_to_record(MarketRow.from_json(market_json), updated_at=123)

        assert record == MarketRecord(
            id="bitcoin",
            symbol="btc",
            name="Bitcoin",
            image_url="https://img.example/bitcoin.png",
            current_price=50000.0,
            market_cap=1e12,
            change_24h_pct=-1.5,
            high_24h=51000.0,
            low_24h=49000.0,
            updated_at=123,
        )

    def test_detail_projection(self, sample_detail_row):
        record = detail_row_to_record(sample_detail_row, "EUR", updated_at=7)

        assert record.current_price == 46000.0
        assert record.market_cap == 920000000000.0
        assert record.updated_at == 7

    def test_detail_projection_missing_currency(self, sample_detail_row):
        record = detail_row_to_record(sample_detail_row, "chf", updated_at=7)

        assert record.current_price == 0.0
        assert record.market_cap is None
        assert record.high_24h is None
        assert record.low_24h is None

    def test_detail_without_small_image(self, sample_detail_json):
        sample_detail_json["image"] = {"thumb": "t.png"}

        record = detail_row_to_record(DetailRow.from_json(sample_detail_json), "usd", 0)
        assert record.image_small == ""


class TestRecords:
    """Test cache record helpers."""

    def test_market_record_round_trip(self):
        record = MarketRecord(id="eth", symbol="eth", name="Ethereum", image_url="",
                              current_price=3000.0, updated_at=1_700_000_000_000)

        assert MarketRecord.from_dict(record.to_dict()) == record
        assert record.updated_at_datetime == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_sparkline_serialization(self):
        record = DetailRecord(id="btc", symbol="btc", name="Bitcoin", sparkline_7d=[1.0, 2.5])

        assert record.sparkline_json() == "[1.0, 2.5]"
        assert DetailRecord.parse_sparkline(record.sparkline_json()) == [1.0, 2.5]
        assert DetailRecord.parse_sparkline("") == []
        assert DetailRecord.parse_sparkline(None) == []

    def test_detail_from_dict_copies_sparkline(self):
        data = {"id": "btc", "symbol": "btc", "name": "Bitcoin", "sparkline_7d": None}
        assert DetailRecord.from_dict(data).sparkline_7d == []


class TestAPIResponse:
    """Test APIResponse model."""

    @pytest.mark.parametrize("status,ok", [(200, True), (204, True), (404, False), (500, False)])
    def test_is_success(self, status, ok):
        assert APIResponse(data={}, status_code=status).is_success is ok

    def test_to_json(self):
        response = APIResponse(data={"gecko_says": "(V3) To the Moon!"}, status_code=200)
        assert response.to_json() == '{"gecko_says": "(V3) To the Moon!"}'
