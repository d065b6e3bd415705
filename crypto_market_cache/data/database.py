"""SQLite cache store for market listings and coin detail."""

import sqlite3
from pathlib import Path
from typing import List, Optional, Union
import logging

import aiosqlite

from .errors import StoreError
from .models import MarketRecord, DetailRecord

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Keyed SQLite store with upsert-by-id and market-cap ranked range reads.

    Every operation opens its own connection, so concurrent calls from
    separate tasks do not share a cursor. Each batch upsert runs in a single
    transaction: either every row lands or none do.
    """

    def __init__(self, db_path: Union[str, Path] = "market_cache.db", timeout: float = 5.0):
        """Initialize database manager.

        Args:
            db_path: Path to SQLite database file
            timeout: Seconds to wait on a locked database before failing
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._initialized = False

    def _connect(self):
        return aiosqlite.connect(self.db_path, timeout=self.timeout)

    async def initialize(self):
        """Initialize database and create tables."""
        if self._initialized:
            return

        # Ensure database directory exists
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            async with self._connect() as db:
                await self._create_tables(db)
                await self._create_indexes(db)
                await db.commit()
        except (sqlite3.Error, OSError) as e:
            raise StoreError(f"Failed to initialize database at {self.db_path}", cause=e)

        self._initialized = True
        logger.info(f"Database initialized at {self.db_path}")

    async def _create_tables(self, db: aiosqlite.Connection):
        """Create database tables."""

        await db.execute("""
            CREATE TABLE IF NOT EXISTS market_records (
                id TEXT PRIMARY KEY,
                symbol TEXT NOT NULL,
                name TEXT NOT NULL,
                image_url TEXT NOT NULL,
                current_price REAL NOT NULL,
                market_cap REAL,
                change_24h_pct REAL,
                high_24h REAL,
                low_24h REAL,
                updated_at INTEGER NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS detail_records (
                id TEXT PRIMARY KEY,
                symbol TEXT NOT NULL,
                name TEXT NOT NULL,
                image_small TEXT NOT NULL,
                current_price REAL NOT NULL,
                market_cap REAL,
                change_24h_pct REAL,
                high_24h REAL,
                low_24h REAL,
                sparkline_7d TEXT NOT NULL,
                updated_at INTEGER NOT NULL
            )
        """)

    async def _create_indexes(self, db: aiosqlite.Connection):
        """Create database indexes for ranked reads and expiry sweeps."""
        indexes = [
            "CREATE INDEX IF NOT EXISTS idx_market_records_market_cap ON market_records(market_cap DESC)",
            "CREATE INDEX IF NOT EXISTS idx_market_records_updated_at ON market_records(updated_at)",
            "CREATE INDEX IF NOT EXISTS idx_detail_records_updated_at ON detail_records(updated_at)",
        ]

        for index_sql in indexes:
            await db.execute(index_sql)

    async def upsert_markets(self, records: List[MarketRecord]) -> int:
        """Insert or replace market records by id.

        Args:
            records: Records to write

        Returns:
            Number of records written

        Raises:
            StoreError: If the batch could not be written; nothing is applied
        """
        if not records:
            return 0

        rows = [
            (
                r.id, r.symbol, r.name, r.image_url, r.current_price, r.market_cap,
                r.change_24h_pct, r.high_24h, r.low_24h, r.updated_at
            )
            for r in records
        ]

        try:
            async with self._connect() as db:
                await db.executemany("""
                    INSERT OR REPLACE INTO market_records (
                        id, symbol, name, image_url, current_price, market_cap,
                        change_24h_pct, high_24h, low_24h, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, rows)
                await db.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to upsert {len(records)} market records: {e}")
            raise StoreError("Failed to upsert market records", cause=e)

        return len(rows)

    async def query_markets(self, limit: int, offset: int) -> List[MarketRecord]:
        """Read up to ``limit`` market records from ``offset`` by market cap, largest first.

        Rows without a market cap rank last.
        """
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row

                async with db.execute("""
                    SELECT * FROM market_records
                    ORDER BY market_cap IS NULL, market_cap DESC, id ASC
                    LIMIT ? OFFSET ?
                """, (limit, offset)) as cursor:
                    rows = await cursor.fetchall()
                    return [self._row_to_market(row) for row in rows]
        except sqlite3.Error as e:
            raise StoreError(f"Failed to query market records (limit={limit}, offset={offset})", cause=e)

    async def get_market(self, coin_id: str) -> Optional[MarketRecord]:
        """Get a single market record by id."""
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row

                async with db.execute("SELECT * FROM market_records WHERE id = ?", (coin_id,)) as cursor:
                    row = await cursor.fetchone()
                    return self._row_to_market(row) if row else None
        except sqlite3.Error as e:
            raise StoreError(f"Failed to get market record {coin_id}", cause=e)

    def _row_to_market(self, row: aiosqlite.Row) -> MarketRecord:
        """Convert database row to MarketRecord instance."""
        return MarketRecord(
            id=row['id'],
            symbol=row['symbol'],
            name=row['name'],
            image_url=row['image_url'],
            current_price=row['current_price'],
            market_cap=row['market_cap'],
            change_24h_pct=row['change_24h_pct'],
            high_24h=row['high_24h'],
            low_24h=row['low_24h'],
            updated_at=row['updated_at'],
        )

    async def upsert_detail(self, record: DetailRecord) -> None:
        """Insert or replace one detail record by id.

        Raises:
            StoreError: If the record could not be written
        """
        try:
            async with self._connect() as db:
                await db.execute("""
                    INSERT OR REPLACE INTO detail_records (
                        id, symbol, name, image_small, current_price, market_cap,
                        change_24h_pct, high_24h, low_24h, sparkline_7d, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    record.id, record.symbol, record.name, record.image_small,
                    record.current_price, record.market_cap, record.change_24h_pct,
                    record.high_24h, record.low_24h, record.sparkline_json(),
                    record.updated_at
                ))
                await db.commit()
        except sqlite3.Error as e:
            logger.error(f"Failed to upsert detail for {record.id}: {e}")
            raise StoreError(f"Failed to upsert detail record {record.id}", cause=e)

    async def get_detail(self, coin_id: str) -> Optional[DetailRecord]:
        """Get the cached detail record for ``coin_id``, or ``None``."""
        try:
            async with self._connect() as db:
                db.row_factory = aiosqlite.Row

                async with db.execute("SELECT * FROM detail_records WHERE id = ?", (coin_id,)) as cursor:
                    row = await cursor.fetchone()
                    return self._row_to_detail(row) if row else None
        except sqlite3.Error as e:
            raise StoreError(f"Failed to get detail record {coin_id}", cause=e)

    def _row_to_detail(self, row: aiosqlite.Row) -> DetailRecord:
        """Convert database row to DetailRecord instance."""
        return DetailRecord(
            id=row['id'],
            symbol=row['symbol'],
            name=row['name'],
            image_small=row['image_small'],
            current_price=row['current_price'],
            market_cap=row['market_cap'],
            change_24h_pct=row['change_24h_pct'],
            high_24h=row['high_24h'],
            low_24h=row['low_24h'],
            sparkline_7d=DetailRecord.parse_sparkline(row['sparkline_7d']),
            updated_at=row['updated_at'],
        )

    async def count_markets(self) -> int:
        return await self._count("market_records")

    async def count_details(self) -> int:
        return await self._count("detail_records")

    async def _count(self, table: str) -> int:
        try:
            async with self._connect() as db:
                async with db.execute(f"SELECT COUNT(*) FROM {table}") as cursor:
                    row = await cursor.fetchone()
                    return row[0]
        except sqlite3.Error as e:
            raise StoreError(f"Failed to count {table}", cause=e)

    async def delete_expired_markets(self, before_ms: int) -> int:
        """Delete market records last written before ``before_ms``."""
        return await self._delete_expired("market_records", before_ms)

    async def delete_expired_details(self, before_ms: int) -> int:
        """Delete detail records last written before ``before_ms``."""
        return await self._delete_expired("detail_records", before_ms)

    async def _delete_expired(self, table: str, before_ms: int) -> int:
        try:
            async with self._connect() as db:
                cursor = await db.execute(f"DELETE FROM {table} WHERE updated_at < ?", (before_ms,))
                deleted = cursor.rowcount
                await db.commit()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to delete expired rows from {table}", cause=e)

        if deleted:
            logger.info(f"Deleted {deleted} expired rows from {table}")
        return deleted

    async def close(self):
        """Mark the store closed; connections are per operation."""
        self._initialized = False
        logger.info("Database connections closed")
