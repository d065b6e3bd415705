"""Freshness rules, cache keys and in-flight request coalescing."""

import asyncio
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Hashable, Iterable, Optional, Protocol
import logging

logger = logging.getLogger(__name__)

MARKET_TTL_MS = 60_000    # 1 minute
DETAIL_TTL_MS = 300_000   # 5 minutes


class Stamped(Protocol):
    updated_at: int


@dataclass
class CacheConfig:
    """Configuration for cache behavior."""

    market_ttl_ms: int = MARKET_TTL_MS
    detail_ttl_ms: int = DETAIL_TTL_MS
    single_flight: bool = True  # Collapse concurrent misses for the same key


def is_fresh(updated_at: int, now_ms: int, ttl_ms: int) -> bool:
    """A record is fresh while its age is strictly below the TTL."""
    return now_ms - updated_at < ttl_ms


def page_is_fresh(records: Iterable[Stamped], now_ms: int, ttl_ms: int) -> bool:
    """A cached page is fresh only if non-empty and every record is fresh.

    Short pages count; a single stale record makes the whole page stale.
    """
    records = list(records)
    return bool(records) and all(is_fresh(r.updated_at, now_ms, ttl_ms) for r in records)


def page_offset(page: int, page_size: int) -> int:
    """Offset of the first row of a 1-based page."""
    if page < 1:
        raise ValueError(f"page must be >= 1, got {page}")
    if page_size < 1:
        raise ValueError(f"page_size must be >= 1, got {page_size}")
    return (page - 1) * page_size


def cache_key_for_markets(page: int, page_size: int, currency: str, forced: bool = False) -> tuple:
    """Generate the in-flight key for a market listing page.

    Forced refreshes get their own key so they never join a read-through fetch.
    """
    kind = "markets-refresh" if forced else "markets"
    return (kind, page, page_size, currency.lower())


def cache_key_for_detail(coin_id: str, currency: str, forced: bool = False) -> tuple:
    """Generate the in-flight key for a coin detail record."""
    kind = "detail-refresh" if forced else "detail"
    return (kind, coin_id, currency.lower())


class RequestCoalescer:
    """Single-flight table of in-progress fetches keyed by cache key.

    The first caller for a key starts the work as a task; concurrent callers
    for the same key await that task and receive the same result or the same
    exception. The work is shielded, so a caller that gives up does not
    cancel it for the others, and writes it started still complete.
    """

    def __init__(self):
        self._in_flight: Dict[Hashable, asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self._stats = {
            'started': 0,
            'coalesced': 0,
        }

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Join the in-flight call for ``key`` or start one with ``factory``.

        Args:
            key: Cache key identifying the request
            factory: Zero-argument coroutine function doing the work

        Returns:
            The shared result

        Raises:
            Exception: Whatever ``factory`` raised, re-raised in every waiter
        """
        async with self._lock:
            task = self._in_flight.get(key)

            if task is None:
                task = asyncio.ensure_future(factory())
                self._in_flight[key] = task
                task.add_done_callback(lambda t, k=key: self._forget(k, t))
                self._stats['started'] += 1
                logger.debug(f"Starting fetch for {key}")
            else:
                self._stats['coalesced'] += 1
                logger.debug(f"Joining in-flight fetch for {key}")

        return await asyncio.shield(task)

    def _forget(self, key: Hashable, task: asyncio.Task) -> None:
        if self._in_flight.get(key) is task:
            del self._in_flight[key]
        # Mark the exception retrieved when every waiter has gone away
        if not task.cancelled():
            task.exception()

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight requests."""
        return len(self._in_flight)

    def get_stats(self) -> Dict[str, Any]:
        """Get coalescer statistics."""
        return {
            'active_requests': len(self._in_flight),
            'started': self._stats['started'],
            'coalesced': self._stats['coalesced'],
        }


async def run_single_flight(coalescer: Optional[RequestCoalescer], key: Hashable,
                            factory: Callable[[], Awaitable[Any]]) -> Any:
    """Run ``factory`` through ``coalescer`` when one is configured."""
    if coalescer is None:
        return await factory()
    return await coalescer.run(key, factory)
