"""Error types surfaced by the market data cache."""

from typing import Optional


class MarketCacheError(Exception):
    """Base class for cache errors.

    Always carries the underlying exception (if any) as ``cause`` so callers
    can log or inspect it without unwrapping ``__cause__`` themselves.
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        message = super().__str__()
        if self.cause is not None:
            return f"{message}: {self.cause}"
        return message


class RemoteFetchError(MarketCacheError):
    """Network, HTTP or deserialization failure from a remote data source."""
    pass


class StoreError(MarketCacheError):
    """Storage I/O failure from the local cache store."""
    pass
