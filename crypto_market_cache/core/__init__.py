"""
Core components: configuration, logging, clocks and CLI context.
"""

from crypto_market_cache.core.clock import Clock, SystemClock, ManualClock
from crypto_market_cache.core.config import ConfigManager, ConfigError
from crypto_market_cache.core.context import AppContext

__all__ = [
    "Clock",
    "SystemClock",
    "ManualClock",
    "ConfigManager",
    "ConfigError",
    "AppContext",
]
