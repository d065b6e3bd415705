"""
Structured logging setup.

Provides a JSON formatter for machine-readable output, a filter that tags
records with CLI context, and a manager that wires console and rotating
file handlers from the ``logging`` section of the configuration.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional
import traceback

# Attributes every LogRecord carries; anything else came in via ``extra=``
_RESERVED_ATTRS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'lineno', 'funcName', 'created',
    'msecs', 'relativeCreated', 'thread', 'threadName',
    'processName', 'process', 'getMessage', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message',
}


class StructuredFormatter(logging.Formatter):
    """
    Formatter for structured JSON logging.

    Emits one JSON object per record with timestamp, level, logger, source
    location, exception details and any ``extra`` fields.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": traceback.format_exception(*record.exc_info)
            }

        if self.include_extra:
            extra_fields = {}
            for key, value in record.__dict__.items():
                if key in _RESERVED_ATTRS:
                    continue
                try:
                    # Only include JSON-serializable values
                    json.dumps(value)
                    extra_fields[key] = value
                except (TypeError, ValueError):
                    extra_fields[key] = str(value)

            if extra_fields:
                log_data["extra"] = extra_fields

        return json.dumps(log_data, default=str)


class ContextFilter(logging.Filter):
    """Adds the current CLI flags and correlation id to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        from crypto_market_cache.core.context import get_current_context

        app_ctx = get_current_context()

        record.debug_mode = app_ctx.debug
        record.verbose_mode = app_ctx.verbose

        if 'correlation_id' in app_ctx.metadata:
            record.correlation_id = app_ctx.metadata['correlation_id']

        return True


class LoggingManager:
    """
    Logging management system.

    Handles setup of console and file handlers, structured output and
    third-party logger levels.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self.handlers: List[logging.Handler] = []

    def setup_logging(self, extra_handlers: Optional[List[logging.Handler]] = None) -> None:
        """Set up the complete logging system.

        Args:
            extra_handlers: Handlers installed alongside the configured ones,
                e.g. a rich console handler that replaces the plain one
        """
        log_config = self.config.get('logging', {})

        level = getattr(logging, str(log_config.get('level', 'INFO')).upper())
        root_logger = logging.getLogger()
        root_logger.setLevel(level)

        for handler in self.handlers:
            root_logger.removeHandler(handler)
        self.handlers = []

        if extra_handlers:
            self.handlers.extend(extra_handlers)
        else:
            self._setup_console_handler(log_config)
        self._setup_file_handler(log_config)

        context_filter = ContextFilter()
        for handler in self.handlers:
            handler.addFilter(context_filter)
            root_logger.addHandler(handler)

        logging.getLogger('crypto_market_cache').setLevel(level)
        logging.getLogger('aiosqlite').setLevel(logging.WARNING)
        logging.getLogger('asyncio').setLevel(logging.WARNING)

    def _setup_console_handler(self, log_config: Dict[str, Any]) -> None:
        """Set up console logging handler."""
        console_config = log_config.get('handlers', {}).get('console', {})

        if not console_config.get('enabled', True):
            return

        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(getattr(logging, str(console_config.get('level', 'INFO')).upper()))

        if log_config.get('structured', False):
            formatter = StructuredFormatter()
        else:
            format_str = log_config.get('format',
                '%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            formatter = logging.Formatter(format_str)

        handler.setFormatter(formatter)
        self.handlers.append(handler)

    def _setup_file_handler(self, log_config: Dict[str, Any]) -> None:
        """Set up file logging handler with rotation."""
        file_config = log_config.get('handlers', {}).get('file', {})

        if not file_config.get('enabled', False):
            return

        log_file = Path(file_config.get('filename', 'logs/market_cache.log'))
        log_file.parent.mkdir(parents=True, exist_ok=True)

        handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=file_config.get('max_bytes', 10 * 1024 * 1024),  # 10MB
            backupCount=file_config.get('backup_count', 5)
        )
        handler.setLevel(getattr(logging, str(file_config.get('level', 'DEBUG')).upper()))

        # Always use structured logging for file output
        handler.setFormatter(StructuredFormatter())

        self.handlers.append(handler)


# Global logging manager instance
_logging_manager: Optional[LoggingManager] = None


def get_logging_manager() -> LoggingManager:
    """Get the global logging manager instance."""
    global _logging_manager
    if _logging_manager is None:
        _logging_manager = LoggingManager()
    return _logging_manager


def setup_logging(config: Optional[Dict[str, Any]] = None,
                  extra_handlers: Optional[List[logging.Handler]] = None) -> None:
    """Set up the global logging system."""
    manager = get_logging_manager()
    if config:
        manager.config = config
    manager.setup_logging(extra_handlers)
