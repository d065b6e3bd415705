"""
Application context shared between CLI commands via ContextVar.
"""

from contextvars import ContextVar
from dataclasses import dataclass, field
from typing import Any, Dict


@dataclass
class AppContext:
    """
    Application context that holds global state and configuration.

    Created by the top-level CLI group and read by subcommands.
    """
    config: Dict[str, Any] = field(default_factory=dict)
    services: Dict[str, Any] = field(default_factory=dict)
    debug: bool = False
    verbose: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)


app_context: ContextVar[AppContext] = ContextVar('app_context')


def get_current_context() -> AppContext:
    """Get the current application context, creating an empty one if unset."""
    try:
        return app_context.get()
    except LookupError:
        context = AppContext()
        app_context.set(context)
        return context


def set_context(context: AppContext) -> None:
    """Set the application context."""
    app_context.set(context)
