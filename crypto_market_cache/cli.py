"""
Main CLI module.

Loads configuration, sets up logging and stores both in the application
context for the command groups registered below.
"""

import logging
import uuid
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.logging import RichHandler

from crypto_market_cache import __version__
from crypto_market_cache.core.config import ConfigManager, ConfigError
from crypto_market_cache.core.context import AppContext, get_current_context, set_context
from crypto_market_cache.core.logging import setup_logging

console = Console()
err_console = Console(stderr=True)
logger = logging.getLogger(__name__)


def configure_logging(config_manager: ConfigManager, debug: bool, verbose: bool) -> None:
    """Set up logging from configuration, with CLI flags taking precedence."""
    config = config_manager.get_all()
    log_config = config.setdefault('logging', {})

    if debug:
        log_config['level'] = 'DEBUG'
    elif verbose:
        log_config['level'] = 'INFO'
    else:
        log_config['level'] = 'WARNING'

    handler = RichHandler(console=err_console, rich_tracebacks=True, show_path=debug)
    handler.setFormatter(logging.Formatter("%(message)s", datefmt="[%X]"))
    setup_logging(config, extra_handlers=[handler])


@click.group(invoke_without_command=True)
@click.option('--debug', is_flag=True, help='Enable debug mode')
@click.option('--verbose', '-v', is_flag=True, help='Enable verbose output')
@click.option('--config', '-c', 'config_dir', type=click.Path(exists=True, file_okay=False),
              help='Configuration directory')
@click.pass_context
def main(ctx: click.Context, debug: bool, verbose: bool, config_dir: Optional[str]) -> None:
    """
    Crypto Market Cache - locally cached cryptocurrency market data.

    Market listings and coin detail are served from a local SQLite cache
    while fresh and fetched from CoinGecko otherwise.
    """
    app_ctx = AppContext(debug=debug, verbose=verbose)
    app_ctx.metadata['correlation_id'] = uuid.uuid4().hex[:12]
    set_context(app_ctx)

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        return

    config_manager = ConfigManager(config_dir=Path(config_dir) if config_dir else None)
    try:
        config_manager.initialize()
    except ConfigError as e:
        raise click.ClickException(str(e))

    app_ctx.config = config_manager.get_all()
    app_ctx.services['config_manager'] = config_manager

    configure_logging(config_manager, debug, verbose)
    logger.debug(f"Running {ctx.invoked_subcommand}")


@main.command()
def version() -> None:
    """Show version information."""
    app_ctx = get_current_context()

    console.print(f"[bold]Crypto Market Cache[/bold] v{__version__}")

    if app_ctx.verbose:
        cache = app_ctx.config.get('cache', {})
        console.print(f"Market TTL: {cache.get('market_ttl_ms')} ms")
        console.print(f"Detail TTL: {cache.get('detail_ttl_ms')} ms")


def register_commands():
    """Register all command groups with the main CLI."""
    from crypto_market_cache.commands.data import data

    main.add_command(data)


register_commands()


if __name__ == '__main__':
    main()
