"""CLI commands for cached market data."""

import asyncio
import functools
import json
from typing import List, Optional

import click
from rich.console import Console
from rich.table import Table
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich import box

from ..core.config import ConfigManager
from ..core.context import get_current_context
from ..data.errors import MarketCacheError
from ..data.models import MarketRecord, DetailRecord
from ..data.service import DataService, create_data_service

console = Console()


def async_command(f):
    """Decorator to make Click commands async-compatible."""

    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        return asyncio.run(f(*args, **kwargs))
    return wrapper


def _get_data_service() -> DataService:
    app_ctx = get_current_context()
    config_manager = app_ctx.services.get('config_manager')

    if config_manager is None:
        config_manager = ConfigManager()
        config_manager.initialize()
        app_ctx.services['config_manager'] = config_manager

    return create_data_service(config_manager)


def _fail(message: str, error: Exception) -> None:
    """Report a command failure and exit with status 1."""
    app_ctx = get_current_context()

    console.print(f"[red]{message}: {error}[/red]")
    if app_ctx.debug:
        console.print_exception()

    raise click.exceptions.Exit(1)


def _default_currency() -> str:
    return get_current_context().config.get('defaults', {}).get('currency', 'usd')


def _default_page_size() -> int:
    return int(get_current_context().config.get('defaults', {}).get('page_size', 50))


@click.group()
@click.pass_context
def data(ctx):
    """Market listing and coin detail commands."""
    pass


@data.command()
@click.option('--page', '-p', default=1, type=click.IntRange(min=1), help='Page number (1-based)')
@click.option('--per-page', 'per_page', type=click.IntRange(min=1),
              help='Rows per page (default from config)')
@click.option('--currency', '-c', help='Quote currency (default from config)')
@click.option('--refresh', is_flag=True, help='Bypass the cache and fetch from the source')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']),
              default='table', help='Output format')
@click.pass_context
@async_command
async def markets(ctx, page: int, per_page: Optional[int], currency: Optional[str],
                  refresh: bool, output_format: str):
    """List coins ordered by market capitalisation.

    Examples:
        crypto-market-cache data markets
        crypto-market-cache data markets --page 2 --per-page 25
        crypto-market-cache data markets --refresh --format json
    """
    currency = currency or _default_currency()
    per_page = per_page or _default_page_size()

    try:
        async with _get_data_service() as data_service:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True
            ) as progress:
                task = progress.add_task(f"Loading market page {page}...", total=None)

                if refresh:
                    records = await data_service.refresh_markets(page, per_page, currency)
                else:
                    records = await data_service.get_markets(page, per_page, currency)

                progress.update(task, completed=True)
    except (MarketCacheError, ValueError) as e:
        _fail("Error loading markets", e)

    if output_format == 'json':
        _display_markets_json(records)
    elif not records:
        console.print("[yellow]No market data for this page[/yellow]")
    else:
        _display_markets_table(records, currency, page)


@data.command()
@click.argument('coin_id')
@click.option('--currency', '-c', help='Quote currency (default from config)')
@click.option('--refresh', is_flag=True, help='Bypass the cache and fetch from the source')
@click.option('--format', 'output_format', type=click.Choice(['table', 'json']),
              default='table', help='Output format')
@click.pass_context
@async_command
async def detail(ctx, coin_id: str, currency: Optional[str], refresh: bool, output_format: str):
    """Show detail for a single coin.

    Examples:
        crypto-market-cache data detail bitcoin
        crypto-market-cache data detail ethereum --currency eur --format json
    """
    currency = currency or _default_currency()

    try:
        async with _get_data_service() as data_service:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True
            ) as progress:
                task = progress.add_task(f"Loading {coin_id}...", total=None)

                if refresh:
                    record = await data_service.refresh_detail(coin_id, currency)
                else:
                    record = await data_service.get_detail(coin_id, currency)

                progress.update(task, completed=True)
    except (MarketCacheError, ValueError) as e:
        _fail(f"Error loading detail for {coin_id}", e)

    if output_format == 'json':
        click.echo(json.dumps(record.to_dict(), indent=2))
    else:
        _display_detail_table(record, currency)


@data.command()
@click.pass_context
@async_command
async def purge(ctx):
    """Delete cached rows older than their TTL."""
    try:
        async with _get_data_service() as data_service:
            deleted = await data_service.purge_expired()
    except MarketCacheError as e:
        _fail("Error purging cache", e)

    console.print(
        f"[green]Purged {deleted['markets']} market and {deleted['details']} detail records[/green]"
    )


@data.command()
@click.pass_context
@async_command
async def health(ctx):
    """Show store and API health."""
    try:
        async with _get_data_service() as data_service:
            with Progress(
                SpinnerColumn(),
                TextColumn("[progress.description]{task.description}"),
                console=console,
                transient=True
            ) as progress:
                task = progress.add_task("Checking service health...", total=None)
                status = await data_service.health_check()
                progress.update(task, completed=True)
    except MarketCacheError as e:
        _fail("Error checking health", e)

    health_table = Table(title="Service Health", box=box.ROUNDED)
    health_table.add_column("Component", style="cyan")
    health_table.add_column("Status", style="green")

    health_table.add_row("Database", _status_text(status.get('database')))
    for client_name, client_healthy in status.get('api_clients', {}).items():
        health_table.add_row(f"API ({client_name})", _status_text(client_healthy))

    console.print(health_table)

    stats_table = Table(title="Cache Statistics", box=box.ROUNDED)
    stats_table.add_column("Metric", style="cyan")
    stats_table.add_column("Value", style="green")

    stats_table.add_row("Cached Markets", str(status.get('cached_markets', 'N/A')))
    stats_table.add_row("Cached Details", str(status.get('cached_details', 'N/A')))

    single_flight = status.get('single_flight')
    if single_flight is not None:
        stats_table.add_row("Fetches Started", str(single_flight.get('started', 0)))
        stats_table.add_row("Fetches Coalesced", str(single_flight.get('coalesced', 0)))
    else:
        stats_table.add_row("Single-flight", "disabled")

    console.print(stats_table)


def _status_text(healthy: bool) -> str:
    if healthy:
        return "[green]✓ Healthy[/green]"
    return "[red]✗ Unhealthy[/red]"


def _format_money(value: Optional[float]) -> str:
    if value is None:
        return "N/A"
    if value >= 1:
        return f"{value:,.2f}"
    return f"{value:.8f}".rstrip('0').rstrip('.') or "0"


def _format_change(change: Optional[float]) -> str:
    if change is None:
        return "N/A"
    color = "green" if change >= 0 else "red"
    return f"[{color}]{change:+.2f}%[/{color}]"


def _display_markets_table(records: List[MarketRecord], currency: str, page: int):
    """Display a market page in table format."""
    table = Table(title=f"Markets ({currency.upper()}) - page {page}", box=box.ROUNDED)
    table.add_column("Symbol", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Price", style="green", justify="right")
    table.add_column("24h Change", justify="right")
    table.add_column("Market Cap", style="blue", justify="right")
    table.add_column("Updated", style="dim")

    for record in records:
        market_cap = f"{record.market_cap:,.0f}" if record.market_cap is not None else "N/A"
        table.add_row(
            record.symbol.upper(),
            record.name,
            _format_money(record.current_price),
            _format_change(record.change_24h_pct),
            market_cap,
            record.updated_at_datetime.strftime("%H:%M:%S")
        )

    console.print(table)


def _display_markets_json(records: List[MarketRecord]):
    """Display a market page in JSON format."""
    click.echo(json.dumps([record.to_dict() for record in records], indent=2))


def _display_detail_table(record: DetailRecord, currency: str):
    """Display coin detail in table format."""
    table = Table(title=f"{record.name} ({record.symbol.upper()})", box=box.ROUNDED)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("ID", record.id)
    table.add_row(f"Price ({currency.upper()})", _format_money(record.current_price))
    table.add_row("24h Change", _format_change(record.change_24h_pct))
    table.add_row("24h High", _format_money(record.high_24h))
    table.add_row("24h Low", _format_money(record.low_24h))
    market_cap = f"{record.market_cap:,.0f}" if record.market_cap is not None else "N/A"
    table.add_row("Market Cap", market_cap)

    if record.sparkline_7d:
        table.add_row("7d Range", f"{_format_money(min(record.sparkline_7d))} - "
                                  f"{_format_money(max(record.sparkline_7d))}")
    table.add_row("Updated", record.updated_at_datetime.isoformat(timespec='seconds'))

    console.print(table)
