"""
CLI interface for Cost Ledger.

Provides command-line access to the ledger: recording costs, loading
exchange rates, and monthly reports.
"""

import asyncio
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from cost_ledger.config.loader import LedgerConfig, load_ledger_config, resolve_config_path
from cost_ledger.core.conversion import convert, cross_rate
from cost_ledger.core.currency import normalize_code
from cost_ledger.core.errors import LedgerError
from cost_ledger.core.report import Report, get_year_summary, summarize_by_category
from cost_ledger.storage.repository import LedgerStore, open_ledger

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

# Canonical code -> spelling shown to users
DISPLAY_ALIASES = {"EUR": "EURO"}


def display_code(code: str) -> str:
    """Presentation spelling of a canonical currency code."""
    return DISPLAY_ALIASES.get(code, code)


def _config(ctx: typer.Context) -> LedgerConfig:
    return ctx.obj if isinstance(ctx.obj, LedgerConfig) else LedgerConfig.default()


async def _open(config: LedgerConfig) -> LedgerStore:
    return await open_ledger(
        config.storage.store_name,
        config.storage.schema_version,
        data_dir=config.storage.data_dir,
        default_currency=config.currency.default,
    )


def _run(coro) -> None:
    """Run a command coroutine, mapping ledger failures to the failing exit code."""
    try:
        asyncio.run(coro)
    except LedgerError as e:
        console.print(f"[red]Error:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML config (defaults to $COST_LEDGER_CONFIG)"
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logging")
):
    """Cost Ledger CLI."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)]
        )

    try:
        ctx.obj = load_ledger_config(resolve_config_path(config))
    except (OSError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading config:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    if ctx.invoked_subcommand is None:
        console.print("Cost Ledger - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Create the ledger store if it does not exist."""
    async def _init():
        store = await _open(_config(ctx))
        console.print(f"[green]✓[/] Ledger ready at {store.db_path}")

    _run(_init())


@app.command()
def add(
    ctx: typer.Context,
    amount: str = typer.Argument(..., help="Amount spent"),
    currency: Optional[str] = typer.Option(None, "--currency", "-C", help="Currency code"),
    category: str = typer.Option("General", "--category", "-k", help="Expense category"),
    description: str = typer.Option("", "--description", "-d", help="Free-text description")
):
    """Record a cost."""
    async def _add():
        store = await _open(_config(ctx))
        stored = await store.add_cost({
            "sum": amount,
            "currency": currency,
            "category": category,
            "description": description,
        })
        console.print(
            f"[green]✓[/] Added {_format_amount(stored.sum)} {display_code(stored.currency)} "
            f"({stored.category})"
        )

    _run(_add())


@app.command("set-rates")
def set_rates(
    ctx: typer.Context,
    path: Path = typer.Argument(..., help="JSON or YAML file with a flat or {base, rates} table")
):
    """Replace the stored exchange rates from a file."""
    try:
        with open(path, 'r', encoding='utf-8') as f:
            table = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        console.print(f"[red]Error reading rates file:[/] {e}")
        sys.exit(EXIT_CODE_FAIL)

    async def _set():
        store = await _open(_config(ctx))
        snapshot = await store.set_rates(table)
        codes = snapshot.table.currencies
        console.print(
            f"[green]✓[/] Stored rates for {len(codes)} currencies: "
            f"{', '.join(display_code(code) for code in codes)}"
        )

    _run(_set())


@app.command()
def rates(ctx: typer.Context):
    """Show the stored exchange rates."""
    async def _show():
        store = await _open(_config(ctx))
        snapshot = await store.get_rates_snapshot()
        if snapshot is None:
            console.print("[yellow]No exchange rates stored[/]")
            return

        updated = datetime.fromtimestamp(snapshot.updated_at / 1000)
        table = Table(title=f"Exchange rates (updated {updated:%Y-%m-%d %H:%M})")
        table.add_column("Currency")
        table.add_column(f"Per 1 unit, in {display_code(snapshot.table.base or '?')}", justify="right")
        for code, value in snapshot.table.to_dict().items():
            table.add_row(display_code(code), f"{value:,.6f}")
        console.print(table)

    _run(_show())


@app.command()
def report(
    ctx: typer.Context,
    year: Optional[int] = typer.Option(None, "--year", "-y", help="Report year (default: current)"),
    month: Optional[int] = typer.Option(None, "--month", "-m", help="Report month (default: current)"),
    currency: Optional[str] = typer.Option(None, "--currency", "-C", help="Report currency")
):
    """Show the monthly report."""
    config = _config(ctx)
    now = datetime.now()

    async def _report():
        store = await _open(config)
        result = await store.get_report(
            year or now.year,
            month or now.month,
            currency or config.currency.report
        )
        _display_report(result)

    _run(_report())


@app.command()
def breakdown(
    ctx: typer.Context,
    year: Optional[int] = typer.Option(None, "--year", "-y", help="Report year (default: current)"),
    month: Optional[int] = typer.Option(None, "--month", "-m", help="Report month (default: current)"),
    currency: Optional[str] = typer.Option(None, "--currency", "-C", help="Report currency")
):
    """Show spending per category for a month."""
    config = _config(ctx)
    now = datetime.now()

    async def _breakdown():
        store = await _open(config)
        result = await store.get_report(
            year or now.year,
            month or now.month,
            currency or config.currency.report
        )
        totals = summarize_by_category(result)
        code = display_code(result.total.currency)

        table = Table(title=f"Spending by category {result.year}-{result.month:02d}")
        table.add_column("Category")
        table.add_column(f"Total ({code})", justify="right")
        for category, value in totals.items():
            table.add_row(category, _format_amount(value))
        console.print(table)
        _warn_if_unconverted(result)

    _run(_breakdown())


@app.command("year-summary")
def year_summary(
    ctx: typer.Context,
    year: Optional[int] = typer.Option(None, "--year", "-y", help="Year (default: current)"),
    currency: Optional[str] = typer.Option(None, "--currency", "-C", help="Report currency")
):
    """Show monthly totals for a year."""
    config = _config(ctx)
    target = currency or config.currency.report
    selected_year = year or datetime.now().year

    async def _summary():
        store = await _open(config)
        totals = await get_year_summary(store, selected_year, target)

        table = Table(title=f"Totals by month {selected_year}")
        table.add_column("Month")
        code = display_code(normalize_code(target, store.default_currency))
        table.add_column(f"Total ({code})", justify="right")
        for month, value in totals.items():
            table.add_row(f"{month:02d}", _format_amount(value))
        console.print(table)

    _run(_summary())


@app.command("convert")
def convert_command(
    ctx: typer.Context,
    amount: str = typer.Argument(..., help="Amount to convert"),
    from_code: str = typer.Argument(..., help="Source currency"),
    to_code: str = typer.Argument(..., help="Target currency")
):
    """Convert an amount using the stored exchange rates."""
    async def _convert():
        store = await _open(_config(ctx))
        table = await store.get_latest_rates()
        if table is None:
            console.print("[yellow]No exchange rates stored; amount shown unconverted[/]")

        value = convert(amount, from_code, to_code, table, default=store.default_currency)
        rate = cross_rate(from_code, to_code, table)
        console.print(
            f"{amount} {display_code(normalize_code(from_code))} = "
            f"{_format_amount(float(value))} {display_code(normalize_code(to_code))}"
        )
        if rate is not None:
            console.print(f"[dim]Rate: {rate:.6f}[/]")

    _run(_convert())


def _format_amount(amount: float) -> str:
    """Format an amount with thousands separators and 2 decimals."""
    return f"{amount:,.2f}"


def _warn_if_unconverted(result: Report) -> None:
    if not result.converted:
        console.print("[yellow]No exchange rates stored; amounts were summed without conversion[/]")


def _display_report(result: Report) -> None:
    """Display a monthly report as a table with its total."""
    code = display_code(result.total.currency)
    console.print(f"\n[bold]Monthly Report {result.year}-{result.month:02d}[/bold]")
    console.print("-" * 40)

    if not result.costs:
        console.print("\n[dim]No costs recorded for this period.[/]")
    else:
        table = Table()
        table.add_column("Day", justify="right")
        table.add_column("Category")
        table.add_column("Description")
        table.add_column("Sum", justify="right")
        table.add_column("Currency")
        for item in result.costs:
            table.add_row(
                str(item.day),
                item.category,
                item.description,
                _format_amount(item.sum),
                display_code(item.currency)
            )
        console.print(table)

    console.print(f"\n[bold]Total:[/bold] {_format_amount(result.total.total)} {code}")
    _warn_if_unconverted(result)


if __name__ == "__main__":
    app()
