"""
CLI interface for bot telemetry.

Provides command-line access to schema setup, configuration inspection,
cost quotes and a smoke test against a live admin intake.
"""

import asyncio
import sys
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from bot_telemetry.config.loader import (
    ForwarderConfig,
    load_forwarder_config,
    load_forwarder_config_file,
)
from bot_telemetry.core.pricing import cost_for_text, format_usd
from bot_telemetry.demo.smoke import run_smoke
from bot_telemetry.logging_setup import configure_logging
from bot_telemetry.storage.db import DEFAULT_DB_PATH
from bot_telemetry.storage.repository import SqliteStore, initialize_schema
from bot_telemetry.telemetry.forwarder import TelemetryForwarder

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


def _load_config(config_path: Optional[str]) -> ForwarderConfig:
    if config_path:
        return load_forwarder_config_file(config_path)
    return load_forwarder_config()


def _mask(secret: str) -> str:
    if not secret:
        return "(not set)"
    return secret[:2] + "*" * max(len(secret) - 2, 4)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    log_level: str = typer.Option("WARNING", "--log-level", help="Minimum log level"),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit JSON log lines"),
):
    """Bot telemetry CLI."""
    configure_logging(log_level, json=json_logs)
    if ctx.invoked_subcommand is None:
        console.print("Bot telemetry - Use --help to see available commands")


@app.command()
def init(
    db_path: str = typer.Option(DEFAULT_DB_PATH, "--db", help="SQLite database path"),
):
    """Initialize the local telemetry database."""
    try:
        initialize_schema(db_path)
        console.print(f"[green]✓[/] Database initialized at {db_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="YAML config file"),
):
    """Show the resolved forwarder configuration."""
    try:
        config = _load_config(config_path)
    except (OSError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="Forwarder configuration")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("intake endpoint", config.intake_endpoint)
    table.add_row("customer key", _mask(config.admin_key))
    table.add_row("write mode", config.write_mode.value)
    table.add_row("fallback local on fail", str(config.fallback_local_on_fail))
    table.add_row("timeout (s)", f"{config.timeout_seconds:g}")
    table.add_row("retry on failure", str(config.retry_on_failure))
    table.add_row("database", config.db_path)
    console.print(table)


@app.command()
def price(
    model: str = typer.Argument(..., help="Model identifier"),
    prompt: int = typer.Option(0, "--prompt", "-p", help="Prompt tokens"),
    completion: int = typer.Option(0, "--completion", help="Completion tokens"),
    cached: int = typer.Option(0, "--cached", help="Cached prompt tokens"),
):
    """Quote the cost of a chat completion."""
    cost = cost_for_text(model, prompt, completion, cached)

    if cost.unknown:
        console.print(f"[yellow]No pricing found for model {model}; cost is {format_usd(0)}[/]")
        return

    table = Table(title=f"Cost for {model} (billed as {cost.resolved_model})")
    table.add_column("Component")
    table.add_column("Tokens", justify="right")
    table.add_column("USD", justify="right")
    table.add_row("prompt", f"{prompt:,}", format_usd(cost.prompt_usd))
    table.add_row("completion", f"{completion:,}", format_usd(cost.completion_usd))
    table.add_row("cached", f"{cached:,}", format_usd(cost.cached_usd))
    table.add_row("[bold]total[/bold]", "", f"[bold]{format_usd(cost.total)}[/bold]")
    console.print(table)


@app.command()
def smoke(
    tenant: str = typer.Option("test", "--tenant", "-t", help="Tenant id to log under"),
    config_path: Optional[str] = typer.Option(None, "--config", "-c", help="YAML config file"),
):
    """Send one event of every kind through the forwarder."""
    try:
        config = _load_config(config_path)
    except (OSError, ValueError) as e:
        console.print(f"[red]Invalid configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    store = SqliteStore(config.db_path)
    if config.write_mode.writes_local or config.fallback_local_on_fail:
        store.initialize()

    async def _run():
        async with TelemetryForwarder(config, store) as forwarder:
            return await run_smoke(forwarder, tenant)

    results = asyncio.run(_run())

    table = Table(title=f"Smoke test ({config.write_mode.value} mode)")
    table.add_column("Event")
    table.add_column("Remote")
    for kind, ok in results:
        table.add_row(kind, "[green]ok[/]" if ok else "[red]failed[/]")
    console.print(table)

    if config.write_mode.writes_remote and not all(ok for _, ok in results):
        sys.exit(EXIT_CODE_FAIL)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
