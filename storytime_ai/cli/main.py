"""
CLI interface for storytime_ai.

Provides command-line access to provider configuration, ad hoc chat calls,
image pricing and the usage ledger.
"""

import json
import logging
import sys
from typing import Optional
import sqlite3

import typer
from rich.console import Console
from rich.table import Table

from storytime_ai.config.loader import AiConfig, default_ai_config, load_ai_config
from storytime_ai.core.accounting import UsageAccounting
from storytime_ai.core.jobs import InlineDispatcher
from storytime_ai.core.manager import AiManager
from storytime_ai.storage.repository import get_repository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

CONFIG_OPTION = typer.Option(
    None,
    "--config",
    "-c",
    help="Path to AI YAML configuration (defaults to environment variables)"
)


def _load_config(config_path: Optional[str]) -> AiConfig:
    if config_path:
        return load_ai_config(config_path)
    return default_ai_config()


def _format_currency(amount: float) -> str:
    """Format currency with enough precision for per-request costs."""
    return f"${amount:,.2f}" if amount >= 1 else f"${amount:.6f}"


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """storytime-ai CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if ctx.invoked_subcommand is None:
        console.print("storytime-ai - Use --help to see available commands")


@app.command()
def init(config_path: Optional[str] = CONFIG_OPTION):
    """Initialize the request log database."""
    try:
        config = _load_config(config_path)
        initialize_schema(config.database_path)
        console.print(f"[green]✓[/] Database initialized successfully ({config.database_path})")
        sys.exit(EXIT_CODE_PASS)
    except (ValueError, OSError, sqlite3.Error) as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def providers(config_path: Optional[str] = CONFIG_OPTION):
    """List configured AI providers."""
    try:
        config = _load_config(config_path)
    except (ValueError, OSError) as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title="AI Providers")
    table.add_column("Provider")
    table.add_column("Driver")
    table.add_column("Model")
    table.add_column("Base URL")
    table.add_column("Cost / 1K tokens", justify="right")

    for name, provider in config.providers.items():
        label = f"{name} (default)" if name == config.default_provider else name
        table.add_row(label, provider.driver, provider.model, provider.base_url, f"{provider.cost_per_1k_tokens:g}")

    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def chat(
    prompt: str = typer.Argument(..., help="User message to send"),
    provider: Optional[str] = typer.Option(None, "--provider", "-p", help="Provider to use instead of the default"),
    context: Optional[str] = typer.Option(None, "--context", help="System context message"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Model override"),
    as_json: bool = typer.Option(False, "--json", help="Print the outcome as JSON"),
    track: bool = typer.Option(False, "--track", help="Store the call in the request log"),
    config_path: Optional[str] = CONFIG_OPTION,
):
    """Send one chat message to a provider and print the outcome."""
    try:
        config = _load_config(config_path)
    except (ValueError, OSError) as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    accounting = None
    if track:
        initialize_schema(config.database_path)
        accounting = UsageAccounting(get_repository(config.database_path), image_pricing=config.image_pricing)

    manager = AiManager(config, accounting=accounting, dispatcher=InlineDispatcher())
    if provider:
        if not manager.has_provider(provider):
            console.print(f"[red]Unknown provider:[/] {provider}")
            sys.exit(EXIT_CODE_FAIL)
        manager = manager.provider(provider)

    service = manager.chat()
    if model:
        service.set_model(model)
    service.set_context(context)
    service.add_user_message(prompt)
    outcome = service.chat()

    if track:
        service.track_request_log(None, None, None, "cli", outcome)

    if as_json:
        data = outcome.to_dict()
        data.pop("response", None)
        console.print_json(json.dumps(data))
    elif outcome.error:
        console.print(f"[red]Error:[/] {outcome.error}")
    else:
        console.print(outcome.completion)
        console.print(
            f"\n[dim]{outcome.model} · {outcome.prompt_tokens} prompt + "
            f"{outcome.completion_tokens} completion tokens · {_format_currency(outcome.total_cost)}[/]"
        )

    sys.exit(EXIT_CODE_FAIL if outcome.error else EXIT_CODE_PASS)


@app.command()
def usage(
    user: Optional[str] = typer.Option(None, "--user", "-u", help="Filter to a specific user id"),
    days: int = typer.Option(30, "--days", "-d", help="Number of days to include"),
    config_path: Optional[str] = CONFIG_OPTION,
):
    """Show AI spend from the request log."""
    try:
        config = _load_config(config_path)
        accounting = UsageAccounting(get_repository(config.database_path), image_pricing=config.image_pricing)
        summary = accounting.usage_summary(user_id=user, days=days)
    except sqlite3.OperationalError as e:
        if "no such table" in str(e).lower():
            console.print("\n[bold yellow]No AI usage recorded yet[/]")
            console.print("\nRun `storytime-ai init` to initialize the database.\n")
            sys.exit(EXIT_CODE_PASS)
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    except (ValueError, OSError) as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    stats = summary["stats"]
    console.print(f"\n[bold]AI usage, last {days} days[/bold]")
    console.print("-" * 40)
    console.print(f"Requests: {stats['total_requests']} ({stats['failed_requests']} failed)")
    console.print(f"Tokens: {stats['total_tokens']}")
    console.print(f"Images: {stats['total_images']}")
    console.print(f"Total cost: {_format_currency(stats['total_cost'])}")

    if summary["breakdown"]:
        table = Table()
        table.add_column("Type")
        table.add_column("Item type")
        table.add_column("Requests", justify="right")
        table.add_column("Cost", justify="right")
        for row in summary["breakdown"]:
            table.add_row(row["type"], row["item_type"], str(row["requests"]), _format_currency(row["total_cost"]))
        console.print(table)

    sys.exit(EXIT_CODE_PASS)


@app.command("price-image")
def price_image(
    model: str = typer.Argument(..., help="Image model identifier"),
    inputs: int = typer.Option(0, "--inputs", "-i", min=0, help="Number of input images"),
    outputs: int = typer.Option(1, "--outputs", "-o", min=0, help="Number of output images"),
    config_path: Optional[str] = CONFIG_OPTION,
):
    """Price an image generation call."""
    try:
        config = _load_config(config_path)
    except (ValueError, OSError) as e:
        console.print(f"[red]Error loading configuration:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    accounting = UsageAccounting(get_repository(config.database_path), image_pricing=config.image_pricing)
    priced = accounting.parse_image_response_for_store(model, inputs, outputs)

    console.print(f"[bold]Model:[/bold] {model}")
    console.print(f"Cost per input image: {_format_currency(priced['cost_per_input_image'])}")
    console.print(f"Cost per output image: {_format_currency(priced['cost_per_output_image'])}")
    console.print(f"Total cost: {_format_currency(priced['total_cost'])}")
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
