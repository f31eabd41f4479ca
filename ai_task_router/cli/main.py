"""
CLI interface for AI Task Router.

Provides command-line access to the quota ledger and task routing.
"""

import os
import sys
from typing import Optional

import typer
from dotenv import load_dotenv
from rich.console import Console
from rich.table import Table

from ai_task_router.config.loader import RouterConfig, load_router_config
from ai_task_router.logging_config import setup_logging
from ai_task_router.service import build_services
from ai_task_router.storage.repository import QuotaLedger, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1

CONFIG_ENV = "AI_TASK_ROUTER_CONFIG"
DEFAULT_CONFIG_PATH = "router.yaml"


def _load_config(ctx: typer.Context) -> RouterConfig:
    config_path = ctx.obj["config_path"]
    try:
        config = load_router_config(config_path)
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Error loading config:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)
    setup_logging(config.logging.level, config.logging.format)
    return config


def _ledger(config: RouterConfig) -> QuotaLedger:
    return QuotaLedger(config.storage_path, outcome_retention_days=config.outcome_retention_days)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help=f"Path to router YAML config (default: ${CONFIG_ENV} or {DEFAULT_CONFIG_PATH})"
    )
):
    """AI Task Router CLI."""
    load_dotenv()
    ctx.obj = {"config_path": config or os.environ.get(CONFIG_ENV, DEFAULT_CONFIG_PATH)}
    if ctx.invoked_subcommand is None:
        console.print("AI Task Router - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the ledger database."""
    config = _load_config(ctx)
    try:
        initialize_schema(config.storage_path)
        console.print(f"[green]✓[/] Ledger initialized at {config.storage_path}")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing ledger:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def seed(ctx: typer.Context):
    """Upsert the configured model catalog into the ledger."""
    config = _load_config(ctx)
    if not config.catalog:
        console.print("[yellow]No models in catalog; nothing to seed[/]")
        sys.exit(EXIT_CODE_PASS)
    count = _ledger(config).upsert_models(config.catalog)
    console.print(f"[green]✓[/] Seeded {count} models")


@app.command()
def stats(ctx: typer.Context):
    """Show every model with its windowed usage and success rate."""
    config = _load_config(ctx)
    models = _ledger(config).get_model_stats()
    if not models:
        console.print("\n[bold yellow]No models in the ledger[/]")
        console.print("Run `ai-task-router seed` to load the catalog\n")
        sys.exit(EXIT_CODE_PASS)

    table = Table(title="Model Stats")
    table.add_column("Model")
    table.add_column("Origin")
    table.add_column("Rank", justify="right")
    table.add_column("Enabled")
    table.add_column("RPM", justify="right")
    table.add_column("TPM", justify="right")
    table.add_column("RPD", justify="right")
    table.add_column("TPD", justify="right")
    table.add_column("Success", justify="right")

    for model in models:
        descriptor, usage = model.descriptor, model.usage
        success_rate = model.success_rate
        table.add_row(
            model.name,
            model.origin,
            str(model.rank),
            "yes" if descriptor.enabled else "no",
            f"{usage.rpm_used}/{descriptor.rpm_allowed}",
            f"{usage.tpm_used:,}/{descriptor.tpm_total:,}",
            f"{usage.rpd_used}/{descriptor.rpd_total}",
            f"{usage.tpd_used:,}/{descriptor.tpd_total:,}",
            "N/A" if success_rate is None else f"{success_rate:.1f}%"
        )
    console.print(table)


@app.command()
def run(
    ctx: typer.Context,
    task: str = typer.Argument(..., help="Task to route and execute"),
    task_type: str = typer.Option("general", "--type", "-t", help="Task category recorded with the outcome")
):
    """Route a task to the best available model and execute it."""
    config = _load_config(ctx)
    services = build_services(config)
    result = services.router.execute_task(task, task_type)

    if result.decision is not None:
        console.print(f"[dim]Selected {result.decision.model}: {result.decision.reasoning}[/]")

    if not result.success:
        console.print(f"[red]✗ Task failed[/] ({result.error_type}) on {result.model_used}: {result.error}")
        sys.exit(EXIT_CODE_FAIL)

    console.print(result.response)
    console.print(
        f"\n[dim]Model: {result.model_used} | Tokens: {result.tokens_used:,} | "
        f"Attempts: {len(result.attempted_models)}[/]"
    )


@app.command()
def prune(ctx: typer.Context):
    """Delete usage and outcome events past their retention horizon."""
    config = _load_config(ctx)
    removed = _ledger(config).prune_expired()
    console.print(
        f"[green]✓[/] Pruned {removed['usage_events']} usage events "
        f"and {removed['outcome_events']} outcome events"
    )


@app.command()
def enable(ctx: typer.Context, name: str = typer.Argument(..., help="Model name")):
    """Enable a model."""
    _toggle(ctx, name, True)


@app.command()
def disable(ctx: typer.Context, name: str = typer.Argument(..., help="Model name")):
    """Disable a model."""
    _toggle(ctx, name, False)


@app.command()
def failures(
    ctx: typer.Context,
    name: str = typer.Argument(..., help="Model name"),
    limit: int = typer.Option(10, "--limit", "-n", help="Number of failures to show")
):
    """Show a model's most recent failed tasks."""
    config = _load_config(ctx)
    events = _ledger(config).get_recent_failures(name, limit)
    if not events:
        console.print(f"[green]No recorded failures for {name}[/]")
        return

    table = Table(title=f"Recent failures: {name}")
    table.add_column("Time")
    table.add_column("Task type")
    table.add_column("Error")
    for event in events:
        table.add_row(event.timestamp.isoformat(timespec="seconds"), event.task_type, event.error_message or "")
    console.print(table)


def _toggle(ctx: typer.Context, name: str, enabled: bool) -> None:
    config = _load_config(ctx)
    if not _ledger(config).set_enabled(name, enabled):
        console.print(f"[red]Unknown model:[/] {name}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] {name} {'enabled' if enabled else 'disabled'}")


if __name__ == "__main__":
    app()
