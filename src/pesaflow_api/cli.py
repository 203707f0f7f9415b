"""
Pesaflow CLI.

Usage:
    pesaflow [OPTIONS] COMMAND [ARGS]...
"""
from __future__ import annotations

import asyncio
import os
from pathlib import Path

import click
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from pesaflow_core.config import ENV_FILE_VARIABLE, PesaflowSettings
from pesaflow_core.exceptions import PesaflowException
from pesaflow_core.logging import mask_value
from pesaflow_core.logging_config import setup_logging
from pesaflow_checkout.orchestrator import CheckoutOrchestrator

console = Console()

# Registration happens before a notification id exists
_UNREGISTERED_IPN = "unregistered"


def _load_settings(ctx: click.Context, **overrides) -> PesaflowSettings:
    env_file = ctx.obj.get("env_file")
    try:
        if env_file:
            return PesaflowSettings(_env_file=Path(env_file), **overrides)
        return PesaflowSettings(**overrides)
    except ValidationError as e:
        console.print("[red]Invalid configuration:[/red]")
        for error in e.errors():
            field = ".".join(str(loc) for loc in error["loc"])
            console.print(f"  PESAFLOW_{field.upper()}: {error['msg']}")
        raise click.exceptions.Exit(2)


@click.group()
@click.version_option(package_name="pesaflow", message="%(prog)s %(version)s")
@click.option("--env-file", type=click.Path(dir_okay=False), help="Read settings from this .env file")
@click.option("-v", "--verbose", is_flag=True, help="Enable verbose output")
@click.pass_context
def cli(ctx, env_file: str | None, verbose: bool):
    """Pesaflow - Pesapal payment orchestration service."""
    ctx.ensure_object(dict)
    ctx.obj["env_file"] = env_file
    ctx.obj["verbose"] = verbose
    setup_logging(level="DEBUG" if verbose else "WARNING", json_format=False)


@cli.command()
@click.option("--host", default="0.0.0.0", show_default=True, help="Bind address")
@click.option("--port", type=int, default=None, help="Port (defaults to PESAFLOW_PORT)")
@click.option("--reload", is_flag=True, help="Reload on code changes (development)")
@click.pass_context
def serve(ctx, host: str, port: int | None, reload: bool):
    """Run the HTTP API with uvicorn."""
    import uvicorn

    settings = _load_settings(ctx)
    console.print(
        f"[bold blue]Starting pesaflow[/bold blue] on {host}:{port or settings.port} "
        f"([cyan]{settings.environment}[/cyan])"
    )
    if reload:
        # Reload workers import the app factory and read settings from the environment
        env_file = ctx.obj.get("env_file")
        if env_file:
            os.environ[ENV_FILE_VARIABLE] = str(Path(env_file).resolve())
        uvicorn.run(
            "pesaflow_api.main:create_app",
            factory=True,
            host=host,
            port=port or settings.port,
            reload=True,
            log_config=None,
        )
        return

    from pesaflow_api.main import create_app

    uvicorn.run(create_app(settings), host=host, port=port or settings.port, log_config=None)


@cli.command("register-ipn")
@click.option("--url", default=None, help="Notification URL (defaults to PESAFLOW_CALLBACK_URL)")
@click.option(
    "--type",
    "notification_type",
    type=click.Choice(["GET", "POST"]),
    default="GET",
    show_default=True,
    help="HTTP method the gateway uses for notifications",
)
@click.pass_context
def register_ipn(ctx, url: str | None, notification_type: str):
    """Register the notification URL with Pesapal (one-time setup)."""
    settings = _load_settings(ctx, ipn_id=_UNREGISTERED_IPN)

    async def _run() -> str:
        orchestrator = CheckoutOrchestrator.from_settings(settings)
        try:
            return await orchestrator.register_ipn(url, notification_type)
        finally:
            await orchestrator.close()

    try:
        ipn_id = asyncio.run(_run())
    except PesaflowException as e:
        console.print(f"[red]✗ Registration failed:[/red] {e.message}")
        raise click.exceptions.Exit(1)

    console.print("\n[green]✓ Notification URL registered[/green]")
    console.print(f"IPN id: [bold]{ipn_id}[/bold]")
    console.print(f"Set [cyan]PESAFLOW_IPN_ID={ipn_id}[/cyan] before starting the service.\n")


@cli.command("expire-stale")
@click.pass_context
def expire_stale(ctx):
    """Fail orders whose gateway callback never arrived."""
    settings = _load_settings(ctx)
    if not settings.use_postgres:
        console.print(
            "[yellow]No PESAFLOW_DATABASE_URL configured; the in-memory store has no orders to expire.[/yellow]"
        )

    async def _run() -> int:
        orchestrator = CheckoutOrchestrator.from_settings(settings)
        try:
            await orchestrator.start()
            return await orchestrator.expire_stale()
        finally:
            await orchestrator.close()

    expired = asyncio.run(_run())
    console.print(f"[green]✓ Expired {expired} order(s)[/green]")


@cli.command()
@click.pass_context
def status(ctx):
    """Show current configuration (secrets masked)."""
    settings = _load_settings(ctx)

    table = Table(title="Pesaflow Configuration", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")

    table.add_row("Environment", settings.environment)
    table.add_row("Gateway URL", settings.gateway_base_url)
    table.add_row("Consumer key", mask_value(settings.consumer_key))
    table.add_row("Consumer secret", "***")
    table.add_row("Callback URL", settings.callback_url)
    table.add_row("IPN id", settings.ipn_id)
    table.add_row("Success page", settings.success_redirect_url)
    table.add_row("Failure page", settings.failure_redirect_url)
    table.add_row("Order store", "PostgreSQL" if settings.use_postgres else "In-memory")
    table.add_row("Callback timeout", f"{settings.callback_timeout_minutes} min")
    table.add_row("Port", str(settings.port))

    console.print()
    console.print(table)
    console.print()


if __name__ == "__main__":
    cli()
