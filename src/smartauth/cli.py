"""
smartauth CLI — manage stored OAuth credentials.

Usage:
    smartauth login --profile default
    smartauth status
    smartauth token --profile staging
    smartauth logout --profile staging
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from smartauth import __version__
from smartauth.config import AuthConfig
from smartauth.exceptions import AuthError, ConfigurationError

app = typer.Typer(
    name="smartauth",
    help="🔑 smartauth — OAuth login and token management",
    no_args_is_help=True,
    rich_markup_mode="rich",
)
console = Console()

_state: dict[str, str | None] = {"config": None}


def _version_callback(value: bool) -> None:
    if value:
        console.print(f"[bold]smartauth[/bold] v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config: str = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to config file",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        help="Show debug logging",
    ),
    version: bool = typer.Option(
        None,
        "--version",
        "-v",
        help="Show version",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """🔑 smartauth — log in once, authenticate every request."""
    _state["config"] = config
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(message)s",
            handlers=[RichHandler(console=console, show_path=False)],
        )


def _load_config(**overrides: str) -> AuthConfig:
    from smartauth.auth.store import init_store

    try:
        cfg = AuthConfig.load(_state["config"], **{k: v for k, v in overrides.items() if v})
    except ValidationError as e:
        raise ConfigurationError(f"Invalid configuration: {e}") from e
    init_store(cfg.credentials_file)
    return cfg


@app.command()
def login(
    profile: str = typer.Option(None, "--profile", "-p", help="Profile to log in"),
) -> None:
    """Log in through the browser and store the credentials."""
    from smartauth.auth.authenticator import LoginAuthenticator

    async def _run() -> None:
        async with LoginAuthenticator.from_config(cfg, profile) as auth:
            await auth.login()

    try:
        cfg = _load_config(profile=profile)
        with console.status("[bold green]Waiting for you to log in in the browser...[/bold green]"):
            asyncio.run(_run())
    except AuthError as e:
        console.print(f"[red]Login failed:[/red] {e}")
        raise typer.Exit(1)

    console.print(f"[green]✓[/green] Logged in profile [bold]{cfg.profile}[/bold]")


@app.command()
def logout(
    profile: str = typer.Option(None, "--profile", "-p", help="Profile to log out"),
) -> None:
    """Remove the stored credentials of a profile."""
    from smartauth.auth.store import get_store

    try:
        cfg = _load_config(profile=profile)
        removed = get_store().delete(cfg.profile)
    except AuthError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if removed:
        console.print(f"[green]✓[/green] Logged out profile [bold]{cfg.profile}[/bold]")
    else:
        console.print(f"[yellow]No credentials stored for profile {cfg.profile}[/yellow]")


@app.command()
def status() -> None:
    """Show the stored profiles and when their tokens expire."""
    from smartauth.auth.store import get_store

    try:
        cfg = _load_config()
        profiles = get_store().load_all()
    except AuthError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    if not profiles:
        console.print(f"[dim]No credentials stored in {cfg.credentials_file}[/dim]")
        return

    now = datetime.now(timezone.utc)
    table = Table(title="Stored Credentials")
    table.add_column("Profile", style="cyan")
    table.add_column("Expires At")
    table.add_column("Status")
    table.add_column("Scope", style="dim")

    for name, creds in sorted(profiles.items()):
        if creds.is_expired(cfg.expiry_margin, now=now):
            state = "[yellow]expired[/yellow]"
        else:
            state = "[green]valid[/green]"
        expires = creds.expires_at.astimezone(timezone.utc).strftime("%Y-%m-%d %H:%M:%S UTC")
        table.add_row(name, expires, state, creds.scope)

    console.print(table)


@app.command()
def token(
    profile: str = typer.Option(None, "--profile", "-p", help="Profile to use"),
) -> None:
    """Print a valid access token, logging in or refreshing if needed."""
    from smartauth.auth.authenticator import LoginAuthenticator

    async def _run() -> str:
        async with LoginAuthenticator.from_config(cfg, profile) as auth:
            credentials = await auth.ensure_credentials()
            return credentials.access_token

    try:
        cfg = _load_config(profile=profile)
        access_token = asyncio.run(_run())
    except AuthError as e:
        console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1)

    typer.echo(access_token)


if __name__ == "__main__":
    app()
