"""
Typer commands for configuring, inspecting and running the bot.
"""

import asyncio
import logging
import os
from datetime import datetime, timedelta, timezone
from pathlib import Path

import typer
from rich.console import Console
from rich.logging import RichHandler

from story_relay import __version__
from story_relay.api.client import CatalogClient, normalize_identifier
from story_relay.bot.runner import serve
from story_relay.exceptions import StoryRelayError
from story_relay.storage.config_manager import ConfigManager
from story_relay.storage.ledger import RequestLedger
from story_relay.storage.users import UserStore

from .formatters import (
    print_catalog_table,
    print_config,
    print_quota_panel,
    print_validation_table,
)

console = Console()

logging.basicConfig(
    level="WARNING",
    format="%(message)s",
    datefmt="[%X]",
    handlers=[
        RichHandler(
            console=console,
            rich_tracebacks=True,
            show_path=False,
            markup=True,
        )
    ],
)
log = logging.getLogger("story_relay")
log.setLevel("INFO")

app = typer.Typer(
    name="story-relay",
    help="A Telegram bot that fetches, archives and relays stories on request.",
    rich_markup_mode="rich",
    pretty_exceptions_show_locals=False,
    add_completion=False,
)


def get_config_dir() -> Path:
    return Path(os.getenv("XDG_CONFIG_HOME", "~/.config")).expanduser() / "story-relay"


CONFIG_FILE = Path(os.getenv("STORY_RELAY_CONFIG", get_config_dir() / "config.ini"))


def _load_config(cli_options: dict | None = None):
    try:
        return ConfigManager(CONFIG_FILE).load_config(cli_options)
    except StoryRelayError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1) from e


@app.callback(invoke_without_command=True)
def main_callback(
    ctx: typer.Context,
    verbose: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-vv for debug).",
    ),
    version: bool = typer.Option(
        False, "--version", help="Show version and exit.", is_eager=True
    ),
    show_config: bool = typer.Option(
        False, "--show-config", help="Display the configuration file."
    ),
):
    """Story relay bot"""
    if version:
        console.print(f"[bold]story-relay[/bold] version [cyan]{__version__}[/cyan]")
        raise typer.Exit()

    if verbose >= 2:
        log.setLevel("DEBUG")
    elif verbose == 1:
        logging.getLogger("aiohttp").setLevel("INFO")

    if show_config:
        if not CONFIG_FILE.is_file():
            console.print(
                "[red]✗ Config file not found.[/] Run [cyan]story-relay init[/cyan]"
                " first."
            )
            raise typer.Exit(code=1)
        try:
            file_settings = ConfigManager(CONFIG_FILE).read_file()
        except StoryRelayError as e:
            console.print(f"[red]✗ {e}[/red]")
            raise typer.Exit(code=1) from e
        print_config(CONFIG_FILE, file_settings)
        raise typer.Exit()

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())


@app.command()
def init(
    bot_token: str = typer.Option(..., prompt=True, hide_input=True, help="Telegram bot token."),
    catalog_api_url: str = typer.Option(..., prompt=True, help="Catalog API base URL."),
    catalog_api_key: str = typer.Option(
        ..., prompt=True, hide_input=True, help="Catalog API key."
    ),
    archive_channel_id: int = typer.Option(
        ..., prompt=True, help="Numeric ID of the archive channel."
    ),
    app_env: str = typer.Option("development", help="development or production."),
    force: bool = typer.Option(
        False, "--force", "-f", help="Overwrite an existing file without asking."
    ),
):
    """Create a configuration file."""
    if (
        CONFIG_FILE.exists()
        and not force
        and not typer.confirm("Configuration file already exists. Overwrite it?")
    ):
        raise typer.Abort()

    settings = {
        "bot_token": bot_token,
        "catalog_api_url": catalog_api_url,
        "catalog_api_key": catalog_api_key,
        "archive_channel_id": archive_channel_id,
        "app_env": app_env,
    }
    try:
        ConfigManager(CONFIG_FILE).save_new_config(settings)
    except StoryRelayError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise typer.Exit(code=1) from e
    console.print(f"\n[bold green]✓ Configuration saved to '{CONFIG_FILE}'[/bold green]")
    console.print("Start the bot with: [cyan]story-relay run[/cyan]")


@app.command()
def validate():
    """Validate the configuration and show the effective settings."""
    print_validation_table(_load_config())


@app.command()
def run(
    env: str | None = typer.Option(
        None, "--env", help="Override the environment (development, production)."
    ),
    workers: int | None = typer.Option(
        None, "-w", "--workers", help="Maximum simultaneous media downloads."
    ),
    no_health: bool = typer.Option(
        False, "--no-health", help="Do not serve the /health endpoint."
    ),
):
    """Run the bot until interrupted."""
    config = _load_config({"app_env": env, "max_workers": workers})
    asyncio.run(serve(config, with_health=not no_health))


@app.command()
def catalog(
    identifier: str = typer.Argument(..., help="Username, @username or +phone."),
):
    """Fetch and list the stories for an identifier without relaying them."""
    config = _load_config()

    async def _fetch():
        async with CatalogClient.from_config(config) as client:
            return await client.fetch_catalog(identifier)

    result = asyncio.run(_fetch())
    print_catalog_table(normalize_identifier(identifier), result, config.tzinfo)


@app.command()
def quota(user_id: int = typer.Argument(..., help="Telegram user ID.")):
    """Show a user's usage of today's quota and their latest requests."""
    config = _load_config()

    async def _quota():
        users = UserStore(config.database_path)
        ledger = RequestLedger(config.database_path, day_tz=config.tzinfo)
        user = await users.get_by_id(user_id)
        used = await ledger.count_today_successes(user_id)
        recent = await ledger.list_for_user(user_id, limit=10)
        return user, used, recent

    user, used, recent = asyncio.run(_quota())
    print_quota_panel(
        user, user_id, used, config.daily_quota, recent, datetime.now(timezone.utc)
    )


@app.command()
def premium(
    user_id: int = typer.Argument(..., help="Telegram user ID."),
    days: int = typer.Option(30, "--days", "-d", help="Length of the grant in days."),
    role: str | None = typer.Option(
        None, "--role", help="Also set the user's role (e.g. admin)."
    ),
):
    """Grant bot premium (no daily limit) to a user."""
    config = _load_config()
    expires_at = datetime.now(timezone.utc) + timedelta(days=days)

    async def _grant():
        users = UserStore(config.database_path)
        if await users.get_by_id(user_id) is None:
            return False
        await users.set_premium(user_id, expires_at, role)
        return True

    if not asyncio.run(_grant()):
        console.print(f"[red]✗ User {user_id} has never used the bot.[/red]")
        raise typer.Exit(code=1)
    console.print(
        f"[green]✓ User {user_id} is premium until {expires_at:%Y-%m-%d %H:%M} UTC.[/green]"
    )
