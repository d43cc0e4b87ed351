"""
Rich renderables for CLI output: errors, configuration, catalogs and quotas.
"""

from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from story_relay.models.config import RelayConfig
from story_relay.models.domain import Catalog, RequestRecord, User
from story_relay.utils.formatting import format_story_date

SENSITIVE_KEYS = ("bot_token", "catalog_api_key")


def format_error_with_suggestions(
    error: Exception, context: dict | None = None
) -> Panel:
    """Formats an error with actionable suggestions into a Rich Panel."""
    error_type = type(error).__name__
    error_msg = str(error)

    suggestions_map = {
        "ConfigurationError": [
            "• Run `story-relay init` to create a configuration file.",
            "• Or export TELEGRAM_BOT_TOKEN, TELESTORY_API_URL, TELESTORY_API_KEY"
            " and ARCHIVE_CHANNEL_ID.",
            "• Check that the bot is an administrator of the archive channel.",
        ],
        "CatalogTransportError": [
            "• The catalog API might be temporarily unavailable.",
            "• Check TELESTORY_API_URL and your internet connection.",
        ],
        "CatalogDecodeError": [
            "• The catalog API answered with an unexpected document.",
            "• Verify the API key; some providers return HTML error pages.",
        ],
        "MessagingError": [
            "• Verify the bot token with @BotFather.",
            "• Telegram may be rate-limiting the bot; wait and try again.",
        ],
        "RepositoryError": [
            "• Check that the database path is writable.",
            "• Another process may hold a lock on the database.",
        ],
    }

    suggestions = suggestions_map.get(
        error_type, ["• Run the command with -vv for detailed logs."]
    )

    error_text = Text()
    error_text.append(f"{error_type}: ", style="bold red")
    error_text.append(error_msg)

    content = Table.grid(padding=(1, 0))
    content.add_row(error_text)
    content.add_row()
    content.add_row(Text("Suggestions", style="bold yellow"))
    content.add_row(Text("\n".join(suggestions)))

    if context:
        content.add_row()
        content.add_row(Text(f"Context: {context}", style="dim"))

    return Panel(
        content,
        title="[bold red]An Error Occurred[/bold red]",
        border_style="red",
        expand=False,
    )


def print_config(config_path: Path, config_data: dict[str, Any]):
    """Displays the current configuration, hiding sensitive data."""
    console = Console()
    content = ""
    for key, value in config_data.items():
        if key in SENSITIVE_KEYS and value:
            value = "[hidden]"
        content += f"{key} = {escape(str(value))}\n"

    console.print(
        Panel(
            content.strip() or "[dim](empty)[/dim]",
            title=f"Configuration ([dim]{config_path}[/dim])",
            border_style="cyan",
        )
    )


def print_validation_table(config: RelayConfig):
    """Summarizes the effective, validated settings."""
    table = Table(title="Effective Configuration", show_header=False)
    table.add_column("Setting", style="cyan")
    table.add_column("Value")
    table.add_row("Environment", config.app_env)
    table.add_row("Catalog API", config.catalog_api_url)
    table.add_row("Archive channel", str(config.archive_channel_id))
    table.add_row("Cooldown", f"{config.cooldown_window}s")
    table.add_row("Daily limit", str(config.daily_quota))
    table.add_row("Day boundary", f"00:00 {config.timezone}")
    table.add_row("Download workers", str(config.max_workers))
    table.add_row(
        "Timeouts",
        f"catalog {config.catalog_timeout:.0f}s · download {config.download_timeout:.0f}s"
        f" · send {config.send_timeout:.0f}s · request {config.request_deadline:.0f}s",
    )
    table.add_row("Database", config.database_path)
    table.add_row("Scratch dir", config.scratch_dir)
    Console().print(table)


def print_catalog_table(identifier: str, catalog: Catalog, tz: tzinfo = timezone.utc):
    """Lists the stories a catalog lookup returned."""
    console = Console()
    if not catalog.items:
        console.print(f"[yellow]No active stories found for {identifier}.[/yellow]")
        return

    table = Table(title=f"Stories for {identifier}")
    table.add_column("#", style="dim", justify="right")
    table.add_column("Date", style="green")
    table.add_column("Path", style="cyan", overflow="fold")
    table.add_column("Caption")
    for i, item in enumerate(catalog.items):
        table.add_row(
            str(i),
            format_story_date(item.timestamp, tz),
            item.relative_path,
            item.caption or "[dim]—[/dim]",
        )
    console.print(table)
    console.print(f"[dim]Base URL: {catalog.base_url or '(none)'}[/dim]")


def print_quota_panel(
    user: User | None,
    user_id: int,
    used_today: int,
    limit: int,
    recent: list[RequestRecord],
    now: datetime,
):
    """Shows a user's quota usage and latest requests."""
    console = Console()
    if user is None:
        console.print(f"[yellow]User {user_id} has never used the bot.[/yellow]")
        return

    premium = user.is_bot_premium(now)
    lines = [
        f"[bold]{user.display_name}[/bold]"
        + (f" (@{user.username})" if user.username else ""),
        f"Role: {user.role}" + (" · [magenta]premium[/magenta]" if premium else ""),
        f"Language: {user.language_code or '(not set)'}",
        f"Last active: {user.last_active_at or 'never'}",
        f"Today: [green]{used_today}[/green]"
        + ("" if premium else f" / {limit}"),
    ]
    console.print(Panel("\n".join(lines), title=f"User {user_id}", border_style="cyan"))

    if recent:
        table = Table(title="Recent requests")
        table.add_column("ID", style="dim", justify="right")
        table.add_column("When")
        table.add_column("Input", style="cyan")
        table.add_column("Status")
        for record in recent:
            table.add_row(
                str(record.id), str(record.created_at), record.input, record.status
            )
        console.print(table)
