"""Console entry point: runs the Typer app and renders fatal errors."""

import asyncio
import logging
import sys

import typer
from rich.console import Console

from story_relay.cli.app import app
from story_relay.cli.formatters import format_error_with_suggestions
from story_relay.exceptions import StoryRelayError

log = logging.getLogger("story_relay")


def main() -> None:
    console = Console(stderr=True)
    exit_code = 0
    try:
        app()
    except (typer.Exit, typer.Abort):
        pass
    except (KeyboardInterrupt, asyncio.CancelledError):
        console.print("\n[yellow]⚠️  Stopped.[/yellow]")
    except StoryRelayError as e:
        console.print(f"\n{format_error_with_suggestions(e)}")
        exit_code = 1
    except Exception as e:
        console.print(f"\n{format_error_with_suggestions(e, {'type': 'Unexpected'})}")
        log.debug("Full traceback:", exc_info=True)
        exit_code = 1
    if exit_code:
        sys.exit(exit_code)


if __name__ == "__main__":
    main()
