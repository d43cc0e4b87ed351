"""
Helper functions for formatting data into human-readable strings.
"""

from datetime import datetime, timezone, tzinfo

STORY_DATE_FORMAT = "%Y-%m-%d %H:%M"
TELEGRAM_CAPTION_LIMIT = 1024


def format_story_date(timestamp: int, tz: tzinfo = timezone.utc) -> str:
    """Formats a Unix timestamp as 'YYYY-MM-DD HH:MM' in the given timezone."""
    return datetime.fromtimestamp(timestamp, tz).strftime(STORY_DATE_FORMAT)


def format_size(bytes_size: int) -> str:
    """Formats bytes into a human-readable size string (e.g., '145.3 MB')."""
    if bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    size = float(bytes_size)
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{size:.1f} {units[i]}"


def truncate_caption(text: str, limit: int = TELEGRAM_CAPTION_LIMIT) -> str:
    """Trims a caption to Telegram's length limit, marking the cut with an ellipsis."""
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def escape_markdown(text: str) -> str:
    """
    Escapes characters that legacy Telegram Markdown would interpret.

    Only valid outside an entity: inside `*bold*` the backslashes show up.
    """
    for char in ("_", "*", "`", "["):
        text = text.replace(char, f"\\{char}")
    return text
