"""
External API Layer.

This package handles all communication with the story catalog API and the
Telegram Bot API.
"""

from .client import CatalogClient, normalize_identifier
from .rate_limiter import AdaptiveRateLimiter
from .telegram import TelegramBotClient

__all__ = [
    "AdaptiveRateLimiter",
    "CatalogClient",
    "TelegramBotClient",
    "normalize_identifier",
]
