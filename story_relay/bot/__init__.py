"""
Telegram bot surface: update routing and process wiring.
"""

from .controller import BotController
from .runner import build_manager, serve

__all__ = ["BotController", "build_manager", "serve"]
