"""
User registration and profile updates.
"""

import logging
from typing import Any

from story_relay.exceptions import RepositoryError
from story_relay.i18n import SUPPORTED_LANGUAGES
from story_relay.models.domain import User

from .interfaces import UserRepository

log = logging.getLogger(__name__)


def user_from_telegram(sender: dict[str, Any]) -> User:
    """Builds a User from the `from` object of a Telegram update."""
    return User(
        id=sender["id"],
        first_name=sender.get("first_name", ""),
        last_name=sender.get("last_name", ""),
        username=sender.get("username", ""),
        is_telegram_premium=bool(sender.get("is_premium", False)),
    )


class UserService:
    def __init__(self, repository: UserRepository):
        self.repository = repository

    async def register_user(self, sender: dict[str, Any]) -> User:
        """
        Creates the user on first contact and refreshes their Telegram profile
        on every later one. The language stays unset until the user picks one.
        """
        return await self.repository.upsert(user_from_telegram(sender))

    async def get_user(self, user_id: int) -> User | None:
        return await self.repository.get_by_id(user_id)

    async def record_activity(self, user_id: int) -> bool:
        """Stamps the user's last activity. Failures are logged, not raised."""
        try:
            await self.repository.update_activity(user_id)
            return True
        except RepositoryError as e:
            log.error(f"[red]Error recording activity for {user_id}: {e}[/red]")
            return False

    async def update_language(self, user_id: int, language_code: str) -> None:
        if language_code not in SUPPORTED_LANGUAGES:
            raise ValueError(f"Unsupported language: {language_code}")
        await self.repository.update_language(user_id, language_code)
