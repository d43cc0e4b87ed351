"""
Routes Telegram updates to the user service and the download manager.
"""

import asyncio
import logging
from typing import Any, Optional

from story_relay.api.telegram import TelegramBotClient
from story_relay.core.download_manager import DownloadManager
from story_relay.core.interfaces import MessageRef
from story_relay.core.user_service import UserService
from story_relay.exceptions import MessagingError, RepositoryError
from story_relay.i18n import SUPPORTED_LANGUAGES, get_message

log = logging.getLogger(__name__)

LANGUAGE_CALLBACK_PREFIX = "lang"


def language_menu() -> dict[str, Any]:
    """Inline keyboard with one button per supported language."""
    return {
        "inline_keyboard": [
            [
                {
                    "text": get_message(code, "language_name"),
                    "callback_data": f"{LANGUAGE_CALLBACK_PREFIX}|{code}",
                }
            ]
            for code in SUPPORTED_LANGUAGES
        ]
    }


def parse_language_callback(data: str) -> str:
    """Extracts 'uz' from 'lang|uz'; bare codes are accepted as-is."""
    parts = data.split("|")
    return parts[1] if len(parts) == 2 else data


class BotController:
    """Long-polling update loop with concurrent, bounded update handling."""

    def __init__(
        self,
        client: TelegramBotClient,
        manager: DownloadManager,
        user_service: UserService,
        poll_timeout: int = 10,
        max_concurrent_updates: int = 16,
    ):
        self.client = client
        self.manager = manager
        self.user_service = user_service
        self.poll_timeout = poll_timeout
        self._semaphore = asyncio.Semaphore(max_concurrent_updates)
        self._tasks: set[asyncio.Task] = set()
        self._offset: Optional[int] = None

    async def run(self) -> None:
        """Polls until cancelled, then waits for in-flight updates to wind down."""
        log.info("[green]Bot is polling for updates[/green]")
        try:
            while True:
                await self.poll_once()
        finally:
            for task in self._tasks:
                task.cancel()
            if self._tasks:
                await asyncio.gather(*self._tasks, return_exceptions=True)

    async def poll_once(self) -> int:
        """Fetches one batch of updates and schedules a handler for each."""
        try:
            updates = await self.client.get_updates(self._offset, self.poll_timeout)
        except MessagingError as e:
            delay = e.retry_after or 3
            log.warning(f"[yellow]Polling failed: {e}. Retrying in {delay}s[/yellow]")
            await asyncio.sleep(delay)
            return 0

        for update in updates:
            self._offset = update["update_id"] + 1
            task = asyncio.create_task(self._dispatch(update))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        return len(updates)

    async def _dispatch(self, update: dict[str, Any]) -> None:
        try:
            if callback := update.get("callback_query"):
                async with self._semaphore:
                    await self.handle_language_callback(callback)
            elif (message := update.get("message")) and message.get("text"):
                if message["text"].startswith("/start"):
                    async with self._semaphore:
                        await self.handle_start(message)
                elif not message["text"].startswith("/"):
                    await self.handle_text(message)
        except Exception:
            log.exception(f"Unhandled error for update {update.get('update_id')}")

    async def _reply(self, chat_id: int, text: str, **kwargs: Any) -> None:
        try:
            await self.client.send_message(chat_id, text, **kwargs)
        except MessagingError as e:
            log.warning(f"[yellow]Could not reply to {chat_id}: {e}[/yellow]")

    async def handle_start(self, message: dict[str, Any]) -> None:
        chat_id = message["chat"]["id"]
        try:
            user = await self.user_service.register_user(message["from"])
        except RepositoryError as e:
            log.error(f"[red]Error registering user: {e}[/red]")
            await self._reply(chat_id, get_message(None, "welcome"))
            return

        if not user.language_code:
            await self._reply(
                chat_id, get_message(None, "welcome"), reply_markup=language_menu()
            )
            return
        await self._reply(
            chat_id,
            get_message(user.language_code, "instruction"),
            parse_mode="Markdown",
        )

    async def handle_language_callback(self, callback: dict[str, Any]) -> None:
        user_id = callback["from"]["id"]
        language = parse_language_callback(callback.get("data", ""))
        log.info(f"Language selected: {language} for user {user_id}")

        try:
            await self.user_service.update_language(user_id, language)
        except (RepositoryError, ValueError) as e:
            log.error(f"[red]Error updating language: {e}[/red]")
            await self.client.answer_callback(
                callback["id"], get_message(None, "language_error")
            )
            return

        await self.client.answer_callback(callback["id"])
        if menu := callback.get("message"):
            try:
                await self.client.delete_message(
                    MessageRef(menu["chat"]["id"], menu["message_id"])
                )
            except MessagingError as e:
                log.debug(f"Could not delete language menu: {e}")

        text = (
            f"{get_message(language, 'registered')}\n\n"
            f"{get_message(language, 'instruction')}"
        )
        await self._reply(user_id, text, parse_mode="Markdown")

    async def handle_text(self, message: dict[str, Any]) -> None:
        chat_id = message["chat"]["id"]
        raw_input = message["text"].strip()
        try:
            async with self._semaphore:
                user = await self.user_service.register_user(message["from"])
        except RepositoryError as e:
            log.error(f"[red]Error registering user: {e}[/red]")
            await self._reply(chat_id, get_message(None, "generic_error"))
            return

        # the manager bounds concurrency itself, after the per-user lock
        summary = await self.manager.handle_request(user, raw_input)
        log.info(
            f"Request '{raw_input}' from {user.id}: {summary.state.value}"
            f" ({summary.result.relayed}/{summary.result.catalog_size} relayed)"
        )
