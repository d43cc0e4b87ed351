"""
Minimal async client for the Telegram Bot API.

Implements the messaging capabilities the relay engine needs: text messages,
edits and deletes, chat lookup, media upload with a durable `file_id` in
return, and media sends by that `file_id`.
"""

import asyncio
import json
import logging
import os
from typing import Any, Optional

import aiohttp

from story_relay.core.interfaces import MediaKind, MediaRef, MessageRef
from story_relay.exceptions import MessagingError

from .rate_limiter import AdaptiveRateLimiter

log = logging.getLogger(__name__)

_UPLOAD_METHODS = {MediaKind.VIDEO: "sendVideo", MediaKind.PHOTO: "sendPhoto"}


def _extract_file_id(message: dict[str, Any], kind: MediaKind) -> Optional[str]:
    """Finds the file_id of the media attached to a sent message."""
    if kind is MediaKind.PHOTO:
        sizes = message.get("photo") or []
        # Largest size last
        return sizes[-1]["file_id"] if sizes else None
    for key in ("video", "animation", "document"):
        if media := message.get(key):
            return media.get("file_id")
    return None


def _message_ref(message: dict[str, Any]) -> MessageRef:
    return MessageRef(chat_id=message["chat"]["id"], message_id=message["message_id"])


class TelegramBotClient:
    """
    Async Telegram Bot API client.

    Features:
    - Adaptive pacing with 429 `retry_after` back-off
    - Per-call timeout
    - Bot token masked out of every error message
    """

    BASE_URL = "https://api.telegram.org"

    def __init__(
        self,
        token: str,
        request_timeout: float = 60.0,
        base_url: Optional[str] = None,
        rate_limiter: Optional[AdaptiveRateLimiter] = None,
    ):
        self._token = token
        self.request_timeout = request_timeout
        self.base_url = (base_url or self.BASE_URL).rstrip("/")
        self._rate_limiter = rate_limiter or AdaptiveRateLimiter()
        self._session: Optional[aiohttp.ClientSession] = None

    async def _initialize_session(self) -> None:
        """Ensures an active aiohttp session is available."""
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(limit=20, ttl_dns_cache=300)
            self._session = aiohttp.ClientSession(connector=connector)

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "TelegramBotClient":
        await self._initialize_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _mask(self, text: str) -> str:
        return text.replace(self._token, "***") if self._token else text

    async def _call(
        self,
        method: str,
        params: Optional[dict[str, Any]] = None,
        form: Optional[aiohttp.FormData] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Performs one Bot API call and returns its `result` field."""
        await self._initialize_session()
        await self._rate_limiter.acquire()

        url = f"{self.base_url}/bot{self._token}/{method}"
        client_timeout = aiohttp.ClientTimeout(total=timeout or self.request_timeout)
        try:
            async with self._session.post(
                url,
                json=params if form is None else None,
                data=form,
                timeout=client_timeout,
            ) as r:
                try:
                    payload = await r.json(content_type=None)
                except (json.JSONDecodeError, UnicodeDecodeError) as e:
                    raise MessagingError(
                        f"{method}: unreadable response (HTTP {r.status})", r.status
                    ) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise MessagingError(
                self._mask(f"{method} failed: {str(e) or type(e).__name__}")
            ) from e

        if not isinstance(payload, dict) or not payload.get("ok"):
            payload = payload if isinstance(payload, dict) else {}
            code = payload.get("error_code", r.status)
            retry_after = (payload.get("parameters") or {}).get("retry_after")
            if code == 429:
                await self._rate_limiter.on_429(retry_after)
            raise MessagingError(
                f"{method} failed: {payload.get('description', 'unknown error')}",
                error_code=code,
                retry_after=retry_after,
            )
        return payload.get("result")

    async def get_me(self) -> dict[str, Any]:
        return await self._call("getMe")

    async def get_updates(
        self, offset: Optional[int] = None, timeout: int = 10
    ) -> list[dict[str, Any]]:
        """Long-polls for new updates."""
        params: dict[str, Any] = {
            "timeout": timeout,
            "allowed_updates": ["message", "callback_query"],
        }
        if offset is not None:
            params["offset"] = offset
        return await self._call("getUpdates", params, timeout=timeout + 10) or []

    async def send_message(
        self,
        chat_id: int,
        text: str,
        parse_mode: Optional[str] = None,
        reply_markup: Optional[dict[str, Any]] = None,
    ) -> MessageRef:
        params: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            params["parse_mode"] = parse_mode
        if reply_markup:
            params["reply_markup"] = reply_markup
        return _message_ref(await self._call("sendMessage", params))

    async def edit_message(
        self, ref: MessageRef, text: str, parse_mode: Optional[str] = None
    ) -> None:
        params: dict[str, Any] = {
            "chat_id": ref.chat_id,
            "message_id": ref.message_id,
            "text": text,
        }
        if parse_mode:
            params["parse_mode"] = parse_mode
        await self._call("editMessageText", params)

    async def delete_message(self, ref: MessageRef) -> None:
        await self._call(
            "deleteMessage", {"chat_id": ref.chat_id, "message_id": ref.message_id}
        )

    async def answer_callback(
        self, callback_query_id: str, text: Optional[str] = None
    ) -> None:
        params: dict[str, Any] = {"callback_query_id": callback_query_id}
        if text:
            params["text"] = text
        await self._call("answerCallbackQuery", params)

    async def get_chat(self, chat_id: int) -> dict[str, Any]:
        return await self._call("getChat", {"chat_id": chat_id})

    async def upload_media(
        self, chat_id: int, path: str, kind: MediaKind, caption: str
    ) -> MediaRef:
        """Uploads a local file and returns the durable reference Telegram assigns."""
        method = _UPLOAD_METHODS[kind]
        with open(path, "rb") as media_file:
            form = aiohttp.FormData()
            form.add_field("chat_id", str(chat_id))
            form.add_field("caption", caption)
            form.add_field(kind.value, media_file, filename=os.path.basename(path))
            message = await self._call(method, form=form)

        file_id = _extract_file_id(message, kind)
        if not file_id:
            raise MessagingError(f"{method}: response carried no file_id")
        return MediaRef(kind=kind, file_id=file_id, message=_message_ref(message))

    async def send_media_reference(
        self, chat_id: int, media: MediaRef, caption: str
    ) -> MessageRef:
        """Sends previously uploaded media by its file_id, without re-uploading."""
        message = await self._call(
            _UPLOAD_METHODS[media.kind],
            {"chat_id": chat_id, media.kind.value: media.file_id, "caption": caption},
        )
        return _message_ref(message)
