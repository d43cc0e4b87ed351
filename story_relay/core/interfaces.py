"""
Capability contracts the relay engine depends on.

Protocols rather than base classes: the Telegram client and the SQLite stores
satisfy them structurally, and tests swap in light fakes.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable

from story_relay.models.domain import RequestRecord, User


class MediaKind(Enum):
    PHOTO = "photo"
    VIDEO = "video"


@dataclass(frozen=True)
class MessageRef:
    """Identifies a sent message so it can be edited or deleted later."""

    chat_id: int
    message_id: int


@dataclass(frozen=True)
class MediaRef:
    """A durable reference to uploaded media, reusable without re-uploading bytes."""

    kind: MediaKind
    file_id: str
    message: Optional[MessageRef] = None


@runtime_checkable
class MessagingTransport(Protocol):
    async def send_message(
        self, chat_id: int, text: str, parse_mode: Optional[str] = None
    ) -> MessageRef: ...

    async def edit_message(
        self, ref: MessageRef, text: str, parse_mode: Optional[str] = None
    ) -> None: ...

    async def delete_message(self, ref: MessageRef) -> None: ...

    async def get_chat(self, chat_id: int) -> dict[str, Any]: ...

    async def upload_media(
        self, chat_id: int, path: str, kind: MediaKind, caption: str
    ) -> MediaRef: ...

    async def send_media_reference(
        self, chat_id: int, media: MediaRef, caption: str
    ) -> MessageRef: ...


@runtime_checkable
class UserRepository(Protocol):
    async def get_by_id(self, user_id: int) -> Optional[User]: ...

    async def upsert(self, user: User) -> User: ...

    async def update_activity(self, user_id: int) -> None: ...

    async def update_language(self, user_id: int, language_code: str) -> None: ...


@runtime_checkable
class RequestRepository(Protocol):
    async def create(self, record: RequestRecord) -> RequestRecord: ...

    async def count_today_successes(self, user_id: int) -> int: ...
