"""Shared fixtures and in-memory fakes for the relay test suite."""

import asyncio
from datetime import datetime, timezone
from typing import Any, Optional

import pytest

from story_relay.core.admission import AdmissionController
from story_relay.core.download_manager import DownloadManager
from story_relay.core.interfaces import MediaKind, MediaRef, MessageRef
from story_relay.core.relay import RelayPipeline
from story_relay.core.user_service import UserService
from story_relay.exceptions import MessagingError, RepositoryError
from story_relay.models.domain import (
    Catalog,
    CatalogItem,
    FetchOutcome,
    RequestRecord,
    User,
)

ARCHIVE_CHAT_ID = -1001234567890


class FakeTransport:
    """Records every messaging call; failures can be scripted per operation."""

    def __init__(self):
        self.messages: list[dict[str, Any]] = []
        self.edits: list[dict[str, Any]] = []
        self.deletes: list[MessageRef] = []
        self.uploads: list[dict[str, Any]] = []
        self.media_sends: list[dict[str, Any]] = []
        self.fail_upload_paths: set[str] = set()
        self.fail_send_file_ids: set[str] = set()
        self.fail_edits = False
        self.fail_get_chat = False
        self.upload_delay = 0.0
        self._next_id = 100

    def _ref(self, chat_id: int) -> MessageRef:
        self._next_id += 1
        return MessageRef(chat_id, self._next_id)

    async def send_message(
        self, chat_id: int, text: str, parse_mode: Optional[str] = None
    ) -> MessageRef:
        self.messages.append({"chat_id": chat_id, "text": text, "parse_mode": parse_mode})
        return self._ref(chat_id)

    async def edit_message(
        self, ref: MessageRef, text: str, parse_mode: Optional[str] = None
    ) -> None:
        if self.fail_edits:
            raise MessagingError("message to edit not found", error_code=400)
        self.edits.append({"ref": ref, "text": text, "parse_mode": parse_mode})

    async def delete_message(self, ref: MessageRef) -> None:
        self.deletes.append(ref)

    async def get_chat(self, chat_id: int) -> dict[str, Any]:
        if self.fail_get_chat:
            raise MessagingError("chat not found", error_code=400)
        return {"id": chat_id, "title": "Archive"}

    async def upload_media(
        self, chat_id: int, path: str, kind: MediaKind, caption: str
    ) -> MediaRef:
        if self.upload_delay:
            await asyncio.sleep(self.upload_delay)
        with open(path, "rb") as f:
            content = f.read()
        self.uploads.append(
            {"chat_id": chat_id, "path": path, "kind": kind, "caption": caption, "content": content}
        )
        if path in self.fail_upload_paths:
            raise MessagingError("upload rejected", error_code=400)
        ref = self._ref(chat_id)
        return MediaRef(kind=kind, file_id=f"file-{ref.message_id}", message=ref)

    async def send_media_reference(
        self, chat_id: int, media: MediaRef, caption: str
    ) -> MessageRef:
        if media.file_id in self.fail_send_file_ids:
            raise MessagingError("bot was blocked by the user", error_code=403)
        self.media_sends.append({"chat_id": chat_id, "media": media, "caption": caption})
        return self._ref(chat_id)

    def texts_to(self, chat_id: int) -> list[str]:
        sent = [m["text"] for m in self.messages if m["chat_id"] == chat_id]
        return sent + [e["text"] for e in self.edits if e["ref"].chat_id == chat_id]


class FakeLedger:
    def __init__(self, today: int = 0):
        self.records: list[RequestRecord] = []
        self.today = today
        self.fail_create = False
        self.fail_count = False

    async def create(self, record: RequestRecord) -> RequestRecord:
        if self.fail_create:
            raise RepositoryError("disk I/O error")
        record.id = len(self.records) + 1
        self.records.append(record)
        return record

    async def count_today_successes(self, user_id: int) -> int:
        if self.fail_count:
            raise RepositoryError("database is locked")
        return self.today + sum(1 for r in self.records if r.user_id == user_id)


class FakeUserRepository:
    def __init__(self, *users: User):
        self.users = {u.id: u for u in users}
        self.activity: list[int] = []

    async def get_by_id(self, user_id: int) -> Optional[User]:
        return self.users.get(user_id)

    async def upsert(self, user: User) -> User:
        stored = self.users.get(user.id)
        if stored is None:
            self.users[user.id] = user
            return user
        stored.first_name = user.first_name
        stored.last_name = user.last_name
        stored.username = user.username
        return stored

    async def update_activity(self, user_id: int) -> None:
        self.activity.append(user_id)
        if user_id in self.users:
            self.users[user_id].last_active_at = datetime.now(timezone.utc)

    async def update_language(self, user_id: int, language_code: str) -> None:
        self.users[user_id].language_code = language_code


def make_item(index: int, ext: str = ".mp4", caption: str = "") -> CatalogItem:
    return CatalogItem(
        relative_path=f"stories/{index}{ext}",
        timestamp=1700000000 + index * 60,
        caption=caption,
    )


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def user() -> User:
    return User(id=42, first_name="Ada", last_name="Lovelace", username="ada", language_code="en")


@pytest.fixture
def scratch_outcomes(tmp_path):
    """Builds successful fetch outcomes backed by real scratch files."""

    def build(count: int, ext: str = ".mp4") -> list[FetchOutcome]:
        outcomes = []
        for i in range(count):
            path = tmp_path / f"story-test-{i}{ext}"
            path.write_bytes(f"media-{i}".encode())
            outcomes.append(FetchOutcome(index=i, item=make_item(i, ext), path=str(path)))
        return outcomes

    return build


class FakeCatalogClient:
    def __init__(self, catalog: Optional[Catalog] = None, delay: float = 0.0):
        self.catalog = catalog if catalog is not None else Catalog()
        self.error: Optional[Exception] = None
        self.delay = delay
        self.lookups: list[str] = []

    async def fetch_catalog(self, raw_input: str) -> Catalog:
        self.lookups.append(raw_input)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.catalog


class FakeFetcher:
    """Writes one small file per item; indices in `failing` produce errors."""

    def __init__(self, scratch_dir, failing: frozenset[int] = frozenset()):
        self.scratch_dir = scratch_dir
        self.failing = failing

    async def fetch_all(self, base_url: str, items: list[CatalogItem]) -> list[FetchOutcome]:
        outcomes = []
        for index, item in enumerate(items):
            if index in self.failing:
                outcomes.append(FetchOutcome(index=index, item=item, error="bad status: 404"))
                continue
            path = self.scratch_dir / f"story-{index}.mp4"
            path.write_bytes(b"video")
            outcomes.append(FetchOutcome(index=index, item=item, path=str(path)))
        return outcomes


def catalog_of(count: int) -> Catalog:
    return Catalog(items=[make_item(i) for i in range(count)], base_url="https://cdn.example.com")


class Harness:
    def __init__(
        self,
        tmp_path,
        user: User,
        catalog: Optional[Catalog] = None,
        failing: frozenset[int] = frozenset(),
        cooldown: int = 0,
        daily_limit: int = 3,
        request_deadline: float = 5.0,
        fetcher=None,
    ):
        self.transport = FakeTransport()
        self.catalog_client = FakeCatalogClient(catalog)
        self.fetcher = fetcher or FakeFetcher(tmp_path, failing)
        self.ledger = FakeLedger()
        self.users = FakeUserRepository(user)
        self.manager = DownloadManager(
            transport=self.transport,
            catalog_client=self.catalog_client,
            fetcher=self.fetcher,
            relay=RelayPipeline(self.transport, ARCHIVE_CHAT_ID, send_timeout=5),
            admission=AdmissionController(self.ledger, cooldown, daily_limit),
            ledger=self.ledger,
            user_service=UserService(self.users),
            request_deadline=request_deadline,
            send_timeout=5,
        )
        self.scratch_dir = tmp_path
