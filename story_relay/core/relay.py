"""
Archives downloaded stories and relays them to the requester.

Items are processed strictly one at a time: the archive channel and the
requester's chat are both ordered, flood-limited targets. Each item is
uploaded once to the archive and then sent to the requester by the archive's
file_id, so the original bytes travel only once.
"""

import asyncio
import logging
import os
from datetime import timezone, tzinfo
from typing import Optional

from story_relay.exceptions import MessagingError
from story_relay.i18n import get_message
from story_relay.media.downloader import discard_scratch, remove_scratch_file
from story_relay.models.domain import CatalogItem, FetchOutcome, User
from story_relay.models.stats import RelayResult
from story_relay.utils.formatting import format_story_date, truncate_caption

from .interfaces import MediaKind, MediaRef, MessagingTransport

log = logging.getLogger(__name__)

VIDEO_EXTENSIONS = frozenset({".mp4", ".mov", ".m4v"})


def classify_media(path: str) -> MediaKind:
    """Routes known video extensions to video uploads, everything else to photos."""
    ext = os.path.splitext(path)[1].lower()
    return MediaKind.VIDEO if ext in VIDEO_EXTENSIONS else MediaKind.PHOTO


def build_archive_caption(
    user: User, request_input: str, item: CatalogItem, tz: tzinfo = timezone.utc
) -> str:
    """Detailed caption for the archive channel: who asked, for whom, and when."""
    requester = user.display_name
    if user.username:
        requester = f"{requester} (@{user.username})"
    return (
        f"📥 Requested by: {requester}\n"
        f"📍 Target: {request_input}\n"
        f"📅 Story Date: {format_story_date(item.timestamp, tz)}\n\n"
        f"{item.caption}"
    ).rstrip()


def build_user_caption(
    request_input: str,
    item: CatalogItem,
    language: Optional[str],
    tz: tzinfo = timezone.utc,
) -> str:
    """Short caption for the requester, with a localized fallback."""
    text = item.caption or get_message(language, "story_from", request_input)
    return f"{text}\n\n📅 {format_story_date(item.timestamp, tz)}"


class RelayPipeline:
    """Sequential archive-then-relay loop over successful fetch outcomes."""

    def __init__(
        self,
        transport: MessagingTransport,
        archive_chat_id: int,
        send_timeout: float = 60.0,
        tz: tzinfo = timezone.utc,
    ):
        self.transport = transport
        self.archive_chat_id = archive_chat_id
        self.send_timeout = send_timeout
        self.tz = tz

    async def _archive(self, outcome: FetchOutcome, kind: MediaKind, caption: str) -> MediaRef:
        return await asyncio.wait_for(
            self.transport.upload_media(
                self.archive_chat_id, outcome.path, kind, truncate_caption(caption)
            ),
            timeout=self.send_timeout,
        )

    async def _deliver(self, user: User, media: MediaRef, caption: str) -> None:
        await asyncio.wait_for(
            self.transport.send_media_reference(
                user.id, media, truncate_caption(caption)
            ),
            timeout=self.send_timeout,
        )

    async def _relay_one(
        self, outcome: FetchOutcome, user: User, request_input: str
    ) -> tuple[bool, bool]:
        """Returns (archived, delivered) for one outcome. Always deletes its file."""
        item = outcome.item
        kind = classify_media(outcome.path)
        try:
            try:
                media = await self._archive(
                    outcome, kind, build_archive_caption(user, request_input, item, self.tz)
                )
            except (MessagingError, OSError, asyncio.TimeoutError) as e:
                log.warning(
                    f"[yellow]Story {outcome.index}: archive upload failed: {e}[/yellow]"
                )
                return False, False

            try:
                await self._deliver(
                    user,
                    media,
                    build_user_caption(request_input, item, user.language_code, self.tz),
                )
            except (MessagingError, asyncio.TimeoutError) as e:
                log.warning(
                    f"[yellow]Story {outcome.index}: send to user {user.id} failed: "
                    f"{e}[/yellow]"
                )
                return True, False
            return True, True
        finally:
            remove_scratch_file(outcome.path)

    async def relay(
        self,
        outcomes: list[FetchOutcome],
        user: User,
        request_input: str,
        catalog_size: Optional[int] = None,
        result: Optional[RelayResult] = None,
    ) -> RelayResult:
        """
        Archives and relays every downloaded outcome, in catalog order.

        Sends a partial-completion notice after the loop when fewer items were
        relayed than the catalog contained. Scratch files of all outcomes are
        gone when this returns or raises. Counts are written into `result`
        as each item finishes, so a caller that cancels the relay still sees
        what was delivered.
        """
        eligible = sorted((o for o in outcomes if o.succeeded), key=lambda o: o.index)
        if result is None:
            result = RelayResult()
        result.catalog_size = len(outcomes) if catalog_size is None else catalog_size
        result.downloaded = len(eligible)

        try:
            for outcome in eligible:
                result.attempted += 1
                archived, delivered = await self._relay_one(outcome, user, request_input)
                result.archived += archived
                result.relayed += delivered
        finally:
            discard_scratch(outcomes)

        log.info(
            f"Relayed {result.relayed}/{result.catalog_size} stories to user {user.id}"
        )

        if result.partial:
            notice = get_message(
                user.language_code,
                "download_error",
                result.relayed,
                result.catalog_size,
            )
            try:
                await asyncio.wait_for(
                    self.transport.send_message(user.id, notice),
                    timeout=self.send_timeout,
                )
            except (MessagingError, asyncio.TimeoutError) as e:
                log.warning(f"[yellow]Could not send partial notice: {e}[/yellow]")

        return result
