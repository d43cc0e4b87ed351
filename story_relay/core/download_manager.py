"""
The orchestrator for one relay request: admission, catalog lookup, parallel
downloads, archive/relay, and ledger recording.
"""

import asyncio
import logging
from typing import Optional

from story_relay.api.client import CatalogClient
from story_relay.exceptions import (
    CatalogError,
    ConfigurationError,
    MessagingError,
    RepositoryError,
)
from story_relay.i18n import get_message
from story_relay.media.downloader import MediaFetcher, discard_scratch
from story_relay.models.domain import RequestRecord, RequestState, User
from story_relay.models.stats import RelayResult, RequestProgress, RequestSummary
from story_relay.utils.formatting import escape_markdown

from .admission import AdmissionController, UserGate
from .interfaces import MessageRef, MessagingTransport, RequestRepository
from .relay import RelayPipeline
from .user_service import UserService

log = logging.getLogger(__name__)


class DownloadManager:
    """Runs user requests through the relay state machine."""

    def __init__(
        self,
        transport: MessagingTransport,
        catalog_client: CatalogClient,
        fetcher: MediaFetcher,
        relay: RelayPipeline,
        admission: AdmissionController,
        ledger: RequestRepository,
        user_service: UserService,
        request_deadline: float = 600.0,
        send_timeout: float = 60.0,
        max_concurrent_requests: int = 16,
    ):
        self.transport = transport
        self.catalog_client = catalog_client
        self.fetcher = fetcher
        self.relay = relay
        self.admission = admission
        self.ledger = ledger
        self.user_service = user_service
        self.request_deadline = request_deadline
        self.send_timeout = send_timeout
        self.gate = UserGate()
        self._slots = asyncio.Semaphore(max_concurrent_requests)

    async def verify_archive(self) -> dict:
        """Resolves the archive channel once, before any request is accepted."""
        chat_id = self.relay.archive_chat_id
        try:
            chat = await self.transport.get_chat(chat_id)
        except MessagingError as e:
            raise ConfigurationError(
                f"Archive channel {chat_id} is not reachable: {e}"
            ) from e
        log.info(f"Archive channel: [cyan]{chat.get('title', chat_id)}[/cyan]")
        return chat

    async def _send(
        self, chat_id: int, text: str, parse_mode: Optional[str] = None
    ) -> Optional[MessageRef]:
        try:
            return await asyncio.wait_for(
                self.transport.send_message(chat_id, text, parse_mode),
                timeout=self.send_timeout,
            )
        except (MessagingError, asyncio.TimeoutError) as e:
            log.warning(f"[yellow]Could not message {chat_id}: {e}[/yellow]")
            return None

    async def _update_status(
        self,
        status: Optional[MessageRef],
        user: User,
        text: str,
        parse_mode: Optional[str] = None,
    ) -> None:
        """Edits the status message in place, or sends a new one if that fails."""
        if status is not None:
            try:
                await asyncio.wait_for(
                    self.transport.edit_message(status, text, parse_mode),
                    timeout=self.send_timeout,
                )
                return
            except (MessagingError, asyncio.TimeoutError) as e:
                log.debug(f"Editing status message failed: {e}")
        await self._send(user.id, text, parse_mode)

    async def _delete_status(self, status: Optional[MessageRef]) -> None:
        if status is None:
            return
        try:
            await asyncio.wait_for(
                self.transport.delete_message(status), timeout=self.send_timeout
            )
        except (MessagingError, asyncio.TimeoutError) as e:
            log.debug(f"Deleting status message failed: {e}")

    async def _refresh(self, user: User) -> User:
        """Re-reads the user so a request queued behind another sees its activity."""
        try:
            return await self.user_service.get_user(user.id) or user
        except RepositoryError as e:
            log.warning(f"[yellow]Could not reload user {user.id}: {e}[/yellow]")
            return user

    async def record_request(self, user: User, raw_input: str) -> bool:
        """Appends the ledger entry. Failures are logged and never shown to the user."""
        try:
            await self.ledger.create(RequestRecord(user_id=user.id, input=raw_input))
            return True
        except RepositoryError as e:
            log.error(f"[red]Failed to log request for user {user.id}: {e}[/red]")
            return False

    async def handle_request(self, user: User, raw_input: str) -> RequestSummary:
        """
        Processes one identifier lookup for a user, end to end.

        Requests from the same user are serialized, so admission always sees
        the ledger entry of the previous request. A request takes one of the
        `max_concurrent_requests` slots only once it holds its user's lock, so
        a user with a queue of requests never blocks anyone else.
        """
        async with self.gate.hold(user.id):
            async with self._slots:
                return await self._handle(user, raw_input)

    async def _handle(self, user: User, raw_input: str) -> RequestSummary:
        user = await self._refresh(user)
        lang = user.language_code

        try:
            decision = await self.admission.can_proceed(user)
        except RepositoryError as e:
            log.error(f"[red]Error checking limits for {user.id}: {e}[/red]")
            await self._send(user.id, get_message(lang, "system_error"))
            return RequestSummary(RequestState.FAILED, reason="admission check failed")

        if not decision.allowed:
            await self._send(user.id, get_message(lang, "denied", decision.reason))
            return RequestSummary(RequestState.DENIED, reason=decision.reason)

        status = await self._send(user.id, get_message(lang, "processing"))
        await self.user_service.record_activity(user.id)

        progress = RequestProgress()
        try:
            summary = await asyncio.wait_for(
                self._process(user, raw_input, status, progress),
                timeout=self.request_deadline,
            )
        except asyncio.TimeoutError:
            log.error(
                f"[red]Request '{raw_input}' for user {user.id} exceeded "
                f"{self.request_deadline:.0f}s deadline[/red]"
            )
            if not progress.relaying:
                await self._update_status(status, user, get_message(lang, "generic_error"))
                return RequestSummary(RequestState.FAILED, reason="deadline exceeded")
            summary = await self._cut_short(status, user, progress.result)

        if summary.state.recorded:
            await self.record_request(user, raw_input)
        return summary

    async def _cut_short(
        self, status: Optional[MessageRef], user: User, result: RelayResult
    ) -> RequestSummary:
        """Closes out a request whose deadline expired after stories started going out."""
        await self._delete_status(status)
        if not result.partial:
            return RequestSummary(RequestState.COMPLETE, result)
        await self._send(
            user.id,
            get_message(
                user.language_code, "download_error", result.relayed, result.catalog_size
            ),
        )
        return RequestSummary(RequestState.PARTIAL, result, reason="deadline exceeded")

    async def _process(
        self,
        user: User,
        raw_input: str,
        status: Optional[MessageRef],
        progress: RequestProgress,
    ) -> RequestSummary:
        lang = user.language_code

        try:
            catalog = await self.catalog_client.fetch_catalog(raw_input)
        except CatalogError as e:
            log.warning(f"[yellow]Catalog fetch for '{raw_input}' failed: {e}[/yellow]")
            await self._update_status(status, user, get_message(lang, "fetch_error"))
            return RequestSummary(RequestState.FAILED, reason=str(e))

        catalog_size = len(catalog.items)
        if catalog_size == 0:
            await self._update_status(
                status,
                user,
                get_message(lang, "no_stories", escape_markdown(raw_input)),
                parse_mode="Markdown",
            )
            return RequestSummary(RequestState.EMPTY)

        await self._update_status(
            status, user, get_message(lang, "downloading", catalog_size)
        )

        outcomes = await self.fetcher.fetch_all(catalog.base_url, catalog.items)
        progress.relaying = True
        try:
            result = await self.relay.relay(
                outcomes,
                user,
                raw_input,
                catalog_size=catalog_size,
                result=progress.result,
            )
        finally:
            discard_scratch(outcomes)

        await self._delete_status(status)
        state = RequestState.PARTIAL if result.partial else RequestState.COMPLETE
        return RequestSummary(state, result)
