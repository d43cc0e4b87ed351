"""
Downloads catalog media concurrently into scratch storage.

Each item gets its own task; a semaphore bounds how many run at once. A failed
item produces a FetchOutcome carrying the reason and never disturbs its
siblings.
"""

import asyncio
import logging
import os
import time
import uuid
from pathlib import Path
from typing import Iterable, Optional
from urllib.parse import urlsplit

import aiofiles
import aiohttp
from pathvalidate import sanitize_filename

from story_relay.exceptions import MediaDownloadError
from story_relay.models.domain import CatalogItem, FetchOutcome
from story_relay.utils.formatting import format_size

log = logging.getLogger(__name__)

DEFAULT_EXTENSION = ".mp4"
CHUNK_SIZE = 262144  # 256 KB


def build_media_url(base_url: str, relative_path: str) -> str:
    """Joins base and relative path, adding a '/' only when neither side has one."""
    if not base_url.endswith("/") and not relative_path.startswith("/"):
        return f"{base_url}/{relative_path}"
    return base_url + relative_path


def infer_extension(relative_path: str) -> str:
    """Returns the lowercased file extension of a media path, defaulting to video."""
    ext = os.path.splitext(urlsplit(relative_path).path)[1].lower().lstrip(".")
    if ext:
        ext = sanitize_filename(ext)
    return f".{ext}" if ext else DEFAULT_EXTENSION


def remove_scratch_file(path: Optional[str]) -> None:
    """Deletes a scratch file if it exists."""
    if not path:
        return
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        log.warning(f"[yellow]Could not delete scratch file '{path}': {e}[/yellow]")


def discard_scratch(outcomes: Iterable[FetchOutcome]) -> None:
    """Deletes every scratch file still referenced by the given outcomes."""
    for outcome in outcomes:
        remove_scratch_file(outcome.path)


class MediaFetcher:
    """Fans out media downloads with bounded concurrency and per-item timeouts."""

    def __init__(
        self,
        scratch_dir: Path | str,
        max_workers: int = 8,
        download_timeout: float = 120.0,
        user_agent: Optional[str] = None,
    ):
        self.scratch_dir = Path(scratch_dir)
        self.max_workers = max_workers
        self.download_timeout = download_timeout
        self.user_agent = user_agent
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_config(cls, config) -> "MediaFetcher":
        return cls(
            config.scratch_dir,
            max_workers=config.max_workers,
            download_timeout=config.download_timeout,
            user_agent=config.user_agent,
        )

    async def _initialize_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                limit=self.max_workers * 2,
                limit_per_host=self.max_workers,
                ttl_dns_cache=600,
                enable_cleanup_closed=True,
            )
            headers = {"User-Agent": self.user_agent} if self.user_agent else None
            self._session = aiohttp.ClientSession(
                connector=connector,
                headers=headers,
                timeout=aiohttp.ClientTimeout(
                    total=self.download_timeout, sock_connect=15
                ),
            )
            log.debug(f"Created download pool with limit_per_host={self.max_workers}")
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "MediaFetcher":
        await self._initialize_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def scratch_path(self, request_token: str, index: int, relative_path: str) -> Path:
        """Unique per request, per item: token, time component, index, extension."""
        name = (
            f"story-{request_token}-{time.time_ns()}-{index}"
            f"{infer_extension(relative_path)}"
        )
        return self.scratch_dir / name

    async def _download(self, url: str, destination: Path) -> int:
        session = await self._initialize_session()
        async with session.get(url, allow_redirects=True) as response:
            if not 200 <= response.status < 300:
                raise MediaDownloadError(f"bad status: {response.status} {response.reason}")
            written = 0
            async with aiofiles.open(destination, "wb") as f:
                async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                    await f.write(chunk)
                    written += len(chunk)
            return written

    async def fetch_one(
        self, base_url: str, index: int, item: CatalogItem, request_token: str
    ) -> FetchOutcome:
        """Downloads a single item; failures become part of the outcome."""
        if not base_url:
            return FetchOutcome(index=index, item=item, error="base URL is empty")

        url = build_media_url(base_url, item.relative_path)
        destination = self.scratch_path(request_token, index, item.relative_path)
        log.debug(f"Downloading story {index}: {url}")
        try:
            size = await self._download(url, destination)
        except Exception as e:
            remove_scratch_file(str(destination))
            reason = str(e) or type(e).__name__
            log.warning(f"[yellow]Story {index} failed to download: {reason}[/yellow]")
            return FetchOutcome(index=index, item=item, error=reason)
        except asyncio.CancelledError:
            remove_scratch_file(str(destination))
            raise

        log.debug(f"Story {index} saved to {destination.name} ({format_size(size)})")
        return FetchOutcome(index=index, item=item, path=str(destination))

    async def fetch_all(
        self, base_url: str, items: list[CatalogItem]
    ) -> list[FetchOutcome]:
        """
        Downloads every item concurrently and returns once all have finished.

        Never raises for individual failures. If the call itself is cancelled,
        files already written are deleted before the cancellation propagates.
        """
        if not items:
            return []
        self.scratch_dir.mkdir(parents=True, exist_ok=True)

        request_token = uuid.uuid4().hex[:8]
        semaphore = asyncio.Semaphore(self.max_workers)
        finished: list[FetchOutcome] = []

        async def worker(index: int, item: CatalogItem) -> None:
            async with semaphore:
                finished.append(
                    await self.fetch_one(base_url, index, item, request_token)
                )

        log.info(
            f"Downloading {len(items)} stories with up to {self.max_workers} workers"
        )
        try:
            await asyncio.gather(*(worker(i, item) for i, item in enumerate(items)))
        except BaseException:
            discard_scratch(finished)
            raise

        succeeded = sum(1 for o in finished if o.succeeded)
        log.info(f"Downloaded {succeeded}/{len(items)} stories successfully")
        return finished
