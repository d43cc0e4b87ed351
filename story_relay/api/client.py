"""
Client for the external story catalog API, with circuit breaker protection.
"""

import asyncio
import json
import logging
import time
from typing import Any, Optional

import aiohttp
from pydantic import ValidationError

from story_relay.exceptions import (
    CatalogDecodeError,
    CatalogTransportError,
    ConfigurationError,
)
from story_relay.models.domain import Catalog
from story_relay.utils.circuit_breaker import CircuitBreaker, CircuitBreakerError

log = logging.getLogger(__name__)

CATALOG_ENDPOINT = "get_stories_by_username"


def normalize_identifier(raw_input: str) -> str:
    """
    Strips the '@' of a username or the '+' of a phone number.

    Only one leading marker of each kind is removed; the rest is left as-is.
    """
    identifier = raw_input.removeprefix("@")
    identifier = identifier.removeprefix("+")
    return identifier


class CatalogClient:
    """
    Async client for the story catalog API.

    One request per lookup, never retried. Compressed responses are
    decompressed transparently by aiohttp before decoding.
    """

    def __init__(
        self,
        api_url: str,
        api_key: str,
        timeout: float = 30.0,
        user_agent: Optional[str] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        if not api_url or not api_key:
            raise ConfigurationError(
                "Catalog API URL and API key must both be configured."
            )
        self.api_url = api_url.rstrip("/")
        self._api_key = api_key
        self.timeout = timeout
        self.user_agent = user_agent
        self._session: Optional[aiohttp.ClientSession] = None
        self._circuit_breaker = circuit_breaker or CircuitBreaker(
            "catalog API", failure_threshold=5, recovery_timeout=60
        )

    @classmethod
    def from_config(cls, config) -> "CatalogClient":
        return cls(
            config.catalog_api_url,
            config.catalog_api_key,
            timeout=config.catalog_timeout,
            user_agent=config.user_agent,
        )

    async def _initialize_session(self) -> None:
        """Ensures an active aiohttp session is available with compression enabled."""
        if self._session is None or self._session.closed:
            headers = {"Accept-Encoding": "gzip"}
            if self.user_agent:
                headers["User-Agent"] = self.user_agent
            self._session = aiohttp.ClientSession(
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )

    async def close(self) -> None:
        """Gracefully closes the aiohttp session."""
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "CatalogClient":
        await self._initialize_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _get(self, params: dict[str, Any]) -> bytes:
        await self._initialize_session()
        url = f"{self.api_url}/{CATALOG_ENDPOINT}"
        start_time = time.monotonic()
        async with self._session.get(url, params=params) as r:
            body = await r.read()
            duration_ms = (time.monotonic() - start_time) * 1000
            log.debug(
                f"Catalog API answered {r.status} in {duration_ms:.0f} ms"
                f" ({r.headers.get('Content-Encoding', 'identity')}, {len(body)} bytes)"
            )
            r.raise_for_status()
            return body

    async def fetch_catalog(self, raw_input: str) -> Catalog:
        """
        Fetches the story catalog for a username or phone number.

        Raises:
            CatalogTransportError: Network failure, timeout, error status, or an
                open circuit breaker.
            CatalogDecodeError: The payload is not the expected JSON document.
        """
        identifier = normalize_identifier(raw_input)
        params = {
            "api_key": self._api_key,
            "username": identifier,
            "archive": "true",
            "mark": "true",
        }

        try:
            async with self._circuit_breaker:
                body = await self._get(params)
        except CircuitBreakerError as e:
            raise CatalogTransportError(str(e)) from e
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            log.debug(f"Catalog request for '{identifier}' failed: {e!r}")
            raise CatalogTransportError(
                f"Catalog request failed: {str(e) or type(e).__name__}"
            ) from e

        try:
            payload = json.loads(body)
            catalog = Catalog.model_validate(payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CatalogDecodeError(f"Catalog response is not valid JSON: {e}") from e
        except ValidationError as e:
            raise CatalogDecodeError(
                f"Catalog response has an unexpected shape: {e.error_count()} error(s)"
            ) from e

        log.info(
            f"Catalog for [cyan]{identifier}[/cyan]: {len(catalog.items)} item(s)"
        )
        return catalog
