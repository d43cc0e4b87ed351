"""Tests for the catalog API client against a local aiohttp server."""

import gzip
import json
from typing import Any

import pytest
import pytest_asyncio
from aiohttp import test_utils, web

from story_relay.api.client import CatalogClient, normalize_identifier
from story_relay.exceptions import (
    CatalogDecodeError,
    CatalogTransportError,
    ConfigurationError,
)
from story_relay.utils.circuit_breaker import CircuitBreaker

CATALOG = {
    "stories": [
        {"url": "media/a.mp4", "date": 1700000000, "caption": "first"},
        {"url": "media/b.jpg", "date": 1700000060, "caption": None},
    ],
    "base_url": "https://cdn.example.com/",
}


class CatalogStub:
    """Serves whatever the test configures and remembers the query it saw."""

    def __init__(self):
        self.status = 200
        self.body: bytes = json.dumps(CATALOG).encode()
        self.headers: dict[str, str] = {"Content-Type": "application/json"}
        self.queries: list[dict[str, Any]] = []

    async def handler(self, request: web.Request) -> web.Response:
        self.queries.append(dict(request.query))
        return web.Response(status=self.status, body=self.body, headers=self.headers)


@pytest.fixture
def stub() -> CatalogStub:
    return CatalogStub()


@pytest_asyncio.fixture
async def client(stub: CatalogStub):
    app = web.Application()
    app.router.add_get("/api/get_stories_by_username", stub.handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    catalog_client = CatalogClient(
        str(server.make_url("/api/")), "secret-key", timeout=5
    )
    try:
        yield catalog_client
    finally:
        await catalog_client.close()
        await server.close()


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("durov", "durov"),
        ("@durov", "durov"),
        ("+998901234567", "998901234567"),
        ("@+123", "123"),
        ("@@durov", "@durov"),
        ("", ""),
    ],
)
def test_normalize_identifier(raw: str, expected: str) -> None:
    assert normalize_identifier(raw) == expected


def test_missing_settings_are_rejected() -> None:
    with pytest.raises(ConfigurationError):
        CatalogClient("", "key")
    with pytest.raises(ConfigurationError):
        CatalogClient("https://api.example.com", "")


@pytest.mark.asyncio
async def test_fetch_catalog_decodes_items(client: CatalogClient) -> None:
    catalog = await client.fetch_catalog("@durov")

    assert catalog.base_url == "https://cdn.example.com/"
    assert [item.relative_path for item in catalog.items] == ["media/a.mp4", "media/b.jpg"]
    assert catalog.items[0].timestamp == 1700000000
    assert catalog.items[0].caption == "first"
    assert catalog.items[1].caption == ""


@pytest.mark.asyncio
async def test_query_parameters(client: CatalogClient, stub: CatalogStub) -> None:
    await client.fetch_catalog("+998901234567")

    assert stub.queries == [
        {
            "api_key": "secret-key",
            "username": "998901234567",
            "archive": "true",
            "mark": "true",
        }
    ]


@pytest.mark.asyncio
async def test_gzip_response_is_decompressed(
    client: CatalogClient, stub: CatalogStub
) -> None:
    stub.body = gzip.compress(json.dumps(CATALOG).encode())
    stub.headers = {"Content-Type": "application/json", "Content-Encoding": "gzip"}

    catalog = await client.fetch_catalog("durov")

    assert len(catalog.items) == 2


@pytest.mark.asyncio
async def test_empty_catalog(client: CatalogClient, stub: CatalogStub) -> None:
    stub.body = json.dumps({"stories": None, "base_url": None}).encode()

    catalog = await client.fetch_catalog("nobody")

    assert catalog.items == []
    assert catalog.base_url == ""


@pytest.mark.asyncio
async def test_error_status_is_transport_error(
    client: CatalogClient, stub: CatalogStub
) -> None:
    stub.status = 502
    stub.body = b"bad gateway"

    with pytest.raises(CatalogTransportError):
        await client.fetch_catalog("durov")


@pytest.mark.asyncio
async def test_html_body_is_decode_error(client: CatalogClient, stub: CatalogStub) -> None:
    stub.body = b"<html>maintenance</html>"
    stub.headers = {"Content-Type": "text/html"}

    with pytest.raises(CatalogDecodeError):
        await client.fetch_catalog("durov")


@pytest.mark.asyncio
async def test_wrong_shape_is_decode_error(client: CatalogClient, stub: CatalogStub) -> None:
    stub.body = json.dumps({"stories": [{"url": "a.mp4"}]}).encode()

    with pytest.raises(CatalogDecodeError):
        await client.fetch_catalog("durov")


@pytest.mark.asyncio
async def test_unreachable_host_is_transport_error() -> None:
    server = test_utils.TestServer(web.Application())
    await server.start_server()
    url = str(server.make_url("/"))
    await server.close()

    async with CatalogClient(url, "key", timeout=2) as catalog_client:
        with pytest.raises(CatalogTransportError):
            await catalog_client.fetch_catalog("durov")


@pytest.mark.asyncio
async def test_open_circuit_fails_fast(stub: CatalogStub) -> None:
    breaker = CircuitBreaker("catalog", failure_threshold=1, recovery_timeout=300)
    app = web.Application()
    app.router.add_get("/get_stories_by_username", stub.handler)
    server = test_utils.TestServer(app)
    await server.start_server()
    stub.status = 500
    try:
        async with CatalogClient(
            str(server.make_url("/")), "key", circuit_breaker=breaker
        ) as catalog_client:
            with pytest.raises(CatalogTransportError):
                await catalog_client.fetch_catalog("durov")
            with pytest.raises(CatalogTransportError, match="unavailable"):
                await catalog_client.fetch_catalog("durov")
    finally:
        await server.close()

    assert len(stub.queries) == 1
