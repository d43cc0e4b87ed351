"""
Tiny HTTP surface for container health checks.
"""

import logging

from aiohttp import web

log = logging.getLogger(__name__)


async def health(request: web.Request) -> web.Response:
    return web.Response(text="OK\n")


def create_health_app() -> web.Application:
    app = web.Application()
    app.router.add_get("/health", health)
    return app


async def start_health_server(port: int, host: str = "0.0.0.0") -> web.AppRunner:
    """Starts serving /health in the background; call `cleanup()` on the runner to stop."""
    runner = web.AppRunner(create_health_app(), access_log=None)
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    log.info(f"Health check listening on port {port}")
    return runner
