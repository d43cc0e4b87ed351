"""
Wires the configured components together and runs the bot until cancelled.
"""

import logging
from contextlib import AsyncExitStack

from story_relay.api.client import CatalogClient
from story_relay.api.telegram import TelegramBotClient
from story_relay.core.admission import AdmissionController
from story_relay.core.download_manager import DownloadManager
from story_relay.core.relay import RelayPipeline
from story_relay.core.user_service import UserService
from story_relay.media.downloader import MediaFetcher
from story_relay.models.config import RelayConfig
from story_relay.storage.ledger import RequestLedger
from story_relay.storage.users import UserStore
from story_relay.web.health import start_health_server

from .controller import BotController

log = logging.getLogger(__name__)


def build_manager(
    config: RelayConfig,
    transport: TelegramBotClient,
    catalog_client: CatalogClient,
    fetcher: MediaFetcher,
    users: UserStore,
    ledger: RequestLedger,
) -> DownloadManager:
    """Assembles a DownloadManager from configuration and open resources."""
    relay = RelayPipeline(
        transport,
        config.archive_channel_id,
        send_timeout=config.send_timeout,
        tz=config.tzinfo,
    )
    admission = AdmissionController(
        ledger, config.cooldown_window, config.daily_quota
    )
    return DownloadManager(
        transport=transport,
        catalog_client=catalog_client,
        fetcher=fetcher,
        relay=relay,
        admission=admission,
        ledger=ledger,
        user_service=UserService(users),
        request_deadline=config.request_deadline,
        send_timeout=config.send_timeout,
    )


async def serve(config: RelayConfig, with_health: bool = True) -> None:
    """Runs the bot (and the health endpoint) until the task is cancelled."""
    users = UserStore(config.database_path)
    ledger = RequestLedger(config.database_path, day_tz=config.tzinfo)

    async with AsyncExitStack() as stack:
        transport = await stack.enter_async_context(
            TelegramBotClient(config.bot_token, request_timeout=config.send_timeout)
        )
        catalog_client = await stack.enter_async_context(
            CatalogClient.from_config(config)
        )
        fetcher = await stack.enter_async_context(MediaFetcher.from_config(config))

        manager = build_manager(config, transport, catalog_client, fetcher, users, ledger)
        me = await transport.get_me()
        log.info(f"Logged in as [cyan]@{me.get('username')}[/cyan]")
        await manager.verify_archive()

        if with_health:
            runner = await start_health_server(config.health_port)
            stack.push_async_callback(runner.cleanup)

        log.info(
            f"Starting in [bold]{config.app_env}[/bold] mode: cooldown "
            f"{config.cooldown_window}s, limit {config.daily_quota}/day, "
            f"{config.max_workers} download workers"
        )
        controller = BotController(
            transport,
            manager,
            manager.user_service,
            poll_timeout=config.poll_timeout,
        )
        await controller.run()
