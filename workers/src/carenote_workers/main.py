"""CareNote Workers: background job processor for concerns and follow-ups."""

import asyncio
import logging

from .config import Config
from .context import Runtime
from .health import start_health_server
from .logging import setup_logging
from .messaging import ChatwootMessenger
from .registry import registered_types
from .worker import Worker

# Import handlers to register them
from . import handlers  # noqa: F401


def main() -> None:
    config = Config.from_env()
    setup_logging(config.log_format)

    logger = logging.getLogger(__name__)
    logger.info("CareNote worker starting")
    logger.info("Log format: %s", config.log_format)
    logger.info("Health port: %d", config.health_port)
    logger.info("Registered job types: %s", registered_types())
    if not config.chatwoot_base_url:
        logger.warning("CHATWOOT_BASE_URL is not set; outbound messages will fail")

    asyncio.run(_run(config))


async def _run(config: Config) -> None:
    logger = logging.getLogger(__name__)

    health_server = await start_health_server(config.health_port, config.database_url)
    logger.info("Health server started")

    messenger = ChatwootMessenger(
        config.chatwoot_base_url,
        config.chatwoot_api_token,
        config.chatwoot_account_id,
        timeout_seconds=config.send_timeout_seconds,
    )
    try:
        worker = Worker(config, Runtime(config=config, messenger=messenger))
        await worker.run()
    finally:
        await messenger.aclose()
        health_server.close()
        await health_server.wait_closed()


if __name__ == "__main__":
    main()
