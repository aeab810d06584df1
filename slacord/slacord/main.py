"""Entry point for starting the Slacord relay service."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

import uvicorn

from . import log_config
from .config import AppConfig, ensure_config
from .db.session import close_db, init_db, mask_url
from .discordbot.bot import create_bot
from .http.api import create_app
from .relay.dispatcher import ForwardFailure
from .services import build_services
from .slack.socket_mode import create_socket_client, run_socket_mode


def _log_forward_failure(failure: ForwardFailure) -> None:
    logging.error(
        "Archive forward failed message_id=%s source_message_id=%s error=%s",
        failure.message_id,
        failure.source_message_id,
        failure.error,
    )


async def run(cfg: AppConfig) -> None:
    """Run the HTTP API, the Discord bot and optional Socket Mode together."""

    bot = create_bot(cfg.discord)
    services = build_services(cfg, bot=bot)
    services.dispatcher.add_error_callback(_log_forward_failure)
    app = create_app(services)

    config = uvicorn.Config(app, host=cfg.server.host, port=cfg.server.port, log_level="info")
    server = uvicorn.Server(config)
    logging.info("ApiBaseUrl: http://%s:%s", cfg.server.host, cfg.server.port)

    tasks = [server.serve(), bot.start(cfg.discord.bot_token)]
    if cfg.slack.app_token:
        socket_client = create_socket_client(
            cfg.slack.app_token, services.slack.client, services.dispatcher
        )
        tasks.append(run_socket_mode(socket_client))
    else:
        logging.info("No Slack app token configured; expecting events on /slack/events")

    try:
        await asyncio.gather(*tasks)
    finally:
        await services.aclose()
        if not bot.is_closed():
            await bot.close()


async def main_async() -> None:
    parser = argparse.ArgumentParser(description="Start the Slacord relay service")
    parser.add_argument(
        "--reconfigure",
        action="store_true",
        help="Force interactive configuration prompts",
    )
    args = parser.parse_args()

    log_config.setup_logging()
    cfg = await ensure_config(force_reconfigure=args.reconfigure)

    db_url = cfg.database.url
    logging.info("Initialising database at %s", mask_url(db_url))
    try:
        await init_db(db_url)
    except Exception:
        logging.exception("Database initialization failed")
        sys.exit(1)

    try:
        await run(cfg)
    except Exception:
        logging.exception("Failed to start services")
        sys.exit(1)
    finally:
        await close_db()


def main() -> None:
    asyncio.run(main_async())


if __name__ == "__main__":
    main()
