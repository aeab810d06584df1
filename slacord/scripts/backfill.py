"""Backfill one mapping from the command line.

Webhook delivery needs no Discord bot session, so this can run while the
service itself is stopped.
"""

from __future__ import annotations

import argparse
import asyncio

from slacord import log_config
from slacord.config import ensure_config
from slacord.db.session import close_db, init_db
from slacord.relay.backfill import backfill_mapping
from slacord.services import build_services


async def _backfill(mapping_id: int, limit: int) -> None:
    log_config.setup_logging()
    cfg = await ensure_config()
    await init_db(cfg.database.url)
    services = build_services(cfg)
    try:
        result = await backfill_mapping(
            services.session_factory,
            services.dispatcher,
            services.slack,
            mapping_id,
            limit=limit,
        )
        print(f"imported={result.backup_count} retried={result.retried}")
    finally:
        await services.aclose()
        await close_db()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Backfill a Slack channel mapping")
    parser.add_argument("mapping_id", type=int)
    parser.add_argument("--limit", type=int, default=100)
    args = parser.parse_args()
    asyncio.run(_backfill(args.mapping_id, args.limit))
