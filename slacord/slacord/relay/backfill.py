"""Manual backfill of a mapping from Slack history.

This is the only retry path for rows left ``pending`` by a failed forward.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import select

from ..db.models import ArchivedMessage
from ..errors import ValidationError
from ..slack.client import LiveMessage, SlackGateway
from .dispatcher import Dispatcher, DispatchStatus, SessionFactory
from .mappings import get_mapping
from .normalizer import InboundMessage

logger = logging.getLogger(__name__)


@dataclass
class BackfillResult:
    backup_count: int = 0
    retried: int = 0


def _inbound(message: LiveMessage, channel_id: str) -> InboundMessage:
    return InboundMessage(
        source_message_id=message.ts,
        source_channel_id=channel_id,
        body=message.text,
        sent_at=message.sent_at,
        author_id=message.user_id,
        author_name=message.username,
        thread_ts=message.thread_ts,
    )


async def backfill_mapping(
    session_factory: SessionFactory,
    dispatcher: Dispatcher,
    slack: SlackGateway,
    mapping_id: int,
    *,
    limit: int = 100,
) -> BackfillResult:
    """Re-forward pending rows, then import recent Slack messages.

    Messages whose ``source_message_id`` is already stored are skipped. Each
    forward is awaited so the counts reflect what reached Discord.
    """

    async with session_factory() as db:
        mapping = await get_mapping(db, mapping_id)
        if not mapping.is_active:
            raise ValidationError("Mapping is inactive")
        channel_id = mapping.source_channel_id
        pending = (
            await db.execute(
                select(ArchivedMessage.id, ArchivedMessage.source_message_id)
                .where(
                    ArchivedMessage.mapping_id == mapping.id,
                    ArchivedMessage.archive_message_id.is_(None),
                )
                .order_by(ArchivedMessage.sent_at)
            )
        ).all()

    result = BackfillResult()
    for message_id, source_message_id in pending:
        if await dispatcher.forward_and_report(message_id, source_message_id):
            result.retried += 1

    page = await slack.history(channel_id, limit=limit)
    # Slack returns newest first; archive oldest first so Discord reads in order.
    for live in reversed(page.messages):
        persisted = await dispatcher.persist(_inbound(live, channel_id))
        if persisted.status is not DispatchStatus.PERSISTED or persisted.message_id is None:
            continue
        if await dispatcher.forward_and_report(persisted.message_id, live.ts):
            result.backup_count += 1

    logger.info(
        "Backfill of mapping %s: %s imported, %s retried",
        mapping_id,
        result.backup_count,
        result.retried,
    )
    return result
