"""Read routing between live Slack history and the archive store.

Messages newer than the retention cutoff are read from Slack; anything older
comes from ``archived_messages``. A page always comes from exactly one of the
two sources.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import ArchivedMessage, ChannelMapping, utcnow
from ..errors import UpstreamError, ValidationError
from ..slack.client import SlackGateway
from ..slack.ts import is_slack_ts, ts_to_datetime

logger = logging.getLogger(__name__)

SOURCE_LIVE = "live"
SOURCE_ARCHIVE = "archive"


@dataclass
class PageItem:
    id: str
    body: str
    author_name: str
    timestamp: datetime
    source: str


@dataclass
class MessagePage:
    source: str
    messages: list[PageItem] = field(default_factory=list)
    has_more: bool = False
    next_cursor: str | None = None


class RetentionRouter:
    def __init__(
        self,
        slack: SlackGateway | None,
        retention_days: int = 90,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.slack = slack
        self.retention = timedelta(days=retention_days)
        self._clock = clock

    def cutoff(self) -> datetime:
        return self._clock() - self.retention

    async def resolve_before(
        self,
        db: AsyncSession,
        raw: str | None,
        mapping: ChannelMapping | None = None,
    ) -> datetime:
        """Turn a ``before`` query value into a naive UTC datetime.

        Accepts nothing (now), an ISO-8601 timestamp, a Slack ts, or the
        Discord message id of an archived row as handed out in
        ``next_cursor``.
        """

        if raw is None or not raw.strip():
            return self._clock()
        raw = raw.strip()
        if is_slack_ts(raw):
            try:
                return ts_to_datetime(raw)
            except (OverflowError, OSError, ValueError) as exc:
                raise ValidationError(f"Invalid before value: {raw}") from exc
        if raw.isdigit():
            stmt = select(ArchivedMessage.sent_at).where(
                ArchivedMessage.archive_message_id == raw
            )
            if mapping is not None:
                stmt = stmt.where(ArchivedMessage.mapping_id == mapping.id)
            sent_at = await db.scalar(stmt)
            if sent_at is None:
                raise ValidationError(f"Unknown cursor: {raw}")
            return sent_at
        try:
            value = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError as exc:
            raise ValidationError(f"Invalid before value: {raw}") from exc
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    async def read(
        self,
        db: AsyncSession,
        mapping: ChannelMapping,
        before: datetime | None = None,
        limit: int = 50,
    ) -> MessagePage:
        if limit < 1:
            raise ValidationError("limit must be at least 1")
        if before is None:
            before = self._clock()
        cutoff = self.cutoff()
        if before >= cutoff:
            return await self._read_live(mapping, cutoff, before, limit)
        return await self._read_archive(db, mapping, before, limit)

    async def _read_live(
        self, mapping: ChannelMapping, cutoff: datetime, before: datetime, limit: int
    ) -> MessagePage:
        if self.slack is None:
            return MessagePage(source=SOURCE_LIVE)
        try:
            page = await self.slack.history(
                mapping.source_channel_id, limit=limit, oldest=cutoff, latest=before
            )
        except UpstreamError as exc:
            logger.warning(
                "Live history for %s unavailable: %s", mapping.source_channel_id, exc
            )
            return MessagePage(source=SOURCE_LIVE)

        items = [
            PageItem(
                id=m.ts,
                body=m.text,
                author_name=m.username,
                timestamp=m.sent_at,
                source=SOURCE_LIVE,
            )
            for m in page.messages[:limit]
        ]
        return MessagePage(
            source=SOURCE_LIVE,
            messages=items,
            has_more=page.has_more and len(items) >= limit,
            next_cursor=items[-1].id if items else None,
        )

    async def _read_archive(
        self, db: AsyncSession, mapping: ChannelMapping, before: datetime, limit: int
    ) -> MessagePage:
        result = await db.execute(
            select(ArchivedMessage)
            .where(
                ArchivedMessage.mapping_id == mapping.id,
                ArchivedMessage.sent_at < before,
            )
            .order_by(ArchivedMessage.sent_at.desc(), ArchivedMessage.id.desc())
            .limit(limit + 1)
        )
        rows = list(result.scalars())
        has_more = len(rows) > limit
        rows = rows[:limit]
        items = [
            PageItem(
                id=str(r.id),
                body=r.body,
                author_name=r.author_name,
                timestamp=r.sent_at,
                source=SOURCE_ARCHIVE,
            )
            for r in rows
        ]
        next_cursor = None
        if rows:
            last = rows[-1]
            next_cursor = last.archive_message_id or last.source_message_id
        return MessagePage(
            source=SOURCE_ARCHIVE,
            messages=items,
            has_more=has_more,
            next_cursor=next_cursor,
        )
