"""Slack to Discord dispatch.

An inbound message is persisted before anything is sent to Discord. The
forward then runs as a detached task that opens its own session; its outcome
never reaches the caller that triggered the dispatch. Failures are recorded on
the dispatcher and handed to every registered error callback so a supervisor
can observe them.
"""

from __future__ import annotations

import asyncio
import json
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, AsyncContextManager, Callable, Mapping

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ..bridge import build_archive_payload
from ..db.models import ArchivedMessage, ChannelMapping, utcnow
from ..discordbot.gateway import DiscordGateway
from ..errors import NotFoundError, UpstreamError
from ..slack.client import SlackGateway
from .mappings import find_by_source_channel
from .normalizer import Attachment, InboundMessage, normalize_event

logger = structlog.get_logger(__name__)

SessionFactory = Callable[[], AsyncContextManager[AsyncSession]]


class DispatchStatus(str, Enum):
    UNMAPPED = "unmapped"
    DUPLICATE = "duplicate"
    PERSISTED = "persisted"


@dataclass
class DispatchResult:
    status: DispatchStatus
    message_id: int | None = None
    task: asyncio.Task | None = None


@dataclass
class ForwardFailure:
    message_id: int
    source_message_id: str
    error: BaseException
    occurred_at: datetime = field(default_factory=utcnow)


ErrorCallback = Callable[[ForwardFailure], Any]


@dataclass
class _ForwardJob:
    message_id: int
    source_message_id: str
    destination: str
    body: str
    author_name: str
    avatar_url: str | None
    attachments: list[Attachment]


def load_attachments(raw: str | None) -> list[Attachment]:
    if not raw:
        return []
    try:
        return [Attachment(**a) for a in json.loads(raw)]
    except (TypeError, ValueError):
        return []


class Dispatcher:
    def __init__(
        self,
        session_factory: SessionFactory,
        sink: DiscordGateway,
        slack: SlackGateway | None = None,
        *,
        failure_history: int = 100,
    ) -> None:
        self._session_factory = session_factory
        self._sink = sink
        self._slack = slack
        self._tasks: set[asyncio.Task] = set()
        self._callbacks: list[ErrorCallback] = []
        self.failures: deque[ForwardFailure] = deque(maxlen=failure_history)

    def add_error_callback(self, callback: ErrorCallback) -> None:
        self._callbacks.append(callback)

    @property
    def pending_forwards(self) -> int:
        return len(self._tasks)

    async def handle_event(self, event: Mapping[str, Any]) -> DispatchResult | None:
        """Normalize a Slack ``message`` event and dispatch it.

        Any failure is logged and scoped to the
        event, so the transport can always acknowledge it.
        """

        try:
            message = normalize_event(event)
        except Exception:
            logger.exception("relay.normalize_failed", ts=event.get("ts"))
            return None
        return await self.handle_message(message)

    async def handle_message(self, message: InboundMessage | None) -> DispatchResult | None:
        if message is None:
            return None
        try:
            return await self.dispatch(message)
        except Exception:
            logger.exception(
                "relay.dispatch_failed",
                source_message_id=message.source_message_id,
                source_channel_id=message.source_channel_id,
            )
            return None

    async def _resolve_author(self, message: InboundMessage) -> tuple[str, str | None]:
        name = message.author_name or "Unknown User"
        avatar = message.avatar_url
        if self._slack is None or not message.author_id:
            return name, avatar
        try:
            user = await self._slack.get_user(message.author_id)
        except UpstreamError as exc:
            logger.warning(
                "relay.author_lookup_failed", author_id=message.author_id, error=str(exc)
            )
            return name, avatar
        if user is None:
            return name, avatar
        return user.name, user.avatar_url or avatar

    async def dispatch(self, message: InboundMessage) -> DispatchResult:
        """Persist ``message`` and schedule its forward to the archive channel."""

        result = await self.persist(message)
        if result.status is DispatchStatus.PERSISTED and result.message_id is not None:
            result.task = self.spawn_forward(result.message_id, message.source_message_id)
        return result

    async def persist(self, message: InboundMessage) -> DispatchResult:
        """Store ``message`` as a pending archive row without forwarding it."""

        async with self._session_factory() as db:
            mapping = await find_by_source_channel(db, message.source_channel_id)
            if mapping is None:
                logger.warning(
                    "relay.unmapped_channel", source_channel_id=message.source_channel_id
                )
                return DispatchResult(DispatchStatus.UNMAPPED)

            existing = await db.scalar(
                select(ArchivedMessage.id).where(
                    ArchivedMessage.source_message_id == message.source_message_id
                )
            )
            if existing is not None:
                logger.info(
                    "relay.duplicate", source_message_id=message.source_message_id
                )
                return DispatchResult(DispatchStatus.DUPLICATE, message_id=existing)

            author_name, avatar_url = await self._resolve_author(message)
            row = ArchivedMessage(
                team_id=mapping.team_id,
                mapping_id=mapping.id,
                source_message_id=message.source_message_id,
                source_channel_id=message.source_channel_id,
                author_id=message.author_id,
                author_name=author_name,
                author_avatar_url=avatar_url,
                body=message.body,
                kind=message.kind,
                thread_ts=message.thread_ts,
                attachments_json=message.attachments_json(),
                archive_channel_id=mapping.archive_channel_id,
                sent_at=message.sent_at,
            )
            db.add(row)
            try:
                await db.commit()
            except IntegrityError:
                # Concurrent redelivery won the insert; the unique index decides.
                await db.rollback()
                logger.info(
                    "relay.duplicate", source_message_id=message.source_message_id
                )
                return DispatchResult(DispatchStatus.DUPLICATE)
            message_id = row.id

        logger.info(
            "relay.persisted",
            message_id=message_id,
            source_message_id=message.source_message_id,
            body=message.body[:50],
        )
        return DispatchResult(DispatchStatus.PERSISTED, message_id=message_id)

    def spawn_forward(self, message_id: int, source_message_id: str = "") -> asyncio.Task:
        task = asyncio.create_task(self.forward_and_report(message_id, source_message_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def forward_and_report(self, message_id: int, source_message_id: str = "") -> bool:
        """Forward one row, reporting any failure instead of raising it."""

        try:
            await self.forward(message_id)
        except Exception as exc:
            logger.error(
                "relay.forward_failed",
                message_id=message_id,
                source_message_id=source_message_id,
                error=str(exc),
            )
            self._report(ForwardFailure(message_id, source_message_id, exc))
            return False
        return True

    def _report(self, failure: ForwardFailure) -> None:
        self.failures.append(failure)
        for callback in list(self._callbacks):
            try:
                callback(failure)
            except Exception:
                logger.exception("relay.error_callback_failed", message_id=failure.message_id)

    async def _load_job(self, message_id: int) -> _ForwardJob | None:
        async with self._session_factory() as db:
            row = await db.get(ArchivedMessage, message_id)
            if row is None:
                raise NotFoundError(f"Archived message {message_id} not found")
            if row.archive_message_id is not None:
                return None
            if row.mapping_id is None:
                raise NotFoundError(f"Archived message {message_id} has no mapping")
            mapping = await db.get(ChannelMapping, row.mapping_id)
            if mapping is None:
                raise NotFoundError(f"Mapping {row.mapping_id} not found")
            return _ForwardJob(
                message_id=row.id,
                source_message_id=row.source_message_id,
                destination=mapping.archive_destination,
                body=row.body,
                author_name=row.author_name,
                avatar_url=row.author_avatar_url,
                attachments=load_attachments(row.attachments_json),
            )

    async def forward(self, message_id: int) -> str | None:
        """Deliver one archived message to its Discord webhook.

        Returns the Discord message id, or ``None`` when the message had
        already been archived. Raises on failure; the row then stays pending.
        """

        job = await self._load_job(message_id)
        if job is None:
            return None

        payload = build_archive_payload(
            body=job.body,
            author_name=job.author_name,
            avatar_url=job.avatar_url,
            attachments=job.attachments,
        )
        archive_id = await self._sink.forward(job.destination, payload)

        async with self._session_factory() as db:
            row = await db.get(ArchivedMessage, message_id)
            if row is None:
                raise NotFoundError(f"Archived message {message_id} vanished")
            archived_at = max(utcnow(), row.sent_at)
            row.archive_message_id = archive_id
            row.archived_at = archived_at
            if row.mapping_id is not None:
                mapping = await db.get(ChannelMapping, row.mapping_id)
                if mapping is not None:
                    mapping.message_count = (mapping.message_count or 0) + 1
                    mapping.last_archived_at = archived_at
            await db.commit()

        logger.info(
            "relay.archived",
            message_id=message_id,
            source_message_id=job.source_message_id,
            archive_message_id=archive_id,
        )
        return archive_id

    async def drain(self) -> None:
        """Wait for every outstanding forward task to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
