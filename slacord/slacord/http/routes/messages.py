from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...db.models import ArchivedMessage
from ...errors import ValidationError
from ...relay.mappings import get_mapping
from ...services import RelayServices
from ...teams import require_member, team_ids_for
from ..deps import RequestContext, api_key_auth, get_db, get_services
from ..schemas import (
    ArchivedListDto,
    ArchivedMessageDto,
    MessageItemDto,
    MessagePageDto,
    SendMessageBody,
    SendMessageDto,
    StatsDto,
)

router = APIRouter(prefix="/api/messages")


def _page_limit(services: RelayServices, limit: Optional[int]) -> int:
    relay_cfg = services.config.relay
    if limit is None:
        return relay_cfg.default_page_size
    if limit < 1 or limit > relay_cfg.max_page_size:
        raise ValidationError(f"limit must be between 1 and {relay_cfg.max_page_size}")
    return limit


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _archived(rows) -> list[ArchivedMessageDto]:
    return [
        ArchivedMessageDto(
            id=r.id,
            team_id=r.team_id,
            mapping_id=r.mapping_id,
            source_message_id=r.source_message_id,
            source_channel_id=r.source_channel_id,
            author_id=r.author_id,
            author_name=r.author_name,
            body=r.body,
            kind=r.kind.value,
            thread_ts=r.thread_ts,
            archive_message_id=r.archive_message_id,
            sent_at=r.sent_at,
            archived_at=r.archived_at,
        )
        for r in rows
    ]


@router.get("", response_model=MessagePageDto)
async def get_messages(
    mapping_id: int = Query(..., alias="mappingId"),
    before: Optional[str] = None,
    limit: Optional[int] = None,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
    services: RelayServices = Depends(get_services),
):
    """Read one page of a mapping's history from Slack or the archive."""
    limit = _page_limit(services, limit)
    mapping = await get_mapping(db, mapping_id)
    await require_member(db, mapping.team_id, ctx.user)
    retention = services.retention
    before_at = await retention.resolve_before(db, before, mapping)
    page = await retention.read(db, mapping, before_at, limit)
    return MessagePageDto(
        messages=[
            MessageItemDto(
                id=m.id,
                body=m.body,
                author_name=m.author_name,
                timestamp=m.timestamp,
                source=m.source,
            )
            for m in page.messages
        ],
        has_more=page.has_more,
        next_cursor=page.next_cursor,
        source=page.source,
    )


@router.post("", response_model=SendMessageDto)
async def send_message(
    body: SendMessageBody,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
    services: RelayServices = Depends(get_services),
):
    """Post to the mapping's Slack channel under the caller's name."""
    if not body.body.strip():
        raise ValidationError("body must not be empty")
    mapping = await get_mapping(db, body.mapping_id)
    await require_member(db, mapping.team_id, ctx.user)
    if not mapping.is_active:
        raise ValidationError("Mapping is inactive")
    posted = await services.slack.post_message(
        mapping.source_channel_id, body.body, username=ctx.user.username
    )
    logging.info(
        "Message sent to %s by user %s ts=%s", posted.channel_id, ctx.user.id, posted.ts
    )
    return SendMessageDto(
        success=True,
        source_message_id=posted.ts,
        channel_id=posted.channel_id,
        timestamp=posted.sent_at,
    )


@router.get("/search", response_model=ArchivedListDto)
async def search_messages(
    q: str = Query(..., min_length=1),
    limit: int = Query(50, ge=1, le=100),
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    team_ids = await team_ids_for(db, ctx.user)
    pattern = f"%{q.lower()}%"
    result = await db.scalars(
        select(ArchivedMessage)
        .where(
            ArchivedMessage.team_id.in_(team_ids),
            func.lower(ArchivedMessage.body).like(pattern),
        )
        .order_by(ArchivedMessage.sent_at.desc(), ArchivedMessage.id.desc())
        .limit(limit)
    )
    return ArchivedListDto(messages=_archived(result))


async def _paged(db: AsyncSession, where: list, page: int, limit: int) -> ArchivedListDto:
    total = await db.scalar(select(func.count(ArchivedMessage.id)).where(*where))
    result = await db.scalars(
        select(ArchivedMessage)
        .where(*where)
        .order_by(ArchivedMessage.sent_at.desc(), ArchivedMessage.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return ArchivedListDto(messages=_archived(result), total_count=total or 0, page=page)


@router.get("/channel/{channel_id}", response_model=ArchivedListDto)
async def channel_messages(
    channel_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    team_ids = await team_ids_for(db, ctx.user)
    return await _paged(
        db,
        [
            ArchivedMessage.team_id.in_(team_ids),
            ArchivedMessage.source_channel_id == channel_id,
        ],
        page,
        limit,
    )


@router.get("/user/{author_id}", response_model=ArchivedListDto)
async def user_messages(
    author_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    team_ids = await team_ids_for(db, ctx.user)
    return await _paged(
        db,
        [ArchivedMessage.team_id.in_(team_ids), ArchivedMessage.author_id == author_id],
        page,
        limit,
    )


@router.get("/range", response_model=ArchivedListDto)
async def range_messages(
    start: datetime,
    end: datetime,
    limit: int = Query(100, ge=1, le=1000),
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    start, end = _naive_utc(start), _naive_utc(end)
    if start > end:
        raise ValidationError("start must not be after end")
    team_ids = await team_ids_for(db, ctx.user)
    result = await db.scalars(
        select(ArchivedMessage)
        .where(
            ArchivedMessage.team_id.in_(team_ids),
            ArchivedMessage.sent_at >= start,
            ArchivedMessage.sent_at <= end,
        )
        .order_by(ArchivedMessage.sent_at.desc(), ArchivedMessage.id.desc())
        .limit(limit)
    )
    return ArchivedListDto(messages=_archived(result))


@router.get("/stats", response_model=StatsDto)
async def stats(
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    team_ids = await team_ids_for(db, ctx.user)
    total = await db.scalar(
        select(func.count(ArchivedMessage.id)).where(ArchivedMessage.team_id.in_(team_ids))
    )
    pending = await db.scalar(
        select(func.count(ArchivedMessage.id)).where(
            ArchivedMessage.team_id.in_(team_ids),
            ArchivedMessage.archive_message_id.is_(None),
        )
    )
    return StatsDto(total_messages=total or 0, pending_messages=pending or 0)
