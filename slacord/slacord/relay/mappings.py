from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import ChannelMapping
from ..errors import NotFoundError


async def find_by_source_channel(
    db: AsyncSession, source_channel_id: str, *, active_only: bool = True
) -> ChannelMapping | None:
    stmt = select(ChannelMapping).where(
        ChannelMapping.source_channel_id == source_channel_id
    )
    if active_only:
        stmt = stmt.where(ChannelMapping.is_active.is_(True))
    return await db.scalar(stmt)


async def get_mapping(db: AsyncSession, mapping_id: int) -> ChannelMapping:
    mapping = await db.get(ChannelMapping, mapping_id)
    if mapping is None:
        raise NotFoundError(f"Mapping {mapping_id} not found")
    return mapping


async def list_for_team(db: AsyncSession, team_id: int) -> list[ChannelMapping]:
    result = await db.execute(
        select(ChannelMapping)
        .where(ChannelMapping.team_id == team_id)
        .order_by(ChannelMapping.created_at.desc(), ChannelMapping.id.desc())
    )
    return list(result.scalars())
