from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ...errors import ConflictError, ValidationError
from ...relay.backfill import backfill_mapping
from ...relay.mappings import get_mapping as load_mapping
from ...services import RelayServices
from ...teams import MANAGER_ROLES, require_member
from ..deps import RequestContext, api_key_auth, get_db, get_services
from ..schemas import BackfillDto, MappingDto, MappingUpdateBody

router = APIRouter(prefix="/api/mappings")


@router.get("/{mapping_id}", response_model=MappingDto)
async def get_mapping(
    mapping_id: int,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    mapping = await load_mapping(db, mapping_id)
    await require_member(db, mapping.team_id, ctx.user)
    return MappingDto.model_validate(mapping)


@router.put("/{mapping_id}", response_model=MappingDto)
async def update_mapping(
    mapping_id: int,
    body: MappingUpdateBody,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    mapping = await load_mapping(db, mapping_id)
    await require_member(db, mapping.team_id, ctx.user, MANAGER_ROLES)
    if body.name is not None:
        if not body.name.strip():
            raise ValidationError("Mapping name is required")
        mapping.name = body.name.strip()
    if body.description is not None:
        mapping.description = body.description
    if body.is_active is not None:
        mapping.is_active = body.is_active
    if body.archive_destination is not None:
        mapping.archive_destination = body.archive_destination
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError("A mapping with this name already exists") from exc
    return MappingDto.model_validate(mapping)


@router.delete("/{mapping_id}", status_code=204)
async def delete_mapping(
    mapping_id: int,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    """Remove a mapping. Its archived messages stay with the team."""
    mapping = await load_mapping(db, mapping_id)
    await require_member(db, mapping.team_id, ctx.user, MANAGER_ROLES)
    await db.delete(mapping)
    await db.commit()
    logging.info("Deleted mapping %s of team %s", mapping_id, mapping.team_id)
    return Response(status_code=204)


@router.post("/{mapping_id}/backfill", response_model=BackfillDto)
async def backfill(
    mapping_id: int,
    limit: int = Query(100, ge=1, le=1000),
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
    services: RelayServices = Depends(get_services),
):
    mapping = await load_mapping(db, mapping_id)
    await require_member(db, mapping.team_id, ctx.user, MANAGER_ROLES)
    result = await backfill_mapping(
        services.session_factory,
        services.dispatcher,
        services.slack,
        mapping_id,
        limit=limit,
    )
    return BackfillDto(backup_count=result.backup_count, retried=result.retried)
