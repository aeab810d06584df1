from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from ... import teams as team_service
from ...db.models import MemberRole
from ...relay.mappings import list_for_team
from ...services import RelayServices
from ..deps import RequestContext, api_key_auth, get_db, get_services
from ..schemas import (
    InviteDto,
    MappingBody,
    MappingDto,
    MemberDto,
    TeamBody,
    TeamCreatedDto,
    TeamDto,
    TeamUpdateBody,
)

router = APIRouter(prefix="/api/teams")


@router.post("", response_model=TeamCreatedDto, status_code=201)
async def create_team(
    body: TeamBody,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
    services: RelayServices = Depends(get_services),
):
    """Provision Slack and Discord channels and store the new team."""
    logging.info("Team creation requested name=%s user=%s", body.name, ctx.user.id)
    team, mapping = await team_service.create_team(
        db,
        services.slack,
        services.discord,
        name=body.name,
        description=body.description,
        owner=ctx.user,
    )
    return TeamCreatedDto(
        team=TeamDto.model_validate(team), mapping=MappingDto.model_validate(mapping)
    )


@router.get("", response_model=List[TeamDto])
async def list_teams(
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    return [TeamDto.model_validate(t) for t in await team_service.list_teams(db, ctx.user)]


@router.post("/join/{token}", response_model=TeamDto)
async def join_team(
    token: str,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    team = await team_service.join_by_invite(db, token, ctx.user)
    return TeamDto.model_validate(team)


@router.get("/{team_id}", response_model=TeamDto)
async def get_team(
    team_id: int,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    await team_service.require_member(db, team_id, ctx.user)
    return TeamDto.model_validate(await team_service.get_team(db, team_id))


@router.put("/{team_id}", response_model=TeamDto)
async def update_team(
    team_id: int,
    body: TeamUpdateBody,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    await team_service.require_member(db, team_id, ctx.user, team_service.MANAGER_ROLES)
    team = await team_service.get_team(db, team_id)
    team = await team_service.update_team(
        db,
        team,
        name=body.name,
        description=body.description,
        is_active=body.is_active,
    )
    return TeamDto.model_validate(team)


@router.delete("/{team_id}", status_code=204)
async def delete_team(
    team_id: int,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    await team_service.require_member(db, team_id, ctx.user, frozenset({MemberRole.OWNER}))
    await team_service.delete_team(db, await team_service.get_team(db, team_id))
    return Response(status_code=204)


@router.post("/{team_id}/mappings", response_model=MappingDto, status_code=201)
async def create_mapping(
    team_id: int,
    body: MappingBody,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
    services: RelayServices = Depends(get_services),
):
    await team_service.require_member(db, team_id, ctx.user, team_service.MANAGER_ROLES)
    team = await team_service.get_team(db, team_id)
    mapping = await team_service.add_mapping(
        db,
        services.slack,
        services.discord,
        team,
        name=body.name,
        description=body.description,
        source_channel_id=body.source_channel_id,
        source_channel_name=body.source_channel_name,
        archive_channel_id=body.archive_channel_id,
        archive_channel_name=body.archive_channel_name,
        archive_destination=body.archive_destination,
    )
    return MappingDto.model_validate(mapping)


@router.get("/{team_id}/mappings", response_model=List[MappingDto])
async def get_mappings(
    team_id: int,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    await team_service.require_member(db, team_id, ctx.user)
    return [MappingDto.model_validate(m) for m in await list_for_team(db, team_id)]


@router.post("/{team_id}/invite", response_model=InviteDto)
async def create_invite(
    team_id: int,
    expires_in_days: Optional[int] = Query(None, alias="expiresInDays"),
    max_uses: Optional[int] = Query(None, alias="maxUses"),
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
    services: RelayServices = Depends(get_services),
):
    await team_service.require_member(db, team_id, ctx.user, team_service.MANAGER_ROLES)
    team = await team_service.get_team(db, team_id)
    relay_cfg = services.config.relay
    invite = await team_service.generate_invite(
        db,
        team,
        expires_in_days=expires_in_days or relay_cfg.invite_expires_days,
        max_uses=max_uses,
    )
    return InviteDto(
        invite_token=invite.token,
        invite_url=f"{relay_cfg.invite_base_url.rstrip('/')}/{invite.token}",
        expires_at=invite.expires_at,
        max_uses=invite.max_uses,
    )


@router.delete("/{team_id}/invite", status_code=204)
async def deactivate_invite(
    team_id: int,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    await team_service.require_member(db, team_id, ctx.user, team_service.MANAGER_ROLES)
    await team_service.deactivate_invite(db, await team_service.get_team(db, team_id))
    return Response(status_code=204)


@router.get("/{team_id}/members", response_model=List[MemberDto])
async def get_members(
    team_id: int,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    await team_service.require_member(db, team_id, ctx.user)
    team = await team_service.get_team(db, team_id)
    return [
        MemberDto(
            user_id=user.id,
            username=user.username,
            email=user.email,
            profile_image=user.profile_image,
            role=member.role.value,
            joined_at=member.joined_at,
        )
        for member, user in await team_service.list_members(db, team)
    ]


@router.delete("/{team_id}/members/{user_id}", status_code=204)
async def remove_member(
    team_id: int,
    user_id: int,
    ctx: RequestContext = Depends(api_key_auth),
    db: AsyncSession = Depends(get_db),
):
    await team_service.require_member(db, team_id, ctx.user, team_service.MANAGER_ROLES)
    await team_service.remove_member(db, await team_service.get_team(db, team_id), user_id)
    return Response(status_code=204)
