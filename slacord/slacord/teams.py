"""Team lifecycle: channel provisioning, mappings, invites and membership.

A team owns one Slack channel and one Discord channel per mapping. Creating a
team provisions both channels and a webhook, then stores the team, its owner
membership and a default mapping. If anything after the first provisioning
call fails, the channels created so far are removed again.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from .db.models import (
    ChannelMapping,
    InviteLink,
    MemberRole,
    Team,
    TeamMember,
    User,
    utcnow,
)
from .discordbot.gateway import DiscordGateway, ProvisionedChannel
from .errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    UpstreamError,
    ValidationError,
)
from .slack.client import SlackGateway

logger = logging.getLogger(__name__)

MANAGER_ROLES = frozenset({MemberRole.OWNER, MemberRole.ADMIN})


@dataclass
class ProvisionedPair:
    slack_channel_id: str
    slack_channel_name: str
    discord: ProvisionedChannel


def _slack_error_message(name: str, exc: UpstreamError) -> str:
    if exc.code == "name_taken":
        return f"Channel '{name}' already exists. Please choose another name."
    if exc.code in {"invalid_name", "invalid_name_specials", "invalid_name_punctuation"}:
        return (
            "Invalid channel name. Only lowercase letters, digits, hyphens and "
            "underscores are allowed."
        )
    if exc.code == "invalid_name_required":
        return "A channel name is required."
    return f"Channel creation failed: {exc.message}"


async def _rollback_channels(
    slack: SlackGateway,
    discord: DiscordGateway,
    slack_channel_id: str | None,
    discord_channel_id: str | None,
) -> None:
    if discord_channel_id:
        try:
            await discord.delete_channel(discord_channel_id)
        except UpstreamError as exc:
            logger.error("Could not remove Discord channel %s: %s", discord_channel_id, exc)
    if slack_channel_id:
        try:
            await slack.archive_channel(slack_channel_id)
        except UpstreamError as exc:
            logger.error("Could not archive Slack channel %s: %s", slack_channel_id, exc)


async def provision_channels(
    slack: SlackGateway,
    discord: DiscordGateway,
    name: str,
    description: str | None = None,
) -> ProvisionedPair:
    try:
        slack_id, slack_name = await slack.create_channel(name, description)
    except UpstreamError as exc:
        if exc.service == "slack":
            raise ValidationError(_slack_error_message(name, exc)) from exc
        raise
    logger.info("Provisioned Slack channel %s (%s)", slack_name, slack_id)

    try:
        provisioned = await discord.create_channel(name, description)
    except UpstreamError:
        await _rollback_channels(slack, discord, slack_id, None)
        raise
    return ProvisionedPair(slack_id, slack_name, provisioned)


async def get_team(db: AsyncSession, team_id: int) -> Team:
    team = await db.get(Team, team_id)
    if team is None:
        raise NotFoundError(f"Team {team_id} not found")
    return team


async def get_membership(db: AsyncSession, team_id: int, user_id: int) -> TeamMember | None:
    return await db.get(TeamMember, (team_id, user_id))


async def require_member(
    db: AsyncSession,
    team_id: int,
    user: User,
    roles: frozenset[MemberRole] | None = None,
) -> TeamMember:
    """Return ``user``'s membership of the team or raise.

    Unknown teams raise :class:`NotFoundError`; non-members and members
    without one of ``roles`` raise :class:`PermissionDeniedError`.
    """

    await get_team(db, team_id)
    member = await get_membership(db, team_id, user.id)
    if member is None:
        raise PermissionDeniedError("Not a member of this team")
    if roles is not None and member.role not in roles:
        raise PermissionDeniedError("Insufficient team role")
    return member


async def team_ids_for(db: AsyncSession, user: User) -> list[int]:
    result = await db.scalars(
        select(TeamMember.team_id).where(TeamMember.user_id == user.id)
    )
    return list(result)


async def list_teams(db: AsyncSession, user: User) -> list[Team]:
    result = await db.scalars(
        select(Team)
        .join(TeamMember, TeamMember.team_id == Team.id)
        .where(TeamMember.user_id == user.id)
        .order_by(Team.created_at.desc(), Team.id.desc())
    )
    return list(result)


async def create_team(
    db: AsyncSession,
    slack: SlackGateway,
    discord: DiscordGateway,
    *,
    name: str,
    description: str | None,
    owner: User,
) -> tuple[Team, ChannelMapping]:
    name = name.strip()
    if not name:
        raise ValidationError("Team name is required")
    if await db.scalar(select(Team.id).where(Team.name == name)) is not None:
        raise ConflictError(f"Team '{name}' already exists")

    pair = await provision_channels(slack, discord, name, description)
    team = Team(name=name, description=description, owner_id=owner.id)
    db.add(team)
    try:
        await db.flush()
        db.add(TeamMember(team_id=team.id, user_id=owner.id, role=MemberRole.OWNER))
        mapping = ChannelMapping(
            team_id=team.id,
            name=name,
            description=description,
            source_channel_id=pair.slack_channel_id,
            source_channel_name=pair.slack_channel_name,
            archive_channel_id=pair.discord.channel_id,
            archive_channel_name=pair.discord.channel_name,
            archive_destination=pair.discord.webhook_url,
        )
        db.add(mapping)
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        await _rollback_channels(
            slack, discord, pair.slack_channel_id, pair.discord.channel_id
        )
        raise ConflictError(f"Team '{name}' already exists") from exc
    logger.info("Created team %s (%s) for user %s", team.name, team.id, owner.id)
    return team, mapping


async def update_team(
    db: AsyncSession,
    team: Team,
    *,
    name: str | None = None,
    description: str | None = None,
    is_active: bool | None = None,
) -> Team:
    if name is not None:
        name = name.strip()
        if not name:
            raise ValidationError("Team name is required")
        team.name = name
    if description is not None:
        team.description = description
    if is_active is not None:
        team.is_active = is_active
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ConflictError(f"Team '{name}' already exists") from exc
    return team


async def delete_team(db: AsyncSession, team: Team) -> None:
    """Delete ``team`` with its mappings, invite and archived messages."""

    await db.delete(team)
    await db.commit()
    logger.info("Deleted team %s (%s)", team.name, team.id)


async def add_mapping(
    db: AsyncSession,
    slack: SlackGateway,
    discord: DiscordGateway,
    team: Team,
    *,
    name: str,
    description: str | None = None,
    source_channel_id: str | None = None,
    source_channel_name: str | None = None,
    archive_channel_id: str | None = None,
    archive_channel_name: str | None = None,
    archive_destination: str | None = None,
) -> ChannelMapping:
    """Create a mapping, provisioning channels when none are supplied."""

    name = name.strip()
    if not name:
        raise ValidationError("Mapping name is required")
    provisioned: ProvisionedPair | None = None
    if source_channel_id is None:
        provisioned = await provision_channels(slack, discord, name, description)
        source_channel_id = provisioned.slack_channel_id
        source_channel_name = provisioned.slack_channel_name
        archive_channel_id = provisioned.discord.channel_id
        archive_channel_name = provisioned.discord.channel_name
        archive_destination = provisioned.discord.webhook_url
    elif not (archive_channel_id and archive_destination):
        raise ValidationError("archiveChannelId and archiveDestination are required")

    mapping = ChannelMapping(
        team_id=team.id,
        name=name,
        description=description,
        source_channel_id=source_channel_id,
        source_channel_name=source_channel_name or name,
        archive_channel_id=archive_channel_id,
        archive_channel_name=archive_channel_name,
        archive_destination=archive_destination,
    )
    db.add(mapping)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        if provisioned is not None:
            await _rollback_channels(
                slack, discord, provisioned.slack_channel_id, provisioned.discord.channel_id
            )
        raise ConflictError("Mapping already exists for this channel or name") from exc
    logger.info(
        "Mapped Slack channel %s to Discord channel %s for team %s",
        mapping.source_channel_id,
        mapping.archive_channel_id,
        team.id,
    )
    return mapping


async def generate_invite(
    db: AsyncSession,
    team: Team,
    *,
    expires_in_days: int = 7,
    max_uses: int | None = None,
) -> InviteLink:
    """Replace the team's invite link with a fresh token."""

    if expires_in_days < 1:
        raise ValidationError("expiresInDays must be at least 1")
    if max_uses is not None and max_uses < 1:
        raise ValidationError("maxUses must be at least 1")
    invite = await db.scalar(select(InviteLink).where(InviteLink.team_id == team.id))
    if invite is None:
        invite = InviteLink(team_id=team.id)
        db.add(invite)
    invite.token = secrets.token_hex(32)
    invite.expires_at = utcnow() + timedelta(days=expires_in_days)
    invite.is_active = True
    invite.max_uses = max_uses
    invite.current_uses = 0
    await db.commit()
    logger.info("Generated invite link for team %s", team.id)
    return invite


async def join_by_invite(db: AsyncSession, token: str, user: User) -> Team:
    invite = await db.scalar(select(InviteLink).where(InviteLink.token == token))
    if invite is None:
        raise ValidationError("Invalid invite link")
    if not invite.is_active:
        raise ValidationError("Invite link is no longer active")
    if utcnow() > invite.expires_at:
        raise ValidationError("Invite link has expired")
    if invite.max_uses is not None and invite.current_uses >= invite.max_uses:
        raise ValidationError("Invite link has reached its usage limit")
    if await get_membership(db, invite.team_id, user.id) is not None:
        raise ConflictError("Already a member of this team")

    db.add(TeamMember(team_id=invite.team_id, user_id=user.id, role=MemberRole.MEMBER))
    invite.current_uses += 1
    await db.commit()
    team = await get_team(db, invite.team_id)
    logger.info("User %s joined team %s", user.id, team.id)
    return team


async def deactivate_invite(db: AsyncSession, team: Team) -> None:
    invite = await db.scalar(select(InviteLink).where(InviteLink.team_id == team.id))
    if invite is not None and invite.is_active:
        invite.is_active = False
        await db.commit()
        logger.info("Deactivated invite link for team %s", team.id)


async def list_members(db: AsyncSession, team: Team) -> list[tuple[TeamMember, User]]:
    result = await db.execute(
        select(TeamMember, User)
        .join(User, User.id == TeamMember.user_id)
        .where(TeamMember.team_id == team.id)
        .order_by(TeamMember.joined_at, User.id)
    )
    return [(m, u) for m, u in result.all()]


async def remove_member(db: AsyncSession, team: Team, user_id: int) -> None:
    if user_id == team.owner_id:
        raise ValidationError("The team owner cannot be removed")
    member = await get_membership(db, team.id, user_id)
    if member is None:
        raise NotFoundError(f"User {user_id} is not a member of this team")
    await db.delete(member)
    await db.commit()
    logger.info("Removed user %s from team %s", user_id, team.id)
