from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, from_attributes=True)


# ---- Users ----

class RegisterBody(CamelModel):
    email: str
    username: str
    profile_image: Optional[str] = Field(default=None, alias="profileImage")


class UserDto(CamelModel):
    id: int
    email: str
    username: str
    profile_image: Optional[str] = Field(default=None, alias="profileImage")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    last_login_at: Optional[datetime] = Field(default=None, alias="lastLoginAt")


class ApiKeyDto(CamelModel):
    user: UserDto
    api_key: str = Field(alias="apiKey")


# ---- Teams ----

class TeamBody(CamelModel):
    name: str
    description: Optional[str] = None


class TeamUpdateBody(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")


class TeamDto(CamelModel):
    id: int
    name: str
    description: Optional[str] = None
    owner_id: int = Field(alias="ownerId")
    is_active: bool = Field(alias="isActive")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")
    updated_at: Optional[datetime] = Field(default=None, alias="updatedAt")


class MemberDto(CamelModel):
    user_id: int = Field(alias="userId")
    username: str
    email: str
    profile_image: Optional[str] = Field(default=None, alias="profileImage")
    role: str
    joined_at: Optional[datetime] = Field(default=None, alias="joinedAt")


class InviteDto(CamelModel):
    invite_token: str = Field(alias="inviteToken")
    invite_url: str = Field(alias="inviteUrl")
    expires_at: datetime = Field(alias="expiresAt")
    max_uses: Optional[int] = Field(default=None, alias="maxUses")


# ---- Mappings ----

class MappingBody(CamelModel):
    name: str
    description: Optional[str] = None
    source_channel_id: Optional[str] = Field(default=None, alias="sourceChannelId")
    source_channel_name: Optional[str] = Field(default=None, alias="sourceChannelName")
    archive_channel_id: Optional[str] = Field(default=None, alias="archiveChannelId")
    archive_channel_name: Optional[str] = Field(default=None, alias="archiveChannelName")
    archive_destination: Optional[str] = Field(default=None, alias="archiveDestination")


class MappingUpdateBody(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    is_active: Optional[bool] = Field(default=None, alias="isActive")
    archive_destination: Optional[str] = Field(default=None, alias="archiveDestination")


class MappingDto(CamelModel):
    id: int
    team_id: int = Field(alias="teamId")
    name: str
    description: Optional[str] = None
    source_channel_id: str = Field(alias="sourceChannelId")
    source_channel_name: str = Field(alias="sourceChannelName")
    archive_channel_id: str = Field(alias="archiveChannelId")
    archive_channel_name: Optional[str] = Field(default=None, alias="archiveChannelName")
    is_active: bool = Field(alias="isActive")
    message_count: int = Field(default=0, alias="messageCount")
    last_archived_at: Optional[datetime] = Field(default=None, alias="lastArchivedAt")
    created_at: Optional[datetime] = Field(default=None, alias="createdAt")


class TeamCreatedDto(CamelModel):
    team: TeamDto
    mapping: MappingDto


class BackfillDto(CamelModel):
    backup_count: int = Field(alias="backupCount")
    retried: int


# ---- Messages ----

class MessageItemDto(CamelModel):
    id: str
    body: str
    author_name: str = Field(alias="authorName")
    timestamp: datetime
    source: str


class MessagePageDto(CamelModel):
    messages: List[MessageItemDto]
    has_more: bool = Field(alias="hasMore")
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")
    source: str


class SendMessageBody(CamelModel):
    mapping_id: int = Field(alias="mappingId")
    body: str


class SendMessageDto(CamelModel):
    success: bool
    source_message_id: str = Field(alias="sourceMessageId")
    channel_id: str = Field(alias="channelId")
    timestamp: datetime


class ArchivedMessageDto(CamelModel):
    id: int
    team_id: int = Field(alias="teamId")
    mapping_id: Optional[int] = Field(default=None, alias="mappingId")
    source_message_id: str = Field(alias="sourceMessageId")
    source_channel_id: str = Field(alias="sourceChannelId")
    author_id: str = Field(alias="authorId")
    author_name: str = Field(alias="authorName")
    body: str
    kind: str
    thread_ts: Optional[str] = Field(default=None, alias="threadTs")
    archive_message_id: Optional[str] = Field(default=None, alias="archiveMessageId")
    sent_at: datetime = Field(alias="sentAt")
    archived_at: Optional[datetime] = Field(default=None, alias="archivedAt")


class ArchivedListDto(CamelModel):
    messages: List[ArchivedMessageDto]
    total_count: Optional[int] = Field(default=None, alias="totalCount")
    page: Optional[int] = None


class StatsDto(CamelModel):
    total_messages: int = Field(alias="totalMessages")
    pending_messages: int = Field(alias="pendingMessages")
