from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in every column."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class MemberRole(str, Enum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"


class MessageKind(str, Enum):
    MESSAGE = "message"
    THREAD_REPLY = "thread_reply"
    FILE_SHARE = "file_share"


class ArchiveState(str, Enum):
    PENDING = "pending"
    ARCHIVED = "archived"


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    username: Mapped[str] = mapped_column(String(255))
    profile_image: Mapped[Optional[str]] = mapped_column(String(512))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    keys: Mapped[list["UserKey"]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )


class UserKey(Base):
    __tablename__ = "user_keys"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"))
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    user: Mapped[User] = relationship(back_populates="keys")


class Team(Base):
    __tablename__ = "teams"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(String(255), unique=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    owner_id: Mapped[int] = mapped_column(ForeignKey("users.id"))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    members: Mapped[list["TeamMember"]] = relationship(
        back_populates="team", cascade="all, delete-orphan", passive_deletes=True
    )
    invite: Mapped[Optional["InviteLink"]] = relationship(
        back_populates="team",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )
    mappings: Mapped[list["ChannelMapping"]] = relationship(
        back_populates="team", cascade="all, delete-orphan", passive_deletes=True
    )
    messages: Mapped[list["ArchivedMessage"]] = relationship(
        cascade="all, delete-orphan", passive_deletes=True
    )


class TeamMember(Base):
    __tablename__ = "team_members"

    team_id: Mapped[int] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), primary_key=True
    )
    role: Mapped[MemberRole] = mapped_column(
        SAEnum(
            MemberRole,
            name="member_role",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        default=MemberRole.MEMBER,
    )
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    team: Mapped[Team] = relationship(back_populates="members")
    user: Mapped[User] = relationship()


class InviteLink(Base):
    __tablename__ = "invite_links"

    id: Mapped[int] = mapped_column(primary_key=True)
    team_id: Mapped[int] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), unique=True
    )
    token: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    max_uses: Mapped[Optional[int]] = mapped_column(Integer)
    current_uses: Mapped[int] = mapped_column(Integer, default=0)

    team: Mapped[Team] = relationship(back_populates="invite")


class ChannelMapping(Base):
    """A Slack source channel and the Discord channel that archives it."""

    __tablename__ = "channel_mappings"
    __table_args__ = (
        UniqueConstraint("team_id", "name", name="uq_channel_mappings_team_name"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    team_id: Mapped[int] = mapped_column(
        ForeignKey("teams.id", ondelete="CASCADE"), index=True
    )
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[Optional[str]] = mapped_column(Text)
    source_channel_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    source_channel_name: Mapped[str] = mapped_column(String(255))
    archive_channel_id: Mapped[str] = mapped_column(String(32))
    archive_channel_name: Mapped[Optional[str]] = mapped_column(String(255))
    archive_destination: Mapped[str] = mapped_column(String(512))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    message_count: Mapped[int] = mapped_column(Integer, default=0)
    last_archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    team: Mapped[Team] = relationship(back_populates="mappings")


class ArchivedMessage(Base):
    __tablename__ = "archived_messages"
    __table_args__ = (
        Index("ix_archived_messages_team_sent_at", "team_id", "sent_at"),
        Index("ix_archived_messages_mapping_sent_at", "mapping_id", "sent_at"),
        Index("ix_archived_messages_channel_sent_at", "source_channel_id", "sent_at"),
        Index("ix_archived_messages_author_sent_at", "author_id", "sent_at"),
        Index("ix_archived_messages_thread_sent_at", "thread_ts", "sent_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    team_id: Mapped[int] = mapped_column(ForeignKey("teams.id", ondelete="CASCADE"))
    mapping_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("channel_mappings.id", ondelete="SET NULL")
    )
    source_message_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    source_channel_id: Mapped[str] = mapped_column(String(32))
    author_id: Mapped[str] = mapped_column(String(32), default="")
    author_name: Mapped[str] = mapped_column(String(255))
    author_avatar_url: Mapped[Optional[str]] = mapped_column(String(512))
    body: Mapped[str] = mapped_column(Text)
    kind: Mapped[MessageKind] = mapped_column(
        SAEnum(
            MessageKind,
            name="message_kind",
            values_callable=lambda enum: [e.value for e in enum],
        ),
        default=MessageKind.MESSAGE,
    )
    thread_ts: Mapped[Optional[str]] = mapped_column(String(32))
    attachments_json: Mapped[Optional[str]] = mapped_column(Text)
    archive_channel_id: Mapped[str] = mapped_column(String(32))
    archive_message_id: Mapped[Optional[str]] = mapped_column(String(32), index=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime)
    archived_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    mapping: Mapped[Optional[ChannelMapping]] = relationship()

    @property
    def state(self) -> ArchiveState:
        if self.archive_message_id is None:
            return ArchiveState.PENDING
        return ArchiveState.ARCHIVED
