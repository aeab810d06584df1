from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("username", sa.String(length=255), nullable=False),
        sa.Column("profile_image", sa.String(length=512)),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_login_at", sa.DateTime()),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "user_keys",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("token", sa.String(length=64), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("last_used_at", sa.DateTime()),
    )
    op.create_index("ix_user_keys_token", "user_keys", ["token"], unique=True)

    op.create_table(
        "teams",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False, unique=True),
        sa.Column("description", sa.Text()),
        sa.Column("owner_id", sa.Integer(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_teams_is_active", "teams", ["is_active"])

    op.create_table(
        "team_members",
        sa.Column(
            "team_id",
            sa.Integer(),
            sa.ForeignKey("teams.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "user_id",
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            primary_key=True,
        ),
        sa.Column(
            "role",
            sa.Enum("owner", "admin", "member", name="member_role"),
            nullable=False,
        ),
        sa.Column("joined_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "invite_links",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "team_id",
            sa.Integer(),
            sa.ForeignKey("teams.id", ondelete="CASCADE"),
            nullable=False,
            unique=True,
        ),
        sa.Column("token", sa.String(length=64), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("max_uses", sa.Integer()),
        sa.Column("current_uses", sa.Integer(), nullable=False),
    )
    op.create_index("ix_invite_links_token", "invite_links", ["token"], unique=True)

    op.create_table(
        "channel_mappings",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "team_id",
            sa.Integer(),
            sa.ForeignKey("teams.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text()),
        sa.Column("source_channel_id", sa.String(length=32), nullable=False),
        sa.Column("source_channel_name", sa.String(length=255), nullable=False),
        sa.Column("archive_channel_id", sa.String(length=32), nullable=False),
        sa.Column("archive_channel_name", sa.String(length=255)),
        sa.Column("archive_destination", sa.String(length=512), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("message_count", sa.Integer(), nullable=False),
        sa.Column("last_archived_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("team_id", "name", name="uq_channel_mappings_team_name"),
    )
    op.create_index("ix_channel_mappings_team_id", "channel_mappings", ["team_id"])
    op.create_index(
        "ix_channel_mappings_source_channel_id",
        "channel_mappings",
        ["source_channel_id"],
        unique=True,
    )
    op.create_index("ix_channel_mappings_is_active", "channel_mappings", ["is_active"])

    op.create_table(
        "archived_messages",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column(
            "team_id",
            sa.Integer(),
            sa.ForeignKey("teams.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "mapping_id",
            sa.Integer(),
            sa.ForeignKey("channel_mappings.id", ondelete="SET NULL"),
        ),
        sa.Column("source_message_id", sa.String(length=32), nullable=False),
        sa.Column("source_channel_id", sa.String(length=32), nullable=False),
        sa.Column("author_id", sa.String(length=32), nullable=False),
        sa.Column("author_name", sa.String(length=255), nullable=False),
        sa.Column("author_avatar_url", sa.String(length=512)),
        sa.Column("body", sa.Text(), nullable=False),
        sa.Column(
            "kind",
            sa.Enum("message", "thread_reply", "file_share", name="message_kind"),
            nullable=False,
        ),
        sa.Column("thread_ts", sa.String(length=32)),
        sa.Column("attachments_json", sa.Text()),
        sa.Column("archive_channel_id", sa.String(length=32), nullable=False),
        sa.Column("archive_message_id", sa.String(length=32)),
        sa.Column("sent_at", sa.DateTime(), nullable=False),
        sa.Column("archived_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index(
        "ix_archived_messages_source_message_id",
        "archived_messages",
        ["source_message_id"],
        unique=True,
    )
    op.create_index(
        "ix_archived_messages_archive_message_id",
        "archived_messages",
        ["archive_message_id"],
    )
    op.create_index(
        "ix_archived_messages_team_sent_at", "archived_messages", ["team_id", "sent_at"]
    )
    op.create_index(
        "ix_archived_messages_mapping_sent_at",
        "archived_messages",
        ["mapping_id", "sent_at"],
    )
    op.create_index(
        "ix_archived_messages_channel_sent_at",
        "archived_messages",
        ["source_channel_id", "sent_at"],
    )
    op.create_index(
        "ix_archived_messages_author_sent_at",
        "archived_messages",
        ["author_id", "sent_at"],
    )
    op.create_index(
        "ix_archived_messages_thread_sent_at",
        "archived_messages",
        ["thread_ts", "sent_at"],
    )


def downgrade() -> None:
    op.drop_table("archived_messages")
    op.drop_table("channel_mappings")
    op.drop_table("invite_links")
    op.drop_table("team_members")
    op.drop_table("teams")
    op.drop_table("user_keys")
    op.drop_table("users")
