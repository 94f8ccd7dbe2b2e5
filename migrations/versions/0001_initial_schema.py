"""initial schema

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_CATEGORIES = ("discussion", "question", "announcement", "casual", "support", "spam", "other")
_LEVELS = ("low", "medium", "high", "very_high")


def upgrade() -> None:
    # --- guilds ---
    op.create_table(
        "guilds",
        sa.Column("id", sa.BigInteger(), autoincrement=False, nullable=False,
                  comment="Discord guild snowflake"),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("icon", sa.String(255), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("member_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("owner_id", sa.BigInteger(), nullable=True),
        sa.Column("total_messages", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("is_public", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False,
                  comment="When the bot joined the guild"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_guilds_owner_id", "guilds", ["owner_id"])
    op.create_index("ix_guilds_is_active", "guilds", ["is_active"])

    # --- users ---
    op.create_table(
        "users",
        sa.Column("id", sa.BigInteger(), autoincrement=False, nullable=False,
                  comment="Discord user snowflake"),
        sa.Column("username", sa.String(64), nullable=False),
        sa.Column("avatar", sa.String(255), nullable=True),
        sa.Column("is_bot", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_username", "users", ["username"])

    # --- guild_members ---
    op.create_table(
        "guild_members",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("guild_id", sa.BigInteger(), sa.ForeignKey("guilds.id"), nullable=False),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("nickname", sa.String(32), nullable=True),
        sa.Column("messages_in_guild", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("guild_score", sa.Float(), nullable=False, server_default="0",
                  comment="Contribution score 0-1, saturating on message count"),
        sa.Column("last_message_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("last_analyzed", sa.DateTime(timezone=True), nullable=True),
        sa.Column("joined_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("guild_id", "user_id", name="uq_guild_member_guild_user"),
    )
    op.create_index("ix_guild_members_id", "guild_members", ["id"])
    op.create_index("ix_guild_members_guild_id", "guild_members", ["guild_id"])
    op.create_index("ix_guild_members_user_id", "guild_members", ["user_id"])
    op.create_index("ix_guild_members_guild_score", "guild_members", ["guild_score"])

    # --- messages ---
    op.create_table(
        "messages",
        sa.Column("id", sa.BigInteger(), autoincrement=False, nullable=False,
                  comment="Discord message snowflake"),
        sa.Column("guild_id", sa.BigInteger(), sa.ForeignKey("guilds.id"), nullable=False),
        sa.Column("channel_id", sa.BigInteger(), nullable=False),
        sa.Column("user_id", sa.BigInteger(), sa.ForeignKey("users.id"), nullable=False),
        sa.Column("content", sa.Text(), nullable=False, server_default=""),
        sa.Column("has_attachments", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("mention_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("reply_to_id", sa.BigInteger(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sentiment_score", sa.Float(), nullable=True, comment="-1 to 1"),
        sa.Column("toxicity_score", sa.Float(), nullable=True, comment="0 to 1"),
        sa.Column("constructiveness_score", sa.Float(), nullable=True),
        sa.Column("ai_likelihood", sa.Float(), nullable=True),
        sa.Column("quality_score", sa.Float(), nullable=True),
        sa.Column("engagement_potential", sa.Float(), nullable=True),
        sa.Column("activity_category", sa.Enum(
            *_CATEGORIES, name="activity_category_enum",
        ), nullable=True),
        sa.Column("emotions", sa.Text(), nullable=True, comment="JSON array"),
        sa.Column("topics", sa.Text(), nullable=True, comment="JSON array"),
        sa.Column("analyzed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_messages_guild_id", "messages", ["guild_id"])
    op.create_index("ix_messages_user_id", "messages", ["user_id"])
    op.create_index("ix_messages_guild_sent_at", "messages", ["guild_id", "sent_at"])

    # --- guild_health ---
    op.create_table(
        "guild_health",
        sa.Column("guild_id", sa.BigInteger(), sa.ForeignKey("guilds.id"), autoincrement=False,
                  nullable=False),
        sa.Column("health_score", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("activity_level", sa.Enum(
            *_LEVELS, name="activity_level_enum",
        ), nullable=False, server_default="medium"),
        sa.Column("toxicity_level", sa.Float(), nullable=False, server_default="0"),
        sa.Column("engagement_score", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("sentiment_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("quality_score", sa.Float(), nullable=False, server_default="0.5"),
        sa.Column("messages_analyzed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("messages_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("health_indicators", sa.Text(), nullable=True, comment="JSON array"),
        sa.Column("health_concerns", sa.Text(), nullable=True, comment="JSON array"),
        sa.Column("health_recommendations", sa.Text(), nullable=True, comment="JSON array"),
        sa.Column("last_analyzed", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("guild_id"),
    )
    op.create_index("ix_guild_health_health_score", "guild_health", ["health_score"])
    op.create_index("ix_guild_health_last_analyzed", "guild_health", ["last_analyzed"])


def downgrade() -> None:
    op.drop_table("guild_health")
    op.drop_table("messages")
    op.drop_table("guild_members")
    op.drop_table("users")
    op.drop_table("guilds")

    op.execute("DROP TYPE IF EXISTS activity_level_enum")
    op.execute("DROP TYPE IF EXISTS activity_category_enum")
