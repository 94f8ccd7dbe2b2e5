"""
Message: a Discord message plus its latest AI scores.

The score columns stay NULL until the analysis pipeline scores the message;
analyzed_at is set in the same write, so a non-NULL analyzed_at implies all
six scores are present and already clamped. Re-analysis overwrites.

emotions / topics: JSON-encoded arrays stored as Text.
"""
from datetime import datetime
from sqlalchemy import (
    BigInteger, Boolean, DateTime, Enum, Float, ForeignKey, Index, Integer, Text, func,
)
from sqlalchemy.orm import Mapped, mapped_column
import enum

from discore.db.base import Base


class ActivityCategory(str, enum.Enum):
    discussion = "discussion"
    question = "question"
    announcement = "announcement"
    casual = "casual"
    support = "support"
    spam = "spam"
    other = "other"


class Message(Base):
    __tablename__ = "messages"
    __table_args__ = (
        Index("ix_messages_guild_sent_at", "guild_id", "sent_at"),
    )

    id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=False, comment="Discord message snowflake"
    )
    guild_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("guilds.id"), nullable=False, index=True
    )
    channel_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False, index=True
    )
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    has_attachments: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    mention_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    reply_to_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    # AI scores
    sentiment_score: Mapped[float | None] = mapped_column(Float, nullable=True, comment="-1 to 1")
    toxicity_score: Mapped[float | None] = mapped_column(Float, nullable=True, comment="0 to 1")
    constructiveness_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    ai_likelihood: Mapped[float | None] = mapped_column(Float, nullable=True)
    quality_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    engagement_potential: Mapped[float | None] = mapped_column(Float, nullable=True)
    activity_category: Mapped[str | None] = mapped_column(
        Enum(ActivityCategory, name="activity_category_enum"), nullable=True
    )
    emotions: Mapped[str | None] = mapped_column(Text, nullable=True, comment="JSON array")
    topics: Mapped[str | None] = mapped_column(Text, nullable=True, comment="JSON array")
    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
