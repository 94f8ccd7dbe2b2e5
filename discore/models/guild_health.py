"""
GuildHealth: latest community health projection of a guild.

One row per guild, upserted by the Health Aggregator after every analysis
run. The numbers are recomputed from the most recent batch only; nothing is
blended with the previous row. last_analyzed never moves backwards.

List columns (indicators / concerns / recommendations) are JSON-encoded Text.
"""
from datetime import datetime
from sqlalchemy import BigInteger, DateTime, Enum, Float, ForeignKey, Integer, Text, func
from sqlalchemy.orm import Mapped, mapped_column
import enum

from discore.db.base import Base


class ActivityLevel(str, enum.Enum):
    low = "low"
    medium = "medium"
    high = "high"
    very_high = "very_high"


# What a guild shows before any batch with data has been aggregated.
NEUTRAL_HEALTH_SCORE = 0.5
NEUTRAL_ACTIVITY = ActivityLevel.medium
NEUTRAL_SENTIMENT = 0.0
NEUTRAL_TOXICITY = 0.0
NEUTRAL_ENGAGEMENT = 0.5
NEUTRAL_QUALITY = 0.5


class GuildHealth(Base):
    __tablename__ = "guild_health"

    guild_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("guilds.id"), primary_key=True, autoincrement=False
    )
    health_score: Mapped[float] = mapped_column(
        Float, nullable=False, default=NEUTRAL_HEALTH_SCORE, index=True
    )
    activity_level: Mapped[str] = mapped_column(
        Enum(ActivityLevel, name="activity_level_enum"),
        nullable=False,
        default=NEUTRAL_ACTIVITY,
    )
    toxicity_level: Mapped[float] = mapped_column(Float, nullable=False, default=NEUTRAL_TOXICITY)
    engagement_score: Mapped[float] = mapped_column(Float, nullable=False, default=NEUTRAL_ENGAGEMENT)
    sentiment_score: Mapped[float] = mapped_column(Float, nullable=False, default=NEUTRAL_SENTIMENT)
    quality_score: Mapped[float] = mapped_column(Float, nullable=False, default=NEUTRAL_QUALITY)
    messages_analyzed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    messages_failed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    health_indicators: Mapped[str | None] = mapped_column(Text, nullable=True, comment="JSON array")
    health_concerns: Mapped[str | None] = mapped_column(Text, nullable=True, comment="JSON array")
    health_recommendations: Mapped[str | None] = mapped_column(
        Text, nullable=True, comment="JSON array"
    )
    last_analyzed: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
