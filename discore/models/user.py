"""
User: a Discord account seen in at least one guild.

The profile columns (user_type .. last_analyzed) hold the latest model
reading of the user and stay NULL until the first successful user analysis.
specialties and behavior_tags are JSON-encoded Text.
"""
from datetime import datetime
from sqlalchemy import BigInteger, Boolean, DateTime, Float, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from discore.db.base import Base


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(
        BigInteger, primary_key=True, autoincrement=False, comment="Discord user snowflake"
    )
    username: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    avatar: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_bot: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_public: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, comment="Profile visible on the dashboard"
    )

    user_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
    engagement_level: Mapped[str | None] = mapped_column(String(16), nullable=True)
    risk_level: Mapped[str | None] = mapped_column(String(16), nullable=True)
    recommended_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    influence_score: Mapped[float | None] = mapped_column(Float, nullable=True)
    overall_score: Mapped[float | None] = mapped_column(Float, nullable=True, index=True)
    specialties: Mapped[str | None] = mapped_column(Text, nullable=True, comment="JSON array")
    behavior_tags: Mapped[str | None] = mapped_column(Text, nullable=True, comment="JSON array")
    last_analyzed: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
