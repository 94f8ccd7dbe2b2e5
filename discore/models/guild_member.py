"""
GuildMember: per (guild, user) rolling contribution metrics.

messages_in_guild is a counter; guild_score is recomputed from it as
min(1, messages_in_guild / USER_SCORE_SATURATION) and never decremented by
the analysis pipeline.
"""
from datetime import datetime
from sqlalchemy import (
    BigInteger, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint, func,
)
from sqlalchemy.orm import Mapped, mapped_column

from discore.db.base import Base


class GuildMember(Base):
    __tablename__ = "guild_members"
    __table_args__ = (
        UniqueConstraint("guild_id", "user_id", name="uq_guild_member_guild_user"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    guild_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("guilds.id"), nullable=False, index=True
    )
    user_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False, index=True
    )
    nickname: Mapped[str | None] = mapped_column(String(32), nullable=True)
    messages_in_guild: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    guild_score: Mapped[float] = mapped_column(
        Float, nullable=False, default=0.0, index=True,
        comment="Contribution score 0-1, saturating on message count",
    )
    last_message_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_analyzed: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    joined_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
