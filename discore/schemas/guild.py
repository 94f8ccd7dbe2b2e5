"""
Dashboard read models: public guild list, trending guilds, guild health,
leaderboard and platform totals.
"""
from typing import Optional

from pydantic import BaseModel, Field

from discore.schemas.common import SnowflakeStr, Unit


class GuildSummary(BaseModel):
    id: SnowflakeStr
    name: str
    icon: Optional[str] = None
    member_count: int
    total_messages: int
    health_score: float
    activity_level: str
    toxicity_level: float
    engagement_score: float
    last_analyzed: Optional[str] = None


class PublicGuildsResponse(BaseModel):
    total: int
    page: int
    limit: int
    total_pages: int
    guilds: list[GuildSummary]


class GuildHealthResponse(BaseModel):
    guild_id: SnowflakeStr
    name: str
    member_count: int
    total_messages: int
    health_score: float = Field(description="0-1, from the latest batch only.")
    activity_level: str
    toxicity_level: float
    engagement_score: float
    sentiment_score: float = Field(description="-1 to 1.")
    quality_score: float
    messages_analyzed: int
    messages_failed: int
    positive_indicators: list[str]
    concerns: list[str]
    recommendations: list[str]
    last_analyzed: Optional[str] = None


class LeaderboardEntry(BaseModel):
    rank: int
    user_id: SnowflakeStr
    username: str
    nickname: Optional[str] = None
    avatar: Optional[str] = None
    messages_in_guild: int
    guild_score: Unit
    last_message_at: Optional[str] = None


class LeaderboardResponse(BaseModel):
    guild_id: SnowflakeStr
    members: list[LeaderboardEntry]


class PlatformStatsResponse(BaseModel):
    total_guilds: int
    total_members: int
    total_messages: int
    analyzed_messages: int
    analyzed_guilds: int
    average_health_score: Optional[float] = None
    average_toxicity: Optional[float] = None


class TrendingGuild(GuildSummary):
    recent_messages: int = Field(description="Messages sent within the period.")


class TrendingGuildsResponse(BaseModel):
    period: str
    since: str
    guilds: list[TrendingGuild]
