"""
User read models: search results, per-user analysis and privacy.
"""
from typing import Optional

from pydantic import BaseModel, Field

from discore.schemas.common import Snowflake, SnowflakeStr, Unit


class UserSearchEntry(BaseModel):
    user_id: SnowflakeStr
    username: str
    avatar: Optional[str] = None
    total_messages: int = Field(description="Messages in active public guilds.")
    overall_score: Optional[Unit] = None


class UserSearchResponse(BaseModel):
    query: str
    users: list[UserSearchEntry]


class UserProfileAnalysis(BaseModel):
    user_type: str
    engagement_level: str
    influence_score: Unit
    risk_level: str
    specialties: list[str]
    behavior_tags: list[str]
    recommended_role: str
    overall_score: Unit
    last_analyzed: Optional[str] = None


class UserAnalysisResponse(BaseModel):
    user_id: SnowflakeStr
    username: str
    avatar: Optional[str] = None
    guild_id: Optional[SnowflakeStr] = Field(
        default=None, description="Set when the figures are limited to one guild."
    )
    total_messages: int
    recent_messages: int = Field(description="Messages sent in the last 7 days.")
    avg_sentiment: float = Field(ge=-1.0, le=1.0)
    avg_toxicity: Unit
    avg_quality: Unit
    avg_ai_likelihood: Unit
    analysis: Optional[UserProfileAnalysis] = Field(
        default=None, description="Latest stored model reading; null until the first one."
    )


class UserAnalyzeResponse(BaseModel):
    """Outcome of one `POST /users/{user_id}/analyze` call."""
    user_id: SnowflakeStr
    fallback: bool = Field(
        description="True when the model gave no usable answer; nothing was stored."
    )
    analysis: UserProfileAnalysis


class UserPrivacyRequest(BaseModel):
    is_public: bool
    requested_by: Snowflake = Field(description="Discord id of the user asking; must be the user.")


class UserPrivacyResponse(BaseModel):
    user_id: SnowflakeStr
    username: str
    is_public: bool
