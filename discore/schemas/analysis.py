from typing import Optional

from pydantic import BaseModel, Field

from discore.schemas.common import SnowflakeStr, Unit


class AnalysisRunResponse(BaseModel):
    """Outcome of one manual `run_analysis` call."""
    guild_id: SnowflakeStr
    insufficient_data: bool = Field(description="True when the guild had no messages to score.")
    health_score: Unit
    activity_level: str
    sentiment_score: float = Field(ge=-1.0, le=1.0)
    toxicity_level: Unit
    engagement_score: Unit
    quality_score: Unit
    messages_analyzed: int
    messages_failed: int
    positive_indicators: list[str]
    concerns: list[str]
    recommendations: list[str]
    last_analyzed: Optional[str] = None
