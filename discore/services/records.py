"""
Transient result types shared by the analysis pipeline.

Plain dataclasses, no ORM and no Pydantic. The gateway converts ORM rows into
these so nothing downstream holds a live session.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from discore.models.guild_health import ActivityLevel
from discore.models.message import ActivityCategory


@dataclass(frozen=True)
class MessageRecord:
    """Detached snapshot of a `messages` row, as read at collection time."""
    id: int
    guild_id: int
    author_id: int
    content: str
    sent_at: datetime
    has_attachments: bool = False
    mention_count: int = 0
    reply_to_id: Optional[int] = None
    analyzed_at: Optional[datetime] = None

    @property
    def is_reply(self) -> bool:
        return self.reply_to_id is not None


@dataclass(frozen=True)
class ScoreResult:
    sentiment: float           # -1 .. 1
    toxicity: float            # 0 .. 1
    constructiveness: float    # 0 .. 1
    ai_likelihood: float       # 0 .. 1
    quality: float             # 0 .. 1
    engagement_potential: float  # 0 .. 1
    category: ActivityCategory = ActivityCategory.casual
    emotions: tuple[str, ...] = ("neutral",)
    topics: tuple[str, ...] = ()
    # True when the model was unreachable or its answer unusable.
    fallback: bool = False


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of scoring one message: a validated score or a failure reason."""
    message: MessageRecord
    score: Optional[ScoreResult] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.score is not None

    @property
    def message_id(self) -> int:
        return self.message.id

    @classmethod
    def success(cls, message: MessageRecord, score: ScoreResult) -> "AnalysisResult":
        return cls(message=message, score=score)

    @classmethod
    def failure(cls, message: MessageRecord, reason: str) -> "AnalysisResult":
        return cls(message=message, error=reason)


@dataclass
class CommunityHealth:
    positive_indicators: list[str]
    concerns: list[str]
    recommendations: list[str]
    fallback: bool = False


@dataclass
class GuildHealthReport:
    """Everything one aggregation pass computed for a guild."""
    guild_id: int
    health_score: float
    activity_level: ActivityLevel
    sentiment: float
    toxicity: float
    engagement: float
    quality: float
    messages_analyzed: int
    messages_failed: int
    last_analyzed: datetime
    positive_indicators: list[str] = field(default_factory=list)
    concerns: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    insufficient_data: bool = False
    analyzed_message_ids: tuple[int, ...] = ()


@dataclass(frozen=True)
class GuildSchedule:
    id: int
    last_analyzed: Optional[datetime]
