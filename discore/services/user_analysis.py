"""
User analysis: one model reading of a member's behaviour.

  build_user_prompt(profile)     activity summary in, deterministic prompt out
  decode_user_analysis(raw)      -> UserAnalysis, or None without a JSON object
  UserAnalyzer.analyze(profile)  never raises; DEFAULT_USER_ANALYSIS on failure
  save_user_analysis(...)        stores a reading on the users row

Unlike message scoring, a partial answer is accepted: every missing or
malformed field takes its neutral value and scores are clamped into [0, 1].
"""
from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, ValidationInfo, field_validator
from sqlalchemy.orm import Session

from discore.core.errors import UserNotFoundError
from discore.models.user import User
from discore.services.model_client import ModelClient
from discore.services.scorer import clamp, find_json_object

logger = logging.getLogger(__name__)

_MAX_LIST_ITEMS = 10


@dataclass(frozen=True)
class UserProfile:
    """What the model is told about a user."""
    user_id: int
    username: str
    message_count: int
    avg_sentiment: float
    avg_toxicity: float
    mentions: int
    active_days: int
    # (category, percentage of scored messages)
    activity_patterns: tuple[tuple[str, float], ...] = ()


@dataclass(frozen=True)
class UserAnalysis:
    user_type: str = "member"
    engagement_level: str = "medium"
    influence_score: float = 0.5
    risk_level: str = "low"
    specialties: tuple[str, ...] = ()
    behavior_tags: tuple[str, ...] = ("neutral",)
    recommended_role: str = "member"
    overall_score: float = 0.5
    fallback: bool = False


DEFAULT_USER_ANALYSIS = UserAnalysis(fallback=True)


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

_USER_TEMPLATE = """Analyze this Discord user and answer STRICTLY with one JSON object.

USER DATA:
- Username: {username}
- Total messages: {message_count}
- Average sentiment (-1..1): {avg_sentiment:.2f}
- Average toxicity (0..1): {avg_toxicity:.2f}
- Mentions in their messages: {mentions}
- Days with activity: {active_days}

ACTIVITY PATTERNS:
{patterns}

RETURN ONLY JSON:
{{
  "userType": "contributor",
  "engagementLevel": "high",
  "influenceScore": 0.8,
  "riskLevel": "low",
  "specialties": ["technical_help", "community_building"],
  "behaviorTags": ["helpful", "active", "positive"],
  "recommendedRole": "moderator",
  "overallScore": 0.85
}}"""


def build_user_prompt(profile: UserProfile) -> str:
    patterns = [f"- {category}: {pct:.0f}%" for category, pct in profile.activity_patterns]
    return _USER_TEMPLATE.format(
        username=json.dumps(profile.username, ensure_ascii=False),
        message_count=profile.message_count,
        avg_sentiment=profile.avg_sentiment,
        avg_toxicity=profile.avg_toxicity,
        mentions=profile.mentions,
        active_days=profile.active_days,
        patterns="\n".join(patterns) or "- (no scored messages)",
    )


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

# field -> (neutral value, column width)
_LABELS = {
    "user_type": ("member", 32),
    "engagement_level": ("medium", 16),
    "risk_level": ("low", 16),
    "recommended_role": ("member", 32),
}


def _text_items(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()][:_MAX_LIST_ITEMS]


class UserAnalysisPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    user_type: str = Field(default="member", alias="userType")
    engagement_level: str = Field(default="medium", alias="engagementLevel")
    influence_score: float = Field(default=0.5, alias="influenceScore")
    risk_level: str = Field(default="low", alias="riskLevel")
    specialties: list[str] = Field(default_factory=list)
    behavior_tags: list[str] = Field(default_factory=lambda: ["neutral"], alias="behaviorTags")
    recommended_role: str = Field(default="member", alias="recommendedRole")
    overall_score: float = Field(default=0.5, alias="overallScore")

    @field_validator("user_type", "engagement_level", "risk_level", "recommended_role", mode="before")
    @classmethod
    def _label(cls, v: Any, info: ValidationInfo) -> str:
        neutral, width = _LABELS[info.field_name]
        if not isinstance(v, str) or not v.strip():
            return neutral
        return v.strip().lower()[:width]

    @field_validator("influence_score", "overall_score", mode="before")
    @classmethod
    def _unit(cls, v: Any) -> float:
        if isinstance(v, bool) or not isinstance(v, (int, float)) or not math.isfinite(v):
            return 0.5
        return clamp(v, 0.0, 1.0)

    @field_validator("specialties", mode="before")
    @classmethod
    def _specialties(cls, v: Any) -> list[str]:
        return _text_items(v)

    @field_validator("behavior_tags", mode="before")
    @classmethod
    def _tags(cls, v: Any) -> list[str]:
        return _text_items(v) or ["neutral"]


def decode_user_analysis(raw: str) -> Optional[UserAnalysis]:
    obj = find_json_object(raw)
    if obj is None:
        return None
    try:
        payload = UserAnalysisPayload.model_validate(obj)
    except (ValidationError, RecursionError):
        return None
    return UserAnalysis(
        user_type=payload.user_type,
        engagement_level=payload.engagement_level,
        influence_score=payload.influence_score,
        risk_level=payload.risk_level,
        specialties=tuple(payload.specialties),
        behavior_tags=tuple(payload.behavior_tags),
        recommended_role=payload.recommended_role,
        overall_score=payload.overall_score,
    )


# ---------------------------------------------------------------------------
# Analyzer
# ---------------------------------------------------------------------------

class UserAnalyzer:
    def __init__(
        self,
        model: ModelClient,
        *,
        temperature: float = 0.1,
        max_tokens: int = 1024,
    ):
        self._model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def analyze(self, profile: UserProfile) -> UserAnalysis:
        prompt = build_user_prompt(profile)
        try:
            raw = await self._model.generate(
                prompt, temperature=self.temperature, max_tokens=self.max_tokens
            )
        except Exception as exc:
            logger.warning("Model call failed for user %s: %r", profile.user_id, exc)
            return DEFAULT_USER_ANALYSIS

        analysis = decode_user_analysis(raw)
        if analysis is None:
            logger.warning("Unusable model output for user %s", profile.user_id)
            return DEFAULT_USER_ANALYSIS
        return analysis


def save_user_analysis(
    user_id: int, analysis: UserAnalysis, analyzed_at: datetime, db: Session
) -> User:
    user = db.get(User, user_id)
    if user is None:
        raise UserNotFoundError(user_id)
    user.user_type = analysis.user_type
    user.engagement_level = analysis.engagement_level
    user.influence_score = analysis.influence_score
    user.risk_level = analysis.risk_level
    user.specialties = json.dumps(list(analysis.specialties), ensure_ascii=False)
    user.behavior_tags = json.dumps(list(analysis.behavior_tags), ensure_ascii=False)
    user.recommended_role = analysis.recommended_role
    user.overall_score = analysis.overall_score
    user.last_analyzed = analyzed_at
    db.commit()
    db.refresh(user)
    return user
