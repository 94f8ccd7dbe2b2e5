"""
Health aggregator: folds one batch of AnalysisResults into a guild report.

Numbers
-------
  sentiment / toxicity / engagement / quality   means over successful results
  health     clamp((we*engagement + wq*quality + wt*(1 - toxicity)) / (we + wq + wt))
  activity   ladder over the batch volume (results received, failures included)

An all-failure batch reports sentiment 0, toxicity 0, engagement 0.5 and
quality 0.5. An empty batch is `insufficient_data` and writes nothing.

After the numbers, one extra model call reads the batch as a whole and
returns positive indicators, concerns and recommendations. It can fail
without affecting anything else.

Per-user
--------
Each author's guild counter grows by the number of their messages scored for
the first time in this pass; guild_score = min(1, counter / saturation).
Authors with nothing new are left alone.
"""
from __future__ import annotations

import json
import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from discore.core.errors import PersistenceError
from discore.models.guild_health import (
    NEUTRAL_ACTIVITY,
    NEUTRAL_ENGAGEMENT,
    NEUTRAL_HEALTH_SCORE,
    NEUTRAL_QUALITY,
    NEUTRAL_SENTIMENT,
    NEUTRAL_TOXICITY,
    ActivityLevel,
)
from discore.services.gateway import PersistenceGateway
from discore.services.model_client import ModelClient
from discore.services.records import AnalysisResult, CommunityHealth, GuildHealthReport
from discore.services.scorer import find_json_object

logger = logging.getLogger(__name__)

_SAMPLE_MESSAGES = 20
_SAMPLE_CHARS = 200
_MAX_LIST_ITEMS = 10


def default_community_health() -> CommunityHealth:
    return CommunityHealth(
        positive_indicators=["Active community"],
        concerns=[],
        recommendations=["Continue engaging with community"],
        fallback=True,
    )


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


# ---------------------------------------------------------------------------
# Pure arithmetic
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HealthWeights:
    engagement: float = 0.4
    quality: float = 0.4
    toxicity: float = 0.2


@dataclass(frozen=True)
class BatchMeans:
    sentiment: float
    toxicity: float
    engagement: float
    quality: float


def batch_means(results: list[AnalysisResult]) -> BatchMeans:
    scores = [r.score for r in results if r.ok]
    if not scores:
        return BatchMeans(NEUTRAL_SENTIMENT, NEUTRAL_TOXICITY, NEUTRAL_ENGAGEMENT, NEUTRAL_QUALITY)
    n = len(scores)
    return BatchMeans(
        sentiment=sum(s.sentiment for s in scores) / n,
        toxicity=sum(s.toxicity for s in scores) / n,
        engagement=sum(s.engagement_potential for s in scores) / n,
        quality=sum(s.quality for s in scores) / n,
    )


def compute_health_score(
    engagement: float, quality: float, toxicity: float, weights: HealthWeights = HealthWeights()
) -> float:
    total = weights.engagement + weights.quality + weights.toxicity
    if total <= 0:
        raise ValueError("health weights must sum to a positive number")
    raw = (
        weights.engagement * engagement
        + weights.quality * quality
        + weights.toxicity * (1.0 - toxicity)
    ) / total
    return min(max(raw, 0.0), 1.0)


def activity_level_for(volume: int, cutoffs: tuple[int, int, int] = (10, 25, 40)) -> ActivityLevel:
    low, medium, high = cutoffs
    if volume < low:
        return ActivityLevel.low
    if volume < medium:
        return ActivityLevel.medium
    if volume < high:
        return ActivityLevel.high
    return ActivityLevel.very_high


def user_guild_score(message_count: int, saturation: int = 100) -> float:
    if saturation <= 0:
        return 1.0
    return min(1.0, max(message_count, 0) / saturation)


# ---------------------------------------------------------------------------
# Community pass
# ---------------------------------------------------------------------------

_COMMUNITY_TEMPLATE = """You are reviewing a sample of recent messages from one Discord community.

BATCH SUMMARY:
- Messages in batch: {volume}
- Messages scored: {scored}
- Average sentiment (-1..1): {sentiment:.2f}
- Average toxicity (0..1): {toxicity:.2f}
- Average engagement potential (0..1): {engagement:.2f}
- Average quality (0..1): {quality:.2f}

SAMPLE MESSAGES:
{sample}

Describe the health of this community. RETURN ONLY JSON:
{{
  "positiveIndicators": ["helpful answers", "friendly tone"],
  "concerns": ["some off-topic spam"],
  "recommendations": ["pin an FAQ for newcomers"]
}}"""


def build_community_prompt(results: list[AnalysisResult], means: BatchMeans) -> str:
    sample = [
        "- " + json.dumps(r.message.content[:_SAMPLE_CHARS], ensure_ascii=False)
        for r in results[:_SAMPLE_MESSAGES]
    ]
    return _COMMUNITY_TEMPLATE.format(
        volume=len(results),
        scored=sum(1 for r in results if r.ok),
        sentiment=means.sentiment,
        toxicity=means.toxicity,
        engagement=means.engagement,
        quality=means.quality,
        sample="\n".join(sample) or "- (none)",
    )


class CommunityPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    positive_indicators: list[str] = Field(default_factory=list, alias="positiveIndicators")
    concerns: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)

    @field_validator("positive_indicators", "concerns", "recommendations", mode="before")
    @classmethod
    def _text_list(cls, v: Any) -> list[str]:
        if not isinstance(v, list):
            raise ValueError("expected a list of strings")
        return [s.strip() for s in v if isinstance(s, str) and s.strip()][:_MAX_LIST_ITEMS]


def decode_community(raw: str) -> Optional[CommunityHealth]:
    obj = find_json_object(raw)
    if obj is None:
        return None
    try:
        payload = CommunityPayload.model_validate(obj)
    except (ValidationError, RecursionError):
        return None
    if not (payload.positive_indicators or payload.concerns or payload.recommendations):
        return None
    return CommunityHealth(
        positive_indicators=payload.positive_indicators,
        concerns=payload.concerns,
        recommendations=payload.recommendations,
    )


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------

class HealthAggregator:
    def __init__(
        self,
        gateway: PersistenceGateway,
        model: Optional[ModelClient] = None,
        *,
        weights: HealthWeights = HealthWeights(),
        activity_cutoffs: tuple[int, int, int] = (10, 25, 40),
        user_score_saturation: int = 100,
        temperature: float = 0.1,
        max_tokens: int = 1024,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._gateway = gateway
        self._model = model
        self.weights = weights
        self.activity_cutoffs = activity_cutoffs
        self.user_score_saturation = user_score_saturation
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._clock = clock or _utcnow

    async def aggregate(self, guild_id: int, results: list[AnalysisResult]) -> GuildHealthReport:
        now = self._clock()
        if not results:
            logger.info("Guild %s: no messages to aggregate", guild_id)
            return GuildHealthReport(
                guild_id=guild_id,
                health_score=NEUTRAL_HEALTH_SCORE,
                activity_level=NEUTRAL_ACTIVITY,
                sentiment=NEUTRAL_SENTIMENT,
                toxicity=NEUTRAL_TOXICITY,
                engagement=NEUTRAL_ENGAGEMENT,
                quality=NEUTRAL_QUALITY,
                messages_analyzed=0,
                messages_failed=0,
                last_analyzed=now,
                insufficient_data=True,
            )

        means = batch_means(results)
        succeeded = [r for r in results if r.ok]
        community = await self._community(guild_id, results, means, bool(succeeded))

        report = GuildHealthReport(
            guild_id=guild_id,
            health_score=compute_health_score(
                means.engagement, means.quality, means.toxicity, self.weights
            ),
            activity_level=activity_level_for(len(results), self.activity_cutoffs),
            sentiment=means.sentiment,
            toxicity=means.toxicity,
            engagement=means.engagement,
            quality=means.quality,
            messages_analyzed=len(succeeded),
            messages_failed=len(results) - len(succeeded),
            last_analyzed=now,
            positive_indicators=community.positive_indicators,
            concerns=community.concerns,
            recommendations=community.recommendations,
            analyzed_message_ids=tuple(r.message_id for r in succeeded),
        )

        try:
            await self._gateway.upsert_guild_health(guild_id, report)
        except PersistenceError as exc:
            logger.error("Guild %s: health row not saved: %s", guild_id, exc)

        await self._update_users(guild_id, succeeded)

        logger.info(
            "Guild %s: health=%.3f activity=%s analyzed=%d failed=%d",
            guild_id, report.health_score, report.activity_level.value,
            report.messages_analyzed, report.messages_failed,
        )
        return report

    async def _community(
        self,
        guild_id: int,
        results: list[AnalysisResult],
        means: BatchMeans,
        any_scored: bool,
    ) -> CommunityHealth:
        if self._model is None or not any_scored:
            return default_community_health()
        prompt = build_community_prompt(results, means)
        try:
            raw = await self._model.generate(
                prompt, temperature=self.temperature, max_tokens=self.max_tokens
            )
        except Exception as exc:
            logger.warning("Guild %s: community pass failed: %r", guild_id, exc)
            return default_community_health()
        community = decode_community(raw)
        if community is None:
            logger.warning("Guild %s: community pass returned unusable output", guild_id)
            return default_community_health()
        return community

    async def _update_users(self, guild_id: int, succeeded: list[AnalysisResult]) -> None:
        # Only messages that had never been scored count towards the author.
        fresh = Counter(
            r.message.author_id for r in succeeded if r.message.analyzed_at is None
        )
        for user_id, count in fresh.items():
            try:
                total = await self._gateway.increment_user_guild_counter(guild_id, user_id, by=count)
                await self._gateway.set_user_guild_score(
                    guild_id, user_id, user_guild_score(total, self.user_score_saturation)
                )
            except PersistenceError as exc:
                logger.warning("Guild %s: user %s metrics not updated: %s", guild_id, user_id, exc)
