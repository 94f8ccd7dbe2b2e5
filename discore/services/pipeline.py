"""
Analysis pipeline: collector -> analyzer -> aggregator for one guild.

`build_pipeline` wires every stage from Settings; tests build the stages by
hand with fake model clients.
"""
from __future__ import annotations

import logging
from collections.abc import Collection

from discore.core.config import Settings
from discore.services.aggregator import HealthAggregator, HealthWeights
from discore.services.analyzer import BatchAnalyzer
from discore.services.collector import BatchCollector
from discore.services.gateway import PersistenceGateway
from discore.services.model_client import ModelClient
from discore.services.records import GuildHealthReport
from discore.services.scorer import ScorerClient

logger = logging.getLogger(__name__)


class AnalysisPipeline:
    def __init__(
        self,
        collector: BatchCollector,
        analyzer: BatchAnalyzer,
        aggregator: HealthAggregator,
        *,
        batch_size: int = 50,
    ):
        self.collector = collector
        self.analyzer = analyzer
        self.aggregator = aggregator
        self.batch_size = batch_size

    async def run_analysis(
        self, guild_id: int, exclude: Collection[int] = ()
    ) -> GuildHealthReport:
        messages = await self.collector.collect(guild_id, self.batch_size, exclude)
        logger.info("Guild %s: analyzing %d messages", guild_id, len(messages))
        results = await self.analyzer.analyze(messages)
        return await self.aggregator.aggregate(guild_id, results)


def build_pipeline(
    settings: Settings, gateway: PersistenceGateway, model: ModelClient
) -> AnalysisPipeline:
    scorer = ScorerClient(
        model,
        temperature=settings.MODEL_TEMPERATURE,
        max_tokens=settings.MODEL_MAX_OUTPUT_TOKENS,
    )
    return AnalysisPipeline(
        collector=BatchCollector(gateway, window_hours=settings.ANALYSIS_WINDOW_HOURS),
        analyzer=BatchAnalyzer(
            scorer,
            gateway,
            concurrency=settings.ANALYSIS_CONCURRENCY,
            backoff_base=settings.ANALYSIS_BACKOFF_BASE_SECONDS,
            backoff_max=settings.ANALYSIS_BACKOFF_MAX_SECONDS,
        ),
        aggregator=HealthAggregator(
            gateway,
            model,
            weights=HealthWeights(
                engagement=settings.HEALTH_WEIGHT_ENGAGEMENT,
                quality=settings.HEALTH_WEIGHT_QUALITY,
                toxicity=settings.HEALTH_WEIGHT_TOXICITY,
            ),
            activity_cutoffs=(
                settings.ACTIVITY_LOW_CUTOFF,
                settings.ACTIVITY_MEDIUM_CUTOFF,
                settings.ACTIVITY_HIGH_CUTOFF,
            ),
            user_score_saturation=settings.USER_SCORE_SATURATION,
            temperature=settings.MODEL_TEMPERATURE,
            max_tokens=settings.MODEL_MAX_OUTPUT_TOKENS,
        ),
        batch_size=settings.ANALYSIS_BATCH_SIZE,
    )
