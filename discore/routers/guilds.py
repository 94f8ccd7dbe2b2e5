"""
Guild router (dashboard).

GET  /guilds/public                 active & public guilds, paginated
GET  /guilds/trending               busiest guilds over 24h, 7d or 30d
GET  /guilds/{guild_id}/health      latest health projection
GET  /guilds/{guild_id}/leaderboard members by guild score
PUT  /guilds/{guild_id}/privacy     owner toggles public visibility
POST /guilds/{guild_id}/analyze     run the analysis pipeline now
"""
from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from discore.core.deps import get_scheduler
from discore.core.errors import AnalysisInProgressError, GuildNotFoundError
from discore.db.base import get_db
from discore.models.guild import Guild
from discore.schemas.analysis import AnalysisRunResponse
from discore.schemas.common import ErrorResponse
from discore.schemas.guild import (
    GuildHealthResponse,
    LeaderboardResponse,
    PublicGuildsResponse,
    TrendingGuildsResponse,
)
from discore.schemas.ingest import GuildPrivacyRequest, GuildSyncResponse
from discore.services.ingest import set_guild_privacy
from discore.services.scheduler import AnalysisScheduler
from discore.services.stats import (
    GuildSort,
    TrendingPeriod,
    get_guild_health,
    get_leaderboard,
    get_trending_guilds,
    list_public_guilds,
)

router = APIRouter(prefix="/guilds", tags=["guilds"])

GuildId = Annotated[int, Path(gt=0, description="Discord guild id.")]


@router.get("/public", response_model=PublicGuildsResponse, summary="Public guild ranking")
def public_guilds(
    sort: GuildSort = Query(default=GuildSort.health_score),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    db: Session = Depends(get_db),
):
    return list_public_guilds(db, sort=sort, page=page, limit=limit)


@router.get("/trending", response_model=TrendingGuildsResponse, summary="Busiest public guilds")
def trending_guilds(
    period: TrendingPeriod = Query(default=TrendingPeriod.day),
    limit: int = Query(default=10, ge=1, le=50),
    db: Session = Depends(get_db),
):
    return get_trending_guilds(db, period=period, limit=limit)


@router.get(
    "/{guild_id}/health",
    response_model=GuildHealthResponse,
    summary="Latest community health of a guild",
    responses={404: {"model": ErrorResponse, "description": "Unknown, inactive or private guild."}},
)
def guild_health(guild_id: GuildId, db: Session = Depends(get_db)):
    return get_guild_health(db, guild_id)


@router.get(
    "/{guild_id}/leaderboard",
    response_model=LeaderboardResponse,
    summary="Members ranked by guild score",
    responses={404: {"model": ErrorResponse, "description": "Unknown, inactive or private guild."}},
)
def guild_leaderboard(
    guild_id: GuildId,
    limit: int = Query(default=50, ge=1, le=200),
    db: Session = Depends(get_db),
):
    return get_leaderboard(db, guild_id, limit=limit)


@router.put(
    "/{guild_id}/privacy",
    response_model=GuildSyncResponse,
    summary="Show or hide a guild on the public dashboard",
    responses={403: {"model": ErrorResponse, "description": "Requester does not own the guild."}},
)
def guild_privacy(
    payload: GuildPrivacyRequest,
    guild_id: GuildId,
    db: Session = Depends(get_db),
):
    guild = set_guild_privacy(guild_id, payload.is_public, payload.requested_by, db)
    return GuildSyncResponse(
        id=str(guild.id),
        name=guild.name,
        member_count=guild.member_count,
        is_public=guild.is_public,
        is_active=guild.is_active,
    )


@router.post(
    "/{guild_id}/analyze",
    response_model=AnalysisRunResponse,
    summary="Run the analysis pipeline for a guild now",
    responses={
        404: {"model": ErrorResponse, "description": "Unknown guild."},
        409: {"model": ErrorResponse, "description": "A run for this guild is already in flight."},
    },
)
async def analyze_guild(
    guild_id: GuildId,
    db: Session = Depends(get_db),
    scheduler: AnalysisScheduler = Depends(get_scheduler),
):
    """Recomputes over the full window; ignores the hourly cooldown."""
    guild = await run_in_threadpool(db.get, Guild, guild_id)
    if guild is None:
        raise GuildNotFoundError(guild_id)

    report = await scheduler.run_analysis(guild_id)
    if report is None:
        raise AnalysisInProgressError(guild_id)

    return AnalysisRunResponse(
        guild_id=str(report.guild_id),
        insufficient_data=report.insufficient_data,
        health_score=report.health_score,
        activity_level=report.activity_level.value,
        sentiment_score=report.sentiment,
        toxicity_level=report.toxicity,
        engagement_score=report.engagement,
        quality_score=report.quality,
        messages_analyzed=report.messages_analyzed,
        messages_failed=report.messages_failed,
        positive_indicators=report.positive_indicators,
        concerns=report.concerns,
        recommendations=report.recommendations,
        last_analyzed=report.last_analyzed.isoformat(),
    )
