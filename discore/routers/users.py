"""
User router (dashboard).

GET  /users/search                 find public users by name
GET  /users/{user_id}/analysis     message figures plus the stored model reading
POST /users/{user_id}/analyze      ask the model for a fresh reading
PUT  /users/{user_id}/privacy      the user hides or shows their profile
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from discore.core.deps import get_user_analyzer
from discore.db.base import get_db
from discore.schemas.common import ErrorResponse
from discore.schemas.user import (
    UserAnalysisResponse,
    UserAnalyzeResponse,
    UserPrivacyRequest,
    UserPrivacyResponse,
    UserProfileAnalysis,
    UserSearchResponse,
)
from discore.services.ingest import set_user_privacy
from discore.services.stats import get_user_analysis, get_user_profile, search_users
from discore.services.user_analysis import UserAnalyzer, save_user_analysis

router = APIRouter(prefix="/users", tags=["users"])

UserId = Annotated[int, Path(gt=0, description="Discord user id.")]
GuildFilter = Annotated[
    Optional[int], Query(gt=0, description="Limit the figures to one guild.")
]

_NOT_FOUND = {"model": ErrorResponse, "description": "Unknown, bot or private user, or unknown guild."}


@router.get("/search", response_model=UserSearchResponse, summary="Search users by name")
def user_search(
    username: str = Query(min_length=2, max_length=64),
    guild_id: GuildFilter = None,
    limit: int = Query(default=20, ge=1, le=50),
    db: Session = Depends(get_db),
):
    return search_users(db, username, guild_id=guild_id, limit=limit)


@router.get(
    "/{user_id}/analysis",
    response_model=UserAnalysisResponse,
    summary="Message figures and latest model reading of a user",
    responses={404: _NOT_FOUND},
)
def user_analysis(user_id: UserId, guild_id: GuildFilter = None, db: Session = Depends(get_db)):
    return get_user_analysis(db, user_id, guild_id=guild_id)


@router.post(
    "/{user_id}/analyze",
    response_model=UserAnalyzeResponse,
    summary="Ask the model for a fresh reading of a user",
    responses={404: _NOT_FOUND},
)
async def analyze_user(
    user_id: UserId,
    guild_id: GuildFilter = None,
    db: Session = Depends(get_db),
    analyzer: UserAnalyzer = Depends(get_user_analyzer),
):
    """A fallback reading is returned but never stored."""
    profile = await run_in_threadpool(get_user_profile, db, user_id, guild_id)
    analysis = await analyzer.analyze(profile)

    analyzed_at: Optional[datetime] = None
    if not analysis.fallback:
        analyzed_at = datetime.now(tz=timezone.utc)
        await run_in_threadpool(save_user_analysis, user_id, analysis, analyzed_at, db)

    return UserAnalyzeResponse(
        user_id=str(user_id),
        fallback=analysis.fallback,
        analysis=UserProfileAnalysis(
            user_type=analysis.user_type,
            engagement_level=analysis.engagement_level,
            influence_score=analysis.influence_score,
            risk_level=analysis.risk_level,
            specialties=list(analysis.specialties),
            behavior_tags=list(analysis.behavior_tags),
            recommended_role=analysis.recommended_role,
            overall_score=analysis.overall_score,
            last_analyzed=analyzed_at.isoformat() if analyzed_at else None,
        ),
    )


@router.put(
    "/{user_id}/privacy",
    response_model=UserPrivacyResponse,
    summary="Show or hide a user on the dashboard",
    responses={
        403: {"model": ErrorResponse, "description": "Requester is not this user."},
        404: _NOT_FOUND,
    },
)
def user_privacy(payload: UserPrivacyRequest, user_id: UserId, db: Session = Depends(get_db)):
    user = set_user_privacy(user_id, payload.is_public, payload.requested_by, db)
    return UserPrivacyResponse(user_id=str(user.id), username=user.username, is_public=user.is_public)
