"""
Platform router.

GET /platform/stats
"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from discore.db.base import get_db
from discore.schemas.guild import PlatformStatsResponse
from discore.services.stats import get_platform_stats

router = APIRouter(prefix="/platform", tags=["platform"])


@router.get(
    "/stats",
    response_model=PlatformStatsResponse,
    summary="Totals and averages across active public guilds",
)
def platform_stats(db: Session = Depends(get_db)):
    return get_platform_stats(db)
