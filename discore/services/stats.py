"""
Read-side queries behind the dashboard endpoints.

Only active, public guilds are visible, and user figures only count messages
posted in them. Bots and users who hid their profile are never listed.

Health values come straight from the guild_health projection; a guild that
was never analyzed shows neutral defaults and `last_analyzed = None`.
"""
from __future__ import annotations

import enum
import json
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from discore.core.errors import GuildNotFoundError, UserNotFoundError
from discore.models.guild import Guild
from discore.models.guild_health import (
    NEUTRAL_ACTIVITY,
    NEUTRAL_ENGAGEMENT,
    NEUTRAL_HEALTH_SCORE,
    NEUTRAL_QUALITY,
    NEUTRAL_SENTIMENT,
    NEUTRAL_TOXICITY,
    GuildHealth,
)
from discore.models.guild_member import GuildMember
from discore.models.message import Message
from discore.models.user import User
from discore.services.gateway import as_utc
from discore.services.user_analysis import UserProfile


class GuildSort(str, enum.Enum):
    health_score = "health_score"
    engagement_score = "engagement_score"
    total_messages = "total_messages"


class TrendingPeriod(str, enum.Enum):
    day = "24h"
    week = "7d"
    month = "30d"


_PERIOD_DAYS = {TrendingPeriod.day: 1, TrendingPeriod.week: 7, TrendingPeriod.month: 30}

_SORT_COLUMNS = {
    GuildSort.health_score: func.coalesce(GuildHealth.health_score, -1.0),
    GuildSort.engagement_score: func.coalesce(GuildHealth.engagement_score, -1.0),
    GuildSort.total_messages: Guild.total_messages,
}


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def _jload(text: Optional[str]) -> list[str]:
    if not text:
        return []
    try:
        value = json.loads(text)
    except ValueError:
        return []
    return [v for v in value if isinstance(v, str)] if isinstance(value, list) else []


def _ev(v) -> Optional[str]:
    if v is None:
        return None
    return v.value if hasattr(v, "value") else str(v)


def _iso(dt) -> Optional[str]:
    dt = as_utc(dt)
    return dt.isoformat() if dt else None


def _health_dict(health: Optional[GuildHealth]) -> dict:
    if health is None:
        return {
            "health_score": NEUTRAL_HEALTH_SCORE,
            "activity_level": NEUTRAL_ACTIVITY.value,
            "toxicity_level": NEUTRAL_TOXICITY,
            "engagement_score": NEUTRAL_ENGAGEMENT,
            "sentiment_score": NEUTRAL_SENTIMENT,
            "quality_score": NEUTRAL_QUALITY,
            "messages_analyzed": 0,
            "messages_failed": 0,
            "positive_indicators": [],
            "concerns": [],
            "recommendations": [],
            "last_analyzed": None,
        }
    return {
        "health_score": health.health_score,
        "activity_level": _ev(health.activity_level),
        "toxicity_level": health.toxicity_level,
        "engagement_score": health.engagement_score,
        "sentiment_score": health.sentiment_score,
        "quality_score": health.quality_score,
        "messages_analyzed": health.messages_analyzed,
        "messages_failed": health.messages_failed,
        "positive_indicators": _jload(health.health_indicators),
        "concerns": _jload(health.health_concerns),
        "recommendations": _jload(health.health_recommendations),
        "last_analyzed": _iso(health.last_analyzed),
    }


def _guild_summary(guild: Guild, health: Optional[GuildHealth]) -> dict:
    h = _health_dict(health)
    return {
        "id": str(guild.id),
        "name": guild.name,
        "icon": guild.icon,
        "member_count": guild.member_count,
        "total_messages": guild.total_messages,
        "health_score": h["health_score"],
        "activity_level": h["activity_level"],
        "toxicity_level": h["toxicity_level"],
        "engagement_score": h["engagement_score"],
        "last_analyzed": h["last_analyzed"],
    }


def _visible(db: Session):
    return (
        db.query(Guild, GuildHealth)
        .outerjoin(GuildHealth, GuildHealth.guild_id == Guild.id)
        .filter(Guild.is_active.is_(True), Guild.is_public.is_(True))
    )


def _visible_guild(db: Session, guild_id: int) -> tuple[Guild, Optional[GuildHealth]]:
    row = _visible(db).filter(Guild.id == guild_id).first()
    if row is None:
        raise GuildNotFoundError(guild_id)
    return row


def list_public_guilds(
    db: Session,
    sort: GuildSort = GuildSort.health_score,
    page: int = 1,
    limit: int = 20,
) -> dict:
    q = _visible(db)
    total = q.count()
    rows = (
        q.order_by(_SORT_COLUMNS[sort].desc(), Guild.id)
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
        "guilds": [_guild_summary(g, h) for g, h in rows],
    }


def get_guild_health(db: Session, guild_id: int) -> dict:
    guild, health = _visible_guild(db, guild_id)
    return {
        "guild_id": str(guild.id),
        "name": guild.name,
        "member_count": guild.member_count,
        "total_messages": guild.total_messages,
        **_health_dict(health),
    }


def get_leaderboard(db: Session, guild_id: int, limit: int = 50) -> dict:
    _visible_guild(db, guild_id)
    rows = (
        db.query(GuildMember, User)
        .join(User, User.id == GuildMember.user_id)
        .filter(GuildMember.guild_id == guild_id, User.is_bot.is_(False))
        .order_by(
            GuildMember.guild_score.desc(),
            GuildMember.messages_in_guild.desc(),
            GuildMember.user_id,
        )
        .limit(limit)
        .all()
    )
    return {
        "guild_id": str(guild_id),
        "members": [
            {
                "rank": i,
                "user_id": str(user.id),
                "username": user.username,
                "nickname": member.nickname,
                "avatar": user.avatar,
                "messages_in_guild": member.messages_in_guild,
                "guild_score": member.guild_score,
                "last_message_at": _iso(member.last_message_at),
            }
            for i, (member, user) in enumerate(rows, start=1)
        ],
    }


def get_platform_stats(db: Session) -> dict:
    guild_count, members, messages = (
        db.query(
            func.count(Guild.id),
            func.coalesce(func.sum(Guild.member_count), 0),
            func.coalesce(func.sum(Guild.total_messages), 0),
        )
        .filter(Guild.is_active.is_(True), Guild.is_public.is_(True))
        .one()
    )
    avg_health, avg_toxicity, analyzed_guilds = (
        db.query(
            func.avg(GuildHealth.health_score),
            func.avg(GuildHealth.toxicity_level),
            func.count(GuildHealth.guild_id),
        )
        .join(Guild, Guild.id == GuildHealth.guild_id)
        .filter(
            Guild.is_active.is_(True),
            Guild.is_public.is_(True),
            GuildHealth.messages_analyzed > 0,
        )
        .one()
    )
    analyzed_messages = (
        db.query(func.count(Message.id)).filter(Message.analyzed_at.is_not(None)).scalar()
    )
    return {
        "total_guilds": guild_count,
        "total_members": int(members),
        "total_messages": int(messages),
        "analyzed_messages": analyzed_messages or 0,
        "analyzed_guilds": analyzed_guilds,
        "average_health_score": round(avg_health, 4) if avg_health is not None else None,
        "average_toxicity": round(avg_toxicity, 4) if avg_toxicity is not None else None,
    }


def get_trending_guilds(
    db: Session,
    period: TrendingPeriod = TrendingPeriod.day,
    limit: int = 10,
    now: Optional[datetime] = None,
) -> dict:
    """Visible guilds with messages in the period, busiest first."""
    since = (now or _utcnow()) - timedelta(days=_PERIOD_DAYS[period])
    recent = (
        db.query(Message.guild_id.label("guild_id"), func.count(Message.id).label("n"))
        .filter(Message.sent_at >= since)
        .group_by(Message.guild_id)
        .subquery()
    )
    rows = (
        _visible(db)
        .add_columns(recent.c.n)
        .join(recent, recent.c.guild_id == Guild.id)
        .order_by(
            recent.c.n.desc(),
            func.coalesce(GuildHealth.engagement_score, -1.0).desc(),
            Guild.id,
        )
        .limit(limit)
        .all()
    )
    return {
        "period": period.value,
        "since": _iso(since),
        "guilds": [{**_guild_summary(g, h), "recent_messages": n} for g, h, n in rows],
    }


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def _visible_user(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if user is None or user.is_bot or not user.is_public:
        raise UserNotFoundError(user_id)
    return user


def _user_messages(db: Session, user_id: int, guild_id: Optional[int]):
    q = (
        db.query(Message)
        .join(Guild, Guild.id == Message.guild_id)
        .filter(
            Message.user_id == user_id,
            Guild.is_active.is_(True),
            Guild.is_public.is_(True),
        )
    )
    if guild_id is not None:
        q = q.filter(Message.guild_id == guild_id)
    return q


def _r2(value: Optional[float]) -> float:
    return round(value, 2) if value is not None else 0.0


def _analysis_dict(user: User) -> Optional[dict]:
    if user.last_analyzed is None:
        return None
    return {
        "user_type": user.user_type,
        "engagement_level": user.engagement_level,
        "influence_score": user.influence_score,
        "risk_level": user.risk_level,
        "specialties": _jload(user.specialties),
        "behavior_tags": _jload(user.behavior_tags),
        "recommended_role": user.recommended_role,
        "overall_score": user.overall_score,
        "last_analyzed": _iso(user.last_analyzed),
    }


def search_users(
    db: Session, username: str, guild_id: Optional[int] = None, limit: int = 20
) -> dict:
    """Case-insensitive substring match, most active first."""
    counts = (
        db.query(Message.user_id.label("user_id"), func.count(Message.id).label("n"))
        .join(Guild, Guild.id == Message.guild_id)
        .filter(Guild.is_active.is_(True), Guild.is_public.is_(True))
    )
    if guild_id is not None:
        counts = counts.filter(Message.guild_id == guild_id)
    counts = counts.group_by(Message.user_id).subquery()
    total = func.coalesce(counts.c.n, 0)

    q = (
        db.query(User, total)
        .outerjoin(counts, counts.c.user_id == User.id)
        .filter(
            User.username.icontains(username, autoescape=True),
            User.is_bot.is_(False),
            User.is_public.is_(True),
        )
    )
    if guild_id is not None:
        _visible_guild(db, guild_id)
        q = q.join(
            GuildMember,
            (GuildMember.user_id == User.id) & (GuildMember.guild_id == guild_id),
        )
    rows = q.order_by(total.desc(), User.id).limit(limit).all()
    return {
        "query": username,
        "users": [
            {
                "user_id": str(user.id),
                "username": user.username,
                "avatar": user.avatar,
                "total_messages": n,
                "overall_score": user.overall_score,
            }
            for user, n in rows
        ],
    }


def get_user_analysis(
    db: Session,
    user_id: int,
    guild_id: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    user = _visible_user(db, user_id)
    if guild_id is not None:
        _visible_guild(db, guild_id)
    now = now or _utcnow()

    base = _user_messages(db, user_id, guild_id)
    total, avg_sentiment, avg_toxicity, avg_quality, avg_ai = base.with_entities(
        func.count(Message.id),
        func.avg(Message.sentiment_score),
        func.avg(Message.toxicity_score),
        func.avg(Message.quality_score),
        func.avg(Message.ai_likelihood),
    ).one()
    recent = (
        base.filter(Message.sent_at >= now - timedelta(days=7))
        .with_entities(func.count(Message.id))
        .scalar()
    )
    return {
        "user_id": str(user.id),
        "username": user.username,
        "avatar": user.avatar,
        "guild_id": str(guild_id) if guild_id is not None else None,
        "total_messages": total,
        "recent_messages": recent or 0,
        "avg_sentiment": _r2(avg_sentiment),
        "avg_toxicity": _r2(avg_toxicity),
        "avg_quality": _r2(avg_quality),
        "avg_ai_likelihood": _r2(avg_ai),
        "analysis": _analysis_dict(user),
    }


def get_user_profile(db: Session, user_id: int, guild_id: Optional[int] = None) -> UserProfile:
    """Activity summary handed to the user analyzer."""
    user = _visible_user(db, user_id)
    if guild_id is not None:
        _visible_guild(db, guild_id)

    base = _user_messages(db, user_id, guild_id)
    total, avg_sentiment, avg_toxicity, mentions, active_days = base.with_entities(
        func.count(Message.id),
        func.avg(Message.sentiment_score),
        func.avg(Message.toxicity_score),
        func.coalesce(func.sum(Message.mention_count), 0),
        func.count(func.distinct(func.date(Message.sent_at))),
    ).one()
    by_category = (
        base.filter(Message.activity_category.is_not(None))
        .with_entities(Message.activity_category, func.count(Message.id))
        .group_by(Message.activity_category)
        .all()
    )
    scored = sum(n for _, n in by_category)
    patterns = sorted(
        ((_ev(category), 100.0 * n / scored) for category, n in by_category),
        key=lambda p: (-p[1], p[0]),
    )
    return UserProfile(
        user_id=user.id,
        username=user.username,
        message_count=total,
        avg_sentiment=avg_sentiment or 0.0,
        avg_toxicity=avg_toxicity or 0.0,
        mentions=int(mentions),
        active_days=active_days,
        activity_patterns=tuple(patterns),
    )
