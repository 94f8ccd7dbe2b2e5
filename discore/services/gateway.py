"""
Persistence gateway: the only door between the analysis pipeline and the
database.

`PersistenceGateway` is the contract the collector, analyzer, aggregator and
scheduler depend on. `SqlPersistenceGateway` implements it with SQLAlchemy:
each call opens its own session, runs in a worker thread and commits once.
Any SQLAlchemyError is re-raised as PersistenceError so callers only handle
one exception type.

Public API
----------
get_unanalyzed_messages(guild_id, window_hours, limit, exclude)  -> list[MessageRecord]
get_recent_messages(guild_id, limit, exclude)                    -> list[MessageRecord]
write_message_scores(message_id, scores, analyzed_at)            -> None
upsert_guild_health(guild_id, report)                            -> None
increment_user_guild_counter(guild_id, user_id, by)              -> int
set_user_guild_score(guild_id, user_id, score)                   -> None
list_active_public_guilds()                                      -> list[GuildSchedule]
touch_last_analyzed(guild_id, at)                                -> None
"""
from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Callable, Collection
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Protocol, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from discore.core.errors import PersistenceError
from discore.models.guild import Guild
from discore.models.guild_health import GuildHealth
from discore.models.guild_member import GuildMember
from discore.models.message import Message
from discore.services.records import GuildHealthReport, GuildSchedule, MessageRecord, ScoreResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


class PersistenceGateway(Protocol):
    # Despite the name, already-scored messages in the window are returned too.
    async def get_unanalyzed_messages(
        self,
        guild_id: int,
        window_hours: int,
        limit: int,
        exclude: Collection[int] = (),
    ) -> list[MessageRecord]: ...

    async def get_recent_messages(
        self, guild_id: int, limit: int, exclude: Collection[int] = ()
    ) -> list[MessageRecord]: ...

    async def write_message_scores(
        self, message_id: int, scores: ScoreResult, analyzed_at: datetime
    ) -> None: ...

    async def upsert_guild_health(self, guild_id: int, report: GuildHealthReport) -> None: ...

    async def increment_user_guild_counter(
        self, guild_id: int, user_id: int, by: int = 1
    ) -> int: ...

    async def set_user_guild_score(self, guild_id: int, user_id: int, score: float) -> None: ...

    async def list_active_public_guilds(self) -> list[GuildSchedule]: ...

    async def touch_last_analyzed(self, guild_id: int, at: datetime) -> None: ...


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored here is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _later(current: Optional[datetime], candidate: datetime) -> datetime:
    current = as_utc(current)
    candidate = as_utc(candidate)
    if current is None or candidate > current:
        return candidate
    return current


def _jdump(items: list[str] | tuple[str, ...]) -> str:
    return json.dumps(list(items), ensure_ascii=False)


def _to_record(m: Message) -> MessageRecord:
    return MessageRecord(
        id=m.id,
        guild_id=m.guild_id,
        author_id=m.user_id,
        content=m.content or "",
        sent_at=as_utc(m.sent_at),
        has_attachments=bool(m.has_attachments),
        mention_count=m.mention_count or 0,
        reply_to_id=m.reply_to_id,
        analyzed_at=as_utc(m.analyzed_at),
    )


# ---------------------------------------------------------------------------
# SQLAlchemy implementation
# ---------------------------------------------------------------------------

class SqlPersistenceGateway:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def _run(self, operation: str, fn: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.to_thread(self._in_session, fn, *args)
        except SQLAlchemyError as exc:
            logger.error("Persistence operation %s failed: %s", operation, exc)
            raise PersistenceError(operation, str(exc)) from exc

    def _in_session(self, fn: Callable[..., T], *args: Any) -> T:
        # Commits on success, rolls back on any exception.
        with self._session_factory.begin() as db:
            return fn(db, *args)

    # -- reads --------------------------------------------------------------

    async def get_unanalyzed_messages(
        self,
        guild_id: int,
        window_hours: int,
        limit: int,
        exclude: Collection[int] = (),
        now: Optional[datetime] = None,
    ) -> list[MessageRecord]:
        """Newest-first messages sent within the window, minus `exclude`."""
        since = (now or _utcnow()) - timedelta(hours=window_hours)
        return await self._run(
            "get_unanalyzed_messages", _select_messages, guild_id, limit, tuple(exclude), since
        )

    async def get_recent_messages(
        self, guild_id: int, limit: int, exclude: Collection[int] = ()
    ) -> list[MessageRecord]:
        """Newest-first messages of any age, minus `exclude`."""
        return await self._run(
            "get_recent_messages", _select_messages, guild_id, limit, tuple(exclude), None
        )

    async def list_active_public_guilds(self) -> list[GuildSchedule]:
        return await self._run("list_active_public_guilds", _select_schedules)

    # -- writes -------------------------------------------------------------

    async def write_message_scores(
        self, message_id: int, scores: ScoreResult, analyzed_at: datetime
    ) -> None:
        await self._run("write_message_scores", _write_scores, message_id, scores, analyzed_at)

    async def upsert_guild_health(self, guild_id: int, report: GuildHealthReport) -> None:
        await self._run("upsert_guild_health", _upsert_health, guild_id, report)

    async def increment_user_guild_counter(
        self, guild_id: int, user_id: int, by: int = 1
    ) -> int:
        return await self._run("increment_user_guild_counter", _increment_counter, guild_id, user_id, by)

    async def set_user_guild_score(self, guild_id: int, user_id: int, score: float) -> None:
        await self._run("set_user_guild_score", _set_score, guild_id, user_id, score)

    async def touch_last_analyzed(self, guild_id: int, at: datetime) -> None:
        await self._run("touch_last_analyzed", _touch, guild_id, at)


# ---------------------------------------------------------------------------
# Units of work (run inside a session, in a worker thread)
# ---------------------------------------------------------------------------

def _select_messages(
    db: Session,
    guild_id: int,
    limit: int,
    exclude: tuple[int, ...],
    since: Optional[datetime],
) -> list[MessageRecord]:
    q = db.query(Message).filter(Message.guild_id == guild_id)
    if since is not None:
        q = q.filter(Message.sent_at >= since)
    if exclude:
        q = q.filter(Message.id.not_in(exclude))
    rows = q.order_by(Message.sent_at.desc(), Message.id.desc()).limit(limit).all()
    return [_to_record(m) for m in rows]


def _select_schedules(db: Session) -> list[GuildSchedule]:
    rows = (
        db.query(Guild.id, GuildHealth.last_analyzed)
        .outerjoin(GuildHealth, GuildHealth.guild_id == Guild.id)
        .filter(Guild.is_active.is_(True), Guild.is_public.is_(True))
        .order_by(Guild.id)
        .all()
    )
    return [GuildSchedule(id=gid, last_analyzed=as_utc(last)) for gid, last in rows]


def _write_scores(db: Session, message_id: int, s: ScoreResult, analyzed_at: datetime) -> None:
    updated = (
        db.query(Message)
        .filter(Message.id == message_id)
        .update(
            {
                Message.sentiment_score: s.sentiment,
                Message.toxicity_score: s.toxicity,
                Message.constructiveness_score: s.constructiveness,
                Message.ai_likelihood: s.ai_likelihood,
                Message.quality_score: s.quality,
                Message.engagement_potential: s.engagement_potential,
                Message.activity_category: s.category,
                Message.emotions: _jdump(s.emotions),
                Message.topics: _jdump(s.topics),
                Message.analyzed_at: analyzed_at,
            },
            synchronize_session=False,
        )
    )
    if not updated:
        logger.warning("Scores for unknown message %s were not stored", message_id)


def _upsert_health(db: Session, guild_id: int, r: GuildHealthReport) -> None:
    row = db.get(GuildHealth, guild_id)
    if row is None:
        row = GuildHealth(guild_id=guild_id)
        db.add(row)
    row.health_score = r.health_score
    row.activity_level = r.activity_level
    row.toxicity_level = r.toxicity
    row.engagement_score = r.engagement
    row.sentiment_score = r.sentiment
    row.quality_score = r.quality
    row.messages_analyzed = r.messages_analyzed
    row.messages_failed = r.messages_failed
    row.health_indicators = _jdump(r.positive_indicators)
    row.health_concerns = _jdump(r.concerns)
    row.health_recommendations = _jdump(r.recommendations)
    row.last_analyzed = _later(row.last_analyzed, r.last_analyzed)


def _get_or_create_member(db: Session, guild_id: int, user_id: int) -> GuildMember:
    member = (
        db.query(GuildMember)
        .filter(GuildMember.guild_id == guild_id, GuildMember.user_id == user_id)
        .first()
    )
    if member is None:
        member = GuildMember(
            guild_id=guild_id, user_id=user_id, messages_in_guild=0, guild_score=0.0
        )
        db.add(member)
        db.flush()
    return member


def _increment_counter(db: Session, guild_id: int, user_id: int, by: int) -> int:
    member = _get_or_create_member(db, guild_id, user_id)
    member.messages_in_guild = (member.messages_in_guild or 0) + by
    return member.messages_in_guild


def _set_score(db: Session, guild_id: int, user_id: int, score: float) -> None:
    member = _get_or_create_member(db, guild_id, user_id)
    member.guild_score = score
    member.last_analyzed = _utcnow()


def _touch(db: Session, guild_id: int, at: datetime) -> None:
    row = db.get(GuildHealth, guild_id)
    if row is None:
        if db.get(Guild, guild_id) is None:
            logger.warning("Cannot stamp last_analyzed for unknown guild %s", guild_id)
            return
        # Neutral defaults until a batch with data is aggregated.
        row = GuildHealth(guild_id=guild_id)
        db.add(row)
    row.last_analyzed = _later(row.last_analyzed, at)
