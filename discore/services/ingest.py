"""
Ingest service: persists guilds and messages pushed by the Discord bot.

Public API
----------
sync_guild(event, db)              -> Guild                 (upsert, commits)
ingest_message(event, db)          -> MessageIngestResult   (single, commits)
ingest_message_batch(events, db)   -> list[dict]            (per-item savepoints)
set_guild_privacy(guild_id, ...)   -> Guild                 (owner only)
set_user_privacy(user_id, ...)     -> User                  (the user only)

Internal
--------
_ingest_one(event, db)             -> MessageIngestResult   (flush only, no commit)

Scores are never written here; the analysis pipeline owns them. Bot
authors are ignored. A message id that already exists is reported as a
duplicate and changes nothing.
"""
from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.orm import Session

from discore.core.errors import (
    GuildNotFoundError,
    NotGuildOwnerError,
    NotProfileOwnerError,
    UserNotFoundError,
)
from discore.models.guild import Guild
from discore.models.guild_member import GuildMember
from discore.models.message import Message
from discore.models.user import User
from discore.services.gateway import as_utc


# ---------------------------------------------------------------------------
# DTOs
# ---------------------------------------------------------------------------

@dataclass
class GuildEvent:
    id: int
    name: str
    icon: Optional[str] = None
    description: Optional[str] = None
    member_count: int = 0
    owner_id: Optional[int] = None
    is_public: Optional[bool] = None
    is_active: bool = True


@dataclass
class MessageEvent:
    """Lightweight DTO so the service layer stays schema-agnostic."""
    id: int
    guild_id: int
    channel_id: int
    author_id: int
    author_username: str
    content: str
    sent_at: datetime
    author_avatar: Optional[str] = None
    author_is_bot: bool = False
    author_nickname: Optional[str] = None
    has_attachments: bool = False
    mention_count: int = 0
    reply_to_id: Optional[int] = None


class IngestStatus(str, enum.Enum):
    created = "created"
    duplicate = "duplicate"
    ignored = "ignored"


@dataclass
class MessageIngestResult:
    message_id: int
    guild_id: int
    status: IngestStatus

    @property
    def created(self) -> bool:
        return self.status == IngestStatus.created


# ---------------------------------------------------------------------------
# Guilds
# ---------------------------------------------------------------------------

def sync_guild(event: GuildEvent, db: Session) -> Guild:
    """Insert or refresh a guild. `is_public` is only changed when given."""
    guild = db.get(Guild, event.id)
    if guild is None:
        guild = Guild(id=event.id, total_messages=0)
        guild.is_public = True if event.is_public is None else event.is_public
        db.add(guild)
    elif event.is_public is not None:
        guild.is_public = event.is_public

    guild.name = event.name
    guild.icon = event.icon
    guild.description = event.description
    guild.member_count = event.member_count
    guild.owner_id = event.owner_id
    guild.is_active = event.is_active
    db.commit()
    db.refresh(guild)
    return guild


def set_guild_privacy(guild_id: int, is_public: bool, requested_by: int, db: Session) -> Guild:
    guild = db.get(Guild, guild_id)
    if guild is None:
        raise GuildNotFoundError(guild_id)
    if guild.owner_id is None or guild.owner_id != requested_by:
        raise NotGuildOwnerError(guild_id)
    guild.is_public = is_public
    db.commit()
    db.refresh(guild)
    return guild


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def set_user_privacy(user_id: int, is_public: bool, requested_by: int, db: Session) -> User:
    user = db.get(User, user_id)
    if user is None or user.is_bot:
        raise UserNotFoundError(user_id)
    if user_id != requested_by:
        raise NotProfileOwnerError(user_id)
    user.is_public = is_public
    db.commit()
    db.refresh(user)
    return user


# ---------------------------------------------------------------------------
# Messages: flush only (used by both single and batch paths)
# ---------------------------------------------------------------------------

def _upsert_author(event: MessageEvent, db: Session) -> None:
    user = db.get(User, event.author_id)
    if user is None:
        db.add(User(
            id=event.author_id,
            username=event.author_username,
            avatar=event.author_avatar,
            is_bot=event.author_is_bot,
        ))
    else:
        user.username = event.author_username
        if event.author_avatar is not None:
            user.avatar = event.author_avatar


def _touch_member(event: MessageEvent, db: Session, sent_at: datetime) -> None:
    member = (
        db.query(GuildMember)
        .filter(GuildMember.guild_id == event.guild_id, GuildMember.user_id == event.author_id)
        .first()
    )
    if member is None:
        member = GuildMember(
            guild_id=event.guild_id,
            user_id=event.author_id,
            messages_in_guild=0,
            guild_score=0.0,
        )
        db.add(member)
    if event.author_nickname is not None:
        member.nickname = event.author_nickname
    last = as_utc(member.last_message_at)
    if last is None or sent_at > last:
        member.last_message_at = sent_at


def _ingest_one(event: MessageEvent, db: Session) -> MessageIngestResult:
    """
    Store one message with its author and membership.
    Calls db.flush() but does NOT commit; the caller owns the transaction.
    """
    if event.author_is_bot:
        return MessageIngestResult(event.id, event.guild_id, IngestStatus.ignored)

    guild = db.get(Guild, event.guild_id)
    if guild is None:
        raise GuildNotFoundError(event.guild_id)

    if db.get(Message, event.id) is not None:
        return MessageIngestResult(event.id, event.guild_id, IngestStatus.duplicate)

    sent_at = as_utc(event.sent_at) or datetime.now(tz=timezone.utc)
    _upsert_author(event, db)
    db.flush()  # users row must exist before the FKs below

    db.add(Message(
        id=event.id,
        guild_id=event.guild_id,
        channel_id=event.channel_id,
        user_id=event.author_id,
        content=event.content,
        has_attachments=event.has_attachments,
        mention_count=event.mention_count,
        reply_to_id=event.reply_to_id,
        sent_at=sent_at,
    ))
    _touch_member(event, db, sent_at)
    guild.total_messages = (guild.total_messages or 0) + 1
    db.flush()
    return MessageIngestResult(event.id, event.guild_id, IngestStatus.created)


# ---------------------------------------------------------------------------
# Public
# ---------------------------------------------------------------------------

def ingest_message(event: MessageEvent, db: Session) -> MessageIngestResult:
    """Persist and commit a single message."""
    try:
        result = _ingest_one(event, db)
    except Exception:
        db.rollback()
        raise
    db.commit()
    return result


def ingest_message_batch(events: list[MessageEvent], db: Session) -> list[dict]:
    """
    Ingest a list of messages using one savepoint per item.
    A failure on one item does not cancel the others.
    Returns raw dicts for the router to convert to BatchItemResult.
    """
    raw_results = []

    for i, event in enumerate(events):
        savepoint = db.begin_nested()
        try:
            result = _ingest_one(event, db)
            savepoint.commit()
            raw_results.append({"index": i, "ok": True, "result": result, "error": None})
        except Exception as exc:
            savepoint.rollback()
            message = getattr(exc, "message", None) or str(exc)
            raw_results.append({"index": i, "ok": False, "result": None, "error": message})

    db.commit()
    return raw_results
