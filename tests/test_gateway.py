"""
Tests for SqlPersistenceGateway against the SQLite test database.

Every test uses its own guild id range (7xxx) so rows never collide with
other suites sharing the session database.
"""
import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from discore.core.errors import PersistenceError
from discore.models.guild import Guild
from discore.models.guild_health import ActivityLevel, GuildHealth
from discore.models.guild_member import GuildMember
from discore.models.message import ActivityCategory, Message
from discore.models.user import User
from discore.services.gateway import SqlPersistenceGateway
from discore.services.records import GuildHealthReport, ScoreResult

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _seed(db, guild_id, messages=(), *, is_public=True, is_active=True, author_id=None):
    author_id = author_id or guild_id * 10
    db.add(Guild(id=guild_id, name=f"guild {guild_id}", is_public=is_public, is_active=is_active))
    if db.get(User, author_id) is None:
        db.add(User(id=author_id, username=f"user{author_id}"))
    db.flush()
    for message_id, minutes_ago in messages:
        db.add(Message(
            id=message_id,
            guild_id=guild_id,
            channel_id=1,
            user_id=author_id,
            content=f"message {message_id}",
            sent_at=NOW - timedelta(minutes=minutes_ago),
        ))
    db.commit()


def _report(guild_id, last_analyzed, health=0.7):
    return GuildHealthReport(
        guild_id=guild_id,
        health_score=health,
        activity_level=ActivityLevel.medium,
        sentiment=0.2,
        toxicity=0.1,
        engagement=0.6,
        quality=0.8,
        messages_analyzed=12,
        messages_failed=1,
        last_analyzed=last_analyzed,
        positive_indicators=["friendly"],
        concerns=[],
        recommendations=["host an event"],
    )


class TestReads:
    def test_window_newest_first_with_exclusions(self, db, sql_gateway):
        _seed(db, 7001, [(70011, 30), (70012, 5), (70013, 60 * 30), (70014, 10)])
        rows = asyncio.run(sql_gateway.get_unanalyzed_messages(7001, 24, 10, exclude={70014}, now=NOW))
        assert [m.id for m in rows] == [70012, 70011]
        assert rows[0].sent_at.tzinfo is not None
        assert rows[0].author_id == 70010

    def test_window_limit(self, db, sql_gateway):
        _seed(db, 7002, [(70021, 1), (70022, 2), (70023, 3)])
        rows = asyncio.run(sql_gateway.get_unanalyzed_messages(7002, 24, 2, now=NOW))
        assert [m.id for m in rows] == [70021, 70022]

    def test_recent_ignores_age(self, db, sql_gateway):
        _seed(db, 7003, [(70031, 60 * 48), (70032, 60 * 72)])
        assert asyncio.run(sql_gateway.get_unanalyzed_messages(7003, 24, 10, now=NOW)) == []
        rows = asyncio.run(sql_gateway.get_recent_messages(7003, 10, exclude=[70032]))
        assert [m.id for m in rows] == [70031]

    def test_active_public_guilds(self, db, sql_gateway):
        _seed(db, 7004)
        _seed(db, 7005, is_public=False)
        _seed(db, 7006, is_active=False)
        ids = {s.id for s in asyncio.run(sql_gateway.list_active_public_guilds())}
        assert 7004 in ids
        assert 7005 not in ids
        assert 7006 not in ids


class TestMessageScores:
    def test_write_scores(self, db, sql_gateway):
        _seed(db, 7010, [(70101, 5)])
        scores = ScoreResult(
            sentiment=0.4, toxicity=0.05, constructiveness=0.9, ai_likelihood=0.1,
            quality=0.8, engagement_potential=0.7, category=ActivityCategory.question,
            emotions=("helpful",), topics=("sql",),
        )
        asyncio.run(sql_gateway.write_message_scores(70101, scores, NOW))
        db.expire_all()
        row = db.get(Message, 70101)
        assert row.sentiment_score == 0.4
        assert row.engagement_potential == 0.7
        assert row.activity_category == ActivityCategory.question
        assert json.loads(row.emotions) == ["helpful"]
        assert json.loads(row.topics) == ["sql"]
        assert row.analyzed_at is not None

        record = asyncio.run(sql_gateway.get_recent_messages(7010, 1))[0]
        assert record.analyzed_at == NOW

    def test_window_read_includes_scored_messages(self, db, sql_gateway):
        _seed(db, 7011, [(70111, 5), (70112, 6)])
        scores = ScoreResult(0, 0, 0.5, 0, 0.5, 0.5)
        asyncio.run(sql_gateway.write_message_scores(70111, scores, NOW))
        rows = asyncio.run(sql_gateway.get_unanalyzed_messages(7011, 24, 10, now=NOW))
        assert [m.id for m in rows] == [70111, 70112]
        assert rows[0].analyzed_at == NOW
        assert rows[1].analyzed_at is None

    def test_unknown_message_is_ignored(self, sql_gateway):
        scores = ScoreResult(0, 0, 0.5, 0, 0.5, 0.5)
        asyncio.run(sql_gateway.write_message_scores(999999999, scores, NOW))


class TestGuildHealth:
    def test_upsert_creates_then_replaces(self, db, sql_gateway):
        _seed(db, 7020)
        asyncio.run(sql_gateway.upsert_guild_health(7020, _report(7020, NOW, health=0.7)))
        asyncio.run(sql_gateway.upsert_guild_health(7020, _report(7020, NOW + timedelta(hours=1), health=0.4)))
        db.expire_all()
        row = db.get(GuildHealth, 7020)
        assert row.health_score == 0.4
        assert row.messages_analyzed == 12
        assert json.loads(row.health_recommendations) == ["host an event"]

    def test_last_analyzed_never_moves_backwards(self, db, sql_gateway):
        _seed(db, 7021)
        later = NOW + timedelta(hours=2)
        asyncio.run(sql_gateway.upsert_guild_health(7021, _report(7021, later)))
        asyncio.run(sql_gateway.upsert_guild_health(7021, _report(7021, NOW)))
        asyncio.run(sql_gateway.touch_last_analyzed(7021, NOW - timedelta(days=1)))
        schedule = {s.id: s for s in asyncio.run(sql_gateway.list_active_public_guilds())}[7021]
        assert schedule.last_analyzed == later

    def test_touch_creates_neutral_row(self, db, sql_gateway):
        _seed(db, 7022)
        asyncio.run(sql_gateway.touch_last_analyzed(7022, NOW))
        db.expire_all()
        row = db.get(GuildHealth, 7022)
        assert row is not None
        assert row.health_score == 0.5
        assert row.activity_level == ActivityLevel.medium
        assert row.messages_analyzed == 0

    def test_touch_unknown_guild_is_noop(self, db, sql_gateway):
        asyncio.run(sql_gateway.touch_last_analyzed(7999, NOW))
        assert db.get(GuildHealth, 7999) is None


class TestUserMetrics:
    def test_increment_creates_member(self, db, sql_gateway):
        _seed(db, 7030)
        assert asyncio.run(sql_gateway.increment_user_guild_counter(7030, 70300)) == 1
        assert asyncio.run(sql_gateway.increment_user_guild_counter(7030, 70300, by=4)) == 5

    def test_set_score(self, db, sql_gateway):
        _seed(db, 7031)
        asyncio.run(sql_gateway.increment_user_guild_counter(7031, 70310, by=50))
        asyncio.run(sql_gateway.set_user_guild_score(7031, 70310, 0.5))
        member = (
            db.query(GuildMember)
            .filter(GuildMember.guild_id == 7031, GuildMember.user_id == 70310)
            .one()
        )
        assert member.messages_in_guild == 50
        assert member.guild_score == 0.5
        assert member.last_analyzed is not None


class TestFailures:
    def test_database_errors_become_persistence_error(self, tmp_path):
        broken = create_engine(f"sqlite:///{tmp_path}/missing/dir/db.sqlite")
        gateway = SqlPersistenceGateway(sessionmaker(bind=broken))
        with pytest.raises(PersistenceError) as exc:
            asyncio.run(gateway.list_active_public_guilds())
        assert exc.value.code == "PERSISTENCE_ERROR"
        assert exc.value.details["operation"] == "list_active_public_guilds"
