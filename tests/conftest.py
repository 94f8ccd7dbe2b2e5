"""
Shared pytest fixtures.

Uses a file-backed SQLite database so no Postgres is required for tests.
The environment is set before `discore` is imported because Settings and
the engine are built at import time.
"""
import asyncio
import json
import os
from datetime import datetime, timedelta, timezone

os.environ["DATABASE_URL"] = "sqlite:///./test_discore.db"
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["GEMINI_API_KEY"] = ""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from discore.core.deps import get_scheduler, get_user_analyzer
from discore.core.errors import PersistenceError
from discore.db.base import Base, get_db
from discore.main import app
from discore.services.gateway import SqlPersistenceGateway
from discore.services.records import GuildSchedule, MessageRecord
from discore.services.aggregator import HealthAggregator
from discore.services.analyzer import BatchAnalyzer
from discore.services.collector import BatchCollector
from discore.services.pipeline import AnalysisPipeline
from discore.services.scheduler import AnalysisScheduler
from discore.services.scorer import ScorerClient
from discore.services.user_analysis import UserAnalyzer

SQLITE_URL = "sqlite:///./test_discore.db"

engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------

def score_json(**overrides) -> str:
    """A well-formed model answer for the scorer."""
    payload = {
        "sentiment": 0.5,
        "toxicity": 0.1,
        "constructiveness": 0.8,
        "aiLikelihood": 0.2,
        "qualityScore": 0.7,
        "engagementPotential": 0.6,
        "activityCategory": "discussion",
        "emotions": ["helpful"],
        "topics": ["python"],
    }
    payload.update(overrides)
    return json.dumps(payload)


def user_json(**overrides) -> str:
    """A well-formed model answer for the user analyzer."""
    payload = {
        "userType": "contributor",
        "engagementLevel": "high",
        "influenceScore": 0.8,
        "riskLevel": "low",
        "specialties": ["technical_help"],
        "behaviorTags": ["helpful", "active"],
        "recommendedRole": "moderator",
        "overallScore": 0.85,
    }
    payload.update(overrides)
    return json.dumps(payload)


class ScriptedModel:
    """
    Stand-in for GeminiModelClient.

    `reply` is a str, an Exception, or a callable(prompt) returning either.
    Records every prompt and the peak number of concurrent calls.
    """

    def __init__(self, reply=None, delay: float = 0.0):
        self.reply = reply if reply is not None else score_json()
        self.delay = delay
        self.prompts: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> str:
        self.prompts.append(prompt)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            reply = self.reply(prompt) if callable(self.reply) else self.reply
            if isinstance(reply, BaseException):
                raise reply
            return reply
        finally:
            self.in_flight -= 1


class MemoryGateway:
    """In-memory PersistenceGateway with optional injected failures."""

    def __init__(self, messages=(), guilds=(), now: datetime = NOW):
        self.messages: dict[int, MessageRecord] = {m.id: m for m in messages}
        self.guilds: dict[int, datetime | None] = {g: None for g in guilds}
        self.now = now
        self.scores: dict[int, object] = {}
        self.health: dict[int, object] = {}
        self.counters: dict[tuple[int, int], int] = {}
        self.user_scores: dict[tuple[int, int], float] = {}
        self.touched: list[tuple[int, datetime]] = []
        self.fail_on: set[str] = set()
        self.fail_message_ids: set[int] = set()

    def _check(self, op: str):
        if op in self.fail_on:
            raise PersistenceError(op, "injected failure")

    def _ordered(self, guild_id, exclude, since=None):
        skip = set(exclude)
        rows = [
            m for m in self.messages.values()
            if m.guild_id == guild_id and m.id not in skip
            and (since is None or m.sent_at >= since)
        ]
        return sorted(rows, key=lambda m: (m.sent_at, m.id), reverse=True)

    async def get_unanalyzed_messages(self, guild_id, window_hours, limit, exclude=()):
        self._check("get_unanalyzed_messages")
        since = self.now - timedelta(hours=window_hours)
        return self._ordered(guild_id, exclude, since)[:limit]

    async def get_recent_messages(self, guild_id, limit, exclude=()):
        self._check("get_recent_messages")
        return self._ordered(guild_id, exclude)[:limit]

    async def write_message_scores(self, message_id, scores, analyzed_at):
        self._check("write_message_scores")
        if message_id in self.fail_message_ids:
            raise PersistenceError("write_message_scores", "injected failure")
        self.scores[message_id] = scores
        m = self.messages.get(message_id)
        if m is not None:
            self.messages[message_id] = MessageRecord(
                id=m.id, guild_id=m.guild_id, author_id=m.author_id, content=m.content,
                sent_at=m.sent_at, has_attachments=m.has_attachments,
                mention_count=m.mention_count, reply_to_id=m.reply_to_id,
                analyzed_at=analyzed_at,
            )

    async def upsert_guild_health(self, guild_id, report):
        self._check("upsert_guild_health")
        self.health[guild_id] = report

    async def increment_user_guild_counter(self, guild_id, user_id, by=1):
        self._check("increment_user_guild_counter")
        key = (guild_id, user_id)
        self.counters[key] = self.counters.get(key, 0) + by
        return self.counters[key]

    async def set_user_guild_score(self, guild_id, user_id, score):
        self._check("set_user_guild_score")
        self.user_scores[(guild_id, user_id)] = score

    async def list_active_public_guilds(self):
        self._check("list_active_public_guilds")
        return [GuildSchedule(id=g, last_analyzed=last) for g, last in sorted(self.guilds.items())]

    async def touch_last_analyzed(self, guild_id, at):
        self._check("touch_last_analyzed")
        self.touched.append((guild_id, at))
        last = self.guilds.get(guild_id)
        if last is None or at > last:
            self.guilds[guild_id] = at


def make_message(id, guild_id=1, author_id=100, content="hello there", minutes_ago=5,
                 analyzed_at=None, **kw) -> MessageRecord:
    return MessageRecord(
        id=id,
        guild_id=guild_id,
        author_id=author_id,
        content=content,
        sent_at=NOW - timedelta(minutes=minutes_ago),
        analyzed_at=analyzed_at,
        **kw,
    )


async def _no_sleep(_seconds: float) -> None:
    return None


def build_test_pipeline(gateway, model, *, batch_size=50, concurrency=5, sleep=_no_sleep,
                        clock=lambda: NOW):
    scorer = ScorerClient(model)
    return AnalysisPipeline(
        collector=BatchCollector(gateway, window_hours=24),
        analyzer=BatchAnalyzer(scorer, gateway, concurrency=concurrency, sleep=sleep, clock=clock),
        aggregator=HealthAggregator(gateway, model, clock=clock),
        batch_size=batch_size,
    )


# ---------------------------------------------------------------------------
# Database / HTTP fixtures
# ---------------------------------------------------------------------------

def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def sql_gateway():
    return SqlPersistenceGateway(TestingSessionLocal)


@pytest.fixture()
def api_model():
    return ScriptedModel()


@pytest.fixture()
def api_scheduler(sql_gateway, api_model):
    pipeline = build_test_pipeline(sql_gateway, api_model, clock=None)
    return AnalysisScheduler(pipeline, sql_gateway, queue_threshold=3, backfill_threshold=5)


@pytest.fixture()
def client(db, api_scheduler, api_model):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_scheduler] = lambda: api_scheduler
    app.dependency_overrides[get_user_analyzer] = lambda: UserAnalyzer(api_model)
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def model_cls():
    return ScriptedModel


@pytest.fixture()
def gateway_cls():
    return MemoryGateway


@pytest.fixture()
def message():
    return make_message


@pytest.fixture()
def scored():
    return score_json


@pytest.fixture()
def pipeline_factory():
    return build_test_pipeline


@pytest.fixture()
def user_answer():
    return user_json
