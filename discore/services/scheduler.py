"""
Analysis scheduler: decides when a guild's pipeline runs.

Per-guild states
----------------
  eligible    no run in flight and outside the cooldown
  cooldown    last_analyzed is less than `cooldown` ago (hourly tick skips it)
  analyzing   a run is in flight; every other trigger is dropped

Triggers
--------
  tick()                         hourly: every active public guild out of
                                 cooldown starts a new cycle and runs
  on_message_ingested(guild_id)  counts messages; at the threshold a run is
                                 dispatched immediately, cooldown ignored,
                                 skipping messages already scored this cycle
  run_analysis(guild_id)         manual: full window, same single-flight rule

All bookkeeping lives on the event loop and is check-and-set without an
await in between, so two triggers can never both start a run.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable, Collection
from datetime import datetime, timedelta, timezone
from typing import Optional

from discore.core.config import Settings
from discore.core.errors import PersistenceError
from discore.services.gateway import PersistenceGateway, as_utc
from discore.services.pipeline import AnalysisPipeline
from discore.services.records import GuildHealthReport

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class GuildState(str, enum.Enum):
    eligible = "eligible"
    cooldown = "cooldown"
    analyzing = "analyzing"


class AnalysisScheduler:
    def __init__(
        self,
        pipeline: AnalysisPipeline,
        gateway: PersistenceGateway,
        *,
        cooldown: timedelta = timedelta(minutes=55),
        queue_threshold: int = 10,
        backfill_threshold: int = 50,
        interval_seconds: float = 3600,
        cycle_exclusion_limit: int = 5000,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._pipeline = pipeline
        self._gateway = gateway
        self.cooldown = cooldown
        self.queue_threshold = queue_threshold
        self.backfill_threshold = backfill_threshold
        self.interval_seconds = interval_seconds
        self.cycle_exclusion_limit = cycle_exclusion_limit
        self._clock = clock or _utcnow

        self._analyzing: set[int] = set()
        self._pending: dict[int, int] = {}
        # Message ids scored since the guild's current cycle began.
        self._cycle_seen: dict[int, set[int]] = {}
        self._cycle_started: dict[int, datetime] = {}
        self._tasks: set[asyncio.Task] = set()
        self._loop_task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(
        cls, settings: Settings, pipeline: AnalysisPipeline, gateway: PersistenceGateway
    ) -> "AnalysisScheduler":
        return cls(
            pipeline,
            gateway,
            cooldown=timedelta(minutes=settings.SCHEDULER_COOLDOWN_MINUTES),
            queue_threshold=settings.QUEUE_TRIGGER_THRESHOLD,
            backfill_threshold=settings.BACKFILL_TRIGGER_THRESHOLD,
            interval_seconds=settings.SCHEDULER_INTERVAL_SECONDS,
            cycle_exclusion_limit=settings.CYCLE_EXCLUSION_LIMIT,
        )

    # -- introspection ------------------------------------------------------

    def is_analyzing(self, guild_id: int) -> bool:
        return guild_id in self._analyzing

    def pending_count(self, guild_id: int) -> int:
        return self._pending.get(guild_id, 0)

    def cycle_exclusion_count(self, guild_id: int) -> int:
        return len(self._cycle_seen.get(guild_id, ()))

    def in_cooldown(self, last_analyzed: Optional[datetime], now: datetime) -> bool:
        last = as_utc(last_analyzed)
        return last is not None and now - last < self.cooldown

    def state_of(
        self,
        guild_id: int,
        last_analyzed: Optional[datetime] = None,
        now: Optional[datetime] = None,
    ) -> GuildState:
        if guild_id in self._analyzing:
            return GuildState.analyzing
        if self.in_cooldown(last_analyzed, now or self._clock()):
            return GuildState.cooldown
        return GuildState.eligible

    # -- single flight ------------------------------------------------------

    def _try_begin(self, guild_id: int) -> bool:
        if guild_id in self._analyzing:
            return False
        self._analyzing.add(guild_id)
        self._pending[guild_id] = 0
        return True

    # -- cycles -------------------------------------------------------------

    def _begin_cycle(self, guild_id: int, now: datetime) -> None:
        self._cycle_started[guild_id] = now
        self._cycle_seen.pop(guild_id, None)

    def _cycle_exclusions(self, guild_id: int, now: datetime) -> frozenset[int]:
        """
        Ids already scored this cycle. Guilds the hourly tick never visits
        (private, inactive) roll over to a new cycle once the current one is
        an interval old or holds `cycle_exclusion_limit` ids.
        """
        started = self._cycle_started.get(guild_id)
        seen = self._cycle_seen.get(guild_id, set())
        if (
            started is None
            or now - started >= timedelta(seconds=self.interval_seconds)
            or len(seen) >= self.cycle_exclusion_limit
        ):
            self._begin_cycle(guild_id, now)
            return frozenset()
        return frozenset(seen)

    async def _execute(self, guild_id: int, exclude: Collection[int]) -> GuildHealthReport:
        """Run the pipeline for a guild already marked as analyzing."""
        try:
            report = await self._pipeline.run_analysis(guild_id, exclude)
            self._cycle_seen.setdefault(guild_id, set()).update(report.analyzed_message_ids)
            return report
        finally:
            try:
                await self._gateway.touch_last_analyzed(guild_id, self._clock())
            except PersistenceError as exc:
                logger.error("Guild %s: last_analyzed not stamped: %s", guild_id, exc)
            self._analyzing.discard(guild_id)

    async def _run_logged(
        self, guild_id: int, exclude: Collection[int]
    ) -> Optional[GuildHealthReport]:
        try:
            return await self._execute(guild_id, exclude)
        except Exception:
            logger.exception("Guild %s: analysis run failed", guild_id)
            return None

    # -- triggers -----------------------------------------------------------

    async def run_analysis(self, guild_id: int) -> Optional[GuildHealthReport]:
        """Full-window run. Returns None when a run is already in flight."""
        if not self._try_begin(guild_id):
            logger.info("Guild %s: analysis already in progress", guild_id)
            return None
        return await self._execute(guild_id, ())

    async def on_message_ingested(
        self, guild_id: int, *, backfill: bool = False
    ) -> Optional[asyncio.Task]:
        count = self._pending.get(guild_id, 0) + 1
        self._pending[guild_id] = count
        threshold = self.backfill_threshold if backfill else self.queue_threshold
        if count < threshold:
            return None
        if not self._try_begin(guild_id):
            logger.debug("Guild %s: threshold reached while analyzing, dropped", guild_id)
            return None

        exclude = self._cycle_exclusions(guild_id, self._clock())
        logger.info("Guild %s: %d new messages, dispatching analysis", guild_id, count)
        task = asyncio.create_task(self._run_logged(guild_id, exclude))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def tick(self, now: Optional[datetime] = None) -> list[int]:
        """One hourly pass. Returns the guild ids that were run."""
        now = now or self._clock()
        try:
            schedules = await self._gateway.list_active_public_guilds()
        except PersistenceError as exc:
            logger.error("Scheduler tick skipped: %s", exc)
            return []

        due: list[int] = []
        for schedule in schedules:
            if self.in_cooldown(schedule.last_analyzed, now):
                continue
            if not self._try_begin(schedule.id):
                continue
            self._begin_cycle(schedule.id, now)
            due.append(schedule.id)

        if due:
            logger.info("Scheduler tick: analyzing %d guild(s)", len(due))
            await asyncio.gather(*(self._run_logged(gid, ()) for gid in due))
        return due

    # -- lifecycle ----------------------------------------------------------

    def start(self) -> None:
        if self._loop_task is not None and not self._loop_task.done():
            return
        self._loop_task = asyncio.create_task(self._periodic())
        logger.info("Scheduler started, interval %ss", self.interval_seconds)

    async def _periodic(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick crashed")

    async def stop(self) -> None:
        pending = [t for t in self._tasks if not t.done()]
        if self._loop_task is not None:
            pending.append(self._loop_task)
            self._loop_task = None
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("Scheduler stopped")
