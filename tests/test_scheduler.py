"""
Tests for the analysis scheduler.

Covered:
  - hourly tick honours the 55 minute cooldown (10 min skips, 56 min runs)
  - last_analyzed is stamped after every run, failed runs included
  - single flight: overlapping triggers never start a second run
  - message threshold (live and backfill) and counter reset rules
  - event-triggered runs skip messages already scored this cycle
  - cycles roll over for guilds the tick never visits, and at a size cap
  - periodic loop start / stop
"""
import asyncio
from datetime import datetime, timedelta, timezone

from discore.services.scheduler import AnalysisScheduler, GuildState

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def _scheduler(pipeline, gateway, **kw):
    kw.setdefault("clock", lambda: NOW)
    return AnalysisScheduler(pipeline, gateway, **kw)


class FailingPipeline:
    def __init__(self):
        self.calls = 0

    async def run_analysis(self, guild_id, exclude=()):
        self.calls += 1
        raise RuntimeError("pipeline exploded")


class TestTick:
    def test_recently_analyzed_guild_skipped(self, gateway_cls, model_cls, message, pipeline_factory):
        gw = gateway_cls([message(1)], guilds=[1])
        gw.guilds[1] = NOW - timedelta(minutes=10)
        model = model_cls()
        sched = _scheduler(pipeline_factory(gw, model), gw)
        assert asyncio.run(sched.tick()) == []
        assert model.prompts == []

    def test_guild_out_of_cooldown_runs(self, gateway_cls, model_cls, message, pipeline_factory):
        gw = gateway_cls([message(1)], guilds=[1])
        gw.guilds[1] = NOW - timedelta(minutes=56)
        sched = _scheduler(pipeline_factory(gw, model_cls()), gw)
        assert asyncio.run(sched.tick()) == [1]
        assert 1 in gw.health
        assert gw.guilds[1] == NOW

    def test_never_analyzed_guild_runs(self, gateway_cls, model_cls, message, pipeline_factory):
        gw = gateway_cls([message(1)], guilds=[1])
        sched = _scheduler(pipeline_factory(gw, model_cls()), gw)
        assert asyncio.run(sched.tick()) == [1]

    def test_failed_run_still_stamps_last_analyzed(self, gateway_cls):
        gw = gateway_cls(guilds=[1])
        pipeline = FailingPipeline()
        sched = _scheduler(pipeline, gw)
        assert asyncio.run(sched.tick()) == [1]
        assert pipeline.calls == 1
        assert gw.touched == [(1, NOW)]
        assert not sched.is_analyzing(1)

    def test_empty_guild_stamped_without_health(self, gateway_cls, model_cls, pipeline_factory):
        gw = gateway_cls(guilds=[1])
        sched = _scheduler(pipeline_factory(gw, model_cls()), gw)
        asyncio.run(sched.tick())
        assert gw.health == {}
        assert gw.touched == [(1, NOW)]

    def test_guilds_run_concurrently(self, gateway_cls, model_cls, message, pipeline_factory):
        gw = gateway_cls([message(1, guild_id=1), message(2, guild_id=2)], guilds=[1, 2])
        model = model_cls(delay=0.02)
        sched = _scheduler(pipeline_factory(gw, model), gw)
        assert asyncio.run(sched.tick()) == [1, 2]
        assert model.max_in_flight >= 2

    def test_listing_failure_skips_tick(self, gateway_cls, model_cls, pipeline_factory):
        gw = gateway_cls(guilds=[1])
        gw.fail_on = {"list_active_public_guilds"}
        sched = _scheduler(pipeline_factory(gw, model_cls()), gw)
        assert asyncio.run(sched.tick()) == []

    def test_state_of(self, gateway_cls, model_cls, pipeline_factory):
        gw = gateway_cls()
        sched = _scheduler(pipeline_factory(gw, model_cls()), gw)
        assert sched.state_of(1, None, NOW) == GuildState.eligible
        assert sched.state_of(1, NOW - timedelta(minutes=5), NOW) == GuildState.cooldown
        assert sched.state_of(1, NOW - timedelta(minutes=55), NOW) == GuildState.eligible


class TestSingleFlight:
    def test_second_manual_run_rejected(self, gateway_cls, model_cls, message, pipeline_factory):
        gw = gateway_cls([message(1), message(2)], guilds=[1])
        model = model_cls(delay=0.02)
        sched = _scheduler(pipeline_factory(gw, model), gw)

        async def main():
            return await asyncio.gather(sched.run_analysis(1), sched.run_analysis(1))

        first, second = asyncio.run(main())
        assert first is not None
        assert second is None
        # Two score calls for one batch, nothing from a second run.
        score_prompts = [p for p in model.prompts if p.startswith("Analyze this Discord message")]
        assert len(score_prompts) == 2

    def test_tick_skips_guild_already_analyzing(self, gateway_cls, model_cls, message, pipeline_factory):
        gw = gateway_cls([message(1)], guilds=[1])
        model = model_cls(delay=0.02)
        sched = _scheduler(pipeline_factory(gw, model), gw)

        async def main():
            manual = asyncio.create_task(sched.run_analysis(1))
            await asyncio.sleep(0)
            ticked = await sched.tick()
            await manual
            return ticked

        assert asyncio.run(main()) == []

    def test_threshold_while_analyzing_is_dropped(self, gateway_cls, model_cls, message, pipeline_factory):
        gw = gateway_cls([message(1)], guilds=[1])
        model = model_cls(delay=0.02)
        sched = _scheduler(pipeline_factory(gw, model), gw, queue_threshold=3)

        async def main():
            manual = asyncio.create_task(sched.run_analysis(1))
            await asyncio.sleep(0)
            dispatched = [await sched.on_message_ingested(1) for _ in range(5)]
            await manual
            return dispatched

        assert asyncio.run(main()) == [None] * 5
        assert sched.pending_count(1) == 5

    def test_guild_released_after_run(self, gateway_cls, model_cls, message, pipeline_factory):
        gw = gateway_cls([message(1)], guilds=[1])
        sched = _scheduler(pipeline_factory(gw, model_cls()), gw)
        asyncio.run(sched.run_analysis(1))
        assert not sched.is_analyzing(1)
        assert asyncio.run(sched.run_analysis(1)) is not None


class TestMessageTrigger:
    def test_below_threshold_no_run(self, gateway_cls, model_cls, pipeline_factory):
        gw = gateway_cls(guilds=[1])
        sched = _scheduler(pipeline_factory(gw, model_cls()), gw)

        async def main():
            return [await sched.on_message_ingested(1) for _ in range(9)]

        assert asyncio.run(main()) == [None] * 9
        assert sched.pending_count(1) == 9

    def test_tenth_message_dispatches_and_resets(self, gateway_cls, model_cls, message, pipeline_factory):
        gw = gateway_cls([message(1)], guilds=[1])
        gw.guilds[1] = NOW - timedelta(minutes=1)  # cooldown does not apply to triggers
        sched = _scheduler(pipeline_factory(gw, model_cls()), gw)

        async def main():
            for _ in range(9):
                await sched.on_message_ingested(1)
            task = await sched.on_message_ingested(1)
            assert task is not None
            assert sched.pending_count(1) == 0
            return await task

        report = asyncio.run(main())
        assert report.messages_analyzed == 1

    def test_backfill_threshold(self, gateway_cls, model_cls, pipeline_factory):
        gw = gateway_cls(guilds=[1])
        sched = _scheduler(pipeline_factory(gw, model_cls()), gw)

        async def main():
            results = [await sched.on_message_ingested(1, backfill=True) for _ in range(50)]
            await asyncio.gather(*(t for t in results if t is not None))
            return results

        results = asyncio.run(main())
        assert all(r is None for r in results[:49])
        assert results[49] is not None

    def test_counters_are_per_guild(self, gateway_cls, model_cls, pipeline_factory):
        gw = gateway_cls(guilds=[1, 2])
        sched = _scheduler(pipeline_factory(gw, model_cls()), gw)

        async def main():
            for _ in range(4):
                await sched.on_message_ingested(1)
            await sched.on_message_ingested(2)

        asyncio.run(main())
        assert sched.pending_count(1) == 4
        assert sched.pending_count(2) == 1

    def test_triggered_run_skips_messages_scored_this_cycle(
        self, gateway_cls, model_cls, message, pipeline_factory,
    ):
        gw = gateway_cls([message(1, content="first"), message(2, content="second")], guilds=[1])
        model = model_cls()
        sched = _scheduler(pipeline_factory(gw, model), gw, queue_threshold=1)

        async def main():
            await sched.tick()
            gw.messages[3] = message(3, content="third", minutes_ago=1)
            task = await sched.on_message_ingested(1)
            return await task

        report = asyncio.run(main())
        assert report.analyzed_message_ids == (3,)
        score_prompts = [p for p in model.prompts if p.startswith("Analyze this Discord message")]
        assert sum('"third"' in p for p in score_prompts) == 1
        assert sum('"first"' in p for p in score_prompts) == 1

    def test_manual_run_rescores_full_window(self, gateway_cls, model_cls, message, pipeline_factory):
        gw = gateway_cls([message(1), message(2)], guilds=[1])
        sched = _scheduler(pipeline_factory(gw, model_cls()), gw)
        first = asyncio.run(sched.run_analysis(1))
        second = asyncio.run(sched.run_analysis(1))
        assert second.analyzed_message_ids == first.analyzed_message_ids == (2, 1)
        assert second.health_score == first.health_score


class TestCycleExclusions:
    def test_guild_outside_tick_rolls_over_each_interval(
        self, gateway_cls, model_cls, message, pipeline_factory,
    ):
        # Guild 7 is private: tick() never lists it, so it never starts a cycle there.
        gw = gateway_cls()
        clock = [NOW]
        sched = _scheduler(
            pipeline_factory(gw, model_cls()), gw, queue_threshold=1, clock=lambda: clock[0]
        )
        sizes = []

        async def main():
            for hour in range(48):
                clock[0] = gw.now = NOW + timedelta(hours=hour)
                for i in range(2):
                    mid = hour * 2 + i + 1
                    gw.messages[mid] = message(mid, guild_id=7, minutes_ago=-(hour * 60 + i))
                    task = await sched.on_message_ingested(7)
                    await task
                assert await sched.tick() == []
                sizes.append(sched.cycle_exclusion_count(7))

        asyncio.run(main())
        # At most one 24h window of ids (two per hour, both ends inclusive).
        assert max(sizes) <= 50
        assert len(gw.messages) == 96

    def test_cycle_rolls_over_at_limit(self, gateway_cls, model_cls, message, pipeline_factory):
        gw = gateway_cls([message(n, guild_id=7, minutes_ago=n) for n in range(1, 6)])
        sched = _scheduler(
            pipeline_factory(gw, model_cls(), batch_size=2), gw,
            queue_threshold=1, cycle_exclusion_limit=3,
        )

        async def main():
            reports = []
            for _ in range(3):
                task = await sched.on_message_ingested(7)
                reports.append(await task)
            return reports

        reports = asyncio.run(main())
        assert [r.analyzed_message_ids for r in reports] == [(1, 2), (3, 4), (1, 2)]
        assert sched.cycle_exclusion_count(7) == 2


class TestLifecycle:
    def test_periodic_loop_ticks_and_stops(self, gateway_cls, model_cls, message, pipeline_factory):
        gw = gateway_cls([message(1)], guilds=[1])
        sched = _scheduler(pipeline_factory(gw, model_cls()), gw, interval_seconds=0.01)

        async def main():
            sched.start()
            await asyncio.sleep(0.1)
            await sched.stop()

        asyncio.run(main())
        assert gw.touched
        assert gw.touched[0][0] == 1
