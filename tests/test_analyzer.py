"""
Tests for the batch analyzer: ordering, failure isolation, concurrency cap,
back-off and immediate score writes.
"""
import asyncio

import pytest

from discore.services.analyzer import BatchAnalyzer
from discore.services.scorer import ScorerClient


class SleepRecorder:
    def __init__(self):
        self.delays = []

    async def __call__(self, seconds):
        self.delays.append(seconds)


def _analyze(gateway, model, messages, *, concurrency=5, sleep=None):
    recorder = sleep or SleepRecorder()
    analyzer = BatchAnalyzer(
        ScorerClient(model), gateway, concurrency=concurrency, sleep=recorder,
    )
    return asyncio.run(analyzer.analyze(messages)), recorder


def _by_content(scored, failing):
    def reply(prompt):
        for word in failing:
            if f'"{word}"' in prompt:
                return "not json"
        return scored()
    return reply


class TestAnalyze:
    def test_one_result_per_message_in_order(self, gateway_cls, model_cls, message):
        msgs = [message(i) for i in (3, 1, 2)]
        results, _ = _analyze(gateway_cls(msgs), model_cls(), msgs)
        assert [r.message_id for r in results] == [3, 1, 2]
        assert all(r.ok for r in results)

    def test_empty_batch(self, gateway_cls, model_cls):
        results, _ = _analyze(gateway_cls(), model_cls(), [])
        assert results == []

    def test_successes_written_immediately(self, gateway_cls, model_cls, message):
        msgs = [message(1), message(2)]
        gw = gateway_cls(msgs)
        _analyze(gw, model_cls(), msgs)
        assert set(gw.scores) == {1, 2}
        assert gw.messages[1].analyzed_at is not None

    def test_fallback_is_a_failure_and_not_written(self, gateway_cls, model_cls, message, scored):
        msgs = [message(1, content="good"), message(2, content="bad"), message(3, content="fine")]
        gw = gateway_cls(msgs)
        results, _ = _analyze(gw, model_cls(_by_content(scored, ["bad"])), msgs)
        assert [r.ok for r in results] == [True, False, True]
        assert results[1].error == "model output unavailable"
        assert 2 not in gw.scores
        assert gw.messages[2].analyzed_at is None

    def test_scorer_exception_isolated(self, gateway_cls, model_cls, message):
        class ExplodingScorer(ScorerClient):
            async def score(self, m):
                if m.id == 2:
                    raise RuntimeError("unexpected")
                return await super().score(m)

        msgs = [message(1), message(2), message(3)]
        gw = gateway_cls(msgs)
        analyzer = BatchAnalyzer(ExplodingScorer(model_cls()), gw, sleep=SleepRecorder())
        results = asyncio.run(analyzer.analyze(msgs))
        assert [r.ok for r in results] == [True, False, True]
        assert "unexpected" in results[1].error

    def test_write_failure_turns_into_failure(self, gateway_cls, model_cls, message):
        msgs = [message(1), message(2)]
        gw = gateway_cls(msgs)
        gw.fail_message_ids = {2}
        results, _ = _analyze(gw, model_cls(), msgs)
        assert [r.ok for r in results] == [True, False]
        assert results[1].error == "score write failed"


class TestConcurrency:
    def test_at_most_five_in_flight(self, gateway_cls, model_cls, message):
        msgs = [message(i) for i in range(1, 21)]
        model = model_cls(delay=0.01)
        _analyze(gateway_cls(msgs), model, msgs, concurrency=5)
        assert len(model.prompts) == 20
        assert model.max_in_flight == 5

    def test_custom_limit(self, gateway_cls, model_cls, message):
        msgs = [message(i) for i in range(1, 8)]
        model = model_cls(delay=0.01)
        _analyze(gateway_cls(msgs), model, msgs, concurrency=2)
        assert model.max_in_flight == 2

    def test_invalid_concurrency(self, gateway_cls, model_cls):
        with pytest.raises(ValueError):
            BatchAnalyzer(ScorerClient(model_cls()), gateway_cls(), concurrency=0)


class TestBackoff:
    def test_consecutive_failures_grow_exponentially(self, gateway_cls, model_cls, message):
        msgs = [message(i) for i in range(1, 7)]
        _, recorder = _analyze(gateway_cls(msgs), model_cls("garbage"), msgs, concurrency=1)
        assert recorder.delays == [0.5, 1.0, 2.0, 4.0, 8.0, 8.0]

    def test_success_resets_streak(self, gateway_cls, model_cls, message, scored):
        contents = ["bad1", "bad2", "ok", "bad3"]
        msgs = [message(i, content=c) for i, c in enumerate(contents, start=1)]
        model = model_cls(_by_content(scored, ["bad1", "bad2", "bad3"]))
        _, recorder = _analyze(gateway_cls(msgs), model, msgs, concurrency=1)
        assert recorder.delays == [0.5, 1.0, 0.5]

    def test_no_sleep_on_success(self, gateway_cls, model_cls, message):
        msgs = [message(i) for i in range(1, 4)]
        _, recorder = _analyze(gateway_cls(msgs), model_cls(), msgs)
        assert recorder.delays == []

    def test_failed_messages_not_retried(self, gateway_cls, model_cls, message):
        msgs = [message(i) for i in range(1, 4)]
        model = model_cls("garbage")
        _analyze(gateway_cls(msgs), model, msgs)
        assert len(model.prompts) == 3
