"""
Batch analyzer: scores a collected batch with bounded concurrency.

Every input message yields exactly one AnalysisResult, in input order. A
message is a failure when the scorer fell back to its neutral default, when
the scorer raised, or when its scores could not be stored. Failed messages
keep analyzed_at NULL and are picked up again on a later cycle; nothing is
retried inside a batch.

Back-off
--------
Consecutive failures hold the concurrency slot for base * 2**(n-1) seconds
(capped) before releasing it, which slows the whole batch down while the
model is struggling. One success resets the streak.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Optional

from discore.core.errors import PersistenceError
from discore.services.gateway import PersistenceGateway
from discore.services.records import AnalysisResult, MessageRecord
from discore.services.scorer import ScorerClient

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class _Backoff:
    def __init__(self, base: float, cap: float):
        self.base = base
        self.cap = cap
        self.failures = 0

    def reset(self) -> None:
        self.failures = 0

    def fail(self) -> float:
        self.failures += 1
        return min(self.cap, self.base * (2 ** (self.failures - 1)))


class BatchAnalyzer:
    def __init__(
        self,
        scorer: ScorerClient,
        gateway: PersistenceGateway,
        *,
        concurrency: int = 5,
        backoff_base: float = 0.5,
        backoff_max: float = 8.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        self._scorer = scorer
        self._gateway = gateway
        self.concurrency = concurrency
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._sleep = sleep
        self._clock = clock or _utcnow

    async def analyze(self, messages: list[MessageRecord]) -> list[AnalysisResult]:
        if not messages:
            return []
        semaphore = asyncio.Semaphore(self.concurrency)
        backoff = _Backoff(self.backoff_base, self.backoff_max)
        results = await asyncio.gather(
            *(self._analyze_one(m, semaphore, backoff) for m in messages)
        )
        failed = sum(1 for r in results if not r.ok)
        if failed:
            logger.warning("Batch finished with %d/%d failures", failed, len(results))
        return list(results)

    async def _analyze_one(
        self,
        message: MessageRecord,
        semaphore: asyncio.Semaphore,
        backoff: _Backoff,
    ) -> AnalysisResult:
        async with semaphore:
            result = await self._score(message)
            if result.ok:
                result = await self._store(result)

            if result.ok:
                backoff.reset()
            else:
                delay = backoff.fail()
                if delay > 0:
                    await self._sleep(delay)
            return result

    async def _score(self, message: MessageRecord) -> AnalysisResult:
        try:
            score = await self._scorer.score(message)
        except Exception as exc:
            logger.warning("Scorer raised for message %s: %r", message.id, exc)
            return AnalysisResult.failure(message, f"scorer error: {exc!r}")
        if score.fallback:
            return AnalysisResult.failure(message, "model output unavailable")
        return AnalysisResult.success(message, score)

    async def _store(self, result: AnalysisResult) -> AnalysisResult:
        try:
            await self._gateway.write_message_scores(
                result.message_id, result.score, self._clock()
            )
        except PersistenceError as exc:
            logger.warning("Could not store scores for message %s: %s", result.message_id, exc)
            return AnalysisResult.failure(result.message, "score write failed")
        return result
