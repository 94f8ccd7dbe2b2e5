"""
Batch collector: picks the messages one analysis pass will score.
"""
from __future__ import annotations

import logging
from collections.abc import Collection

from discore.services.gateway import PersistenceGateway
from discore.services.records import MessageRecord

logger = logging.getLogger(__name__)


class BatchCollector:
    def __init__(self, gateway: PersistenceGateway, *, window_hours: int = 24):
        self._gateway = gateway
        self.window_hours = window_hours

    async def collect(
        self,
        guild_id: int,
        max_count: int,
        exclude: Collection[int] = (),
    ) -> list[MessageRecord]:
        """
        Newest-first messages from the recent window, at most `max_count`.

        When the window is empty, falls back to the newest messages of any
        age so a quiet guild still gets a reading. Ids in `exclude` are
        skipped by both queries.
        """
        if max_count <= 0:
            return []

        messages = await self._gateway.get_unanalyzed_messages(
            guild_id, self.window_hours, max_count, exclude
        )
        if not messages:
            messages = await self._gateway.get_recent_messages(guild_id, max_count, exclude)
            if messages:
                logger.info(
                    "Guild %s: window of %sh empty, using %d older messages",
                    guild_id, self.window_hours, len(messages),
                )

        return _dedupe(messages, exclude)[:max_count]


def _dedupe(messages: list[MessageRecord], exclude: Collection[int]) -> list[MessageRecord]:
    skip = set(exclude)
    seen: set[int] = set()
    out: list[MessageRecord] = []
    for m in messages:
        if m.id in seen or m.id in skip:
            continue
        seen.add(m.id)
        out.append(m)
    return out
