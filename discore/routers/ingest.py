"""
Ingest router (called by the Discord bot).

POST /ingest/guilds           upsert a guild
POST /ingest/messages         single message, may trigger an analysis run
POST /ingest/messages/batch   backfill of up to 100 messages
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from discore.core.deps import get_scheduler
from discore.core.errors import BatchTooLargeError
from discore.db.base import get_db
from discore.schemas.common import ErrorResponse
from discore.schemas.ingest import (
    BATCH_MAX_ITEMS,
    BatchItemResult,
    GuildSyncRequest,
    GuildSyncResponse,
    MessageBatchRequest,
    MessageBatchResponse,
    MessageIngestRequest,
    MessageIngestResponse,
)
from discore.services.ingest import (
    GuildEvent,
    MessageEvent,
    MessageIngestResult,
    ingest_message,
    ingest_message_batch,
    sync_guild,
)
from discore.services.scheduler import AnalysisScheduler

router = APIRouter(prefix="/ingest", tags=["ingest"])


def _to_event(req: MessageIngestRequest) -> MessageEvent:
    return MessageEvent(
        id=req.id,
        guild_id=req.guild_id,
        channel_id=req.channel_id,
        author_id=req.author_id,
        author_username=req.author_username,
        author_avatar=req.author_avatar,
        author_nickname=req.author_nickname,
        author_is_bot=req.author_is_bot,
        content=req.content,
        sent_at=req.sent_at,
        has_attachments=req.has_attachments,
        mention_count=req.mention_count,
        reply_to_id=req.reply_to_id,
    )


def _to_response(r: MessageIngestResult, dispatched: bool = False) -> MessageIngestResponse:
    return MessageIngestResponse(
        message_id=str(r.message_id),
        guild_id=str(r.guild_id),
        status=r.status.value,
        analysis_dispatched=dispatched,
    )


# ---------------------------------------------------------------------------
# POST /ingest/guilds
# ---------------------------------------------------------------------------

@router.post(
    "/guilds",
    response_model=GuildSyncResponse,
    summary="Create or refresh a guild",
)
def ingest_guild(payload: GuildSyncRequest, db: Session = Depends(get_db)):
    guild = sync_guild(GuildEvent(**payload.model_dump()), db)
    return GuildSyncResponse(
        id=str(guild.id),
        name=guild.name,
        member_count=guild.member_count,
        is_public=guild.is_public,
        is_active=guild.is_active,
    )


# ---------------------------------------------------------------------------
# POST /ingest/messages
# ---------------------------------------------------------------------------

@router.post(
    "/messages",
    response_model=MessageIngestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Ingest a single message",
    responses={404: {"model": ErrorResponse, "description": "The guild was never synced."}},
)
async def ingest_message_endpoint(
    payload: MessageIngestRequest,
    db: Session = Depends(get_db),
    scheduler: AnalysisScheduler = Depends(get_scheduler),
):
    """
    Store the message with its author and membership, then count it towards
    the guild's analysis trigger. Duplicates and bot messages are accepted
    but change nothing and do not count.
    """
    result = await run_in_threadpool(ingest_message, _to_event(payload), db)
    dispatched = False
    if result.created:
        dispatched = await scheduler.on_message_ingested(result.guild_id) is not None
    return _to_response(result, dispatched)


# ---------------------------------------------------------------------------
# POST /ingest/messages/batch
# ---------------------------------------------------------------------------

@router.post(
    "/messages/batch",
    response_model=MessageBatchResponse,
    status_code=status.HTTP_207_MULTI_STATUS,
    summary="Backfill up to 100 messages",
    responses={
        207: {"description": "Multi-status: check each item's `ok` field."},
        422: {"model": ErrorResponse, "description": "Empty list or more than 100 items."},
    },
)
async def ingest_message_batch_endpoint(
    payload: MessageBatchRequest,
    db: Session = Depends(get_db),
    scheduler: AnalysisScheduler = Depends(get_scheduler),
):
    """
    Each item is processed independently inside its own savepoint. Created
    messages count towards the backfill threshold instead of the live one.
    """
    if len(payload.items) > BATCH_MAX_ITEMS:
        raise BatchTooLargeError(max_items=BATCH_MAX_ITEMS, received=len(payload.items))

    events = [_to_event(item) for item in payload.items]
    raw_results = await run_in_threadpool(ingest_message_batch, events, db)

    dispatched: list[str] = []
    items: list[BatchItemResult] = []
    for r in raw_results:
        result: MessageIngestResult | None = r["result"]
        if r["ok"] and result is not None and result.created:
            task = await scheduler.on_message_ingested(result.guild_id, backfill=True)
            if task is not None:
                dispatched.append(str(result.guild_id))
        items.append(BatchItemResult(
            index=r["index"],
            ok=r["ok"],
            message=_to_response(result) if r["ok"] and result is not None else None,
            error=r["error"],
        ))

    succeeded = sum(1 for i in items if i.ok)
    return MessageBatchResponse(
        total=len(items),
        succeeded=succeeded,
        failed=len(items) - succeeded,
        analysis_dispatched=dispatched,
        items=items,
    )
