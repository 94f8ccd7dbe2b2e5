"""
Ingest request / response schemas (bot -> API).

Guild sync:     POST /ingest/guilds          -> GuildSyncRequest    -> GuildSyncResponse
Message:        POST /ingest/messages        -> MessageIngestRequest -> MessageIngestResponse
Backfill:       POST /ingest/messages/batch  -> MessageBatchRequest -> MessageBatchResponse
"""
from __future__ import annotations

from datetime import datetime
from typing import Annotated, Optional

from pydantic import BaseModel, Field, field_validator

from discore.schemas.common import Snowflake, SnowflakeStr

BATCH_MAX_ITEMS = 100


# ---------------------------------------------------------------------------
# Guilds
# ---------------------------------------------------------------------------

class GuildSyncRequest(BaseModel):
    """Current state of a guild as seen by the bot."""
    id: Snowflake
    name: Annotated[str, Field(min_length=1, max_length=100)]
    icon: Optional[str] = Field(default=None, max_length=255)
    description: Optional[str] = None
    member_count: int = Field(default=0, ge=0)
    owner_id: Optional[Snowflake] = None
    is_public: Optional[bool] = Field(
        default=None,
        description="Leave out to keep the stored visibility (new guilds default to public).",
    )
    is_active: bool = True


class GuildSyncResponse(BaseModel):
    id: SnowflakeStr
    name: str
    member_count: int
    is_public: bool
    is_active: bool


class GuildPrivacyRequest(BaseModel):
    is_public: bool
    requested_by: Snowflake = Field(description="Discord id of the user asking; must own the guild.")


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

class MessageIngestRequest(BaseModel):
    """A single Discord message."""
    id: Snowflake
    guild_id: Snowflake
    channel_id: Snowflake
    author_id: Snowflake
    author_username: Annotated[str, Field(min_length=1, max_length=64)]
    author_avatar: Optional[str] = Field(default=None, max_length=255)
    author_nickname: Optional[str] = Field(default=None, max_length=32)
    author_is_bot: bool = False
    content: str = Field(default="", max_length=4000)
    sent_at: datetime = Field(examples=["2026-10-19T14:03:00Z"])
    has_attachments: bool = False
    mention_count: int = Field(default=0, ge=0)
    reply_to_id: Optional[Snowflake] = None

    @field_validator("content", mode="before")
    @classmethod
    def strip_content(cls, v):
        return v.strip() if isinstance(v, str) else v


class MessageIngestResponse(BaseModel):
    message_id: SnowflakeStr
    guild_id: SnowflakeStr
    status: str = Field(description="created | duplicate | ignored")
    analysis_dispatched: bool = Field(
        default=False, description="True when this message pushed the guild over its trigger threshold."
    )


class MessageBatchRequest(BaseModel):
    """Bulk backfill. Each item is independent; a failure does not cancel the others."""
    # The upper bound is enforced by the router so it can answer BATCH_TOO_LARGE.
    items: Annotated[list[MessageIngestRequest], Field(
        min_length=1,
        description=f"Messages to ingest (1-{BATCH_MAX_ITEMS} items).",
    )]


class BatchItemResult(BaseModel):
    index: int = Field(description="Zero-based position in the request items list.")
    ok: bool
    message: Optional[MessageIngestResponse] = None
    error: Optional[str] = None


class MessageBatchResponse(BaseModel):
    total: int
    succeeded: int
    failed: int
    analysis_dispatched: list[SnowflakeStr] = Field(
        default_factory=list, description="Guilds whose analysis this batch triggered."
    )
    items: list[BatchItemResult]
