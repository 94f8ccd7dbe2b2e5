"""
Scorer client: one message in, one bounded ScoreResult out.

Pipeline per call
-----------------
  1. build_score_prompt(message)     deterministic prompt (content + context)
  2. model.generate(...)             one outbound call, no retries
  3. decode_score(raw)               -> Parsed | Unparseable
  4. clamp every numeric field into its documented range

Any failure in 2 or 3 (network, timeout, non-2xx, no JSON, bad JSON, missing
or non-numeric keys) returns DEFAULT_SCORE with fallback=True. Nothing is
raised past score(); the reason only goes to the log.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, ValidationError, field_validator

from discore.models.message import ActivityCategory
from discore.services.model_client import ModelClient
from discore.services.records import MessageRecord, ScoreResult

logger = logging.getLogger(__name__)


DEFAULT_SCORE = ScoreResult(
    sentiment=0.0,
    toxicity=0.0,
    constructiveness=0.5,
    ai_likelihood=0.0,
    quality=0.5,
    engagement_potential=0.5,
    category=ActivityCategory.casual,
    emotions=("neutral",),
    topics=(),
    fallback=True,
)

_MAX_CONTENT_CHARS = 2000
_MAX_LIST_ITEMS = 10


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------

_SCORE_TEMPLATE = """Analyze this Discord message and answer STRICTLY with one JSON object.

MESSAGE: {content}

CONTEXT:
- Has attachments: {has_attachments}
- Mention count: {mention_count}
- Is a reply: {is_reply}

SCORE:
1. sentiment: -1 (negative) .. 0 (neutral) .. 1 (positive)
2. toxicity: 0 (not toxic) .. 1 (very toxic)
3. constructiveness: 0 .. 1
4. aiLikelihood: probability the text is AI-generated, 0 .. 1
5. qualityScore: overall message quality, 0 .. 1
6. engagementPotential: potential to drive engagement, 0 .. 1
7. activityCategory: one of "discussion", "question", "announcement", "casual", "support", "spam"
8. emotions: array drawn from ["happy", "angry", "sad", "excited", "frustrated", "helpful", "neutral"]
9. topics: array of short topic strings

RETURN ONLY JSON:
{{
  "sentiment": 0.5,
  "toxicity": 0.1,
  "constructiveness": 0.8,
  "aiLikelihood": 0.2,
  "qualityScore": 0.75,
  "engagementPotential": 0.6,
  "activityCategory": "discussion",
  "emotions": ["helpful", "neutral"],
  "topics": ["databases", "question"]
}}"""


def build_score_prompt(message: MessageRecord) -> str:
    """Same message in, same prompt out. Content is JSON-quoted."""
    content = (message.content or "")[:_MAX_CONTENT_CHARS]
    return _SCORE_TEMPLATE.format(
        content=json.dumps(content, ensure_ascii=False),
        has_attachments=str(message.has_attachments).lower(),
        mention_count=message.mention_count,
        is_reply=str(message.is_reply).lower(),
    )


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------

def find_json_object(text: str) -> Optional[dict[str, Any]]:
    """
    Return the first JSON object embedded in `text`, or None.
    Handles prose, markdown fences and trailing chatter around the object.
    """
    if not text:
        return None
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except (ValueError, RecursionError):
            # RecursionError: nesting deeper than the interpreter stack allows.
            start = text.find("{", start + 1)
            continue
        if isinstance(obj, dict):
            return obj
        start = text.find("{", start + 1)
    return None


def _require_number(value: Any) -> Any:
    # bool is an int subclass; "0.5" strings are not numbers either.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError("expected a number")
    return value


def _strings(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v.strip() for v in value if isinstance(v, str) and v.strip()][:_MAX_LIST_ITEMS]


Number = Annotated[float, BeforeValidator(_require_number)]


class ModelScorePayload(BaseModel):
    """Schema the model's JSON must satisfy before any value is trusted."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    sentiment: Number = Field(allow_inf_nan=False)
    toxicity: Number = Field(allow_inf_nan=False)
    constructiveness: Number = Field(allow_inf_nan=False)
    ai_likelihood: Number = Field(alias="aiLikelihood", allow_inf_nan=False)
    quality: Number = Field(alias="qualityScore", allow_inf_nan=False)
    engagement_potential: Number = Field(alias="engagementPotential", allow_inf_nan=False)
    activity_category: str = Field(default="casual", alias="activityCategory")
    emotions: list[str] = Field(default_factory=lambda: ["neutral"])
    topics: list[str] = Field(default_factory=list)

    @field_validator("activity_category", mode="before")
    @classmethod
    def _category_text(cls, v: Any) -> str:
        return v.strip().lower() if isinstance(v, str) else "casual"

    @field_validator("emotions", mode="before")
    @classmethod
    def _emotion_list(cls, v: Any) -> list[str]:
        return _strings(v) or ["neutral"]

    @field_validator("topics", mode="before")
    @classmethod
    def _topic_list(cls, v: Any) -> list[str]:
        return _strings(v)


@dataclass(frozen=True)
class Parsed:
    result: ScoreResult


@dataclass(frozen=True)
class Unparseable:
    reason: str


DecodeResult = Union[Parsed, Unparseable]


def clamp(value: float, low: float, high: float) -> float:
    return min(max(float(value), low), high)


def _category(raw: str) -> ActivityCategory:
    try:
        return ActivityCategory(raw)
    except ValueError:
        return ActivityCategory.other


def decode_score(raw: str) -> DecodeResult:
    """Locate, validate and clamp the model's answer."""
    obj = find_json_object(raw)
    if obj is None:
        return Unparseable("no JSON object in model output")
    try:
        payload = ModelScorePayload.model_validate(obj)
    except ValidationError as exc:
        fields = sorted({".".join(str(p) for p in e["loc"]) for e in exc.errors()})
        return Unparseable(f"invalid fields: {', '.join(fields)}")
    except RecursionError:
        return Unparseable("model output nested too deeply")

    return Parsed(ScoreResult(
        sentiment=clamp(payload.sentiment, -1.0, 1.0),
        toxicity=clamp(payload.toxicity, 0.0, 1.0),
        constructiveness=clamp(payload.constructiveness, 0.0, 1.0),
        ai_likelihood=clamp(payload.ai_likelihood, 0.0, 1.0),
        quality=clamp(payload.quality, 0.0, 1.0),
        engagement_potential=clamp(payload.engagement_potential, 0.0, 1.0),
        category=_category(payload.activity_category),
        emotions=tuple(payload.emotions),
        topics=tuple(payload.topics),
    ))


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------

class ScorerClient:
    def __init__(
        self,
        model: ModelClient,
        *,
        temperature: float = 0.1,
        max_tokens: int = 1024,
    ):
        self._model = model
        self.temperature = temperature
        self.max_tokens = max_tokens

    async def score(self, message: MessageRecord) -> ScoreResult:
        prompt = build_score_prompt(message)
        try:
            raw = await self._model.generate(
                prompt, temperature=self.temperature, max_tokens=self.max_tokens
            )
        except Exception as exc:
            logger.warning("Model call failed for message %s: %r", message.id, exc)
            return DEFAULT_SCORE

        decoded = decode_score(raw)
        if isinstance(decoded, Unparseable):
            logger.warning(
                "Unusable model output for message %s: %s", message.id, decoded.reason
            )
            return DEFAULT_SCORE
        return decoded.result
