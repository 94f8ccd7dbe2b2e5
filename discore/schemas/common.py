"""
Primitives shared by every schema module.

Discord ids are 64-bit snowflakes. They are accepted as integers or numeric
strings and always returned as strings, since JavaScript clients lose
precision above 2**53.
"""
from typing import Annotated, Any, Optional

from pydantic import BaseModel, Field

Snowflake = Annotated[int, Field(gt=0, lt=2**63, examples=["1103728437259718676"])]
SnowflakeStr = Annotated[str, Field(pattern=r"^\d+$", examples=["1103728437259718676"])]
Unit = Annotated[float, Field(ge=0.0, le=1.0)]


class ErrorResponse(BaseModel):
    """Envelope of every 4xx/5xx response: `{code, message, details}`."""
    code: str = Field(examples=["GUILD_NOT_FOUND"])
    message: str
    details: Optional[dict[str, Any]] = None
