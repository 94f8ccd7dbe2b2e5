"""
Custom exception hierarchy for Discore.

Rule: every HTTP error has a machine-readable `code` string so the dashboard
can branch on it without parsing English messages.
"""
from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class DiscoreException(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class GuildNotFoundError(DiscoreException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "GUILD_NOT_FOUND"

    def __init__(self, guild_id: int):
        super().__init__(
            message=f"Guild {guild_id} not found or not public.",
            details={"guild_id": str(guild_id)},
        )


class NotGuildOwnerError(DiscoreException):
    http_status = status.HTTP_403_FORBIDDEN
    code = "NOT_GUILD_OWNER"

    def __init__(self, guild_id: int):
        super().__init__(
            message=f"Only the owner of guild {guild_id} can change this setting.",
            details={"guild_id": str(guild_id)},
        )


class UserNotFoundError(DiscoreException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: int):
        super().__init__(
            message=f"User {user_id} not found or not public.",
            details={"user_id": str(user_id)},
        )


class NotProfileOwnerError(DiscoreException):
    http_status = status.HTTP_403_FORBIDDEN
    code = "NOT_PROFILE_OWNER"

    def __init__(self, user_id: int):
        super().__init__(
            message=f"Only user {user_id} can change the visibility of their profile.",
            details={"user_id": str(user_id)},
        )


class AnalysisInProgressError(DiscoreException):
    http_status = status.HTTP_409_CONFLICT
    code = "ANALYSIS_IN_PROGRESS"

    def __init__(self, guild_id: int):
        super().__init__(
            message=f"An analysis run for guild {guild_id} is already in progress.",
            details={"guild_id": str(guild_id)},
        )


class BatchTooLargeError(DiscoreException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "BATCH_TOO_LARGE"

    def __init__(self, max_items: int, received: int):
        super().__init__(
            message=f"Batch exceeds maximum size of {max_items} items. Received {received}.",
            details={"max_items": max_items, "received": received},
        )


class PersistenceError(DiscoreException):
    """Raised by the persistence gateway when a read or write fails."""
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "PERSISTENCE_ERROR"

    def __init__(self, operation: str, reason: str):
        super().__init__(
            message=f"Persistence operation '{operation}' failed.",
            details={"operation": operation, "reason": reason},
        )


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def discore_exception_handler(request: Request, exc: DiscoreException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.http_status,
        content=exc.to_dict(),
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Return structured 422 with machine-readable field errors."""
    field_errors = []
    for error in exc.errors():
        field_errors.append({
            "field": ".".join(str(loc) for loc in error["loc"] if loc != "body"),
            "message": error["msg"],
            "type": error["type"],
        })
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": field_errors},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )
