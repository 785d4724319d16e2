"""
Response envelope helpers.
"""
from typing import Any

from fastapi import Request, status

from gym_retention.database import utcnow
from gym_retention.schemas.schemas import Envelope, ErrorEnvelope


def envelope(request: Request, data: Any, status_code: int = status.HTTP_200_OK) -> Envelope:
    return Envelope(
        data=data,
        status_code=status_code,
        timestamp=utcnow(),
        path=request.url.path,
    )


def error_envelope(request: Request, status_code: int, message, error: str) -> dict:
    return ErrorEnvelope(
        status_code=status_code,
        message=message,
        error=error,
        timestamp=utcnow(),
        path=request.url.path,
    ).model_dump(mode="json", by_alias=True)
