"""
Request logging middleware.

Logs one line per request with method, path, sanitized query parameters,
status and duration, and sets the X-Process-Time header.
"""
from typing import Any, Mapping
import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger("gym_retention.http")

SENSITIVE_FIELDS = (
    "password",
    "token",
    "authorization",
    "creditcard",
    "cardnumber",
    "cvv",
    "ssn",
    "secret",
    "apikey",
    "privatekey",
    "sessionid",
)

REDACTED = "[REDACTED]"


def is_sensitive_field(name: str) -> bool:
    lowered = name.lower().replace("_", "").replace("-", "")
    return any(field in lowered for field in SENSITIVE_FIELDS)


def sanitize(data: Any) -> Any:
    """Redact values under sensitive keys, recursing into dicts and lists."""
    if isinstance(data, Mapping):
        return {
            key: REDACTED if is_sensitive_field(str(key)) else sanitize(value)
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [sanitize(item) for item in data]
    return data


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        query = sanitize(dict(request.query_params))
        try:
            response = await call_next(request)
        except Exception:
            duration_ms = (time.perf_counter() - start) * 1000
            logger.error(
                f"Request Failed: {request.method} {request.url.path} "
                f"- Query: {query} - Duration: {duration_ms:.1f}ms"
            )
            raise

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Process-Time"] = f"{duration_ms / 1000:.6f}"
        log = logger.warning if response.status_code >= 400 else logger.info
        log(
            f"{request.method} {request.url.path} - Query: {query} "
            f"- Status: {response.status_code} - Duration: {duration_ms:.1f}ms"
        )
        return response
