"""
Domain exceptions raised by services.

Each carries the HTTP status it maps to; the handlers registered in
gym_retention.main render them into the error envelope.
"""
from fastapi import status


class RetentionError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    error = "Internal Server Error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class BadRequestError(RetentionError):
    status_code = status.HTTP_400_BAD_REQUEST
    error = "Bad Request"


class ForbiddenError(RetentionError):
    status_code = status.HTTP_403_FORBIDDEN
    error = "Forbidden"


class NotFoundError(RetentionError):
    status_code = status.HTTP_404_NOT_FOUND
    error = "Not Found"


class MalformedMemberDataError(ValueError):
    """A member's rows cannot be scored; the evaluator skips the member."""

    def __init__(self, member_id: str, detail: str):
        super().__init__(f"Member {member_id}: {detail}")
        self.member_id = member_id
        self.detail = detail
