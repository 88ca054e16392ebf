"""
Forum error kinds.

Every failure of a forum operation is one of these exceptions. The API layer
maps them onto HTTP status codes in a single exception handler.
"""

from enum import Enum


class ErrorCode(str, Enum):
    """Error kinds exposed to callers."""

    NOT_FOUND = "NOT_FOUND"
    UNAUTHORIZED = "UNAUTHORIZED"
    CONFLICT = "CONFLICT"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TRANSIENT_STORE_ERROR = "TRANSIENT_STORE_ERROR"


class ForumError(Exception):
    """Base class for all forum operation failures."""

    code: ErrorCode = ErrorCode.VALIDATION_ERROR
    status_code: int = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code.value, "message": self.message}


class NotFound(ForumError):
    """Entity absent or hidden by soft-delete."""

    code = ErrorCode.NOT_FOUND
    status_code = 404


class Unauthorized(ForumError):
    """Role or ban check failed."""

    code = ErrorCode.UNAUTHORIZED
    status_code = 403


class Conflict(ForumError):
    """Operation conflicts with the current state (e.g. locked thread)."""

    code = ErrorCode.CONFLICT
    status_code = 409


class ValidationError(ForumError):
    """Empty or oversized content, inactive category, bad input."""

    code = ErrorCode.VALIDATION_ERROR
    status_code = 422


class TransientStoreError(ForumError):
    """
    Store timeout, deadlock or connection loss that outlived the retries.

    ``commit_uncertain`` is set when the failure hit the commit itself, in
    which case the work may or may not have been applied.
    """

    code = ErrorCode.TRANSIENT_STORE_ERROR
    status_code = 503

    def __init__(self, message: str, commit_uncertain: bool = False) -> None:
        super().__init__(message)
        self.commit_uncertain = commit_uncertain
