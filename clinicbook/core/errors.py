"""Application error taxonomy.

Every error the API returns on purpose is an ``HTTPException`` whose ``detail``
is a dict carrying a machine-readable ``code`` next to the human message, so
FastAPI renders ``{"detail": {"code": ..., "message": ..., "details": ...}}``.
"""

from enum import Enum
from typing import Any

from fastapi import HTTPException, status


class ErrorCode(str, Enum):
    INVALID_INPUT = 'INVALID_INPUT'
    MISSING_REQUIRED_FIELD = 'MISSING_REQUIRED_FIELD'
    INVALID_EMAIL = 'INVALID_EMAIL'
    INVALID_PHONE = 'INVALID_PHONE'

    UNAUTHORIZED = 'UNAUTHORIZED'
    FORBIDDEN = 'FORBIDDEN'
    INVALID_CREDENTIALS = 'INVALID_CREDENTIALS'

    NOT_FOUND = 'NOT_FOUND'
    CONFLICT = 'CONFLICT'
    ALREADY_EXISTS = 'ALREADY_EXISTS'

    SLOT_UNAVAILABLE = 'SLOT_UNAVAILABLE'
    DOUBLE_BOOKING = 'DOUBLE_BOOKING'
    INVALID_STATUS_TRANSITION = 'INVALID_STATUS_TRANSITION'

    INTERNAL_SERVER_ERROR = 'INTERNAL_SERVER_ERROR'
    DATABASE_ERROR = 'DATABASE_ERROR'
    EXTERNAL_SERVICE_ERROR = 'EXTERNAL_SERVICE_ERROR'


class AppError(HTTPException):
    default_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = ErrorCode.INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.code = code or self.default_code
        self.message = message
        self.details = details
        detail: dict[str, Any] = {'code': self.code.value, 'message': message}
        if details is not None:
            detail['details'] = details
        super().__init__(status_code=status_code or self.default_status, detail=detail)

    def __str__(self) -> str:
        return f'[{self.code.value}] {self.message}'


class InvalidInput(AppError):
    default_status = status.HTTP_400_BAD_REQUEST
    default_code = ErrorCode.INVALID_INPUT


class Unauthorized(AppError):
    default_status = status.HTTP_401_UNAUTHORIZED
    default_code = ErrorCode.UNAUTHORIZED


class Forbidden(AppError):
    default_status = status.HTTP_403_FORBIDDEN
    default_code = ErrorCode.FORBIDDEN


class NotFound(AppError):
    default_status = status.HTTP_404_NOT_FOUND
    default_code = ErrorCode.NOT_FOUND


class Conflict(AppError):
    default_status = status.HTTP_409_CONFLICT
    default_code = ErrorCode.CONFLICT


class DatabaseError(AppError):
    default_status = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_code = ErrorCode.DATABASE_ERROR

    def __init__(self, message: str = 'A database error occurred. Please try again later.') -> None:
        super().__init__(message)


class DuplicateKey(DatabaseError):
    """A write collided with a unique constraint."""


class ExternalServiceError(AppError):
    default_status = status.HTTP_502_BAD_GATEWAY
    default_code = ErrorCode.EXTERNAL_SERVICE_ERROR


def double_booking() -> Conflict:
    return Conflict(
        'This time slot is no longer available. Please select another slot.',
        code=ErrorCode.DOUBLE_BOOKING,
    )


def invalid_status_transition(current: str, requested: str) -> InvalidInput:
    return InvalidInput(
        f'Cannot change appointment status from {current} to {requested}.',
        code=ErrorCode.INVALID_STATUS_TRANSITION,
        details={'from': current, 'to': requested},
    )
