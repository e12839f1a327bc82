"""
Scheduling error taxonomy.

Every error here is recoverable by the caller and carries an actionable
message. Routes convert them with ``to_http_exception()``; database failures
are not part of this hierarchy and propagate as ``SQLAlchemyError``.
"""

from typing import Any

from fastapi import HTTPException, status


class SchedulingError(Exception):
    """Base class for recoverable scheduling errors."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.code = self.__class__.__name__
        self.details = details or {}
        super().__init__(message)

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                'message': self.message,
                'code': self.code,
                'details': self.details,
            },
        )


class ValidationError(SchedulingError):
    """Malformed input: bad duration, unknown professional, date out of range."""


class NotFoundError(ValidationError):
    status_code = status.HTTP_404_NOT_FOUND


class OutOfHoursError(SchedulingError):
    status_code = 422


class UnavailabilityBlockedError(SchedulingError):
    status_code = status.HTTP_409_CONFLICT


class ScheduleConflictError(SchedulingError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, conflicting_appointment: Any = None) -> None:
        details = {}
        if conflicting_appointment is not None:
            details['conflict'] = {
                'id': getattr(conflicting_appointment, 'id', None),
                'professional_id': getattr(conflicting_appointment, 'professional_id', None),
                'start_time': _isoformat(getattr(conflicting_appointment, 'start_time', None)),
                'duration_minutes': getattr(conflicting_appointment, 'duration_minutes', None),
                'status': getattr(conflicting_appointment, 'status', None),
            }
        super().__init__(message, details)
        self.conflicting_appointment = conflicting_appointment


class RoomCapacityError(SchedulingError):
    status_code = status.HTTP_409_CONFLICT


class InvalidTransitionError(SchedulingError):
    status_code = status.HTTP_409_CONFLICT


def _isoformat(value: Any) -> str | None:
    if value is None:
        return None
    return value.isoformat()
