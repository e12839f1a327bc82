"""
Appointment status lifecycle.

    pending_approval --approve--> confirmed
    scheduled -------confirm----> confirmed
    scheduled, confirmed -------> completed   (deducts stock once)
    pending_approval, scheduled, confirmed --> canceled

``completed`` and ``canceled`` are terminal.
"""

from enum import Enum

from clinic_backend.core.errors import InvalidTransitionError


class AppointmentStatus(str, Enum):
    PENDING_APPROVAL = 'pending_approval'
    SCHEDULED = 'scheduled'
    CONFIRMED = 'confirmed'
    COMPLETED = 'completed'
    CANCELED = 'canceled'


class BookingOrigin(str, Enum):
    STAFF = 'staff'
    SELF_SERVICE = 'self_service'


# Only these occupy a professional or a room.
BLOCKING_STATUSES = frozenset({AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value})

TERMINAL_STATUSES = frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELED})

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING_APPROVAL: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELED}),
    AppointmentStatus.SCHEDULED: frozenset(
        {AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED, AppointmentStatus.CANCELED}
    ),
    AppointmentStatus.CONFIRMED: frozenset({AppointmentStatus.COMPLETED, AppointmentStatus.CANCELED}),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELED: frozenset(),
}


def initial_status(origin: BookingOrigin) -> AppointmentStatus:
    if BookingOrigin(origin) == BookingOrigin.SELF_SERVICE:
        return AppointmentStatus.PENDING_APPROVAL
    return AppointmentStatus.SCHEDULED


def is_blocking(status: str) -> bool:
    return AppointmentStatus(status).value in BLOCKING_STATUSES


def ensure_transition(current: str, target: str) -> AppointmentStatus:
    try:
        current_status = AppointmentStatus(current)
        target_status = AppointmentStatus(target)
    except ValueError as exc:
        raise InvalidTransitionError(f'Unknown appointment status: {exc}.') from exc

    if current_status in TERMINAL_STATUSES:
        raise InvalidTransitionError(
            f'Appointment is {current_status.value} and can no longer change status.'
        )
    if target_status not in ALLOWED_TRANSITIONS[current_status]:
        raise InvalidTransitionError(
            f'Transition from {current_status.value} to {target_status.value} is not allowed.'
        )
    return target_status


def starts_blocking(current: str, target: str) -> bool:
    """True when the move makes a non-blocking appointment occupy its slot."""
    return not is_blocking(current) and is_blocking(target)
