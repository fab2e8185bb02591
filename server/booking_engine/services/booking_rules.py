"""Booking and payment state machines, deletion gating and the payment deadline policy.

Everything here is pure: callers pass the current state and the clock reading,
and get back a decision or an ``InvalidTransitionError``.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from ..core.exceptions import InvalidTransitionError
from ..models.booking import BookingStatus, PaymentStatus

BOOKING_TRANSITIONS: dict[BookingStatus, frozenset[BookingStatus]] = {
    BookingStatus.PENDING: frozenset({BookingStatus.CONFIRMED, BookingStatus.CANCELLED}),
    BookingStatus.CONFIRMED: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.COMPLETED: frozenset(),
}

TERMINAL_BOOKING_STATUSES = frozenset({BookingStatus.CANCELLED, BookingStatus.COMPLETED})

# ``None`` is a booking that has no payment record yet
PAYMENT_TRANSITIONS: dict[Optional[PaymentStatus], frozenset[PaymentStatus]] = {
    None: frozenset({PaymentStatus.PENDING, PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.FAILED: frozenset({PaymentStatus.PENDING, PaymentStatus.COMPLETED}),
    PaymentStatus.COMPLETED: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.REFUNDED: frozenset(),
}

# Deadline policy thresholds
IMMEDIATE_WINDOW = timedelta(hours=2)
SHORT_NOTICE_WINDOW = timedelta(hours=24)
IMMEDIATE_GRACE = timedelta(minutes=30)
SHORT_NOTICE_GRACE = timedelta(hours=2)
STANDARD_LEAD = timedelta(hours=24)

# Deletion block reasons for bookings
BOOKING_COMPLETED = "booking_completed"
PAYMENT_COMPLETED = "payment_completed"
CONFIRMED_UPCOMING = "confirmed_upcoming"


@dataclass(frozen=True)
class PaymentDeadline:
    deadline: datetime
    requires_immediate_payment: bool


def calculate_payment_deadline(window_start: datetime, now: datetime) -> PaymentDeadline:
    """
    Decide when an unpaid booking expires.

    Within 2 hours of the start the customer gets 30 minutes, within 24 hours
    they get 2 hours, both flagged as immediate. Otherwise payment is due 24
    hours before the start.
    """
    lead = window_start - now
    if lead <= IMMEDIATE_WINDOW:
        return PaymentDeadline(now + IMMEDIATE_GRACE, True)
    if lead <= SHORT_NOTICE_WINDOW:
        return PaymentDeadline(now + SHORT_NOTICE_GRACE, True)
    return PaymentDeadline(window_start - STANDARD_LEAD, False)


def validate_transition(
    current: BookingStatus,
    target: BookingStatus,
    payment_status: Optional[PaymentStatus],
) -> None:
    """
    Check a booking status change against the table and the payment gates.

    Raises:
        InvalidTransitionError: If the change is not allowed
    """
    current = BookingStatus(current)
    target = BookingStatus(target)

    if target in (BookingStatus.PENDING, BookingStatus.CANCELLED) and payment_status == PaymentStatus.COMPLETED:
        raise InvalidTransitionError(
            "booking", current.value, target.value,
            reason="booking has a completed payment; refund it first",
        )

    if target not in BOOKING_TRANSITIONS[current]:
        raise InvalidTransitionError("booking", current.value, target.value)

    if target in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED) and payment_status != PaymentStatus.COMPLETED:
        raise InvalidTransitionError(
            "booking", current.value, target.value,
            reason=f"booking cannot become {target.value} without a completed payment",
        )


def ensure_mutable(status: BookingStatus) -> None:
    """Reject changes to the resource or price of a finished booking."""
    status = BookingStatus(status)
    if status in TERMINAL_BOOKING_STATUSES:
        raise InvalidTransitionError(
            "booking", status.value, status.value,
            reason=f"booking is {status.value} and can no longer be changed",
        )


def validate_payment_transition(current: Optional[PaymentStatus], target: PaymentStatus) -> None:
    current = PaymentStatus(current) if current is not None else None
    target = PaymentStatus(target)
    if target not in PAYMENT_TRANSITIONS[current]:
        raise InvalidTransitionError(
            "payment", current.value if current else "NONE", target.value
        )


def deletion_block_reason(
    status: BookingStatus,
    payment_status: Optional[PaymentStatus],
    window_start: Optional[datetime],
    now: datetime,
) -> Optional[str]:
    """Return why a booking may not be deleted, or None when it may."""
    if BookingStatus(status) == BookingStatus.COMPLETED:
        return BOOKING_COMPLETED
    if payment_status == PaymentStatus.COMPLETED:
        return PAYMENT_COMPLETED
    if BookingStatus(status) == BookingStatus.CONFIRMED and window_start is not None and window_start > now:
        return CONFIRMED_UPCOMING
    return None
