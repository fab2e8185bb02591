"""Operational status rules for flights, tours and rooms."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Iterable, Optional

from ..core.exceptions import InvalidTransitionError, ValidationError
from ..models.booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, PaymentStatus
from ..models.flight import Flight, FlightStatus
from ..models.resource import ResourceKind
from ..models.room import RoomStatus
from ..models.tour import TourStatus

FLIGHT_TRANSITIONS: dict[FlightStatus, frozenset[FlightStatus]] = {
    FlightStatus.SCHEDULED: frozenset({FlightStatus.DELAYED, FlightStatus.CANCELLED, FlightStatus.DEPARTED}),
    FlightStatus.DELAYED: frozenset({FlightStatus.SCHEDULED, FlightStatus.CANCELLED, FlightStatus.DEPARTED}),
    FlightStatus.DEPARTED: frozenset({FlightStatus.LANDED}),
    FlightStatus.CANCELLED: frozenset({FlightStatus.SCHEDULED}),
    FlightStatus.LANDED: frozenset(),
}

TOUR_TRANSITIONS: dict[TourStatus, frozenset[TourStatus]] = {
    TourStatus.UPCOMING: frozenset({TourStatus.ONGOING, TourStatus.CANCELLED}),
    TourStatus.ONGOING: frozenset({TourStatus.COMPLETED}),
    TourStatus.CANCELLED: frozenset({TourStatus.UPCOMING}),
    TourStatus.COMPLETED: frozenset(),
}

ROOM_TRANSITIONS: dict[RoomStatus, frozenset[RoomStatus]] = {
    RoomStatus.OPEN: frozenset({RoomStatus.CLOSED}),
    RoomStatus.CLOSED: frozenset({RoomStatus.OPEN}),
}

TRANSITIONS = {
    ResourceKind.FLIGHT: (FlightStatus, FLIGHT_TRANSITIONS),
    ResourceKind.TOUR: (TourStatus, TOUR_TRANSITIONS),
    ResourceKind.ROOM: (RoomStatus, ROOM_TRANSITIONS),
}

# Statuses the scheduler still has to look at
SCHEDULED_FLIGHT_STATUSES = (FlightStatus.SCHEDULED, FlightStatus.DELAYED, FlightStatus.DEPARTED)
SCHEDULED_TOUR_STATUSES = (TourStatus.UPCOMING, TourStatus.ONGOING)

# Deletion block reasons for resources
NON_DELETABLE_STATUS = "non_deletable_status"
ACTIVE_BOOKINGS = "active_bookings"
PAID_BOOKINGS = "paid_bookings"
ALREADY_STARTED = "already_started"


@dataclass(frozen=True)
class DelayBounds:
    min_duration: timedelta = timedelta(minutes=10)
    max_duration: timedelta = timedelta(hours=24)


@dataclass(frozen=True)
class RevisedWindow:
    departs_at: datetime
    arrives_at: datetime


def coerce_status(kind: ResourceKind, status) -> Enum:
    """Parse a status for the given kind, rejecting values from other kinds."""
    enum_cls, _ = TRANSITIONS[ResourceKind(kind)]
    try:
        return enum_cls(status)
    except ValueError:
        raise ValidationError(
            detail=f"{status} is not a {ResourceKind(kind).value} status",
            errors={"status": f"must be one of {[s.value for s in enum_cls]}"},
        )


def is_cancel_like(resource, target) -> bool:
    return target == resource.CANCEL_STATUS


def validate_revised_window(flight: Flight, revised: Optional[RevisedWindow], bounds: DelayBounds) -> None:
    """A delay must push departure later and keep a plausible flight duration."""
    if revised is None:
        raise ValidationError(
            detail="A delay requires a revised departure and arrival",
            errors={"revised_window": "required"},
        )
    if revised.departs_at <= flight.departs_at:
        raise ValidationError(
            detail="Revised departure must be later than the current departure",
            errors={"departs_at": "must be after the current departure"},
        )
    if revised.arrives_at <= revised.departs_at:
        raise ValidationError(
            detail="Revised arrival must be after the revised departure",
            errors={"arrives_at": "must be after departs_at"},
        )
    duration = revised.arrives_at - revised.departs_at
    if duration < bounds.min_duration or duration > bounds.max_duration:
        raise ValidationError(
            detail=(
                f"Flight duration must be between {bounds.min_duration} and {bounds.max_duration}"
            ),
            errors={"arrives_at": "duration out of bounds"},
        )


def validate_resource_transition(
    resource,
    target,
    now: datetime,
    revised: Optional[RevisedWindow] = None,
    bounds: DelayBounds = DelayBounds(),
) -> None:
    """
    Check a requested status change for a resource.

    The booking-dependent precondition for cancellation is checked separately
    by ``cancellation_block_reason`` because it needs the resource's bookings.

    Raises:
        InvalidTransitionError: If the table or a time precondition forbids it
        ValidationError: If a delay carries an invalid revised window
    """
    kind = resource.KIND
    enum_cls, table = TRANSITIONS[kind]
    current = enum_cls(resource.status)
    target = coerce_status(kind, target)
    entity = kind.value.lower()

    if target not in table[current]:
        raise InvalidTransitionError(entity, current.value, target.value)

    def _require(condition: bool, reason: str) -> None:
        if not condition:
            raise InvalidTransitionError(entity, current.value, target.value, reason=reason)

    if kind == ResourceKind.FLIGHT:
        if target == FlightStatus.DEPARTED:
            _require(now >= resource.departs_at, "flight cannot depart before its departure time")
        elif target == FlightStatus.LANDED:
            _require(now >= resource.arrives_at, "flight cannot land before its arrival time")
        elif target == FlightStatus.DELAYED:
            validate_revised_window(resource, revised, bounds)
        elif target == FlightStatus.SCHEDULED and current == FlightStatus.CANCELLED:
            _require(resource.departs_at > now, "departure time has already passed")
    elif kind == ResourceKind.TOUR:
        if target == TourStatus.ONGOING:
            _require(now >= resource.starts_at, "tour cannot start before its start time")
        elif target == TourStatus.COMPLETED:
            _require(now >= resource.ends_at, "tour cannot complete before its end time")
        elif target == TourStatus.UPCOMING:
            _require(resource.starts_at > now, "start time has already passed")


def cancellation_block_reason(bookings: Iterable[Booking]) -> Optional[str]:
    """A resource may be withdrawn only while nothing on it is confirmed or paid."""
    for booking in bookings:
        if booking.status == BookingStatus.CONFIRMED:
            return "resource has confirmed bookings"
        if booking.payment_status == PaymentStatus.COMPLETED:
            return "resource has bookings with completed payments"
    return None


def next_scheduled_status(
    kind: ResourceKind,
    status,
    start: datetime,
    end: datetime,
    now: datetime,
) -> Optional[Enum]:
    """
    One time-driven step for a flight or tour, or None when nothing is due.

    Forward steps follow the clock past the window start and end; a resource
    marked as started whose start now lies in the future steps back.
    """
    if kind == ResourceKind.FLIGHT:
        if status in (FlightStatus.SCHEDULED, FlightStatus.DELAYED) and now >= start:
            return FlightStatus.DEPARTED
        if status == FlightStatus.DEPARTED:
            if now < start:
                return FlightStatus.SCHEDULED
            if now >= end:
                return FlightStatus.LANDED
    elif kind == ResourceKind.TOUR:
        if status == TourStatus.UPCOMING and now >= start:
            return TourStatus.ONGOING
        if status == TourStatus.ONGOING:
            if now < start:
                return TourStatus.UPCOMING
            if now >= end:
                return TourStatus.COMPLETED
    return None


def scheduled_path(resource, now: datetime) -> list[tuple[Enum, Enum]]:
    """All (from, to) steps due now, e.g. SCHEDULED -> DEPARTED -> LANDED."""
    path: list[tuple[Enum, Enum]] = []
    status = resource.status
    while True:
        target = next_scheduled_status(resource.KIND, status, resource.window_start, resource.window_end, now)
        if target is None or any(step[1] == target for step in path):
            return path
        path.append((status, target))
        status = target


def resource_deletion_block_reason(resource, bookings: Iterable[Booking], now: datetime) -> Optional[str]:
    """Return why a resource may not be deleted, or None when it may."""
    if resource.status in resource.NON_DELETABLE_STATUSES:
        return NON_DELETABLE_STATUS
    bookings = list(bookings)
    if any(b.status in ACTIVE_BOOKING_STATUSES for b in bookings):
        return ACTIVE_BOOKINGS
    if any(b.payment_status in (PaymentStatus.COMPLETED, PaymentStatus.PENDING) for b in bookings):
        return PAID_BOOKINGS
    start = resource.window_start
    if start is not None and start <= now and resource.status != resource.CANCEL_STATUS:
        return ALREADY_STARTED
    return None
