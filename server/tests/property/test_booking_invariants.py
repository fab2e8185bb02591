"""Property-based tests for booking system invariants."""

from datetime import datetime, timedelta

from hypothesis import given
from hypothesis import strategies as st

from booking_engine.core.exceptions import InvalidTransitionError
from booking_engine.models.booking import BookingStatus, PaymentStatus
from booking_engine.models.flight import Flight, FlightStatus
from booking_engine.models.tour import Tour, TourStatus
from booking_engine.services.booking_rules import (
    TERMINAL_BOOKING_STATUSES,
    calculate_payment_deadline,
    deletion_block_reason,
    validate_payment_transition,
    validate_transition,
)
from booking_engine.services.resource_status import scheduled_path

NOW = datetime(2030, 6, 1, 12, 0)

# Strategies for generating test data
lead_times = st.timedeltas(min_value=timedelta(minutes=1), max_value=timedelta(days=365))
offsets = st.timedeltas(min_value=timedelta(days=-10), max_value=timedelta(days=10))
durations = st.timedeltas(min_value=timedelta(minutes=10), max_value=timedelta(days=5))
booking_statuses = st.sampled_from(list(BookingStatus))
payment_statuses = st.one_of(st.none(), st.sampled_from(list(PaymentStatus)))


@given(lead=lead_times)
def test_deadline_is_always_after_booking_time(lead):
    """An unpaid booking always gets some time to pay."""
    deadline = calculate_payment_deadline(NOW + lead, NOW)

    assert deadline.deadline > NOW
    assert deadline.requires_immediate_payment == (lead <= timedelta(hours=24))
    if not deadline.requires_immediate_payment:
        assert deadline.deadline == NOW + lead - timedelta(hours=24)


@given(lead=lead_times)
def test_deadline_never_later_than_start_plus_grace(lead):
    deadline = calculate_payment_deadline(NOW + lead, NOW)
    assert deadline.deadline <= NOW + max(lead, timedelta(minutes=30))


@given(
    steps=st.lists(st.tuples(booking_statuses, st.sampled_from(list(PaymentStatus))), min_size=1, max_size=15),
)
def test_random_walk_respects_state_machine(steps):
    """Apply random transition attempts; only valid ones take effect."""
    status = BookingStatus.PENDING
    payment = None

    for target, payment_target in steps:
        try:
            validate_payment_transition(payment, payment_target)
            if status not in TERMINAL_BOOKING_STATUSES:
                payment = payment_target
        except InvalidTransitionError:
            pass

        previous = status
        try:
            validate_transition(status, target, payment)
            status = target
        except InvalidTransitionError:
            pass

        # Terminal statuses are never left
        if previous in TERMINAL_BOOKING_STATUSES:
            assert status == previous
        # A paid booking never drops back to PENDING or CANCELLED
        if payment == PaymentStatus.COMPLETED and status != previous:
            assert status not in (BookingStatus.PENDING, BookingStatus.CANCELLED)
        if status in (BookingStatus.CONFIRMED, BookingStatus.COMPLETED) and status != previous:
            assert payment == PaymentStatus.COMPLETED


@given(status=booking_statuses, payment=payment_statuses, offset=offsets)
def test_deletable_bookings_are_never_paid_or_completed(status, payment, offset):
    reason = deletion_block_reason(status, payment, NOW + offset, NOW)
    if reason is None:
        assert status != BookingStatus.COMPLETED
        assert payment != PaymentStatus.COMPLETED
        assert not (status == BookingStatus.CONFIRMED and offset > timedelta(0))


@given(
    status=st.sampled_from([FlightStatus.SCHEDULED, FlightStatus.DELAYED, FlightStatus.DEPARTED]),
    offset=offsets,
    duration=durations,
)
def test_flight_schedule_settles_in_one_pass(status, offset, duration):
    """After applying the due steps, nothing further is due and the status matches the clock."""
    departs_at = NOW + offset
    flight = Flight(status=status, departs_at=departs_at, arrives_at=departs_at + duration)

    path = scheduled_path(flight, NOW)
    if path:
        assert path[0][0] == status
        flight.status = path[-1][1]

    assert scheduled_path(flight, NOW) == []
    if NOW >= departs_at + duration:
        assert flight.status == FlightStatus.LANDED
    elif NOW >= departs_at:
        assert flight.status == FlightStatus.DEPARTED
    else:
        assert flight.status in (FlightStatus.SCHEDULED, FlightStatus.DELAYED)


@given(status=st.sampled_from([TourStatus.UPCOMING, TourStatus.ONGOING]), offset=offsets, duration=durations)
def test_tour_schedule_settles_in_one_pass(status, offset, duration):
    starts_at = NOW + offset
    tour = Tour(status=status, starts_at=starts_at, ends_at=starts_at + duration)

    path = scheduled_path(tour, NOW)
    if path:
        tour.status = path[-1][1]

    assert scheduled_path(tour, NOW) == []
    if NOW >= starts_at + duration:
        assert tour.status == TourStatus.COMPLETED
    elif NOW >= starts_at:
        assert tour.status == TourStatus.ONGOING
    else:
        assert tour.status == TourStatus.UPCOMING
