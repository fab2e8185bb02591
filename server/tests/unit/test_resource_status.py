"""Unit tests for the flight, tour and room status machines."""

from datetime import datetime, timedelta

import pytest

from booking_engine.core.exceptions import InvalidTransitionError, ValidationError
from booking_engine.models.booking import Booking, BookingStatus, Payment, PaymentStatus
from booking_engine.models.flight import Flight, FlightStatus
from booking_engine.models.room import Room, RoomStatus
from booking_engine.models.tour import Tour, TourStatus
from booking_engine.services.resource_status import (
    ACTIVE_BOOKINGS,
    ALREADY_STARTED,
    NON_DELETABLE_STATUS,
    PAID_BOOKINGS,
    DelayBounds,
    RevisedWindow,
    cancellation_block_reason,
    coerce_status,
    resource_deletion_block_reason,
    scheduled_path,
    validate_resource_transition,
)

NOW = datetime(2030, 6, 1, 12, 0)


def flight(status=FlightStatus.SCHEDULED, departs_in=timedelta(hours=1), duration=timedelta(hours=2)):
    departs_at = NOW + departs_in
    return Flight(
        name="Oslo to Tromso",
        flight_number="NB402",
        origin="OSL",
        destination="TOS",
        departs_at=departs_at,
        arrives_at=departs_at + duration,
        status=status,
        capacity_total=10,
        capacity_available=10,
        price_amount=12000,
        price_currency="EUR",
    )


def tour(status=TourStatus.UPCOMING, starts_in=timedelta(days=1)):
    starts_at = NOW + starts_in
    return Tour(
        name="Fjord Kayaking",
        starts_at=starts_at,
        ends_at=starts_at + timedelta(days=2),
        status=status,
        capacity_total=10,
        capacity_available=10,
        price_amount=45000,
        price_currency="EUR",
    )


def booking(status, payment_status=None):
    b = Booking(status=status, units=1, guests=1, total_amount=100, currency="EUR", customer_ref="c")
    if payment_status is not None:
        b.payment = Payment(status=payment_status, amount=100, currency="EUR")
    return b


class TestFlightTransitions:

    def test_cannot_depart_before_departure_time(self):
        with pytest.raises(InvalidTransitionError) as exc_info:
            validate_resource_transition(flight(), FlightStatus.DEPARTED, NOW)
        assert "before its departure" in str(exc_info.value)

    def test_departs_once_departure_time_passed(self):
        validate_resource_transition(flight(departs_in=timedelta(minutes=-5)), FlightStatus.DEPARTED, NOW)

    def test_delayed_flight_departs_after_revised_time(self):
        validate_resource_transition(
            flight(status=FlightStatus.DELAYED, departs_in=timedelta(minutes=-1)), FlightStatus.DEPARTED, NOW
        )

    def test_lands_only_after_arrival(self):
        departed = flight(status=FlightStatus.DEPARTED, departs_in=timedelta(hours=-1))
        with pytest.raises(InvalidTransitionError):
            validate_resource_transition(departed, FlightStatus.LANDED, NOW)
        validate_resource_transition(departed, FlightStatus.LANDED, NOW + timedelta(hours=1))

    def test_landed_is_terminal(self):
        with pytest.raises(InvalidTransitionError):
            validate_resource_transition(flight(status=FlightStatus.LANDED), FlightStatus.SCHEDULED, NOW)

    def test_scheduled_cannot_land_directly(self):
        with pytest.raises(InvalidTransitionError):
            validate_resource_transition(flight(departs_in=timedelta(hours=-5)), FlightStatus.LANDED, NOW)

    def test_cancelled_flight_reinstated_before_departure(self):
        validate_resource_transition(flight(status=FlightStatus.CANCELLED), FlightStatus.SCHEDULED, NOW)

    def test_cancelled_flight_not_reinstated_after_departure(self):
        cancelled = flight(status=FlightStatus.CANCELLED, departs_in=timedelta(hours=-1))
        with pytest.raises(InvalidTransitionError):
            validate_resource_transition(cancelled, FlightStatus.SCHEDULED, NOW)

    def test_status_of_another_kind_is_rejected(self):
        with pytest.raises(ValidationError):
            coerce_status(Flight.KIND, TourStatus.ONGOING.value)


class TestDelayWindow:

    def revised(self, f, later, duration):
        departs_at = f.departs_at + later
        return RevisedWindow(departs_at=departs_at, arrives_at=departs_at + duration)

    def test_valid_delay(self):
        f = flight()
        validate_resource_transition(
            f, FlightStatus.DELAYED, NOW, self.revised(f, timedelta(hours=1), timedelta(hours=2))
        )

    def test_delay_requires_window(self):
        with pytest.raises(ValidationError):
            validate_resource_transition(flight(), FlightStatus.DELAYED, NOW, None)

    def test_delay_must_move_departure_later(self):
        f = flight()
        with pytest.raises(ValidationError):
            validate_resource_transition(
                f, FlightStatus.DELAYED, NOW, self.revised(f, timedelta(0), timedelta(hours=2))
            )

    def test_arrival_must_follow_departure(self):
        f = flight()
        window = RevisedWindow(departs_at=f.departs_at + timedelta(hours=1), arrives_at=f.departs_at)
        with pytest.raises(ValidationError):
            validate_resource_transition(f, FlightStatus.DELAYED, NOW, window)

    @pytest.mark.parametrize("duration", [timedelta(minutes=5), timedelta(hours=25)])
    def test_duration_bounds(self, duration):
        f = flight()
        with pytest.raises(ValidationError):
            validate_resource_transition(
                f, FlightStatus.DELAYED, NOW, self.revised(f, timedelta(hours=1), duration), DelayBounds()
            )


class TestTourAndRoomTransitions:

    def test_tour_starts_only_when_due(self):
        with pytest.raises(InvalidTransitionError):
            validate_resource_transition(tour(), TourStatus.ONGOING, NOW)
        validate_resource_transition(tour(starts_in=timedelta(hours=-1)), TourStatus.ONGOING, NOW)

    def test_completed_tour_is_terminal(self):
        with pytest.raises(InvalidTransitionError):
            validate_resource_transition(tour(status=TourStatus.COMPLETED), TourStatus.UPCOMING, NOW)

    def test_room_can_close_and_reopen(self):
        room = Room(status=RoomStatus.OPEN)
        validate_resource_transition(room, RoomStatus.CLOSED, NOW)
        room.status = RoomStatus.CLOSED
        validate_resource_transition(room, RoomStatus.OPEN, NOW)


class TestCancellationPrecondition:

    def test_pending_bookings_do_not_block(self):
        assert cancellation_block_reason([booking(BookingStatus.PENDING)]) is None

    def test_confirmed_booking_blocks(self):
        assert cancellation_block_reason([booking(BookingStatus.CONFIRMED, PaymentStatus.REFUNDED)])

    def test_paid_booking_blocks(self):
        assert cancellation_block_reason([booking(BookingStatus.CANCELLED, PaymentStatus.COMPLETED)])


class TestScheduledPath:

    def test_nothing_due_before_departure(self):
        assert scheduled_path(flight(), NOW) == []

    def test_departure_and_landing_in_one_run(self):
        f = flight(departs_in=timedelta(hours=-5))
        assert scheduled_path(f, NOW) == [
            (FlightStatus.SCHEDULED, FlightStatus.DEPARTED),
            (FlightStatus.DEPARTED, FlightStatus.LANDED),
        ]

    def test_departed_flight_with_future_departure_steps_back(self):
        f = flight(status=FlightStatus.DEPARTED, departs_in=timedelta(hours=3))
        assert scheduled_path(f, NOW) == [(FlightStatus.DEPARTED, FlightStatus.SCHEDULED)]

    def test_tour_runs_to_completion(self):
        t = tour(starts_in=timedelta(days=-3))
        assert scheduled_path(t, NOW) == [
            (TourStatus.UPCOMING, TourStatus.ONGOING),
            (TourStatus.ONGOING, TourStatus.COMPLETED),
        ]

    def test_cancelled_resources_are_left_alone(self):
        assert scheduled_path(flight(status=FlightStatus.CANCELLED, departs_in=timedelta(hours=-5)), NOW) == []


class TestResourceDeletion:

    def test_departed_flight_is_not_deletable(self):
        f = flight(status=FlightStatus.DEPARTED, departs_in=timedelta(hours=-1))
        assert resource_deletion_block_reason(f, [], NOW) == NON_DELETABLE_STATUS

    def test_live_bookings_block(self):
        assert resource_deletion_block_reason(flight(), [booking(BookingStatus.PENDING)], NOW) == ACTIVE_BOOKINGS

    def test_payment_records_block(self):
        blocked = [booking(BookingStatus.CANCELLED, PaymentStatus.COMPLETED)]
        assert resource_deletion_block_reason(flight(), blocked, NOW) == PAID_BOOKINGS

    def test_started_tour_is_not_deletable(self):
        assert resource_deletion_block_reason(tour(starts_in=timedelta(hours=-1)), [], NOW) == ALREADY_STARTED

    def test_cancelled_resource_with_finished_bookings_is_deletable(self):
        cancelled = flight(status=FlightStatus.CANCELLED, departs_in=timedelta(hours=-1))
        assert resource_deletion_block_reason(cancelled, [booking(BookingStatus.CANCELLED)], NOW) is None
