"""Tests for the reservation coordinator against a real database."""

from datetime import timedelta
from uuid import uuid4

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm.attributes import set_committed_value

from booking_engine.core.dependencies import Requestor
from booking_engine.core.exceptions import (
    AuthorizationError,
    CapacityExhaustedError,
    ConflictError,
    DeletionBlockedError,
    InvalidTransitionError,
    NotFoundError,
    ResourceNotBookableError,
    TransientError,
    ValidationError,
)
from booking_engine.models.booking import BookingStatus, PaymentStatus
from booking_engine.models.flight import FlightStatus
from booking_engine.models.ledger import LedgerReason
from booking_engine.models.resource import ResourceKind, ResourceRef
from booking_engine.models.room import RoomStatus
from booking_engine.models.tour import TourStatus
from booking_engine.services.resource_status import RevisedWindow
from booking_engine.services.reservation_coordinator import ReservationRequest, Stay


def request_for(resource, customer="customer-1", units=1, **kwargs) -> ReservationRequest:
    return ReservationRequest(ref=resource.ref, customer_ref=customer, units=units, **kwargs)


async def available(coordinator, resource) -> int:
    return (await coordinator.get_resource(resource.ref)).capacity_available


async def assert_ledger_consistent(coordinator, resource):
    check = await coordinator.verify_ledger(resource.ref)
    assert check.consistent


class TestReserve:

    @pytest.mark.asyncio
    async def test_reserve_creates_pending_booking_and_decrements(self, coordinator, make_flight, customer, clock):
        flight = await make_flight(capacity=3)

        booking = await coordinator.reserve(request_for(flight, units=2, guests=2), customer)

        assert booking.status == BookingStatus.PENDING
        assert booking.resource_ref == flight.ref
        assert booking.total_amount == 2 * flight.price_amount
        assert booking.currency == "EUR"
        assert booking.payment_deadline == flight.departs_at - timedelta(hours=24)
        assert booking.requires_immediate_payment is False
        assert await available(coordinator, flight) == 1
        await assert_ledger_consistent(coordinator, flight)

    @pytest.mark.asyncio
    async def test_short_notice_booking_requires_immediate_payment(self, coordinator, make_tour, customer, clock):
        tour = await make_tour(starts_in=timedelta(hours=1))

        booking = await coordinator.reserve(request_for(tour), customer)

        assert booking.payment_deadline == clock.now + timedelta(minutes=30)
        assert booking.requires_immediate_payment is True

    @pytest.mark.asyncio
    async def test_room_priced_per_night(self, coordinator, make_room, customer, clock):
        room = await make_room(capacity=4, max_occupancy=2)
        check_in = clock.now + timedelta(days=10)
        stay = Stay(check_in=check_in, check_out=check_in + timedelta(days=3))

        booking = await coordinator.reserve(request_for(room, units=2, guests=3, stay=stay), customer)

        assert booking.nights == 3
        assert booking.total_amount == room.price_amount * 3 * 2
        assert booking.payment_deadline == check_in - timedelta(hours=24)
        assert await available(coordinator, room) == 2

    @pytest.mark.asyncio
    async def test_room_requires_stay_dates(self, coordinator, make_room, customer):
        room = await make_room()
        with pytest.raises(ValidationError):
            await coordinator.reserve(request_for(room), customer)

    @pytest.mark.asyncio
    async def test_room_occupancy_failure_rolls_back_decrement(self, coordinator, make_room, customer, clock):
        room = await make_room(capacity=2, max_occupancy=2)
        check_in = clock.now + timedelta(days=2)
        stay = Stay(check_in=check_in, check_out=check_in + timedelta(days=1))

        with pytest.raises(ValidationError):
            await coordinator.reserve(request_for(room, units=1, guests=5, stay=stay), customer)

        assert await available(coordinator, room) == 2
        await assert_ledger_consistent(coordinator, room)

    @pytest.mark.asyncio
    async def test_exhausted_resource_returns_specific_reason(self, coordinator, make_flight, customer, agent):
        flight = await make_flight(capacity=1)
        await coordinator.reserve(request_for(flight), customer)

        with pytest.raises(CapacityExhaustedError) as exc_info:
            await coordinator.reserve(request_for(flight, customer="customer-2"), agent)

        assert str(exc_info.value) == "no seats available"
        assert exc_info.value.code == "CAPACITY_EXHAUSTED"
        assert await available(coordinator, flight) == 0

    @pytest.mark.asyncio
    async def test_cancelled_resource_is_not_bookable(self, coordinator, make_tour, customer, admin):
        tour = await make_tour()
        await coordinator.advance_resource_status(tour.ref, TourStatus.CANCELLED, admin)

        with pytest.raises(ResourceNotBookableError) as exc_info:
            await coordinator.reserve(request_for(tour), customer)

        assert str(exc_info.value) == "resource cancelled"
        assert await available(coordinator, tour) == tour.capacity_total

    @pytest.mark.asyncio
    async def test_flight_past_departure_is_not_bookable(self, coordinator, make_flight, customer, clock):
        flight = await make_flight(departs_in=timedelta(hours=1))
        clock.advance(hours=2)

        with pytest.raises(ResourceNotBookableError) as exc_info:
            await coordinator.reserve(request_for(flight), customer)

        assert str(exc_info.value) == "resource departed"
        assert await available(coordinator, flight) == flight.capacity_total

    @pytest.mark.asyncio
    async def test_missing_resource(self, coordinator, customer):
        with pytest.raises(NotFoundError):
            await coordinator.reserve(
                ReservationRequest(ref=ResourceRef(ResourceKind.TOUR, uuid4()), customer_ref="customer-1", units=1),
                customer,
            )

    @pytest.mark.asyncio
    async def test_customer_cannot_book_for_someone_else(self, coordinator, make_tour, customer):
        tour = await make_tour()
        with pytest.raises(AuthorizationError):
            await coordinator.reserve(request_for(tour, customer="customer-2"), customer)
        assert await available(coordinator, tour) == tour.capacity_total

    @pytest.mark.asyncio
    async def test_agent_books_for_customer(self, coordinator, make_tour, agent):
        tour = await make_tour()
        booking = await coordinator.reserve(request_for(tour, customer="customer-9"), agent)
        assert booking.customer_ref == "customer-9"

    @pytest.mark.asyncio
    async def test_customer_cannot_set_price(self, coordinator, make_tour, customer):
        tour = await make_tour(capacity=3)

        with pytest.raises(AuthorizationError):
            await coordinator.reserve(request_for(tour, units=2, price_override=0), customer)
        assert await available(coordinator, tour) == 3

    @pytest.mark.asyncio
    async def test_agent_can_set_negotiated_price(self, coordinator, make_tour, agent):
        tour = await make_tour()
        booking = await coordinator.reserve(request_for(tour, customer="customer-9", price_override=1000), agent)
        assert booking.total_amount == 1000


class TestRelease:

    @pytest.mark.asyncio
    async def test_release_is_idempotent(self, coordinator, make_tour, customer):
        tour = await make_tour(capacity=2)
        booking = await coordinator.reserve(request_for(tour), customer)

        first = await coordinator.release(booking.id, customer)
        second = await coordinator.release(booking.id, customer)

        assert first.status == BookingStatus.CANCELLED
        assert second.status == BookingStatus.CANCELLED
        assert await available(coordinator, tour) == 2
        _, entries = await coordinator.ledger_report(tour.ref)
        assert [e.reason for e in entries if e.booking_id == booking.id].count(LedgerReason.RELEASE) == 1

    @pytest.mark.asyncio
    async def test_paid_booking_cannot_be_released(self, coordinator, make_tour, customer, admin):
        tour = await make_tour()
        booking = await coordinator.reserve(request_for(tour), customer)
        await coordinator.record_payment(booking.id, PaymentStatus.COMPLETED, admin)

        with pytest.raises(InvalidTransitionError):
            await coordinator.release(booking.id, customer)
        assert await available(coordinator, tour) == tour.capacity_total - 1

    @pytest.mark.asyncio
    async def test_unknown_booking(self, coordinator, customer):
        with pytest.raises(NotFoundError):
            await coordinator.release(uuid4(), customer)

    @pytest.mark.asyncio
    async def test_other_customer_cannot_release(self, coordinator, make_tour, customer):
        tour = await make_tour()
        booking = await coordinator.reserve(request_for(tour), customer)
        with pytest.raises(AuthorizationError):
            await coordinator.release(booking.id, Requestor(user_id="customer-2"))

    @pytest.mark.asyncio
    async def test_release_refuses_booking_paid_after_it_was_read(
        self, coordinator, make_tour, customer, admin, monkeypatch
    ):
        """The cancel is guarded on the status the payment gate saw, not on any active status."""
        tour = await make_tour(capacity=2)
        booking = await coordinator.reserve(request_for(tour), customer)
        await coordinator.record_payment(booking.id, PaymentStatus.COMPLETED, admin)
        read_booking = coordinator._get_booking

        async def read_before_payment(session, booking_id, lock=False):
            row = await read_booking(session, booking_id, lock=lock)
            set_committed_value(row, "status", BookingStatus.PENDING)
            set_committed_value(row, "payment", None)
            return row

        monkeypatch.setattr(coordinator, "_get_booking", read_before_payment)
        with pytest.raises(ConflictError) as exc_info:
            await coordinator.release(booking.id, customer)
        monkeypatch.undo()

        assert exc_info.value.code == "CONCURRENT_MODIFICATION"
        assert exc_info.value.retryable
        assert (await coordinator.get_booking(booking.id, admin)).status == BookingStatus.CONFIRMED
        assert await available(coordinator, tour) == 1
        await assert_ledger_consistent(coordinator, tour)


class TestTransfer:

    @pytest.mark.asyncio
    async def test_transfer_moves_units(self, coordinator, make_flight, customer):
        old = await make_flight(capacity=2)
        new = await make_flight(capacity=2, flight_number="NB404", price_amount=15000)
        booking = await coordinator.reserve(request_for(old), customer)

        moved = await coordinator.transfer(booking.id, new.ref, customer)

        assert moved.resource_ref == new.ref
        assert moved.total_amount == 15000
        assert await available(coordinator, old) == 2
        assert await available(coordinator, new) == 1
        await assert_ledger_consistent(coordinator, old)
        await assert_ledger_consistent(coordinator, new)

    @pytest.mark.asyncio
    async def test_failed_transfer_leaves_old_reservation(self, coordinator, make_flight, customer, agent):
        old = await make_flight(capacity=2)
        full = await make_flight(capacity=1, flight_number="NB404")
        booking = await coordinator.reserve(request_for(old), customer)
        await coordinator.reserve(request_for(full, customer="customer-2"), agent)

        with pytest.raises(CapacityExhaustedError):
            await coordinator.transfer(booking.id, full.ref, customer)

        unchanged = await coordinator.get_booking(booking.id, customer)
        assert unchanged.resource_ref == old.ref
        assert unchanged.status == BookingStatus.PENDING
        assert await available(coordinator, old) == 1
        assert await available(coordinator, full) == 0

    @pytest.mark.asyncio
    async def test_transfer_across_kinds(self, coordinator, make_flight, make_tour, customer):
        flight = await make_flight()
        tour = await make_tour()
        booking = await coordinator.reserve(request_for(flight), customer)

        moved = await coordinator.transfer(booking.id, tour.ref, customer)

        assert moved.resource_kind == ResourceKind.TOUR
        assert moved.flight_id is None
        assert moved.tour_id == tour.id
        assert await available(coordinator, flight) == flight.capacity_total

    @pytest.mark.asyncio
    async def test_cancelled_booking_cannot_transfer(self, coordinator, make_flight, customer):
        old = await make_flight()
        new = await make_flight(flight_number="NB404")
        booking = await coordinator.reserve(request_for(old), customer)
        await coordinator.release(booking.id, customer)

        with pytest.raises(InvalidTransitionError):
            await coordinator.transfer(booking.id, new.ref, customer)
        assert await available(coordinator, new) == new.capacity_total


class TestBookingLifecycle:

    @pytest.mark.asyncio
    async def test_payment_confirms_booking(self, coordinator, make_tour, customer, admin):
        tour = await make_tour()
        booking = await coordinator.reserve(request_for(tour), customer)

        paid = await coordinator.record_payment(booking.id, PaymentStatus.COMPLETED, admin)

        assert paid.status == BookingStatus.CONFIRMED
        assert paid.payment.status == PaymentStatus.COMPLETED
        assert paid.payment.amount == booking.total_amount

    @pytest.mark.asyncio
    async def test_failed_payment_keeps_booking_pending(self, coordinator, make_tour, customer, agent):
        tour = await make_tour()
        booking = await coordinator.reserve(request_for(tour), customer)

        updated = await coordinator.record_payment(booking.id, PaymentStatus.FAILED, agent)

        assert updated.status == BookingStatus.PENDING
        assert updated.payment.status == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_customer_cannot_record_payment(self, coordinator, make_tour, customer):
        tour = await make_tour()
        booking = await coordinator.reserve(request_for(tour), customer)
        with pytest.raises(AuthorizationError):
            await coordinator.record_payment(booking.id, PaymentStatus.COMPLETED, customer)

    @pytest.mark.asyncio
    async def test_paid_booking_cannot_revert_to_pending(self, coordinator, make_tour, customer, admin):
        tour = await make_tour()
        booking = await coordinator.reserve(request_for(tour), customer)
        await coordinator.record_payment(booking.id, PaymentStatus.COMPLETED, admin)

        with pytest.raises(ConflictError):
            await coordinator.change_status(booking.id, BookingStatus.PENDING, admin)

        current = await coordinator.get_booking(booking.id, admin)
        assert current.status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_completion_returns_units_once(self, coordinator, make_tour, customer, admin):
        tour = await make_tour(capacity=2)
        booking = await coordinator.reserve(request_for(tour), customer)
        await coordinator.record_payment(booking.id, PaymentStatus.COMPLETED, admin)

        completed = await coordinator.change_status(booking.id, BookingStatus.COMPLETED, admin)

        assert completed.status == BookingStatus.COMPLETED
        assert await available(coordinator, tour) == 2
        with pytest.raises(InvalidTransitionError):
            await coordinator.change_status(booking.id, BookingStatus.CANCELLED, admin)
        assert await available(coordinator, tour) == 2
        await assert_ledger_consistent(coordinator, tour)

    @pytest.mark.asyncio
    async def test_refund_then_cancel(self, coordinator, make_tour, customer, admin):
        tour = await make_tour(capacity=2)
        booking = await coordinator.reserve(request_for(tour), customer)
        await coordinator.record_payment(booking.id, PaymentStatus.COMPLETED, admin)
        await coordinator.record_payment(booking.id, PaymentStatus.REFUNDED, admin)

        cancelled = await coordinator.change_status(booking.id, BookingStatus.CANCELLED, admin)

        assert cancelled.status == BookingStatus.CANCELLED
        assert await available(coordinator, tour) == 2

    @pytest.mark.asyncio
    async def test_payment_rejected_on_cancelled_booking(self, coordinator, make_tour, customer, admin):
        tour = await make_tour()
        booking = await coordinator.reserve(request_for(tour), customer)
        await coordinator.release(booking.id, customer)

        with pytest.raises(InvalidTransitionError):
            await coordinator.record_payment(booking.id, PaymentStatus.COMPLETED, admin)


class TestDeleteBooking:

    @pytest.mark.asyncio
    async def test_deleting_pending_booking_releases_units(self, coordinator, make_tour, customer, admin):
        tour = await make_tour(capacity=2)
        booking = await coordinator.reserve(request_for(tour), customer)

        await coordinator.delete_booking(booking.id, admin)

        assert await available(coordinator, tour) == 2
        with pytest.raises(NotFoundError):
            await coordinator.get_booking(booking.id, admin)
        await assert_ledger_consistent(coordinator, tour)

    @pytest.mark.asyncio
    async def test_paid_booking_is_not_deleted(self, coordinator, make_tour, customer, admin):
        tour = await make_tour()
        booking = await coordinator.reserve(request_for(tour), customer)
        await coordinator.record_payment(booking.id, PaymentStatus.COMPLETED, admin)

        with pytest.raises(DeletionBlockedError) as exc_info:
            await coordinator.delete_booking(booking.id, admin)
        assert exc_info.value.problem_details["reason"] == "payment_completed"

    @pytest.mark.asyncio
    async def test_confirmed_upcoming_booking_must_be_cancelled(self, coordinator, make_tour, customer, admin):
        tour = await make_tour()
        booking = await coordinator.reserve(request_for(tour), customer)
        await coordinator.record_payment(booking.id, PaymentStatus.COMPLETED, admin)
        await coordinator.record_payment(booking.id, PaymentStatus.REFUNDED, admin)

        with pytest.raises(DeletionBlockedError) as exc_info:
            await coordinator.delete_booking(booking.id, admin)
        assert exc_info.value.problem_details["reason"] == "confirmed_upcoming"


class TestResourceStatus:

    @pytest.mark.asyncio
    async def test_flight_cannot_depart_early(self, coordinator, make_flight, admin):
        flight = await make_flight(departs_in=timedelta(hours=1))

        with pytest.raises(ConflictError):
            await coordinator.advance_resource_status(flight.ref, FlightStatus.DEPARTED, admin)

        assert (await coordinator.get_resource(flight.ref)).status == FlightStatus.SCHEDULED

    @pytest.mark.asyncio
    async def test_cancelling_flight_cascades_to_bookings(self, coordinator, make_flight, customer, agent, admin):
        flight = await make_flight(capacity=5)
        bookings = [await coordinator.reserve(request_for(flight), customer)]
        for i in range(2):
            bookings.append(await coordinator.reserve(request_for(flight, customer=f"customer-{i + 2}"), agent))
        assert await available(coordinator, flight) == 2

        cancelled = await coordinator.advance_resource_status(flight.ref, FlightStatus.CANCELLED, admin)

        assert cancelled.status == FlightStatus.CANCELLED
        assert cancelled.capacity_available == cancelled.capacity_total
        for booking in bookings:
            assert (await coordinator.get_booking(booking.id, admin)).status == BookingStatus.CANCELLED
        await assert_ledger_consistent(coordinator, flight)

    @pytest.mark.asyncio
    async def test_confirmed_booking_blocks_cancellation(self, coordinator, make_flight, customer, admin):
        flight = await make_flight()
        booking = await coordinator.reserve(request_for(flight), customer)
        await coordinator.record_payment(booking.id, PaymentStatus.COMPLETED, admin)

        with pytest.raises(InvalidTransitionError):
            await coordinator.advance_resource_status(flight.ref, FlightStatus.CANCELLED, admin)

        assert (await coordinator.get_booking(booking.id, admin)).status == BookingStatus.CONFIRMED

    @pytest.mark.asyncio
    async def test_delay_moves_schedule(self, coordinator, make_flight, admin):
        flight = await make_flight(departs_in=timedelta(hours=5))
        revised = RevisedWindow(
            departs_at=flight.departs_at + timedelta(hours=2),
            arrives_at=flight.departs_at + timedelta(hours=4),
        )

        delayed = await coordinator.advance_resource_status(flight.ref, FlightStatus.DELAYED, admin, revised=revised)

        assert delayed.status == FlightStatus.DELAYED
        assert delayed.departs_at == revised.departs_at
        assert delayed.arrives_at == revised.arrives_at

    @pytest.mark.asyncio
    async def test_closing_room_cancels_stays(self, coordinator, make_room, customer, admin, clock):
        room = await make_room(capacity=3)
        check_in = clock.now + timedelta(days=5)
        booking = await coordinator.reserve(
            request_for(room, stay=Stay(check_in=check_in, check_out=check_in + timedelta(days=2))), customer
        )

        closed = await coordinator.advance_resource_status(room.ref, RoomStatus.CLOSED, admin)

        assert closed.capacity_available == 3
        assert (await coordinator.get_booking(booking.id, admin)).status == BookingStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_only_admins_change_resource_status(self, coordinator, make_flight, agent):
        flight = await make_flight()
        with pytest.raises(AuthorizationError):
            await coordinator.advance_resource_status(flight.ref, FlightStatus.CANCELLED, agent)


class TestInventory:

    @pytest.mark.asyncio
    async def test_new_resource_opens_ledger(self, coordinator, make_tour):
        tour = await make_tour(capacity=7)
        check, entries = await coordinator.ledger_report(tour.ref)

        assert check.consistent
        assert len(entries) == 1
        assert entries[0].reason == LedgerReason.ADJUST
        assert entries[0].delta == 7

    @pytest.mark.asyncio
    async def test_adjust_capacity(self, coordinator, make_tour, customer, admin):
        tour = await make_tour(capacity=3)
        await coordinator.reserve(request_for(tour), customer)

        grown = await coordinator.adjust_capacity(tour.ref, 2, admin, note="extra guide")
        assert (grown.capacity_total, grown.capacity_available) == (5, 4)

        shrunk = await coordinator.adjust_capacity(tour.ref, -4, admin)
        assert (shrunk.capacity_total, shrunk.capacity_available) == (1, 0)
        await assert_ledger_consistent(coordinator, tour)

    @pytest.mark.asyncio
    async def test_cannot_shrink_into_booked_units(self, coordinator, make_tour, customer, admin):
        tour = await make_tour(capacity=2)
        await coordinator.reserve(request_for(tour), customer)

        with pytest.raises(ConflictError) as exc_info:
            await coordinator.adjust_capacity(tour.ref, -2, admin)
        assert exc_info.value.code == "CAPACITY_IN_USE"

    @pytest.mark.asyncio
    async def test_zero_adjustment_rejected(self, coordinator, make_tour, admin):
        tour = await make_tour()
        with pytest.raises(ValidationError):
            await coordinator.adjust_capacity(tour.ref, 0, admin)


class TestDeleteResource:

    @pytest.mark.asyncio
    async def test_resource_with_live_booking_is_kept(self, coordinator, make_tour, customer, admin):
        tour = await make_tour()
        await coordinator.reserve(request_for(tour), customer)

        with pytest.raises(DeletionBlockedError):
            await coordinator.delete_resource(tour.ref, admin)
        assert await coordinator.get_resource(tour.ref)

    @pytest.mark.asyncio
    async def test_resource_with_cancelled_bookings_is_deleted(self, coordinator, make_tour, customer, admin):
        tour = await make_tour()
        booking = await coordinator.reserve(request_for(tour), customer)
        await coordinator.release(booking.id, customer)

        await coordinator.delete_resource(tour.ref, admin)

        with pytest.raises(NotFoundError):
            await coordinator.get_resource(tour.ref)
        with pytest.raises(NotFoundError):
            await coordinator.get_booking(booking.id, admin)


class TestTransactions:

    @pytest.mark.asyncio
    async def test_contention_is_retried_then_surfaces_as_conflict(self, coordinator, test_settings):
        calls = 0

        async def work(session):
            nonlocal calls
            calls += 1
            raise OperationalError("UPDATE tours", {}, Exception("database is locked"))

        with pytest.raises(TransientError) as exc_info:
            await coordinator.transaction("reserve", work)

        assert calls == test_settings.coordinator_max_attempts
        assert isinstance(exc_info.value, ConflictError)
        assert exc_info.value.code == "CONTENTION"
        assert exc_info.value.retryable
        assert exc_info.value.problem_details["attempts"] == test_settings.coordinator_max_attempts

    @pytest.mark.asyncio
    async def test_contention_that_clears_is_invisible(self, coordinator):
        calls = 0

        async def work(session):
            nonlocal calls
            calls += 1
            if calls < 3:
                raise OperationalError("UPDATE tours", {}, Exception("database is locked"))
            return "done"

        assert await coordinator.transaction("reserve", work) == "done"
        assert calls == 3

    @pytest.mark.asyncio
    async def test_other_database_errors_are_not_retried(self, coordinator):
        calls = 0

        async def work(session):
            nonlocal calls
            calls += 1
            raise IntegrityError("INSERT INTO bookings", {}, Exception("UNIQUE constraint failed"))

        with pytest.raises(IntegrityError):
            await coordinator.transaction("reserve", work)
        assert calls == 1
