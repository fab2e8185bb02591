"""Reservation coordinator: the single owner of ledger transactions.

Every operation that moves inventory or changes a booking's or resource's
status runs here, inside one database transaction per call. Lock contention
is retried with exponential backoff before surfacing as a retryable conflict.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, utcnow
from ..core.config import Settings, settings
from ..core.database import Database, is_transient_error
from ..core.dependencies import Requestor
from ..core.exceptions import (
    AuthorizationError,
    ConflictError,
    DeletionBlockedError,
    InvalidTransitionError,
    NotFoundError,
    ResourceNotBookableError,
    TransientError,
    ValidationError,
)
from ..core.observability import metrics_collector
from ..models.booking import Booking, BookingStatus, Payment, PaymentStatus
from ..models.flight import Flight, FlightStatus
from ..models.ledger import LedgerEntry, LedgerReason
from ..models.registry import resource_model
from ..models.resource import ResourceKind, ResourceRef
from ..models.tour import Tour, TourStatus
from .booking_rules import (
    calculate_payment_deadline,
    deletion_block_reason,
    ensure_mutable,
    validate_payment_transition,
    validate_transition,
)
from .deletion import (
    cancel_active_booking,
    delete_booking_row,
    delete_resource_row,
    load_resource_bookings,
    log_deletion,
)
from .ledger_service import LedgerCheck, LedgerService
from .resource_status import (
    DelayBounds,
    RevisedWindow,
    cancellation_block_reason,
    coerce_status,
    is_cancel_like,
    resource_deletion_block_reason,
    scheduled_path,
    validate_resource_transition,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Stay:
    """Check-in and check-out for a room booking."""

    check_in: datetime
    check_out: datetime

    @property
    def nights(self) -> int:
        return (self.check_out.date() - self.check_in.date()).days


@dataclass(frozen=True)
class ReservationRequest:
    ref: ResourceRef
    customer_ref: str
    units: int
    guests: Optional[int] = None
    price_override: Optional[int] = None
    stay: Optional[Stay] = None


class ReservationCoordinator:
    """
    Reserve, release and transfer inventory, and drive booking and resource
    status changes, each as one atomic unit of work.
    """

    def __init__(self, database: Database, config: Settings = settings, clock: Clock = utcnow):
        self.database = database
        self.settings = config
        self.clock = clock
        self.delay_bounds = DelayBounds(
            min_duration=timedelta(minutes=config.delay_min_duration_minutes),
            max_duration=timedelta(hours=config.delay_max_duration_hours),
        )

    # Transactions

    async def transaction(self, operation: str, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run ``work`` in its own transaction, retrying lock contention with backoff."""
        attempts = self.settings.coordinator_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                async with self.database.session() as session:
                    async with session.begin():
                        return await work(session)
            except DBAPIError as e:
                if not is_transient_error(e):
                    raise
                if attempt == attempts:
                    logger.warning(
                        "Transaction abandoned after repeated contention",
                        extra={"operation": operation, "attempts": attempts, "error": str(e.orig)},
                    )
                    raise TransientError(operation, attempts) from e
                metrics_collector.record_transaction_retry(operation)
                delay = self.settings.coordinator_backoff_seconds * (2 ** (attempt - 1))
                logger.debug(
                    "Retrying contended transaction",
                    extra={"operation": operation, "attempt": attempt, "delay_seconds": delay},
                )
                await asyncio.sleep(delay)
        raise AssertionError("unreachable")

    def _is_postgres(self, session: AsyncSession) -> bool:
        return session.bind.dialect.name == "postgresql"

    async def _get_booking(self, session: AsyncSession, booking_id: UUID, lock: bool = False) -> Booking:
        stmt = select(Booking).where(Booking.id == booking_id).execution_options(populate_existing=True)
        if lock and self._is_postgres(session):
            stmt = stmt.with_for_update(of=Booking)
        booking = (await session.execute(stmt)).scalar_one_or_none()
        if booking is None:
            raise NotFoundError(resource_type="booking", resource_id=str(booking_id))
        return booking

    async def _set_booking_status(
        self,
        session: AsyncSession,
        booking: Booking,
        expected: BookingStatus,
        target: BookingStatus,
    ) -> None:
        result = await session.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == expected)
            .values(status=target)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(
                detail=f"Booking {booking.id} changed while the request was processed",
                code="CONCURRENT_MODIFICATION",
                retryable=True,
            )

    @staticmethod
    def _authorize(booking: Booking, requestor: Requestor) -> None:
        if not requestor.can_act_for(booking.customer_ref):
            raise AuthorizationError(detail="Customers may only act on their own bookings")

    @staticmethod
    def _require_staff(requestor: Requestor, action: str) -> None:
        if not requestor.is_staff:
            raise AuthorizationError(detail=f"Only staff may {action}", required_permissions=["ADMIN", "AGENT"])

    @staticmethod
    def _require_admin(requestor: Requestor, action: str) -> None:
        if not requestor.is_admin:
            raise AuthorizationError(detail=f"Only administrators may {action}", required_permissions=["ADMIN"])

    def _validate_stay(self, ref: ResourceRef, stay: Optional[Stay], now: datetime) -> Optional[Stay]:
        if ref.kind != ResourceKind.ROOM:
            return None
        if stay is None:
            raise ValidationError(
                detail="Room bookings require check-in and check-out dates",
                errors={"check_in": "required", "check_out": "required"},
            )
        if stay.nights < 1:
            raise ValidationError(
                detail="Check-out must be at least one night after check-in",
                errors={"check_out": "must be after check_in"},
            )
        if stay.check_in.date() < now.date():
            raise ValidationError(detail="Check-in date has already passed", errors={"check_in": "in the past"})
        return stay

    @staticmethod
    def _validate_party(resource, units: int, guests: int) -> None:
        if resource.KIND == ResourceKind.ROOM:
            if guests > resource.max_occupancy * units:
                raise ValidationError(
                    detail=f"{guests} guests exceed the occupancy of {units} room(s)",
                    errors={"guests": f"must be <= {resource.max_occupancy * units}"},
                )
        elif guests != units:
            raise ValidationError(
                detail=f"{resource.KIND.value.lower()} bookings take one {resource.UNIT_NOUN[:-1]} per guest",
                errors={"guests": "must equal units"},
            )

    @staticmethod
    def _price(resource, units: int, stay: Optional[Stay]) -> int:
        if stay is not None:
            return resource.price_amount * stay.nights * units
        return resource.price_amount * units

    @staticmethod
    def _window_start(resource, stay: Optional[Stay]) -> Optional[datetime]:
        return stay.check_in if stay is not None else resource.window_start

    # Reservations

    async def reserve(self, request: ReservationRequest, requestor: Requestor) -> Booking:
        """
        Claim units of a resource for a customer and create a PENDING booking.

        The capacity decrement and the booking insert commit together or not at all.

        Raises:
            AuthorizationError: If a customer books for someone else
            NotFoundError: If the resource does not exist
            ConflictError: If the resource is exhausted or not bookable
            ValidationError: If the party or stay is invalid
        """
        if not requestor.can_act_for(request.customer_ref):
            raise AuthorizationError(detail="Customers may only book for themselves")
        if request.price_override is not None:
            self._require_staff(requestor, "set a booking price")
        if request.units < 1:
            raise ValidationError(detail="units must be positive", errors={"units": "must be >= 1"})

        now = self.clock()
        stay = self._validate_stay(request.ref, request.stay, now)
        guests = request.guests if request.guests is not None else request.units

        async def work(session: AsyncSession) -> Booking:
            ledger = LedgerService(session)
            booking_id = uuid4()
            resource = await ledger.debit(
                request.ref, request.units, LedgerReason.RESERVE, requestor.user_id, booking_id=booking_id
            )
            if resource.KIND == ResourceKind.FLIGHT and resource.departs_at <= now:
                raise ResourceNotBookableError(request.ref.kind.value, str(request.ref.id), FlightStatus.DEPARTED.value)
            self._validate_party(resource, request.units, guests)

            deadline = calculate_payment_deadline(self._window_start(resource, stay), now)
            amount = request.price_override
            if amount is None:
                amount = self._price(resource, request.units, stay)

            booking = Booking(
                id=booking_id,
                resource_kind=request.ref.kind,
                customer_ref=request.customer_ref,
                units=request.units,
                guests=guests,
                status=BookingStatus.PENDING,
                total_amount=amount,
                currency=resource.price_currency,
                booking_date=now,
                payment_deadline=deadline.deadline,
                requires_immediate_payment=deadline.requires_immediate_payment,
                check_in=stay.check_in if stay else None,
                check_out=stay.check_out if stay else None,
                nights=stay.nights if stay else None,
            )
            setattr(booking, resource.BOOKING_FK, request.ref.id)
            session.add(booking)
            await session.flush()
            await session.refresh(booking)
            return booking

        try:
            booking = await self.transaction("reserve", work)
        except ConflictError:
            metrics_collector.record_reservation(request.ref.kind.value, "conflict")
            raise

        metrics_collector.record_reservation(request.ref.kind.value, "reserved")
        logger.info(
            "Reservation created",
            extra={
                "booking_id": str(booking.id),
                "resource": str(request.ref),
                "units": booking.units,
                "customer_ref": booking.customer_ref,
                "payment_deadline": booking.payment_deadline.isoformat(),
                "requires_immediate_payment": booking.requires_immediate_payment,
                "actor": requestor.user_id,
            },
        )
        return booking

    async def release(
        self,
        booking_id: UUID,
        requestor: Requestor,
        reason: LedgerReason = LedgerReason.RELEASE,
    ) -> Booking:
        """
        Cancel a booking and give its units back.

        Releasing an already cancelled booking returns it unchanged.

        Raises:
            NotFoundError: If the booking does not exist
            InvalidTransitionError: If the booking is completed or has a completed payment
        """
        released = False

        async def work(session: AsyncSession) -> Booking:
            nonlocal released
            released = False
            booking = await self._get_booking(session, booking_id, lock=True)
            self._authorize(booking, requestor)
            if booking.status == BookingStatus.CANCELLED:
                return booking
            observed = booking.status
            validate_transition(observed, BookingStatus.CANCELLED, booking.payment_status)

            ledger = LedgerService(session)
            released = await cancel_active_booking(
                session, ledger, booking, reason, requestor.user_id, expected=observed
            )
            await session.refresh(booking)
            if not released and booking.status != BookingStatus.CANCELLED:
                # Paid or completed after the read
                raise ConflictError(
                    detail=f"Booking {booking.id} changed while the request was processed",
                    code="CONCURRENT_MODIFICATION",
                    retryable=True,
                )
            return booking

        booking = await self.transaction("release", work)
        if released:
            metrics_collector.record_release(booking.resource_kind.value, reason.value)
            metrics_collector.record_booking_transition(BookingStatus.CANCELLED.value)
            logger.info(
                "Reservation released",
                extra={
                    "booking_id": str(booking.id),
                    "resource": str(booking.resource_ref),
                    "units": booking.units,
                    "reason": reason.value,
                    "actor": requestor.user_id,
                },
            )
        return booking

    async def expire_booking(self, booking_id: UUID, now: datetime, requestor: Requestor) -> bool:
        """
        Cancel a PENDING booking whose payment deadline has passed.

        Returns False when the booking was paid, cancelled or removed in the
        meantime, so running the same expiry twice changes nothing.
        """
        async def work(session: AsyncSession) -> Optional[ResourceKind]:
            result = await session.execute(
                update(Booking)
                .where(
                    Booking.id == booking_id,
                    Booking.status == BookingStatus.PENDING,
                    Booking.payment_deadline <= now,
                )
                .values(status=BookingStatus.CANCELLED)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            booking = await self._get_booking(session, booking_id)
            await LedgerService(session).credit(
                booking.resource_ref, booking.units, LedgerReason.EXPIRE, requestor.user_id, booking_id=booking.id
            )
            return booking.resource_kind

        kind = await self.transaction("expire", work)
        if kind is None:
            return False
        metrics_collector.record_release(kind.value, LedgerReason.EXPIRE.value)
        metrics_collector.record_booking_transition(BookingStatus.CANCELLED.value)
        return True

    async def find_expired_booking_ids(self, now: datetime) -> list[UUID]:
        async with self.database.session() as session:
            stmt = (
                select(Booking.id)
                .where(Booking.status == BookingStatus.PENDING, Booking.payment_deadline <= now)
                .order_by(Booking.payment_deadline)
            )
            return list((await session.execute(stmt)).scalars().all())

    async def transfer(
        self,
        booking_id: UUID,
        new_ref: ResourceRef,
        requestor: Requestor,
        stay: Optional[Stay] = None,
    ) -> Booking:
        """
        Move a live booking to another resource atomically.

        Both resources are locked in the global order; if the new one cannot
        take the units the whole transaction rolls back and the booking keeps
        its original reservation.

        Raises:
            NotFoundError: If the booking or new resource does not exist
            InvalidTransitionError: If the booking is cancelled or completed
            ConflictError: If the new resource is exhausted or not bookable
        """
        now = self.clock()
        stay = self._validate_stay(new_ref, stay, now)
        moved = False
        old_ref_holder: dict[str, ResourceRef] = {}

        async def work(session: AsyncSession) -> Booking:
            nonlocal moved
            moved = False
            booking = await self._get_booking(session, booking_id)
            self._authorize(booking, requestor)
            ensure_mutable(booking.status)

            old_ref = booking.resource_ref
            old_ref_holder["ref"] = old_ref
            same_stay = stay is None or (stay.check_in == booking.check_in and stay.check_out == booking.check_out)
            if old_ref == new_ref and same_stay:
                return booking

            ledger = LedgerService(session)
            target = await ledger.get_resource(new_ref)
            self._validate_party(target, booking.units, booking.guests)
            amount = self._price(target, booking.units, stay)
            if booking.payment_status == PaymentStatus.COMPLETED and amount != booking.total_amount:
                raise ConflictError(
                    detail="A paid booking can only move to a resource with the same total price",
                    code="PRICE_LOCKED",
                )

            values = {
                "resource_kind": new_ref.kind,
                "tour_id": None,
                "room_id": None,
                "flight_id": None,
                "total_amount": amount,
                "currency": target.price_currency,
                "check_in": stay.check_in if stay else None,
                "check_out": stay.check_out if stay else None,
                "nights": stay.nights if stay else None,
            }
            values[target.BOOKING_FK] = new_ref.id
            if booking.status == BookingStatus.PENDING:
                deadline = calculate_payment_deadline(self._window_start(target, stay), now)
                values["payment_deadline"] = deadline.deadline
                values["requires_immediate_payment"] = deadline.requires_immediate_payment

            # Claim the booking row first so a concurrent release or transfer loses cleanly
            result = await session.execute(
                update(Booking)
                .where(Booking.id == booking.id, Booking.status == booking.status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(
                    detail=f"Booking {booking.id} changed while the request was processed",
                    code="CONCURRENT_MODIFICATION",
                    retryable=True,
                )

            if old_ref != new_ref:
                await ledger.lock_resources([old_ref, new_ref])
                await ledger.debit(new_ref, booking.units, LedgerReason.TRANSFER_IN, requestor.user_id, booking.id)
                await ledger.credit(old_ref, booking.units, LedgerReason.TRANSFER_OUT, requestor.user_id, booking.id)
                if new_ref.kind == ResourceKind.FLIGHT and target.departs_at <= now:
                    raise ResourceNotBookableError(new_ref.kind.value, str(new_ref.id), FlightStatus.DEPARTED.value)
                moved = True

            if booking.payment is not None and booking.payment.status != PaymentStatus.COMPLETED:
                booking.payment.amount = amount
                booking.payment.currency = target.price_currency
                await session.flush()

            await session.refresh(booking)
            return booking

        booking = await self.transaction("transfer", work)
        if moved:
            old_ref = old_ref_holder["ref"]
            metrics_collector.record_transfer(old_ref.kind.value, new_ref.kind.value)
            logger.info(
                "Booking transferred",
                extra={
                    "booking_id": str(booking.id),
                    "from_resource": str(old_ref),
                    "to_resource": str(new_ref),
                    "units": booking.units,
                    "actor": requestor.user_id,
                },
            )
        return booking

    # Booking lifecycle

    async def change_status(self, booking_id: UUID, target: BookingStatus, requestor: Requestor) -> Booking:
        """
        Move a booking along its state machine.

        Cancelling goes through ``release``. Completing returns the units,
        since a completed booking no longer holds inventory.
        """
        target = BookingStatus(target)
        if target == BookingStatus.CANCELLED:
            return await self.release(booking_id, requestor, reason=LedgerReason.RELEASE)
        self._require_staff(requestor, f"mark bookings {target.value}")

        async def work(session: AsyncSession) -> Booking:
            booking = await self._get_booking(session, booking_id)
            current = booking.status
            validate_transition(current, target, booking.payment_status)
            await self._set_booking_status(session, booking, current, target)
            if target == BookingStatus.COMPLETED:
                await LedgerService(session).credit(
                    booking.resource_ref, booking.units, LedgerReason.COMPLETE, requestor.user_id, booking.id
                )
            await session.refresh(booking)
            return booking

        booking = await self.transaction("change_status", work)
        metrics_collector.record_booking_transition(target.value)
        logger.info(
            "Booking status changed",
            extra={"booking_id": str(booking.id), "status": target.value, "actor": requestor.user_id},
        )
        return booking

    async def record_payment(self, booking_id: UUID, status: PaymentStatus, requestor: Requestor) -> Booking:
        """
        Record the outcome of a payment attempt.

        A completed payment confirms the PENDING booking in the same transaction.

        Raises:
            InvalidTransitionError: If the payment or booking cannot take this status
        """
        status = PaymentStatus(status)
        self._require_staff(requestor, "record payments")

        async def work(session: AsyncSession) -> Booking:
            booking = await self._get_booking(session, booking_id, lock=True)
            if booking.status == BookingStatus.CANCELLED:
                raise InvalidTransitionError(
                    "payment", booking.payment_status.value if booking.payment_status else "NONE", status.value,
                    reason="payments cannot be recorded on a cancelled booking",
                )
            validate_payment_transition(booking.payment_status, status)

            if status == PaymentStatus.COMPLETED:
                if booking.status != BookingStatus.PENDING:
                    raise InvalidTransitionError(
                        "booking", booking.status.value, BookingStatus.CONFIRMED.value,
                        reason="only pending bookings can be paid",
                    )
                await self._set_booking_status(session, booking, BookingStatus.PENDING, BookingStatus.CONFIRMED)

            if booking.payment is None:
                session.add(Payment(
                    booking_id=booking.id,
                    status=status,
                    amount=booking.total_amount,
                    currency=booking.currency,
                ))
            else:
                booking.payment.status = status
            await session.flush()
            await session.refresh(booking)
            return booking

        booking = await self.transaction("record_payment", work)
        if status == PaymentStatus.COMPLETED:
            metrics_collector.record_booking_transition(BookingStatus.CONFIRMED.value)
        logger.info(
            "Payment recorded",
            extra={
                "booking_id": str(booking.id),
                "payment_status": status.value,
                "booking_status": booking.status.value,
                "actor": requestor.user_id,
            },
        )
        return booking

    async def delete_booking(self, booking_id: UUID, requestor: Requestor) -> None:
        """
        Delete a booking, returning its units first if it still holds any.

        Raises:
            DeletionBlockedError: If the booking is completed, paid, or confirmed for an upcoming start
        """
        self._require_staff(requestor, "delete bookings")

        async def work(session: AsyncSession) -> None:
            now = self.clock()
            booking = await self._get_booking(session, booking_id)
            reason = deletion_block_reason(booking.status, booking.payment_status, booking.window_start, now)
            if reason:
                raise DeletionBlockedError("booking", str(booking_id), reason)
            await delete_booking_row(session, LedgerService(session), booking, requestor.user_id)
            log_deletion("booking", booking_id, requestor.user_id, now)

        await self.transaction("delete_booking", work)

    async def get_booking(self, booking_id: UUID, requestor: Requestor) -> Booking:
        async with self.database.session() as session:
            booking = await self._get_booking(session, booking_id)
            self._authorize(booking, requestor)
            return booking

    # Resources

    async def create_resource(self, kind: ResourceKind, fields: dict, requestor: Requestor):
        """Register a new tour, room or flight with all of its capacity available."""
        self._require_admin(requestor, "create resources")
        model = resource_model(kind)

        async def work(session: AsyncSession):
            return await LedgerService(session).open(model(**fields), requestor.user_id)

        resource = await self.transaction("create_resource", work)
        logger.info(
            "Resource created",
            extra={
                "resource": str(resource.ref),
                "capacity_total": resource.capacity_total,
                "actor": requestor.user_id,
            },
        )
        return resource

    async def get_resource(self, ref: ResourceRef):
        async with self.database.session() as session:
            return await LedgerService(session).get_resource(ref)

    async def list_resources(
        self,
        kind: ResourceKind,
        status=None,
        available_only: bool = False,
        limit: int = 50,
    ) -> list:
        model = resource_model(kind)
        stmt = select(model)
        if status is not None:
            stmt = stmt.where(model.status == coerce_status(kind, status))
        if available_only:
            stmt = stmt.where(model.capacity_available > 0)
        stmt = stmt.order_by(model.created_at).limit(limit)
        async with self.database.session() as session:
            return list((await session.execute(stmt)).scalars().all())

    async def advance_resource_status(
        self,
        ref: ResourceRef,
        target,
        requestor: Requestor,
        revised: Optional[RevisedWindow] = None,
    ):
        """
        Apply a manual status change to a resource.

        Withdrawing a resource (cancel or close) cancels every live booking on
        it and returns their units in the same transaction.

        Raises:
            InvalidTransitionError: If the table, the clock or existing bookings forbid it
            ValidationError: If a delay carries an invalid revised window
        """
        self._require_admin(requestor, "change resource status")
        target = coerce_status(ref.kind, target)
        cascaded: list[UUID] = []

        async def work(session: AsyncSession):
            cascaded.clear()
            now = self.clock()
            ledger = LedgerService(session)
            resource = await ledger.get_resource(ref, lock=True)
            current = resource.status
            validate_resource_transition(resource, target, now, revised, self.delay_bounds)

            bookings: list[Booking] = []
            if is_cancel_like(resource, target):
                bookings = (await load_resource_bookings(session, [ref]))[ref]
                blocked = cancellation_block_reason(bookings)
                if blocked:
                    raise InvalidTransitionError(ref.kind.value.lower(), current.value, target.value, reason=blocked)

            model = type(resource)
            values = {"status": target}
            if revised is not None and ref.kind == ResourceKind.FLIGHT and target == FlightStatus.DELAYED:
                values.update(departs_at=revised.departs_at, arrives_at=revised.arrives_at)
            result = await session.execute(
                update(model)
                .where(model.id == ref.id, model.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConflictError(
                    detail=f"{ref.kind.value.lower()} {ref.id} changed while the request was processed",
                    code="CONCURRENT_MODIFICATION",
                    retryable=True,
                )

            for booking in bookings:
                if booking.is_active and await cancel_active_booking(
                    session, ledger, booking, LedgerReason.CASCADE, requestor.user_id
                ):
                    cascaded.append(booking.id)

            return await ledger.get_resource(ref)

        resource = await self.transaction("advance_resource_status", work)
        metrics_collector.record_resource_transition(ref.kind.value, target.value, "manual")
        for _ in cascaded:
            metrics_collector.record_release(ref.kind.value, LedgerReason.CASCADE.value)
        logger.info(
            "Resource status changed",
            extra={
                "resource": str(ref),
                "status": target.value,
                "cancelled_bookings": [str(b) for b in cascaded],
                "actor": requestor.user_id,
            },
        )
        return resource

    async def apply_scheduled_transitions(self, ref: ResourceRef, now: datetime) -> list[tuple[str, str]]:
        """
        Roll a flight or tour forward (or back) to the status its window implies.

        Each step only applies if the row still has the status read at the
        start, so overlapping scheduler ticks cannot apply a step twice.
        """
        async def work(session: AsyncSession) -> list[tuple[str, str]]:
            resource = await LedgerService(session).get_resource(ref, lock=True)
            model = type(resource)
            applied = []
            for current, target in scheduled_path(resource, now):
                result = await session.execute(
                    update(model)
                    .where(model.id == ref.id, model.status == current)
                    .values(status=target)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    break
                applied.append((current.value, target.value))
            return applied

        applied = await self.transaction("scheduled_transition", work)
        for current, target in applied:
            metrics_collector.record_resource_transition(ref.kind.value, target, "scheduler")
            logger.info(
                "Resource status advanced by schedule",
                extra={"resource": str(ref), "from_status": current, "to_status": target},
            )
        return applied

    async def find_due_resources(self, now: datetime) -> list[ResourceRef]:
        """Flights and tours whose stored status lags behind the clock."""
        async with self.database.session() as session:
            flights = select(Flight.id).where(or_(
                and_(Flight.status.in_([FlightStatus.SCHEDULED, FlightStatus.DELAYED]), Flight.departs_at <= now),
                and_(
                    Flight.status == FlightStatus.DEPARTED,
                    or_(Flight.arrives_at <= now, Flight.departs_at > now),
                ),
            ))
            tours = select(Tour.id).where(or_(
                and_(Tour.status == TourStatus.UPCOMING, Tour.starts_at <= now),
                and_(Tour.status == TourStatus.ONGOING, or_(Tour.ends_at <= now, Tour.starts_at > now)),
            ))
            refs = [ResourceRef(ResourceKind.FLIGHT, i) for i in (await session.execute(flights)).scalars()]
            refs += [ResourceRef(ResourceKind.TOUR, i) for i in (await session.execute(tours)).scalars()]
            return refs

    async def delete_resource(self, ref: ResourceRef, requestor: Requestor) -> None:
        """
        Delete one resource under the same rules bulk deletion applies.

        Raises:
            DeletionBlockedError: If the resource's status, bookings or start time forbid it
        """
        self._require_admin(requestor, "delete resources")

        async def work(session: AsyncSession) -> None:
            now = self.clock()
            resource = await LedgerService(session).get_resource(ref, lock=True)
            bookings = (await load_resource_bookings(session, [ref]))[ref]
            reason = resource_deletion_block_reason(resource, bookings, now)
            if reason:
                raise DeletionBlockedError(ref.kind.value.lower(), str(ref.id), reason)
            await delete_resource_row(session, resource, bookings)
            log_deletion(ref.kind.value.lower(), ref.id, requestor.user_id, now)

        await self.transaction("delete_resource", work)

    # Inventory

    async def adjust_capacity(self, ref: ResourceRef, delta: int, requestor: Requestor, note: Optional[str] = None):
        """Change a resource's total capacity; reductions cannot touch booked units."""
        self._require_admin(requestor, "adjust capacity")

        async def work(session: AsyncSession):
            return await LedgerService(session).adjust_total(ref, delta, requestor.user_id, note=note)

        resource = await self.transaction("adjust_capacity", work)
        logger.info(
            "Capacity adjusted",
            extra={
                "resource": str(ref),
                "delta": delta,
                "capacity_total": resource.capacity_total,
                "capacity_available": resource.capacity_available,
                "actor": requestor.user_id,
            },
        )
        return resource

    async def ledger_report(self, ref: ResourceRef, limit: int = 100) -> tuple[LedgerCheck, list[LedgerEntry]]:
        """The resource's recent ledger entries and a consistency check against active bookings."""
        async with self.database.session() as session:
            ledger = LedgerService(session)
            return await ledger.check(ref), await ledger.entries(ref, limit=limit)

    async def verify_ledger(self, ref: ResourceRef) -> LedgerCheck:
        async with self.database.session() as session:
            return await LedgerService(session).verify(ref)
