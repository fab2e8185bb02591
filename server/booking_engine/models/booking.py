"""Booking and Payment model definitions."""

from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional, Union
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..core.clock import utcnow
from ..core.database import Base
from .resource import ResourceKind, ResourceRef, status_column

if TYPE_CHECKING:
    from .flight import Flight
    from .room import Room
    from .tour import Tour


class BookingStatus(str, Enum):
    """Booking lifecycle status."""
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


class PaymentStatus(str, Enum):
    """Payment status."""
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


# Bookings in these statuses hold units on their resource
ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED)

_EXACTLY_ONE_RESOURCE = (
    "(resource_kind = 'TOUR' AND tour_id IS NOT NULL AND room_id IS NULL AND flight_id IS NULL)"
    " OR (resource_kind = 'ROOM' AND room_id IS NOT NULL AND tour_id IS NULL AND flight_id IS NULL)"
    " OR (resource_kind = 'FLIGHT' AND flight_id IS NOT NULL AND tour_id IS NULL AND room_id IS NULL)"
)


class Booking(Base):
    """A customer's claim on units of exactly one tour, room or flight."""

    __tablename__ = "bookings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    # Resource reference; exactly one foreign key is set, matching resource_kind
    resource_kind: Mapped[ResourceKind] = mapped_column(
        SAEnum(ResourceKind, native_enum=False, length=10),
        nullable=False,
        index=True
    )
    tour_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("tours.id", ondelete="CASCADE"), nullable=True, index=True
    )
    room_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("rooms.id", ondelete="CASCADE"), nullable=True, index=True
    )
    flight_id: Mapped[Optional[UUID]] = mapped_column(
        Uuid, ForeignKey("flights.id", ondelete="CASCADE"), nullable=True, index=True
    )

    customer_ref: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    units: Mapped[int] = mapped_column(Integer, nullable=False)
    guests: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[BookingStatus] = status_column(BookingStatus, BookingStatus.PENDING)

    # Price in minor units
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    booking_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    payment_deadline: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True, index=True)
    requires_immediate_payment: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Stay dates, rooms only
    check_in: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    check_out: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    nights: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(_EXACTLY_ONE_RESOURCE, name="ck_booking_exactly_one_resource"),
        CheckConstraint("units > 0", name="ck_booking_units_positive"),
        CheckConstraint("guests > 0", name="ck_booking_guests_positive"),
        CheckConstraint("total_amount >= 0", name="ck_booking_total_amount_non_negative"),
        CheckConstraint("length(customer_ref) > 0", name="ck_booking_customer_ref_not_empty"),
        CheckConstraint(
            "check_in IS NULL OR check_out IS NULL OR check_out > check_in",
            name="ck_booking_check_out_after_check_in"
        ),
    )

    tour: Mapped[Optional["Tour"]] = relationship("Tour", lazy="selectin")
    room: Mapped[Optional["Room"]] = relationship("Room", lazy="selectin")
    flight: Mapped[Optional["Flight"]] = relationship("Flight", lazy="selectin")
    payment: Mapped[Optional["Payment"]] = relationship(
        "Payment",
        back_populates="booking",
        cascade="all, delete-orphan",
        uselist=False,
        lazy="selectin",
    )

    @property
    def resource_id(self) -> UUID:
        return {
            ResourceKind.TOUR: self.tour_id,
            ResourceKind.ROOM: self.room_id,
            ResourceKind.FLIGHT: self.flight_id,
        }[self.resource_kind]

    @property
    def resource_ref(self) -> ResourceRef:
        return ResourceRef(self.resource_kind, self.resource_id)

    @property
    def resource(self) -> Union["Tour", "Room", "Flight", None]:
        return {
            ResourceKind.TOUR: self.tour,
            ResourceKind.ROOM: self.room,
            ResourceKind.FLIGHT: self.flight,
        }[self.resource_kind]

    @property
    def window_start(self) -> Optional[datetime]:
        """When the booked service begins: the stay's check-in or the resource's start."""
        if self.resource_kind == ResourceKind.ROOM:
            return self.check_in
        resource = self.resource
        return resource.window_start if resource is not None else None

    @property
    def payment_status(self) -> Optional[PaymentStatus]:
        return self.payment.status if self.payment is not None else None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_BOOKING_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Booking(id={self.id}, resource={self.resource_kind}:{self.resource_id}, "
            f"units={self.units}, status={self.status})>"
        )


class Payment(Base):
    """The single payment record attached to a booking."""

    __tablename__ = "payments"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    booking_id: Mapped[UUID] = mapped_column(
        Uuid,
        ForeignKey("bookings.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True
    )
    status: Mapped[PaymentStatus] = status_column(PaymentStatus, PaymentStatus.PENDING)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_payment_amount_non_negative"),
    )

    booking: Mapped["Booking"] = relationship("Booking", back_populates="payment")

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, booking_id={self.booking_id}, status={self.status})>"
