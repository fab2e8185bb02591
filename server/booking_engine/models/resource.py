"""Shared definitions for bookable resources (tours, rooms, flights)."""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ClassVar, Optional
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, Integer, String, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from ..core.clock import utcnow


class ResourceKind(str, Enum):
    """Kinds of inventory a booking can hold."""
    TOUR = "TOUR"
    ROOM = "ROOM"
    FLIGHT = "FLIGHT"


@dataclass(frozen=True)
class ResourceRef:
    """Tagged reference to exactly one resource."""

    kind: ResourceKind
    id: UUID

    @property
    def lock_key(self) -> tuple[str, str]:
        """Global ordering used whenever more than one resource is locked."""
        return (self.kind.value, str(self.id))

    def __str__(self) -> str:
        return f"{self.kind.value}:{self.id}"


def status_column(enum_cls: type[Enum], default: Enum):
    """Status stored as a short string, loaded back as the enum member."""
    return mapped_column(
        SAEnum(enum_cls, native_enum=False, length=20, validate_strings=True),
        nullable=False,
        default=default,
        index=True,
    )


def capacity_constraints(prefix: str) -> tuple:
    return (
        CheckConstraint("capacity_total >= 0", name=f"ck_{prefix}_capacity_total_non_negative"),
        CheckConstraint("capacity_available >= 0", name=f"ck_{prefix}_capacity_available_non_negative"),
        CheckConstraint("capacity_available <= capacity_total", name=f"ck_{prefix}_capacity_available_lte_total"),
        CheckConstraint("price_amount >= 0", name=f"ck_{prefix}_price_amount_non_negative"),
        CheckConstraint("length(price_currency) = 3", name=f"ck_{prefix}_price_currency_length"),
    )


class BookableResource:
    """
    Columns and rules shared by every bookable resource.

    Concrete models declare which statuses accept reservations, which status
    means the resource was withdrawn, which statuses block deletion, what a
    unit is called in error messages, and which booking column points at them.
    """

    KIND: ClassVar[ResourceKind]
    BOOKABLE_STATUSES: ClassVar[frozenset]
    CANCEL_STATUS: ClassVar[Enum]
    NON_DELETABLE_STATUSES: ClassVar[frozenset] = frozenset()
    UNIT_NOUN: ClassVar[str] = "units"
    BOOKING_FK: ClassVar[str]

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    capacity_total: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity_available: Mapped[int] = mapped_column(Integer, nullable=False)

    # Unit price in minor units (per guest, per seat, or per room per night)
    price_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    price_currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    @property
    def ref(self) -> ResourceRef:
        return ResourceRef(self.KIND, self.id)

    @property
    def window_start(self) -> Optional[datetime]:
        return None

    @property
    def window_end(self) -> Optional[datetime]:
        return None

    @property
    def is_bookable(self) -> bool:
        return self.status in self.BOOKABLE_STATUSES

    @property
    def booked_units(self) -> int:
        return self.capacity_total - self.capacity_available
