"""Flight model definition."""

from datetime import datetime
from enum import Enum

from sqlalchemy import CheckConstraint, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base
from .resource import BookableResource, ResourceKind, capacity_constraints, status_column


class FlightStatus(str, Enum):
    """Flight operational status."""
    SCHEDULED = "SCHEDULED"
    DELAYED = "DELAYED"
    DEPARTED = "DEPARTED"
    LANDED = "LANDED"
    CANCELLED = "CANCELLED"


class Flight(BookableResource, Base):
    """A scheduled flight with a fixed number of seats."""

    __tablename__ = "flights"

    KIND = ResourceKind.FLIGHT
    BOOKABLE_STATUSES = frozenset({FlightStatus.SCHEDULED, FlightStatus.DELAYED})
    CANCEL_STATUS = FlightStatus.CANCELLED
    NON_DELETABLE_STATUSES = frozenset({FlightStatus.DEPARTED, FlightStatus.LANDED, FlightStatus.DELAYED})
    UNIT_NOUN = "seats"
    BOOKING_FK = "flight_id"

    flight_number: Mapped[str] = mapped_column(String(16), nullable=False, index=True)
    origin: Mapped[str] = mapped_column(String(64), nullable=False)
    destination: Mapped[str] = mapped_column(String(64), nullable=False)
    departs_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    arrives_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[FlightStatus] = status_column(FlightStatus, FlightStatus.SCHEDULED)

    __table_args__ = (
        *capacity_constraints("flight"),
        CheckConstraint("arrives_at > departs_at", name="ck_flight_arrives_after_departure"),
    )

    @property
    def window_start(self) -> datetime:
        return self.departs_at

    @property
    def window_end(self) -> datetime:
        return self.arrives_at

    def __repr__(self) -> str:
        return (
            f"<Flight(id={self.id}, number='{self.flight_number}', status={self.status}, "
            f"seats={self.capacity_available}/{self.capacity_total})>"
        )
