"""Hotel room model definition."""

from enum import Enum

from sqlalchemy import CheckConstraint, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base
from .resource import BookableResource, ResourceKind, capacity_constraints, status_column


class RoomStatus(str, Enum):
    """Whether a room type is open for sale."""
    OPEN = "OPEN"
    CLOSED = "CLOSED"


class Room(BookableResource, Base):
    """
    A room type at a hotel.

    ``capacity_total`` counts rooms of this type; ``price_amount`` is per room
    per night. Stays carry their own dates on the booking.
    """

    __tablename__ = "rooms"

    KIND = ResourceKind.ROOM
    BOOKABLE_STATUSES = frozenset({RoomStatus.OPEN})
    CANCEL_STATUS = RoomStatus.CLOSED
    UNIT_NOUN = "rooms"
    BOOKING_FK = "room_id"

    hotel_name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    room_type: Mapped[str] = mapped_column(String(64), nullable=False)
    max_occupancy: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[RoomStatus] = status_column(RoomStatus, RoomStatus.OPEN)

    __table_args__ = (
        *capacity_constraints("room"),
        CheckConstraint("max_occupancy > 0", name="ck_room_max_occupancy_positive"),
    )

    def __repr__(self) -> str:
        return (
            f"<Room(id={self.id}, hotel='{self.hotel_name}', type='{self.room_type}', "
            f"status={self.status}, rooms={self.capacity_available}/{self.capacity_total})>"
        )
