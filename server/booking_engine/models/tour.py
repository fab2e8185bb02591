"""Tour model definition."""

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from ..core.database import Base
from .resource import BookableResource, ResourceKind, capacity_constraints, status_column


class TourStatus(str, Enum):
    """Tour operational status."""
    UPCOMING = "UPCOMING"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Tour(BookableResource, Base):
    """A guided tour with a fixed number of guest places."""

    __tablename__ = "tours"

    KIND = ResourceKind.TOUR
    BOOKABLE_STATUSES = frozenset({TourStatus.UPCOMING, TourStatus.ONGOING})
    CANCEL_STATUS = TourStatus.CANCELLED
    NON_DELETABLE_STATUSES = frozenset({TourStatus.ONGOING, TourStatus.COMPLETED})
    UNIT_NOUN = "places"
    BOOKING_FK = "tour_id"

    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    starts_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    ends_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    status: Mapped[TourStatus] = status_column(TourStatus, TourStatus.UPCOMING)

    __table_args__ = (
        *capacity_constraints("tour"),
        CheckConstraint("ends_at > starts_at", name="ck_tour_ends_after_start"),
    )

    @property
    def window_start(self) -> datetime:
        return self.starts_at

    @property
    def window_end(self) -> datetime:
        return self.ends_at

    def __repr__(self) -> str:
        return (
            f"<Tour(id={self.id}, name='{self.name}', status={self.status}, "
            f"capacity={self.capacity_available}/{self.capacity_total})>"
        )
