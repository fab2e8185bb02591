"""Ledger entry model: audit trail of every capacity change."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, DateTime, Integer, String, Uuid
from sqlalchemy import Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from ..core.clock import utcnow
from ..core.database import Base
from .resource import ResourceKind


class LedgerReason(str, Enum):
    """Why capacity moved."""
    RESERVE = "reserve"
    RELEASE = "release"
    EXPIRE = "expire"
    CASCADE = "cascade"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"
    COMPLETE = "complete"
    DELETE = "delete"
    ADJUST = "adjust"


class LedgerEntry(Base):
    """
    One capacity movement on one resource.

    ``delta`` is the signed change of ``capacity_available``. Adjustments move
    ``capacity_total`` by the same amount. Rows keep no foreign keys so the
    trail survives deletion of the resource or booking.
    """

    __tablename__ = "ledger_entries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    resource_kind: Mapped[ResourceKind] = mapped_column(
        SAEnum(ResourceKind, native_enum=False, length=10),
        nullable=False
    )
    resource_id: Mapped[UUID] = mapped_column(Uuid, nullable=False, index=True)
    booking_id: Mapped[Optional[UUID]] = mapped_column(Uuid, nullable=True, index=True)

    delta: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[LedgerReason] = mapped_column(
        SAEnum(LedgerReason, native_enum=False, length=20, values_callable=lambda e: [m.value for m in e]),
        nullable=False
    )
    note: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)

    capacity_total_before: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity_total_after: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity_available_before: Mapped[int] = mapped_column(Integer, nullable=False)
    capacity_available_after: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utcnow, index=True)

    __table_args__ = (
        CheckConstraint("delta != 0", name="ck_ledger_entry_delta_nonzero"),
        CheckConstraint("length(actor) > 0", name="ck_ledger_entry_actor_not_empty"),
        CheckConstraint("capacity_available_after >= 0", name="ck_ledger_entry_available_after_non_negative"),
        CheckConstraint(
            "capacity_available_after <= capacity_total_after",
            name="ck_ledger_entry_available_lte_total_after"
        ),
        CheckConstraint(
            "capacity_available_after = capacity_available_before + delta",
            name="ck_ledger_entry_delta_consistency"
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<LedgerEntry(resource={self.resource_kind}:{self.resource_id}, "
            f"delta={self.delta}, reason={self.reason}, actor='{self.actor}')>"
        )
