"""Inventory ledger primitives.

Every change of ``capacity_available`` or ``capacity_total`` goes through this
service and writes a ``LedgerEntry`` in the caller's transaction. The service
never commits; the reservation coordinator owns transaction boundaries.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from ..core.exceptions import (
    CapacityExhaustedError,
    ConflictError,
    InvariantViolationError,
    NotFoundError,
    ResourceNotBookableError,
    ValidationError,
)
from ..models.booking import ACTIVE_BOOKING_STATUSES, Booking
from ..models.ledger import LedgerEntry, LedgerReason
from ..models.registry import resource_model
from ..models.resource import ResourceRef

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LedgerCheck:
    """Comparison of a resource's stored availability with its active bookings."""

    ref: ResourceRef
    capacity_total: int
    capacity_available: int
    held_units: int

    @property
    def expected_available(self) -> int:
        return self.capacity_total - self.held_units

    @property
    def consistent(self) -> bool:
        return self.capacity_available == self.expected_available


class LedgerService:
    """Capacity movements for a single database session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_resource(self, ref: ResourceRef, lock: bool = False):
        """
        Load a resource, optionally taking its row lock for the rest of the transaction.

        Raises:
            NotFoundError: If the resource does not exist
        """
        model = resource_model(ref.kind)
        stmt = select(model).where(model.id == ref.id).execution_options(populate_existing=True)
        if lock and self.db.bind.dialect.name == "postgresql":
            stmt = stmt.with_for_update()
        resource = (await self.db.execute(stmt)).scalar_one_or_none()
        if resource is None:
            raise NotFoundError(resource_type=ref.kind.value.lower(), resource_id=str(ref.id))
        return resource

    async def lock_resources(self, refs: list[ResourceRef]) -> dict[ResourceRef, object]:
        """Lock several resources in the global order so concurrent callers cannot deadlock."""
        locked = {}
        for ref in sorted(set(refs), key=lambda r: r.lock_key):
            locked[ref] = await self.get_resource(ref, lock=True)
        return locked

    async def debit(
        self,
        ref: ResourceRef,
        units: int,
        reason: LedgerReason,
        actor: str,
        booking_id: Optional[UUID] = None,
    ):
        """
        Take ``units`` from a resource in one guarded statement.

        The UPDATE only matches while the resource is bookable and has enough
        units left, so concurrent debits can never drive availability negative.

        Raises:
            NotFoundError: If the resource does not exist
            ResourceNotBookableError: If the resource status does not accept bookings
            CapacityExhaustedError: If fewer than ``units`` remain
        """
        if units <= 0:
            raise ValidationError(detail="units must be positive", errors={"units": "must be >= 1"})

        model = resource_model(ref.kind)
        stmt = (
            update(model)
            .where(
                model.id == ref.id,
                model.capacity_available >= units,
                model.status.in_(list(model.BOOKABLE_STATUSES)),
            )
            .values(capacity_available=model.capacity_available - units)
            .execution_options(synchronize_session=False)
        )
        result = await self.db.execute(stmt)

        resource = await self.get_resource(ref)
        if result.rowcount != 1:
            if not resource.is_bookable:
                raise ResourceNotBookableError(ref.kind.value, str(ref.id), resource.status.value)
            raise CapacityExhaustedError(
                ref.kind.value,
                str(ref.id),
                requested=units,
                available=resource.capacity_available,
                noun=resource.UNIT_NOUN,
            )

        self._record(
            resource,
            delta=-units,
            reason=reason,
            actor=actor,
            booking_id=booking_id,
            total_before=resource.capacity_total,
            available_before=resource.capacity_available + units,
        )
        return resource

    async def credit(
        self,
        ref: ResourceRef,
        units: int,
        reason: LedgerReason,
        actor: str,
        booking_id: Optional[UUID] = None,
    ):
        """
        Return ``units`` to a resource, never above ``capacity_total``.

        The caller must already have flipped the owning booking out of an
        active status in the same transaction, which is what makes a second
        release of the same booking a no-op.
        """
        resource = await self.get_resource(ref, lock=True)
        before = resource.capacity_available
        after = min(resource.capacity_total, before + units)
        if after != before + units:
            logger.warning(
                "Release would exceed total capacity; clamping",
                extra={
                    "resource": str(ref),
                    "booking_id": str(booking_id) if booking_id else None,
                    "units": units,
                    "capacity_available": before,
                    "capacity_total": resource.capacity_total,
                },
            )
        if after == before:
            return resource

        await self.db.execute(
            update(type(resource))
            .where(type(resource).id == ref.id)
            .values(capacity_available=after)
            .execution_options(synchronize_session=False)
        )
        set_committed_value(resource, "capacity_available", after)
        self._record(
            resource,
            delta=after - before,
            reason=reason,
            actor=actor,
            booking_id=booking_id,
            total_before=resource.capacity_total,
            available_before=before,
        )
        return resource

    async def adjust_total(self, ref: ResourceRef, delta: int, actor: str, note: Optional[str] = None):
        """
        Grow or shrink a resource's capacity.

        A reduction may only remove units nobody holds, so it cannot exceed
        the current availability.

        Raises:
            ValidationError: If delta is zero
            ConflictError: If the reduction would cut into booked units
        """
        if delta == 0:
            raise ValidationError(detail="delta must not be zero", errors={"delta": "must be non-zero"})

        resource = await self.get_resource(ref, lock=True)
        if resource.capacity_available + delta < 0:
            raise ConflictError(
                detail=(
                    f"Cannot reduce capacity by {-delta}: only {resource.capacity_available} "
                    f"{resource.UNIT_NOUN} are unbooked"
                ),
                conflicting_resource={
                    "kind": ref.kind.value,
                    "id": str(ref.id),
                    "capacity_total": resource.capacity_total,
                    "capacity_available": resource.capacity_available,
                },
                code="CAPACITY_IN_USE",
            )

        total_before = resource.capacity_total
        available_before = resource.capacity_available
        model = type(resource)
        await self.db.execute(
            update(model)
            .where(model.id == ref.id)
            .values(
                capacity_total=model.capacity_total + delta,
                capacity_available=model.capacity_available + delta,
            )
            .execution_options(synchronize_session=False)
        )
        set_committed_value(resource, "capacity_total", total_before + delta)
        set_committed_value(resource, "capacity_available", available_before + delta)
        self._record(
            resource,
            delta=delta,
            reason=LedgerReason.ADJUST,
            actor=actor,
            total_before=total_before,
            available_before=available_before,
            note=note,
        )
        return resource

    async def open(self, resource, actor: str):
        """Insert a new resource with every unit available and record the opening balance."""
        resource.capacity_available = resource.capacity_total
        self.db.add(resource)
        await self.db.flush()
        self._record(
            resource,
            delta=resource.capacity_total,
            reason=LedgerReason.ADJUST,
            actor=actor,
            total_before=0,
            available_before=0,
            note="opening capacity",
        )
        return resource

    def _record(
        self,
        resource,
        delta: int,
        reason: LedgerReason,
        actor: str,
        total_before: int,
        available_before: int,
        booking_id: Optional[UUID] = None,
        note: Optional[str] = None,
    ) -> LedgerEntry:
        entry = LedgerEntry(
            resource_kind=resource.KIND,
            resource_id=resource.id,
            booking_id=booking_id,
            delta=delta,
            reason=reason,
            note=note,
            actor=actor,
            capacity_total_before=total_before,
            capacity_total_after=resource.capacity_total,
            capacity_available_before=available_before,
            capacity_available_after=resource.capacity_available,
        )
        self.db.add(entry)
        return entry

    async def held_units(self, ref: ResourceRef) -> int:
        model = resource_model(ref.kind)
        fk = getattr(Booking, model.BOOKING_FK)
        stmt = select(func.coalesce(func.sum(Booking.units), 0)).where(
            fk == ref.id,
            Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        )
        return int((await self.db.execute(stmt)).scalar_one())

    async def check(self, ref: ResourceRef) -> LedgerCheck:
        """Compare stored availability with the units held by active bookings."""
        resource = await self.get_resource(ref)
        return LedgerCheck(
            ref=ref,
            capacity_total=resource.capacity_total,
            capacity_available=resource.capacity_available,
            held_units=await self.held_units(ref),
        )

    async def verify(self, ref: ResourceRef) -> LedgerCheck:
        """
        Like ``check`` but fail loudly on drift.

        Raises:
            InvariantViolationError: If availability does not match active bookings
        """
        result = await self.check(ref)
        if not result.consistent:
            logger.error(
                "Ledger drift detected",
                extra={
                    "resource": str(ref),
                    "capacity_available": result.capacity_available,
                    "expected_available": result.expected_available,
                },
            )
            raise InvariantViolationError(
                detail=f"Availability of {ref} does not match its active bookings",
                context={
                    "capacity_available": result.capacity_available,
                    "expected_available": result.expected_available,
                },
            )
        return result

    async def entries(self, ref: ResourceRef, limit: int = 100) -> list[LedgerEntry]:
        stmt = (
            select(LedgerEntry)
            .where(LedgerEntry.resource_kind == ref.kind, LedgerEntry.resource_id == ref.id)
            .order_by(LedgerEntry.created_at.desc())
            .limit(limit)
        )
        return list((await self.db.execute(stmt)).scalars().all())
