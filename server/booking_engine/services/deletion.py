"""Row removal shared by single-item and bulk deletion."""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus
from ..models.ledger import LedgerReason
from ..models.resource import ResourceRef
from ..models.registry import resource_model
from .ledger_service import LedgerService

logger = logging.getLogger(__name__)


async def load_resource_bookings(session: AsyncSession, refs: list[ResourceRef]) -> dict[ResourceRef, list[Booking]]:
    """Fetch every booking (any status) on the given resources, grouped by resource."""
    grouped: dict[ResourceRef, list[Booking]] = {ref: [] for ref in refs}
    by_kind: dict = {}
    for ref in refs:
        by_kind.setdefault(ref.kind, []).append(ref.id)

    for kind, ids in by_kind.items():
        fk = getattr(Booking, resource_model(kind).BOOKING_FK)
        rows = (await session.execute(select(Booking).where(fk.in_(ids)))).scalars().all()
        for booking in rows:
            grouped[booking.resource_ref].append(booking)
    return grouped


async def cancel_active_booking(
    session: AsyncSession,
    ledger: LedgerService,
    booking: Booking,
    reason: LedgerReason,
    actor: str,
    expected: Optional[BookingStatus] = None,
) -> bool:
    """
    Flip an active booking to CANCELLED and give its units back.

    The status change is guarded, so a booking that some other transaction
    already closed is left alone and nothing is credited twice. Passing
    ``expected`` also refuses the flip when the booking moved away from the
    status the caller validated against.
    """
    guard = Booking.status == expected if expected is not None else Booking.status.in_(ACTIVE_BOOKING_STATUSES)
    result = await session.execute(
        update(Booking)
        .where(Booking.id == booking.id, guard)
        .values(status=BookingStatus.CANCELLED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        return False
    await ledger.credit(booking.resource_ref, booking.units, reason, actor, booking_id=booking.id)
    return True


async def delete_booking_row(
    session: AsyncSession,
    ledger: LedgerService,
    booking: Booking,
    actor: str,
) -> None:
    """Release a deletable booking's units if it still holds any, then remove it with its payment."""
    if booking.is_active:
        await cancel_active_booking(session, ledger, booking, LedgerReason.DELETE, actor)
    await session.delete(booking)
    await session.flush()


async def delete_resource_row(session: AsyncSession, resource, bookings: list[Booking]) -> None:
    """Remove a resource with its finished bookings; callers have ruled out active ones."""
    for booking in bookings:
        await session.delete(booking)
    await session.delete(resource)
    await session.flush()


def log_deletion(entity: str, entity_id, actor: str, at: datetime) -> None:
    logger.info(
        f"{entity} deleted",
        extra={"entity": entity, "entity_id": str(entity_id), "actor": actor, "deleted_at": at.isoformat()},
    )
