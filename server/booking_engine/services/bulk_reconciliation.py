"""Bulk deletion that partitions rows instead of failing on the first blocked one."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import Requestor
from ..core.exceptions import AuthorizationError
from ..core.observability import get_logger, metrics_collector
from ..models.booking import Booking
from ..models.registry import resource_model
from ..models.resource import ResourceKind
from .booking_rules import deletion_block_reason
from .deletion import delete_booking_row, delete_resource_row, load_resource_bookings
from .ledger_service import LedgerService
from .reservation_coordinator import ReservationCoordinator
from .resource_status import resource_deletion_block_reason

logger = logging.getLogger(__name__)
summary_logger = get_logger(__name__)

BOOKING_KIND = "BOOKING"


@dataclass
class BulkDeleteReport:
    """Which rows were removed and which were kept, grouped by the reason."""

    kind: str
    deleted_ids: list[str] = field(default_factory=list)
    skipped: dict[str, list[str]] = field(default_factory=dict)

    def skip(self, reason: str, row_id: UUID) -> None:
        self.skipped.setdefault(reason, []).append(str(row_id))

    @property
    def skipped_count(self) -> int:
        return sum(len(ids) for ids in self.skipped.values())


class BulkReconciliation:
    """
    Delete every row of a kind that the single-item rules allow.

    Classification and deletion run in one coordinator transaction, so the
    partition reported is exactly the one applied. A booking's ledger release
    and its row removal happen together; blocked rows are reported, never
    raised.
    """

    def __init__(self, coordinator: ReservationCoordinator):
        self.coordinator = coordinator

    async def delete_all(self, kind: Union[ResourceKind, str], requestor: Requestor) -> BulkDeleteReport:
        if not requestor.is_admin:
            raise AuthorizationError(detail="Only administrators may bulk delete", required_permissions=["ADMIN"])

        kind_name = kind.value if isinstance(kind, ResourceKind) else str(kind).upper()
        if kind_name == BOOKING_KIND:
            async def work(session: AsyncSession) -> BulkDeleteReport:
                return await self._delete_bookings(session, requestor, self.coordinator.clock())
        else:
            resource_kind = ResourceKind(resource_model(kind_name).KIND)

            async def work(session: AsyncSession) -> BulkDeleteReport:
                return await self._delete_resources(session, resource_kind, requestor, self.coordinator.clock())

        report = await self.coordinator.transaction(f"bulk_delete_{kind_name.lower()}", work)

        metrics_collector.record_bulk_delete(kind_name, len(report.deleted_ids), report.skipped_count)
        summary_logger.info(
            "Bulk delete finished",
            kind=kind_name,
            deleted=len(report.deleted_ids),
            skipped={reason: len(ids) for reason, ids in report.skipped.items()},
            actor=requestor.user_id,
        )
        for reason, ids in report.skipped.items():
            logger.warning(
                "Rows kept by bulk delete",
                extra={"kind": kind_name, "reason": reason, "ids": ids},
            )
        return report

    async def _delete_resources(
        self,
        session: AsyncSession,
        kind: ResourceKind,
        requestor: Requestor,
        now: datetime,
    ) -> BulkDeleteReport:
        model = resource_model(kind)
        stmt = select(model).order_by(model.id)
        if session.bind.dialect.name == "postgresql":
            stmt = stmt.with_for_update()
        resources = list((await session.execute(stmt)).scalars().all())
        bookings = await load_resource_bookings(session, [r.ref for r in resources])

        report = BulkDeleteReport(kind=kind.value)
        for resource in resources:
            held = bookings[resource.ref]
            reason = resource_deletion_block_reason(resource, held, now)
            if reason:
                report.skip(reason, resource.id)
                continue
            await delete_resource_row(session, resource, held)
            report.deleted_ids.append(str(resource.id))
        return report

    async def _delete_bookings(self, session: AsyncSession, requestor: Requestor, now: datetime) -> BulkDeleteReport:
        stmt = select(Booking).order_by(Booking.created_at)
        if session.bind.dialect.name == "postgresql":
            stmt = stmt.with_for_update(of=Booking)
        rows = list((await session.execute(stmt)).scalars().all())

        report = BulkDeleteReport(kind=BOOKING_KIND)
        ledger = LedgerService(session)
        for booking in rows:
            reason = deletion_block_reason(booking.status, booking.payment_status, booking.window_start, now)
            if reason:
                report.skip(reason, booking.id)
                continue
            await delete_booking_row(session, ledger, booking, requestor.user_id)
            report.deleted_ids.append(str(booking.id))
        return report
