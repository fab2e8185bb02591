"""Inventory router for capacity adjustment and ledger inspection."""

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..core.dependencies import AdminAuth, CoordinatorDependency, Requestor
from ..models.registry import make_ref
from ..schemas.inventory import AdjustCapacityRequest, LedgerEntry, LedgerReport, LedgerRequest
from ..schemas.resource import Resource
from ..services.reservation_coordinator import ReservationCoordinator
from .resource import convert_resource_to_schema

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/inventory", tags=["inventory"])


def _convert_entry_to_schema(entry_model) -> LedgerEntry:
    """Convert ledger entry model to schema."""
    return LedgerEntry(
        id=str(entry_model.id),
        booking_id=str(entry_model.booking_id) if entry_model.booking_id else None,
        delta=entry_model.delta,
        reason=entry_model.reason.value,
        note=entry_model.note,
        actor=entry_model.actor,
        capacity_total_after=entry_model.capacity_total_after,
        capacity_available_after=entry_model.capacity_available_after,
        created_at=entry_model.created_at,
    )


@router.post("/adjust", response_model=Resource)
async def adjust_capacity(
    request: AdjustCapacityRequest,
    requestor: Requestor = AdminAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """
    Grow or shrink a resource's total capacity.

    A reduction cannot remove units that are already booked.
    """
    resource = await coordinator.adjust_capacity(
        make_ref(request.kind, request.resource_id), request.delta, requestor, note=request.note
    )
    return JSONResponse(
        status_code=200,
        content=convert_resource_to_schema(resource).model_dump(mode="json"),
    )


@router.post("/ledger", response_model=LedgerReport)
async def ledger(
    request: LedgerRequest,
    requestor: Requestor = AdminAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """Recent capacity movements of a resource and whether its availability matches its bookings."""
    ref = make_ref(request.kind, request.resource_id)
    check, entries = await coordinator.ledger_report(ref, limit=request.limit)
    if not check.consistent:
        logger.warning(
            "Ledger report found drift",
            extra={
                "resource": str(ref),
                "capacity_available": check.capacity_available,
                "expected_available": check.expected_available,
            },
        )

    response_data = LedgerReport(
        kind=ref.kind,
        resource_id=str(ref.id),
        capacity_total=check.capacity_total,
        capacity_available=check.capacity_available,
        held_units=check.held_units,
        consistent=check.consistent,
        entries=[_convert_entry_to_schema(e) for e in entries],
    )
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
