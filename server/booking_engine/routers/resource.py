"""Resource router: registration, status changes and deletion of tours, rooms and flights."""

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..core.clock import to_naive_utc
from ..core.dependencies import AdminAuth, CoordinatorDependency, RequiredAuth, Requestor
from ..core.exceptions import ValidationError
from ..models.registry import make_ref
from ..models.resource import ResourceKind
from ..schemas.booking import DeleteResult
from ..schemas.common import Money
from ..schemas.resource import (
    AdvanceStatusRequest,
    BulkDeleteReport,
    BulkDeleteRequest,
    CreateFlightRequest,
    CreateRoomRequest,
    CreateTourRequest,
    DeleteResourceRequest,
    GetResourceRequest,
    ListResourcesRequest,
    Resource,
    ResourceList,
)
from ..services.bulk_reconciliation import BulkReconciliation
from ..services.reservation_coordinator import ReservationCoordinator
from ..services.resource_status import RevisedWindow

router = APIRouter(prefix="/v1/resource", tags=["resource"])


def _details(resource_model) -> dict:
    kind = resource_model.KIND
    if kind == ResourceKind.TOUR:
        return {"description": resource_model.description}
    if kind == ResourceKind.FLIGHT:
        return {
            "flight_number": resource_model.flight_number,
            "origin": resource_model.origin,
            "destination": resource_model.destination,
        }
    if kind == ResourceKind.ROOM:
        return {
            "hotel_name": resource_model.hotel_name,
            "room_type": resource_model.room_type,
            "max_occupancy": resource_model.max_occupancy,
        }
    raise ValueError(f"Unhandled resource kind: {kind}")


def convert_resource_to_schema(resource_model) -> Resource:
    """Convert a tour, room or flight model to the shared resource schema."""
    return Resource(
        kind=resource_model.KIND,
        id=str(resource_model.id),
        name=resource_model.name,
        status=resource_model.status.value,
        capacity_total=resource_model.capacity_total,
        capacity_available=resource_model.capacity_available,
        price=Money(amount=resource_model.price_amount, currency=resource_model.price_currency),
        window_start=resource_model.window_start,
        window_end=resource_model.window_end,
        details=_details(resource_model),
    )


def _resource_response(resource_model) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content=convert_resource_to_schema(resource_model).model_dump(mode="json"),
    )


def _price_fields(price: Money) -> dict:
    return {"price_amount": price.amount, "price_currency": price.currency}


@router.post("/create-tour", response_model=Resource)
async def create_tour(
    request: CreateTourRequest,
    requestor: Requestor = AdminAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """Register a tour with all of its places available."""
    fields = {
        "name": request.name,
        "description": request.description,
        "starts_at": to_naive_utc(request.starts_at),
        "ends_at": to_naive_utc(request.ends_at),
        "capacity_total": request.capacity_total,
        **_price_fields(request.price),
    }
    tour = await coordinator.create_resource(ResourceKind.TOUR, fields, requestor)
    return _resource_response(tour)


@router.post("/create-flight", response_model=Resource)
async def create_flight(
    request: CreateFlightRequest,
    requestor: Requestor = AdminAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """Register a flight with all of its seats available."""
    fields = {
        "name": request.name,
        "flight_number": request.flight_number,
        "origin": request.origin,
        "destination": request.destination,
        "departs_at": to_naive_utc(request.departs_at),
        "arrives_at": to_naive_utc(request.arrives_at),
        "capacity_total": request.capacity_total,
        **_price_fields(request.price),
    }
    flight = await coordinator.create_resource(ResourceKind.FLIGHT, fields, requestor)
    return _resource_response(flight)


@router.post("/create-room", response_model=Resource)
async def create_room(
    request: CreateRoomRequest,
    requestor: Requestor = AdminAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """Register a room type with all of its rooms available."""
    fields = {
        "name": request.name,
        "hotel_name": request.hotel_name,
        "room_type": request.room_type,
        "max_occupancy": request.max_occupancy,
        "capacity_total": request.capacity_total,
        **_price_fields(request.price),
    }
    room = await coordinator.create_resource(ResourceKind.ROOM, fields, requestor)
    return _resource_response(room)


@router.post("/get", response_model=Resource)
async def get_resource(
    request: GetResourceRequest,
    requestor: Requestor = RequiredAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """Get a resource's current status and availability."""
    resource = await coordinator.get_resource(make_ref(request.kind, request.id))
    return _resource_response(resource)


@router.post("/list", response_model=ResourceList)
async def list_resources(
    request: ListResourcesRequest,
    requestor: Requestor = RequiredAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """List resources of one kind, optionally filtered by status and availability."""
    resources = await coordinator.list_resources(
        request.kind,
        status=request.status,
        available_only=request.available_only,
        limit=request.limit,
    )
    response_data = ResourceList(items=[convert_resource_to_schema(r) for r in resources])
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.post("/advance-status", response_model=Resource)
async def advance_status(
    request: AdvanceStatusRequest,
    requestor: Requestor = AdminAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """
    Change a resource's operational status.

    Cancelling a flight or tour, or closing a room, cancels its live bookings
    and returns their units in the same transaction.
    """
    revised = None
    if request.revised_departs_at is not None or request.revised_arrives_at is not None:
        if request.revised_departs_at is None or request.revised_arrives_at is None:
            raise ValidationError(
                detail="A revised window needs both departure and arrival",
                errors={"revised_window": "departs_at and arrives_at are both required"},
            )
        revised = RevisedWindow(
            departs_at=to_naive_utc(request.revised_departs_at),
            arrives_at=to_naive_utc(request.revised_arrives_at),
        )

    resource = await coordinator.advance_resource_status(
        make_ref(request.kind, request.id), request.status, requestor, revised=revised
    )
    return _resource_response(resource)


@router.post("/delete", response_model=DeleteResult)
async def delete_resource(
    request: DeleteResourceRequest,
    requestor: Requestor = AdminAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """Delete one resource if nothing live or paid depends on it."""
    ref = make_ref(request.kind, request.id)
    await coordinator.delete_resource(ref, requestor)
    return JSONResponse(status_code=200, content=DeleteResult(id=str(ref.id)).model_dump())


@router.post("/bulk-delete", response_model=BulkDeleteReport)
async def bulk_delete(
    request: BulkDeleteRequest,
    requestor: Requestor = AdminAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """
    Delete every row of a kind that may be deleted.

    Blocked rows are reported by reason instead of failing the request.
    """
    report = await BulkReconciliation(coordinator).delete_all(request.kind.value, requestor)
    response_data = BulkDeleteReport(
        kind=request.kind,
        deleted_ids=report.deleted_ids,
        skipped=report.skipped,
    )
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
