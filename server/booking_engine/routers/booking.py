"""Booking router for reservation and booking lifecycle operations."""

from typing import Optional

from fastapi import APIRouter
from fastapi.responses import JSONResponse

from ..core.clock import to_naive_utc
from ..core.dependencies import CoordinatorDependency, RequiredAuth, Requestor
from ..core.exceptions import ValidationError
from ..models.registry import make_ref, parse_uuid
from ..schemas.booking import (
    Booking,
    ChangeBookingStatusRequest,
    DeleteBookingRequest,
    DeleteResult,
    GetBookingRequest,
    Payment,
    RecordPaymentRequest,
    ReleaseRequest,
    ReserveRequest,
    TransferRequest,
)
from ..schemas.common import Money, ResourceRefSchema
from ..services.reservation_coordinator import ReservationCoordinator, ReservationRequest, Stay

router = APIRouter(prefix="/v1/booking", tags=["booking"])


def _convert_booking_to_schema(booking_model) -> Booking:
    """Convert booking model to schema."""
    payment = None
    if booking_model.payment is not None:
        payment = Payment(
            id=str(booking_model.payment.id),
            status=booking_model.payment.status,
            amount=Money(amount=booking_model.payment.amount, currency=booking_model.payment.currency),
        )
    return Booking(
        id=str(booking_model.id),
        resource=ResourceRefSchema(kind=booking_model.resource_kind, id=str(booking_model.resource_id)),
        customer_ref=booking_model.customer_ref,
        units=booking_model.units,
        guests=booking_model.guests,
        status=booking_model.status,
        total_price=Money(amount=booking_model.total_amount, currency=booking_model.currency),
        booking_date=booking_model.booking_date,
        payment_deadline=booking_model.payment_deadline,
        requires_immediate_payment=booking_model.requires_immediate_payment,
        check_in=booking_model.check_in,
        check_out=booking_model.check_out,
        nights=booking_model.nights,
        payment=payment,
    )


def _booking_response(booking_model) -> JSONResponse:
    return JSONResponse(
        status_code=200,
        content=_convert_booking_to_schema(booking_model).model_dump(mode="json"),
    )


def _stay_from_request(check_in, check_out) -> Optional[Stay]:
    if check_in is None and check_out is None:
        return None
    if check_in is None or check_out is None:
        raise ValidationError(
            detail="check_in and check_out must be given together",
            errors={"check_in": "required with check_out", "check_out": "required with check_in"},
        )
    return Stay(check_in=to_naive_utc(check_in), check_out=to_naive_utc(check_out))


@router.post("/reserve", response_model=Booking)
async def reserve(
    request: ReserveRequest,
    requestor: Requestor = RequiredAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """
    Reserve units of a tour, room or flight.

    The capacity decrement and the PENDING booking are created together.
    """
    booking = await coordinator.reserve(
        ReservationRequest(
            ref=make_ref(request.kind, request.resource_id),
            customer_ref=request.customer_ref,
            units=request.units,
            guests=request.guests,
            price_override=request.price_amount,
            stay=_stay_from_request(request.check_in, request.check_out),
        ),
        requestor,
    )
    return _booking_response(booking)


@router.post("/release", response_model=Booking)
async def release(
    request: ReleaseRequest,
    requestor: Requestor = RequiredAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """
    Cancel a booking and return its units.

    Releasing a booking that is already cancelled returns it unchanged.
    """
    booking = await coordinator.release(parse_uuid(request.booking_id, "booking_id"), requestor)
    return _booking_response(booking)


@router.post("/transfer", response_model=Booking)
async def transfer(
    request: TransferRequest,
    requestor: Requestor = RequiredAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """
    Move a booking to another resource.

    If the new resource cannot take the booking the old reservation stays as it was.
    """
    booking = await coordinator.transfer(
        parse_uuid(request.booking_id, "booking_id"),
        make_ref(request.kind, request.resource_id),
        requestor,
        stay=_stay_from_request(request.check_in, request.check_out),
    )
    return _booking_response(booking)


@router.post("/status", response_model=Booking)
async def change_status(
    request: ChangeBookingStatusRequest,
    requestor: Requestor = RequiredAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """Move a booking along its lifecycle."""
    booking = await coordinator.change_status(
        parse_uuid(request.booking_id, "booking_id"), request.status, requestor
    )
    return _booking_response(booking)


@router.post("/payment", response_model=Booking)
async def record_payment(
    request: RecordPaymentRequest,
    requestor: Requestor = RequiredAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """
    Record a payment outcome.

    A completed payment confirms the booking.
    """
    booking = await coordinator.record_payment(
        parse_uuid(request.booking_id, "booking_id"), request.status, requestor
    )
    return _booking_response(booking)


@router.post("/delete", response_model=DeleteResult)
async def delete_booking(
    request: DeleteBookingRequest,
    requestor: Requestor = RequiredAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """Delete a booking, returning its units first when it still holds any."""
    booking_id = parse_uuid(request.booking_id, "booking_id")
    await coordinator.delete_booking(booking_id, requestor)
    return JSONResponse(
        status_code=200,
        content=DeleteResult(id=str(booking_id)).model_dump(),
    )


@router.post("/get", response_model=Booking)
async def get_booking(
    request: GetBookingRequest,
    requestor: Requestor = RequiredAuth,
    coordinator: ReservationCoordinator = CoordinatorDependency,
) -> JSONResponse:
    """
    Get booking details.

    This is a read operation and takes no locks.
    """
    booking = await coordinator.get_booking(parse_uuid(request.booking_id, "booking_id"), requestor)
    return _booking_response(booking)
