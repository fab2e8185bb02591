"""Booking-related Pydantic schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..models.booking import BookingStatus, PaymentStatus
from ..models.resource import ResourceKind
from .common import Money, ResourceRefSchema


class ReserveRequest(BaseModel):
    """Request schema for reserving units of a resource."""

    kind: ResourceKind = Field(..., description="Resource kind")
    resource_id: str = Field(..., description="Resource to reserve")
    customer_ref: str = Field(..., min_length=1, max_length=128, description="Customer the booking belongs to")
    units: int = Field(..., ge=1, le=50, description="Places, seats or rooms")
    guests: Optional[int] = Field(None, ge=1, le=200, description="Party size; defaults to units")
    price_amount: Optional[int] = Field(None, ge=0, description="Negotiated total in minor units; staff only")
    check_in: Optional[datetime] = Field(None, description="Room stays only")
    check_out: Optional[datetime] = Field(None, description="Room stays only")


class ReleaseRequest(BaseModel):
    """Request schema for releasing a booking."""

    booking_id: str = Field(..., description="Booking to release")


class TransferRequest(BaseModel):
    """Request schema for moving a booking to another resource."""

    booking_id: str = Field(..., description="Booking to move")
    kind: ResourceKind = Field(..., description="Kind of the new resource")
    resource_id: str = Field(..., description="New resource")
    check_in: Optional[datetime] = Field(None, description="Room stays only")
    check_out: Optional[datetime] = Field(None, description="Room stays only")


class ChangeBookingStatusRequest(BaseModel):
    """Request schema for a booking status change."""

    booking_id: str = Field(..., description="Booking to update")
    status: BookingStatus = Field(..., description="Target status")


class RecordPaymentRequest(BaseModel):
    """Request schema for recording a payment outcome."""

    booking_id: str = Field(..., description="Booking being paid")
    status: PaymentStatus = Field(..., description="Payment outcome")


class GetBookingRequest(BaseModel):
    """Request schema for getting a booking."""

    booking_id: str = Field(..., description="Booking to retrieve")


class DeleteBookingRequest(BaseModel):
    """Request schema for deleting a booking."""

    booking_id: str = Field(..., description="Booking to delete")


class Payment(BaseModel):
    """Payment response schema."""

    id: str = Field(..., description="Unique payment ID")
    status: PaymentStatus = Field(..., description="Payment status")
    amount: Money = Field(..., description="Amount charged")


class Booking(BaseModel):
    """Booking response schema."""

    id: str = Field(..., description="Unique booking ID")
    resource: ResourceRefSchema = Field(..., description="Booked resource")
    customer_ref: str = Field(..., description="Customer reference")
    units: int = Field(..., ge=1, description="Units held")
    guests: int = Field(..., ge=1, description="Party size")
    status: BookingStatus = Field(..., description="Booking status")
    total_price: Money = Field(..., description="Total price")
    booking_date: datetime = Field(..., description="When the booking was made (ISO 8601)")
    payment_deadline: Optional[datetime] = Field(None, description="Unpaid bookings expire after this time")
    requires_immediate_payment: bool = Field(..., description="Short-notice booking")
    check_in: Optional[datetime] = Field(None, description="Room stays only")
    check_out: Optional[datetime] = Field(None, description="Room stays only")
    nights: Optional[int] = Field(None, description="Room stays only")
    payment: Optional[Payment] = Field(None, description="Payment record, if any")


class DeleteResult(BaseModel):
    """Acknowledgement of a deletion."""

    id: str = Field(..., description="Deleted row")
    deleted: bool = Field(True, description="Always true on success")
