"""Resource-related Pydantic schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator

from ..models.resource import ResourceKind
from .common import Money


class CreateTourRequest(BaseModel):
    """Request schema for creating a tour."""

    name: str = Field(..., min_length=1, max_length=255, description="Tour name")
    description: Optional[str] = Field(None, description="Tour description")
    starts_at: datetime = Field(..., description="Tour start (ISO 8601)")
    ends_at: datetime = Field(..., description="Tour end (ISO 8601)")
    capacity_total: int = Field(..., ge=1, le=1000, description="Guest places")
    price: Money = Field(..., description="Price per guest")

    @model_validator(mode="after")
    def check_window(self) -> "CreateTourRequest":
        if self.ends_at <= self.starts_at:
            raise ValueError("ends_at must be after starts_at")
        return self


class CreateFlightRequest(BaseModel):
    """Request schema for creating a flight."""

    name: str = Field(..., min_length=1, max_length=255, description="Display name, e.g. the route")
    flight_number: str = Field(..., min_length=2, max_length=16, description="Carrier flight number")
    origin: str = Field(..., min_length=1, max_length=64, description="Departure airport")
    destination: str = Field(..., min_length=1, max_length=64, description="Arrival airport")
    departs_at: datetime = Field(..., description="Scheduled departure (ISO 8601)")
    arrives_at: datetime = Field(..., description="Scheduled arrival (ISO 8601)")
    capacity_total: int = Field(..., ge=1, le=1000, description="Seats")
    price: Money = Field(..., description="Price per seat")

    @model_validator(mode="after")
    def check_window(self) -> "CreateFlightRequest":
        if self.arrives_at <= self.departs_at:
            raise ValueError("arrives_at must be after departs_at")
        return self


class CreateRoomRequest(BaseModel):
    """Request schema for creating a room type at a hotel."""

    name: str = Field(..., min_length=1, max_length=255, description="Display name")
    hotel_name: str = Field(..., min_length=1, max_length=255, description="Hotel")
    room_type: str = Field(..., min_length=1, max_length=64, description="Room type, e.g. DOUBLE")
    max_occupancy: int = Field(..., ge=1, le=20, description="Guests per room")
    capacity_total: int = Field(..., ge=1, le=1000, description="Rooms of this type")
    price: Money = Field(..., description="Price per room per night")


class GetResourceRequest(BaseModel):
    """Request schema for fetching a resource."""

    kind: ResourceKind = Field(..., description="Resource kind")
    id: str = Field(..., description="Resource ID")


class ListResourcesRequest(BaseModel):
    """Request schema for listing resources of one kind."""

    kind: ResourceKind = Field(..., description="Resource kind")
    status: Optional[str] = Field(None, description="Only resources in this status")
    available_only: bool = Field(False, description="Only resources with units left")
    limit: int = Field(50, ge=1, le=500, description="Maximum results")


class AdvanceStatusRequest(BaseModel):
    """Request schema for a manual resource status change."""

    kind: ResourceKind = Field(..., description="Resource kind")
    id: str = Field(..., description="Resource ID")
    status: str = Field(..., description="Target status")
    revised_departs_at: Optional[datetime] = Field(None, description="New departure, required for DELAYED")
    revised_arrives_at: Optional[datetime] = Field(None, description="New arrival, required for DELAYED")


class DeleteResourceRequest(BaseModel):
    """Request schema for deleting one resource."""

    kind: ResourceKind = Field(..., description="Resource kind")
    id: str = Field(..., description="Resource ID")


class BulkDeleteKind(str, Enum):
    """Tables bulk deletion can target."""
    TOUR = "TOUR"
    ROOM = "ROOM"
    FLIGHT = "FLIGHT"
    BOOKING = "BOOKING"


class BulkDeleteRequest(BaseModel):
    """Request schema for bulk deletion."""

    kind: BulkDeleteKind = Field(..., description="Which table to clear")


class BulkDeleteReport(BaseModel):
    """Partition of every row into deleted and skipped-with-reason."""

    kind: BulkDeleteKind = Field(..., description="Table that was processed")
    deleted_ids: list[str] = Field(default_factory=list, description="Rows removed")
    skipped: dict[str, list[str]] = Field(default_factory=dict, description="Rows kept, keyed by reason")


class Resource(BaseModel):
    """Resource response schema."""

    kind: ResourceKind = Field(..., description="Resource kind")
    id: str = Field(..., description="Unique resource ID")
    name: str = Field(..., description="Display name")
    status: str = Field(..., description="Operational status")
    capacity_total: int = Field(..., ge=0, description="Total units")
    capacity_available: int = Field(..., ge=0, description="Units not held by live bookings")
    price: Money = Field(..., description="Unit price")
    window_start: Optional[datetime] = Field(None, description="Start of the service window")
    window_end: Optional[datetime] = Field(None, description="End of the service window")
    details: dict[str, Any] = Field(default_factory=dict, description="Kind-specific attributes")


class ResourceList(BaseModel):
    """List of resources."""

    items: list[Resource] = Field(..., description="Found resources")
