"""Inventory-related Pydantic schemas."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from ..models.resource import ResourceKind


class AdjustCapacityRequest(BaseModel):
    """Request schema for adjusting a resource's total capacity."""

    kind: ResourceKind = Field(..., description="Resource kind")
    resource_id: str = Field(..., description="Resource to adjust")
    delta: int = Field(..., description="Capacity change (positive or negative)")
    note: Optional[str] = Field(None, max_length=255, description="Reason for adjustment")


class LedgerRequest(BaseModel):
    """Request schema for a resource's ledger."""

    kind: ResourceKind = Field(..., description="Resource kind")
    resource_id: str = Field(..., description="Resource to inspect")
    limit: int = Field(100, ge=1, le=1000, description="Most recent entries to return")


class LedgerEntry(BaseModel):
    """Ledger entry response schema."""

    id: str = Field(..., description="Unique entry ID")
    booking_id: Optional[str] = Field(None, description="Booking that caused the movement")
    delta: int = Field(..., description="Change of available units")
    reason: str = Field(..., description="Why capacity moved")
    note: Optional[str] = Field(None, description="Free-text note")
    actor: str = Field(..., description="Who caused the movement")
    capacity_total_after: int = Field(..., description="Total units afterwards")
    capacity_available_after: int = Field(..., description="Available units afterwards")
    created_at: datetime = Field(..., description="When it happened (ISO 8601)")


class LedgerReport(BaseModel):
    """A resource's capacity, its active holdings and recent movements."""

    kind: ResourceKind = Field(..., description="Resource kind")
    resource_id: str = Field(..., description="Resource ID")
    capacity_total: int = Field(..., description="Total units")
    capacity_available: int = Field(..., description="Stored available units")
    held_units: int = Field(..., description="Units held by PENDING and CONFIRMED bookings")
    consistent: bool = Field(..., description="Whether available == total - held")
    entries: list[LedgerEntry] = Field(default_factory=list, description="Recent movements, newest first")
