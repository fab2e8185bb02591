"""Models module exporting all database models."""

from .booking import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, Payment, PaymentStatus
from .flight import Flight, FlightStatus
from .ledger import LedgerEntry, LedgerReason
from .registry import RESOURCE_MODELS, make_ref, parse_uuid, resource_model
from .resource import BookableResource, ResourceKind, ResourceRef
from .room import Room, RoomStatus
from .tour import Tour, TourStatus

__all__ = [
    # Resources
    "BookableResource",
    "ResourceKind",
    "ResourceRef",
    "Tour",
    "TourStatus",
    "Room",
    "RoomStatus",
    "Flight",
    "FlightStatus",
    "RESOURCE_MODELS",
    "resource_model",
    "make_ref",
    "parse_uuid",

    # Bookings
    "Booking",
    "BookingStatus",
    "ACTIVE_BOOKING_STATUSES",
    "Payment",
    "PaymentStatus",

    # Ledger
    "LedgerEntry",
    "LedgerReason",
]
