"""Lookup from resource kind to its model."""

from typing import Union
from uuid import UUID

from ..core.exceptions import ValidationError
from .flight import Flight
from .resource import ResourceKind, ResourceRef
from .room import Room
from .tour import Tour

ResourceModel = Union[Tour, Room, Flight]

RESOURCE_MODELS: dict[ResourceKind, type] = {
    ResourceKind.TOUR: Tour,
    ResourceKind.ROOM: Room,
    ResourceKind.FLIGHT: Flight,
}


def resource_model(kind: Union[ResourceKind, str]) -> type:
    """
    Return the model class for a resource kind.

    Raises:
        ValidationError: If the kind is not a bookable resource kind
    """
    try:
        return RESOURCE_MODELS[ResourceKind(kind)]
    except (KeyError, ValueError):
        raise ValidationError(
            detail=f"Unknown resource kind: {kind}",
            errors={"kind": f"must be one of {[k.value for k in ResourceKind]}"},
        )


def parse_uuid(value: Union[UUID, str], field: str = "id") -> UUID:
    """Parse an identifier coming from a request."""
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise ValidationError(detail=f"Invalid {field}: {value}", errors={field: "must be a UUID"})


def make_ref(kind: Union[ResourceKind, str], resource_id: Union[UUID, str]) -> ResourceRef:
    """Build a reference, validating both the kind and the identifier."""
    resource_model(kind)
    return ResourceRef(ResourceKind(kind), parse_uuid(resource_id))
