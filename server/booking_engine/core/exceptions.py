"""Problem Details (RFC 9457) exceptions raised by the booking engine.

Every error carries a stable ``type`` URI under ``PROBLEM_BASE``. Conflicts
also carry a machine-readable ``code`` and a ``retryable`` flag so clients
can tell contention apart from a rule they broke.
"""

import logging
import uuid
from typing import Any, Dict, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from .clock import utcnow

logger = logging.getLogger(__name__)

PROBLEM_BASE = "https://booking-engine.dev/problems/"


def _error_stamp() -> Dict[str, str]:
    return {"error_id": str(uuid.uuid4()), "timestamp": utcnow().isoformat() + "Z"}


class ProblemDetailsException(HTTPException):
    """Base class; subclasses set ``status``, ``title`` and ``slug``."""

    status: int = 500
    title: str = "Internal Server Error"
    slug: str = "internal-server-error"

    def __init__(
        self,
        detail: Optional[str] = None,
        instance: Optional[str] = None,
        extensions: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        self.problem_details: Dict[str, Any] = {
            "type": PROBLEM_BASE + self.slug,
            "title": self.title,
            "status": self.status,
        }
        if detail:
            self.problem_details["detail"] = detail
        if instance:
            self.problem_details["instance"] = instance
        self.problem_details.update(extensions or {})

        super().__init__(status_code=self.status, detail=self.problem_details, headers=headers)

    @property
    def code(self) -> Optional[str]:
        return self.problem_details.get("code")

    @property
    def retryable(self) -> bool:
        return bool(self.problem_details.get("retryable", False))

    def __str__(self) -> str:
        return self.problem_details.get("detail") or self.title


class ValidationError(ProblemDetailsException):
    """Input that parsed but breaks a domain rule (bad window, malformed id, zero delta)."""

    status = 400
    title = "Validation Error"
    slug = "validation-error"

    def __init__(self, detail: str = "The request data failed validation", errors: Optional[Dict[str, Any]] = None):
        super().__init__(detail=detail, extensions={"errors": errors} if errors else None)


class AuthenticationError(ProblemDetailsException):
    status = 401
    title = "Authentication Required"
    slug = "authentication-required"

    def __init__(self, detail: str = "Authentication credentials are required"):
        super().__init__(detail=detail, headers={"WWW-Authenticate": "Bearer"})


class AuthorizationError(ProblemDetailsException):
    """The requestor is known but may not act on the target."""

    status = 403
    title = "Access Forbidden"
    slug = "access-forbidden"

    def __init__(
        self,
        detail: str = "Insufficient permissions for this operation",
        required_permissions: Optional[list] = None,
    ):
        extensions = {"required_permissions": required_permissions} if required_permissions else None
        super().__init__(detail=detail, extensions=extensions)


class NotFoundError(ProblemDetailsException):
    status = 404
    title = "Resource Not Found"
    slug = "resource-not-found"

    def __init__(self, resource_type: str = "resource", resource_id: Optional[str] = None, detail: Optional[str] = None):
        if detail is None:
            target = f"{resource_type} '{resource_id}'" if resource_id else resource_type
            detail = f"The requested {target} could not be found"
        extensions: Dict[str, Any] = {"resource_type": resource_type}
        if resource_id:
            extensions["resource_id"] = resource_id
        super().__init__(detail=detail, extensions=extensions)


class ConflictError(ProblemDetailsException):
    """The request is well-formed but clashes with current state."""

    status = 409
    title = "Resource Conflict"
    slug = "resource-conflict"

    def __init__(
        self,
        detail: str = "The request conflicts with the current state of the resource",
        conflicting_resource: Optional[Dict[str, Any]] = None,
        code: str = "CONFLICT",
        retryable: bool = False,
    ):
        extensions: Dict[str, Any] = {"code": code, "retryable": retryable}
        if conflicting_resource:
            extensions["conflicting_resource"] = conflicting_resource
        super().__init__(detail=detail, extensions=extensions)


class InternalServerError(ProblemDetailsException):

    def __init__(
        self,
        detail: str = "An unexpected error occurred while processing the request",
        extensions: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(detail=detail, extensions={**_error_stamp(), **(extensions or {})})


# Reservation and lifecycle failures

class CapacityExhaustedError(ConflictError):
    """Not enough units remain on the resource."""

    def __init__(self, kind: str, resource_id: str, requested: int, available: int, noun: str = "units"):
        super().__init__(
            detail=f"no {noun} available",
            conflicting_resource={
                "kind": kind,
                "id": resource_id,
                "requested": requested,
                "available": available,
            },
            code="CAPACITY_EXHAUSTED",
        )


class ResourceNotBookableError(ConflictError):
    """The resource is in a status that does not accept reservations."""

    def __init__(self, kind: str, resource_id: str, status: str):
        super().__init__(
            detail=f"resource {status.lower()}",
            conflicting_resource={"kind": kind, "id": resource_id, "status": status},
            code="RESOURCE_NOT_BOOKABLE",
        )


class InvalidTransitionError(ConflictError):
    """A requested status change is not allowed from the current state."""

    def __init__(self, entity: str, current: str, target: str, reason: Optional[str] = None):
        super().__init__(detail=reason or f"{entity} cannot move from {current} to {target}", code="INVALID_TRANSITION")
        self.problem_details.update({
            "entity": entity,
            "current_status": current,
            "target_status": target,
        })


class DeletionBlockedError(ConflictError):
    """A row may not be deleted in its current state."""

    def __init__(self, entity: str, entity_id: str, reason: str):
        super().__init__(detail=f"{entity} {entity_id} cannot be deleted: {reason}", code="DELETION_BLOCKED")
        self.problem_details["reason"] = reason


class TransientError(ConflictError):
    """Lock contention that persisted through every retry; the caller may try again."""

    def __init__(self, operation: str, attempts: int):
        super().__init__(
            detail=f"{operation} could not complete because of concurrent activity; retry the request",
            code="CONTENTION",
            retryable=True,
        )
        self.problem_details["attempts"] = attempts


class InvariantViolationError(InternalServerError):
    """Persistent state contradicts the ledger rules; never expected in normal operation."""

    def __init__(self, detail: str, context: Optional[Dict[str, Any]] = None):
        super().__init__(detail=detail, extensions={"code": "INVARIANT_VIOLATION", **(context or {})})


async def problem_details_handler(request: Request, exc: ProblemDetailsException) -> JSONResponse:
    """Render a ProblemDetailsException, tagging it with the request id when one was assigned."""
    content = dict(exc.problem_details)
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        content.setdefault("request_id", request_id)
    return JSONResponse(status_code=exc.status_code, content=content, headers=exc.headers)


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Turn anything unhandled into an opaque 500 problem and log it with an error id."""
    stamp = _error_stamp()
    logger.error(
        "Unhandled exception",
        exc_info=exc,
        extra={"error_id": stamp["error_id"], "path": request.url.path},
    )
    return JSONResponse(
        status_code=500,
        content={
            "type": PROBLEM_BASE + InternalServerError.slug,
            "title": InternalServerError.title,
            "status": 500,
            "detail": "An unexpected error occurred while processing the request",
            "instance": str(request.url),
            **stamp,
        },
    )
