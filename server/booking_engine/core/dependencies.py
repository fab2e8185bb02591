"""FastAPI dependencies for authentication and service access."""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Optional

import jwt
from fastapi import Depends, Header, Request
from jwt import PyJWTError

from .config import Settings, settings
from .exceptions import AuthenticationError, AuthorizationError

if TYPE_CHECKING:
    from ..services.reservation_coordinator import ReservationCoordinator


class Role(str, Enum):
    """Roles a requestor can carry."""
    ADMIN = "ADMIN"
    AGENT = "AGENT"
    CUSTOMER = "CUSTOMER"


@dataclass(frozen=True)
class Requestor:
    """The authenticated party on whose behalf an operation runs."""

    user_id: str
    roles: frozenset[Role] = field(default_factory=lambda: frozenset({Role.CUSTOMER}))

    @property
    def is_admin(self) -> bool:
        return Role.ADMIN in self.roles

    @property
    def is_staff(self) -> bool:
        """Admins and agents may act for any customer."""
        return bool(self.roles & {Role.ADMIN, Role.AGENT})

    def can_act_for(self, customer_ref: str) -> bool:
        return self.is_staff or self.user_id == customer_ref

    @classmethod
    def system(cls, name: str) -> "Requestor":
        """Requestor used by background schedulers."""
        return cls(user_id=f"system:{name}", roles=frozenset({Role.ADMIN}))


def _parse_roles(raw) -> frozenset[Role]:
    if isinstance(raw, str):
        raw = [raw]
    roles = set()
    for value in raw or []:
        try:
            roles.add(Role(str(value).upper()))
        except ValueError:
            continue
    return frozenset(roles or {Role.CUSTOMER})


def decode_token(token: str, config: Settings = settings) -> Requestor:
    """
    Validate a bearer token and build the requestor it identifies.

    Raises:
        AuthenticationError: If the token is invalid or expired
    """
    try:
        payload = jwt.decode(token, config.bearer_token_secret, algorithms=["HS256"])
    except PyJWTError as e:
        raise AuthenticationError(detail=f"Token validation failed: {e!s}")

    user_id = payload.get("sub")
    if not user_id:
        raise AuthenticationError(detail="Invalid token payload")

    return Requestor(user_id=str(user_id), roles=_parse_roles(payload.get("roles")))


def issue_token(user_id: str, roles: list[str], config: Settings = settings, **claims) -> str:
    """Sign a token for a user (used by the seed script and tests)."""
    payload = {"sub": user_id, "roles": roles, **claims}
    return jwt.encode(payload, config.bearer_token_secret, algorithm="HS256")


async def get_current_user(
    authorization: Optional[str] = Header(None, alias="Authorization")
) -> Requestor:
    """
    Authentication dependency that validates Bearer tokens.

    Args:
        authorization: Authorization header with Bearer token

    Returns:
        Requestor: Identity and roles from the validated token

    Raises:
        AuthenticationError: If token is invalid or missing
    """
    if not authorization:
        raise AuthenticationError(detail="Authorization header missing")

    try:
        scheme, token = authorization.split()
    except ValueError:
        raise AuthenticationError(detail="Invalid authorization header format")

    if scheme.lower() != "bearer":
        raise AuthenticationError(detail="Invalid authentication scheme")

    return decode_token(token)


async def require_admin(requestor: Requestor = Depends(get_current_user)) -> Requestor:
    """Allow only administrators through."""
    if not requestor.is_admin:
        raise AuthorizationError(required_permissions=[Role.ADMIN.value])
    return requestor


def get_coordinator(request: Request) -> "ReservationCoordinator":
    """Return the reservation coordinator attached to the running application."""
    return request.app.state.coordinator


RequiredAuth = Depends(get_current_user)
AdminAuth = Depends(require_admin)
CoordinatorDependency = Depends(get_coordinator)
