"""
Access gate.

The upstream authentication provider verifies the session and forwards the
user id in the X-User-ID header. The gate resolves that id to a local user and
role; everything behind it trusts the resulting Identity.
"""
from typing import Optional

from fastapi import Depends, Header

from shopnexus.container import Services, get_services
from shopnexus.db import User, transaction
from shopnexus.exceptions import AuthenticationRequiredError, ForbiddenError
from shopnexus.models import Identity


def get_identity(
    user_id: Optional[str] = Header(None, alias="X-User-ID", description="Authenticated user identifier"),
    services: Services = Depends(get_services),
) -> Identity:
    if not user_id or not user_id.strip():
        raise AuthenticationRequiredError()

    with transaction(services.database.session_factory) as session:
        user = session.get(User, user_id.strip())
        if user is None:
            raise AuthenticationRequiredError("Unknown user")
        return Identity(user_id=user.id, role=user.role)


def require_admin(identity: Identity = Depends(get_identity)) -> Identity:
    if not identity.is_admin:
        raise ForbiddenError("Admin access required")
    return identity


def ensure_owner_or_admin(identity: Identity, owner_id: str) -> None:
    if identity.user_id != owner_id and not identity.is_admin:
        raise ForbiddenError("You do not have permission to access this order")
