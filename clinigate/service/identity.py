from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from clinigate.logging import get_logger
from clinigate.service.errors import AuthenticationError, ForbiddenError
from clinigate.service.roles import Role

logger = get_logger(__name__)


@dataclass(frozen=True)
class IdentityContext:
    """Verified identity for one request; built by the gate, never persisted."""

    user_id: str
    role: Role
    can_book_media_day: bool = False
    # Delegation link from a receptionist to the customer it acts for
    parent_customer_id: Optional[str] = None
    name: Optional[str] = None


def resolve_effective_customer_id(ctx: Optional[IdentityContext]) -> str:
    """Return the customer id a delegation-eligible request acts on.

    Customers act on themselves; receptionists act on their linked customer.
    Callers must have restricted the route to those two roles first.
    """
    if ctx is None:
        raise AuthenticationError("user not found")
    if ctx.role is Role.CUSTOMER:
        return ctx.user_id
    if ctx.role is Role.RECEPTIONIST:
        if not ctx.parent_customer_id:
            logger.warning("receptionist_unlinked", user_id=ctx.user_id)
            raise ForbiddenError("receptionist account is not properly linked")
        return ctx.parent_customer_id
    logger.error(
        "effective_customer_wrong_role", user_id=ctx.user_id, role=ctx.role.value
    )
    raise ForbiddenError("role cannot act on behalf of a customer")
