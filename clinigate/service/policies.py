"""Role and capability predicates over a verified IdentityContext.

Each predicate returns None to proceed or raises a ServiceError. A missing
context is an authentication failure (401); a present context that policy
denies is forbidden (403). Decision tables must name every Role.
"""

from __future__ import annotations

from typing import Callable, Dict, Iterable, Optional

from clinigate.logging import get_logger
from clinigate.service.errors import AuthenticationError, ForbiddenError
from clinigate.service.identity import IdentityContext
from clinigate.service.roles import Role, ensure_exhaustive

logger = get_logger(__name__)

Predicate = Callable[[Optional[IdentityContext]], None]


def _always(ctx: IdentityContext) -> bool:
    return True


def _never(ctx: IdentityContext) -> bool:
    return False


def _has_media_day_grant(ctx: IdentityContext) -> bool:
    return ctx.can_book_media_day is True


# Read-only booking and availability views
_BOOKING_ACCESS: Dict[Role, Callable[[IdentityContext], bool]] = {
    Role.ADMIN: _always,
    Role.CUSTOMER: _always,
    Role.EMPLOYEE: _always,
    Role.RECEPTIONIST: _has_media_day_grant,
}

# Media Day booking on customer/receptionist routes
_MEDIA_DAY_BOOKING: Dict[Role, Callable[[IdentityContext], bool]] = {
    Role.ADMIN: _never,
    Role.CUSTOMER: _always,
    Role.EMPLOYEE: _never,
    Role.RECEPTIONIST: _has_media_day_grant,
}

ensure_exhaustive(_BOOKING_ACCESS, "booking access")
ensure_exhaustive(_MEDIA_DAY_BOOKING, "media day booking")


def _require_context(ctx: Optional[IdentityContext]) -> IdentityContext:
    if ctx is None:
        raise AuthenticationError("user role not found")
    return ctx


def require_role_in(allowed: Iterable[Role | str] | Role | str) -> Predicate:
    """Build a predicate passing only for roles in ``allowed``."""
    if isinstance(allowed, (Role, str)):
        allowed = [allowed]
    allowed_roles = frozenset(Role(role) for role in allowed)
    if not allowed_roles:
        raise ValueError("require_role_in needs at least one role")

    def check(ctx: Optional[IdentityContext]) -> None:
        ctx = _require_context(ctx)
        if ctx.role not in allowed_roles:
            logger.info(
                "role_denied",
                user_id=ctx.user_id,
                role=ctx.role.value,
                allowed=sorted(role.value for role in allowed_roles),
            )
            raise ForbiddenError("insufficient role for this resource")

    return check


def allow_booking_access(ctx: Optional[IdentityContext]) -> None:
    ctx = _require_context(ctx)
    if not _BOOKING_ACCESS[ctx.role](ctx):
        logger.info("booking_access_denied", user_id=ctx.user_id, role=ctx.role.value)
        raise ForbiddenError("you do not have access to this resource")


def require_can_book_media_day(ctx: Optional[IdentityContext]) -> None:
    """Gate Media Day booking.

    Run after ``require_role_in([Role.CUSTOMER, Role.RECEPTIONIST])`` and
    before ``resolve_effective_customer_id``.
    """
    ctx = _require_context(ctx)
    if not _MEDIA_DAY_BOOKING[ctx.role](ctx):
        logger.info("media_day_denied", user_id=ctx.user_id, role=ctx.role.value)
        raise ForbiddenError("you do not have permission to book Media Days")


def run_checks(ctx: Optional[IdentityContext], *checks: Predicate) -> IdentityContext:
    """Apply predicates in order; the first failure propagates."""
    for check in checks:
        check(ctx)
    return _require_context(ctx)
