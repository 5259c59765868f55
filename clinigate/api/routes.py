from __future__ import annotations

from typing import Callable, Optional

from fastapi import APIRouter, Depends, Header, Path, Request

from clinigate.api.schemas import (
    AuthResponse,
    BookingAccessResponse,
    EffectiveCustomerResponse,
    Envelope,
    IdentityResponse,
    LoginRequest,
    RegisterUserRequest,
    SessionInfoResponse,
    SessionListResponse,
    SweepResponse,
    UserResponse,
)
from clinigate.logging import get_logger
from clinigate.service.errors import ForbiddenError
from clinigate.service.identity import IdentityContext, resolve_effective_customer_id
from clinigate.service.policies import (
    allow_booking_access,
    require_can_book_media_day,
    require_role_in,
    run_checks,
)
from clinigate.service.roles import Role
from clinigate.service.runtime import get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


async def get_identity(
    request: Request,
    authorization: Optional[str] = Header(None),
) -> IdentityContext:
    runtime = get_runtime()
    ctx = runtime.gate.authenticate(authorization)
    request.state.identity = ctx
    return ctx


def require_roles(*roles: Role) -> Callable:
    check = require_role_in(roles)

    async def dependency(ctx: IdentityContext = Depends(get_identity)) -> IdentityContext:
        return run_checks(ctx, check)

    return dependency


get_admin_user = require_roles(Role.ADMIN)


async def get_booking_viewer(
    ctx: IdentityContext = Depends(get_identity),
) -> IdentityContext:
    return run_checks(ctx, allow_booking_access)


async def get_effective_customer_id(
    request: Request,
    ctx: IdentityContext = Depends(get_identity),
) -> str:
    """Role check, then Media Day capability, then delegation resolution."""
    run_checks(
        ctx,
        require_role_in([Role.CUSTOMER, Role.RECEPTIONIST]),
        require_can_book_media_day,
    )
    effective_id = resolve_effective_customer_id(ctx)
    request.state.effective_customer_id = effective_id
    return effective_id


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    """Authenticate with username and password.

    Raises:
        401: If credentials are invalid
        409: If the concurrent session limit is reached
    """
    runtime = get_runtime()
    result = runtime.auth.login(body.username, body.password)
    return Envelope(
        status="ok",
        data=AuthResponse(token=result.token, user=UserResponse.from_user(result.user)),
    )


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(ctx: IdentityContext = Depends(get_identity)):
    runtime = get_runtime()
    runtime.auth.logout(ctx)
    return Envelope(status="ok", data={"message": "logged out"})


@router.get("/auth/sessions", response_model=Envelope, tags=["auth"])
async def list_my_sessions(ctx: IdentityContext = Depends(get_identity)):
    runtime = get_runtime()
    infos = runtime.sessions.get_user_sessions(ctx.user_id)
    return Envelope(
        status="ok",
        data=SessionListResponse(
            user_id=ctx.user_id,
            items=[SessionInfoResponse.from_info(info) for info in infos],
        ),
    )


@router.get("/me", response_model=Envelope, tags=["auth"])
async def whoami(ctx: IdentityContext = Depends(get_identity)):
    return Envelope(status="ok", data=IdentityResponse.from_context(ctx))


@router.get("/access/booking", response_model=Envelope, tags=["access"])
async def booking_access(ctx: IdentityContext = Depends(get_booking_viewer)):
    return Envelope(status="ok", data=BookingAccessResponse(role=ctx.role.value))


@router.get("/access/media-day", response_model=Envelope, tags=["access"])
async def media_day_access(
    ctx: IdentityContext = Depends(get_identity),
    effective_customer_id: str = Depends(get_effective_customer_id),
):
    return Envelope(
        status="ok",
        data=EffectiveCustomerResponse(
            effective_customer_id=effective_customer_id,
            acting_user_id=ctx.user_id,
            role=ctx.role.value,
        ),
    )


@router.get("/admin/users/{user_id}/sessions", response_model=Envelope, tags=["admin"])
async def admin_list_user_sessions(
    user_id: str = Path(..., max_length=128),
    principal: IdentityContext = Depends(get_admin_user),
):
    runtime = get_runtime()
    infos = runtime.sessions.get_user_sessions(user_id)
    return Envelope(
        status="ok",
        data=SessionListResponse(
            user_id=user_id,
            items=[SessionInfoResponse.from_info(info) for info in infos],
        ),
    )


@router.delete("/admin/users/{user_id}/sessions/{role}", response_model=Envelope, tags=["admin"])
async def admin_revoke_user_session(
    user_id: str = Path(..., max_length=128),
    role: Role = Path(...),
    principal: IdentityContext = Depends(get_admin_user),
):
    if user_id == principal.user_id and role is principal.role:
        raise ForbiddenError("use logout to end your own session")
    runtime = get_runtime()
    runtime.sessions.remove_session(user_id, role)
    logger.info(
        "admin_session_revoked",
        admin_id=principal.user_id,
        user_id=user_id,
        role=role.value,
    )
    return Envelope(status="ok", data={"user_id": user_id, "role": role.value})


@router.post("/admin/sessions/sweep", response_model=Envelope, tags=["admin"])
async def admin_sweep_sessions(principal: IdentityContext = Depends(get_admin_user)):
    runtime = get_runtime()
    counts = runtime.sweeper.run_once()
    return Envelope(
        status="ok",
        data=SweepResponse(
            cleaned=counts["cleaned"],
            daily_reset=counts["daily_reset"],
            remaining=len(runtime.sessions),
        ),
    )


@router.post("/admin/users", response_model=Envelope, status_code=201, tags=["admin"])
async def admin_register_user(
    body: RegisterUserRequest, principal: IdentityContext = Depends(get_admin_user)
):
    """Create a portal account.

    Raises:
        400: If the password is weak, an employee has no department, or a
            receptionist is not linked to an existing customer
        409: If the username or email is taken
    """
    runtime = get_runtime()
    user = runtime.auth.register(
        body.username,
        body.password,
        name=body.name,
        role=body.role,
        email=body.email,
        department=body.department,
        parent_customer_id=body.parent_customer_id,
        can_book_media_day=body.can_book_media_day,
    )
    logger.info(
        "admin_user_registered",
        admin_id=principal.user_id,
        user_id=user.id,
        role=user.role.value,
    )
    return Envelope(status="ok", data=UserResponse.from_user(user))
