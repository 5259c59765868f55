from __future__ import annotations

import threading
from datetime import timedelta
from typing import Optional

from clinigate.config import Settings, get_settings, reset_settings_cache
from clinigate.logging import get_logger
from clinigate.service.auth import AuthService, validate_password
from clinigate.service.clock import Clock, SystemClock
from clinigate.service.gate import AuthenticationGate
from clinigate.service.roles import Role
from clinigate.service.sessions import SessionRegistry
from clinigate.service.sweeper import SessionSweeper
from clinigate.service.tokens import TokenCodec
from clinigate.storage.memory import MemoryStore

logger = get_logger(__name__)


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(
        self, settings: Optional[Settings] = None, *, clock: Optional[Clock] = None
    ):
        self.settings = settings or get_settings()
        self.clock: Clock = clock or SystemClock(self.settings.tzinfo)
        self.store = MemoryStore()
        self.codec = TokenCodec(
            self.settings.jwt_secret,
            issuer=self.settings.jwt_issuer,
            audience=self.settings.jwt_audience,
            ttl=timedelta(minutes=self.settings.token_ttl_minutes),
            clock=self.clock,
        )
        self.sessions = SessionRegistry(
            self.clock,
            daily_reset_hour=self.settings.daily_reset_hour,
            idle_timeout=timedelta(hours=self.settings.session_idle_timeout_hours),
        )
        self.gate = AuthenticationGate(self.codec, self.sessions)
        self.auth = AuthService(self.store, self.codec, self.sessions, self.settings)
        self.sweeper = SessionSweeper(
            self.sessions, interval=self.settings.session_sweep_interval_seconds
        )
        if self.settings.bootstrap_admin_username and self.settings.bootstrap_admin_password:
            bootstrap_admin(
                self,
                self.settings.bootstrap_admin_username,
                self.settings.bootstrap_admin_password,
            )
        logger.info(
            "runtime_initialized",
            daily_reset_hour=self.settings.daily_reset_hour,
            timezone=self.settings.server_timezone or "local",
            sweeper_enabled=self.settings.session_sweeper_enabled,
        )

    async def close(self) -> None:
        await self.sweeper.stop()
        self.sessions.close()


def bootstrap_admin(runtime: Runtime, username: str, password: str) -> dict:
    """Create or promote the initial admin account in the runtime's store.

    Returns:
        dict with user_id, username and status ('created', 'promoted' or 'already_admin')
    """
    if not validate_password(password):
        raise ValueError(
            "admin password must be at least 12 characters with 3+ character classes"
        )
    existing = runtime.store.get_user_by_username(username)
    if existing:
        if existing.role is Role.ADMIN:
            status = "already_admin"
        else:
            runtime.store.update_user_role(existing.id, Role.ADMIN)
            status = "promoted"
        user = existing
    else:
        user = runtime.store.create_user(username, "Administrator", role=Role.ADMIN)
        status = "created"
    runtime.auth.save_password(user.id, password)
    logger.info("admin_bootstrapped", user_id=user.id, status=status)
    return {"user_id": user.id, "username": user.username, "status": status}


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking: a lock-free fast path for an existing
    runtime, then a locked re-check before creating one.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests(
    settings: Optional[Settings] = None, *, clock: Optional[Clock] = None
) -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime
    with _runtime_lock:
        if runtime is not None:
            runtime.sessions.close()
        reset_settings_cache()
        runtime = Runtime(settings, clock=clock)
        return runtime
