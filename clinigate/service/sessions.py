"""Process-wide authoritative session table.

One record per (user_id, role). A login overwrites the previous record for the
same key, so at most one token is honored per identity-role pair. Records are
dropped on logout, on the daily reset boundary, and after the idle timeout.

The table lives in process memory; several server processes would each hold
their own table, which is why a multi-process deployment needs a shared store.
"""

from __future__ import annotations

import threading
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional, Tuple

from clinigate.logging import get_logger
from clinigate.service.clock import Clock, SystemClock
from clinigate.service.roles import Role
from clinigate.storage.models import SessionInfo, SessionRecord

logger = get_logger(__name__)

SessionKey = Tuple[str, Role]

DEFAULT_DAILY_RESET_HOUR = 9
DEFAULT_IDLE_TIMEOUT = timedelta(hours=24)


class SessionRegistry:
    def __init__(
        self,
        clock: Optional[Clock] = None,
        *,
        daily_reset_hour: int = DEFAULT_DAILY_RESET_HOUR,
        idle_timeout: timedelta = DEFAULT_IDLE_TIMEOUT,
    ) -> None:
        if not 0 <= daily_reset_hour <= 23:
            raise ValueError("daily_reset_hour must be between 0 and 23")
        self.clock: Clock = clock or SystemClock()
        self.daily_reset_hour = daily_reset_hour
        self.idle_timeout = idle_timeout
        self._lock = threading.Lock()
        self._sessions: Dict[SessionKey, SessionRecord] = {}
        now = self.clock.now()
        # A boundary that passed before this registry existed has nothing to clear
        self._reset_processed_for: Optional[date] = (
            now.date() if now.hour >= daily_reset_hour else None
        )

    @staticmethod
    def _key(user_id: str, role: Role) -> SessionKey:
        return (str(user_id), Role(role))

    def _past_daily_boundary(self, record: SessionRecord, now: datetime) -> bool:
        return now.hour >= self.daily_reset_hour and record.login_date != now.date()

    def _idle_expired(self, record: SessionRecord, now: datetime) -> bool:
        return now - record.last_activity_at > self.idle_timeout

    def _new_record(self, key: SessionKey, token: str) -> SessionRecord:
        now = self.clock.now()
        return SessionRecord(
            user_id=key[0],
            role=key[1],
            token=token,
            created_at=now,
            last_activity_at=now,
            login_date=now.date(),
        )

    def add_session(self, user_id: str, role: Role, token: str) -> None:
        key = self._key(user_id, role)
        record = self._new_record(key, token)
        with self._lock:
            replaced = key in self._sessions
            self._sessions[key] = record
        logger.info(
            "session_added", user_id=key[0], role=key[1].value, replaced=replaced
        )

    def add_session_within_limit(
        self, user_id: str, role: Role, token: str, *, limit: int
    ) -> bool:
        """Add the session unless the user already holds ``limit`` others.

        Only sessions for other roles count, since this login replaces any
        record under the same role. The count and the insert happen under one
        lock acquisition.

        Returns:
            True when the session was added, False when the limit was reached
        """
        key = self._key(user_id, role)
        record = self._new_record(key, token)
        with self._lock:
            others = sum(
                1
                for (owner, owner_role) in self._sessions
                if owner == key[0] and owner_role is not key[1]
            )
            if others >= limit:
                accepted = False
            else:
                accepted = True
                replaced = key in self._sessions
                self._sessions[key] = record
        if not accepted:
            logger.info(
                "session_limit_reached", user_id=key[0], role=key[1].value, active=others
            )
            return False
        logger.info(
            "session_added", user_id=key[0], role=key[1].value, replaced=replaced
        )
        return True

    def is_valid_session(self, user_id: str, token: str, role: Role) -> bool:
        key = self._key(user_id, role)
        now = self.clock.now()
        with self._lock:
            record = self._sessions.get(key)
            if record is None or not isinstance(token, str) or record.token != token:
                return False
            if self._past_daily_boundary(record, now):
                self._sessions.pop(key, None)
                logger.info(
                    "session_daily_reset",
                    user_id=key[0],
                    role=key[1].value,
                    login_date=record.login_date.isoformat(),
                )
                return False
            record.last_activity_at = now
            return True

    def remove_session(self, user_id: str, role: Role) -> None:
        key = self._key(user_id, role)
        with self._lock:
            removed = self._sessions.pop(key, None)
        if removed is not None:
            logger.info("session_removed", user_id=key[0], role=key[1].value)

    def get_user_sessions(self, user_id: str) -> List[SessionInfo]:
        user_id = str(user_id)
        with self._lock:
            return [
                SessionInfo.from_record(record)
                for (owner, _), record in self._sessions.items()
                if owner == user_id
            ]

    def cleanup_old_sessions(self) -> int:
        """Drop records past the daily boundary or idle beyond the timeout.

        Returns:
            Number of records removed
        """
        now = self.clock.now()
        removed = 0
        with self._lock:
            stale = [
                key
                for key, record in self._sessions.items()
                if self._past_daily_boundary(record, now)
                or self._idle_expired(record, now)
            ]
            for key in stale:
                if self._sessions.pop(key, None) is not None:
                    removed += 1
        if removed:
            logger.info("session_cleanup", removed=removed)
        return removed

    def force_daily_reset(self) -> int:
        """Clear every session created before today's reset boundary.

        Runs at most once per calendar day: the first call at or after the
        boundary does the work and later calls the same day are no-ops, so
        any timer granularity reaches it.

        Returns:
            Number of records removed
        """
        now = self.clock.now()
        today = now.date()
        with self._lock:
            if now.hour < self.daily_reset_hour or self._reset_processed_for == today:
                return 0
            boundary = now.replace(
                hour=self.daily_reset_hour, minute=0, second=0, microsecond=0
            )
            stale = [
                key
                for key, record in self._sessions.items()
                if record.created_at < boundary
            ]
            for key in stale:
                self._sessions.pop(key, None)
            self._reset_processed_for = today
        logger.info(
            "session_forced_daily_reset", date=today.isoformat(), removed=len(stale)
        )
        return len(stale)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def close(self) -> None:
        with self._lock:
            count = len(self._sessions)
            self._sessions.clear()
        logger.info("session_registry_closed", dropped=count)
