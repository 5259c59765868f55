"""Background sweep of the session registry.

Each tick drops idle and prior-day sessions, then runs the once-per-day
forced reset. The registry serializes the sweep against request-path calls.
"""

from __future__ import annotations

import asyncio
from typing import Optional

from clinigate.logging import get_logger
from clinigate.service.sessions import SessionRegistry

logger = get_logger(__name__)

DEFAULT_SWEEP_INTERVAL_SECONDS = 300


class SessionSweeper:
    def __init__(
        self,
        sessions: SessionRegistry,
        *,
        interval: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.sessions = sessions
        self.interval = interval
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._running:
            logger.warning("session_sweeper_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("session_sweeper_started", interval=self.interval)

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("session_sweeper_stopped")

    def run_once(self) -> dict[str, int]:
        cleaned = self.sessions.cleanup_old_sessions()
        reset = self.sessions.force_daily_reset()
        logger.info(
            "session_sweep_completed",
            cleaned=cleaned,
            daily_reset=reset,
            remaining=len(self.sessions),
        )
        return {"cleaned": cleaned, "daily_reset": reset}

    async def _run_loop(self) -> None:
        consecutive_errors = 0
        while self._running:
            try:
                self.run_once()
                consecutive_errors = 0
            except Exception as exc:
                consecutive_errors += 1
                logger.error(
                    "session_sweeper_loop_error",
                    error=str(exc),
                    error_type=type(exc).__name__,
                    consecutive_errors=consecutive_errors,
                )
            await asyncio.sleep(self.interval)
