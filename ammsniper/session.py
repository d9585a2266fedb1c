"""
Per-user polling session.

Owns the running flag, the loop task and the stop event for one user and
one feature, so concurrent users (and tests) never share loop state.
"""

import asyncio
from typing import Optional

import structlog

logger = structlog.get_logger(__name__)


class PollingSession:
    """Runs `_cycle` every interval until stopped."""

    name = "session"

    def __init__(self, user_id: str, interval_seconds: float):
        self.user_id = user_id
        self.interval_seconds = interval_seconds
        self.running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()
        self._in_flight = False

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    def _start_loop(self) -> None:
        self.running = True
        self._stop_event.clear()
        self._task = asyncio.create_task(self._loop())
        logger.info(f"{self.name}_started", user=self.user_id, interval_seconds=self.interval_seconds)

    async def _stop_loop(self) -> None:
        """Stop scheduling; a cycle already running is allowed to finish."""
        self.running = False
        self._stop_event.set()
        if self._task and self._task is not asyncio.current_task():
            await self._task
        self._task = None
        logger.info(f"{self.name}_stopped", user=self.user_id)

    async def _loop(self) -> None:
        while self.running:
            await self.run_cycle()
            if not self.running:
                break
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def run_cycle(self) -> bool:
        """
        Run one cycle unless one is already in flight.

        Exceptions escaping a cycle are logged and the cycle abandoned;
        the next tick starts fresh.
        """
        if self._in_flight:
            logger.debug(f"{self.name}_cycle_skipped", user=self.user_id)
            return False

        self._in_flight = True
        try:
            await self._cycle()
            return True
        except Exception as e:
            logger.error(f"{self.name}_cycle_error", user=self.user_id, error=str(e))
            return False
        finally:
            self._in_flight = False

    async def _cycle(self) -> None:
        raise NotImplementedError
