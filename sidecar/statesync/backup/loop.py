"""
Periodic backup loop for the state sync sidecar.

Runs the backup cycle every interval until stopped. Stopping is a drain,
not an abort: the sleep is interrupted immediately, then one final cycle
runs to completion before run() returns, so the last local writes make
it to the bucket.

Invariants:
    - At most one cycle executes at a time
    - A running cycle is never interrupted by stop()
    - Exactly one final cycle runs after stop()
    - A failed or crashed cycle is logged and retried on the next tick
"""

from __future__ import annotations

import asyncio
import logging

from .cycle import BackupCycle, BackupResult

logger = logging.getLogger(__name__)


class BackupLoop:
    """Schedules BackupCycle runs on a fixed interval.

    Attributes:
        cycle: The backup cycle to run
        interval_seconds: Sleep between cycles

    Example:
        >>> loop = BackupLoop(cycle, interval_seconds=300)
        >>> task = asyncio.create_task(loop.run(), name="backup-loop")
        >>> ...
        >>> loop.stop()
        >>> await task  # returns after the final backup
    """

    def __init__(self, cycle: BackupCycle, interval_seconds: float = 300) -> None:
        self.cycle = cycle
        self.interval_seconds = interval_seconds
        self._stop_event = asyncio.Event()
        self._running = False
        self.last_result: BackupResult | None = None

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        """Request the loop to drain and exit."""
        if not self._stop_event.is_set():
            logger.info("Received shutdown signal, running final backup...")
        self._stop_event.set()

    async def run(self) -> None:
        """Run until stop() is called, then perform the final backup."""
        if self._running:
            logger.warning("Backup loop already running")
            return

        self._running = True
        logger.info(f"Starting backup loop (interval: {self.interval_seconds}s)")

        try:
            while not self._stop_event.is_set():
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
                except asyncio.TimeoutError:
                    await self._run_cycle()

            await self._run_cycle()
        finally:
            self._running = False
            logger.info("Backup loop stopped.")

    async def _run_cycle(self) -> None:
        try:
            self.last_result = await self.cycle.run()
        except Exception as e:
            logger.error(f"Backup cycle crashed: {e}", exc_info=True)
            self.last_result = BackupResult(success=False, error=str(e))
        if not self.last_result.success:
            logger.warning("Backup failed, will retry next cycle.")
