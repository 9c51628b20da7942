"""
Monitor Scheduler

Background task that runs monitor_all every MONITOR_CHECK_INTERVAL_SECONDS.
Stopping sets the cancel event and waits up to MONITOR_STOP_TIMEOUT_SECONDS
for the running batch: wallets already in progress finish their ledger batch,
the rest are skipped. The task is cancelled only when the grace period runs out.
"""

import asyncio
from typing import Optional

from whale_monitor.core.config import settings
from whale_monitor.core.logging_config import get_logger
from whale_monitor.services.orchestrator import ScanOrchestrator, get_orchestrator

logger = get_logger(__name__)


class MonitorScheduler:
    """Periodic monitor_all loop"""

    def __init__(
        self,
        orchestrator: Optional[ScanOrchestrator] = None,
        interval_seconds: Optional[int] = None,
        stop_timeout_seconds: Optional[float] = None,
    ):
        self._orchestrator = orchestrator
        self.interval_seconds = interval_seconds or settings.MONITOR_CHECK_INTERVAL_SECONDS
        self.stop_timeout_seconds = (
            settings.MONITOR_STOP_TIMEOUT_SECONDS if stop_timeout_seconds is None else stop_timeout_seconds
        )

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._cancel_event = asyncio.Event()
        self.runs = 0

    @property
    def orchestrator(self) -> ScanOrchestrator:
        """Lazy-loaded orchestrator"""
        if self._orchestrator is None:
            self._orchestrator = get_orchestrator()
        return self._orchestrator

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self):
        """Start the scheduler background task"""
        if self._running:
            logger.warning("Monitor scheduler already running")
            return

        self._cancel_event = asyncio.Event()
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("Monitor scheduler started (interval=%ds)", self.interval_seconds)

    async def stop(self):
        """Stop the scheduler"""
        self._running = False
        self._cancel_event.set()
        if self._task:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=self.stop_timeout_seconds)
            except asyncio.TimeoutError:
                logger.warning(
                    "Monitor batch still running after %ss, cancelling", self.stop_timeout_seconds
                )
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None
        logger.info("Monitor scheduler stopped")

    async def run_once(self):
        batch = await self.orchestrator.monitor_all(cancel_event=self._cancel_event)
        self.runs += 1
        return batch

    async def _run_loop(self):
        """Main scheduling loop"""
        while self._running:
            try:
                await self.run_once()
            except Exception as e:
                logger.error("Error in scheduled monitoring run: %s", e, exc_info=True)

            try:
                await asyncio.wait_for(self._cancel_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass


# Global scheduler instance
_scheduler: Optional[MonitorScheduler] = None


async def start_monitor_scheduler() -> MonitorScheduler:
    """Start the global monitor scheduler"""
    global _scheduler
    if _scheduler is None:
        _scheduler = MonitorScheduler()
    await _scheduler.start()
    return _scheduler


async def stop_monitor_scheduler():
    """Stop the global monitor scheduler"""
    global _scheduler
    if _scheduler:
        await _scheduler.stop()
        _scheduler = None


def get_monitor_scheduler() -> Optional[MonitorScheduler]:
    """Get the global scheduler instance"""
    return _scheduler
