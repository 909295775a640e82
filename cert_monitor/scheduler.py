"""
Periodic check scheduling for Certificate Monitor.
"""

import asyncio
import time
from typing import Any, Dict, Optional, Set

from cert_monitor.config import MonitoringConfig
from cert_monitor.context import MonitorContext
from cert_monitor.coordinator import CheckCoordinator
from cert_monitor.logger import get_logger
from cert_monitor.models import CheckCycleResult, RestartAction
from cert_monitor.restart import RestartDecisionEngine

MIN_ERROR_BACKOFF = 10


class CheckScheduler:
    """
    Runs check cycles periodically and on demand.

    Cycles never overlap: scheduled, triggered and HTTP-requested checks
    all go through :meth:`run_check`, which serializes them on a lock and
    feeds each result to the restart decision engine.
    """

    def __init__(
        self,
        context: MonitorContext,
        coordinator: CheckCoordinator,
        restart_engine: Optional[RestartDecisionEngine] = None,
    ):
        self.context = context
        self.coordinator = coordinator
        self.restart_engine = restart_engine or RestartDecisionEngine()
        self.logger = get_logger("scheduler")

        self._running = False
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._cycle_lock: Optional[asyncio.Lock] = None  # Created lazily in async context
        self._triggered: Set[asyncio.Task] = set()

        self._previous: Optional[CheckCycleResult] = None
        self._last_action: Optional[RestartAction] = None
        self._last_error: Optional[str] = None
        self._last_check_time: Optional[float] = None
        self._cycle_count = 0
        self._loop_restarts = 0

    @property
    def last_result(self) -> Optional[CheckCycleResult]:
        """Result of the most recent completed cycle."""
        return self._previous

    @property
    def is_running(self) -> bool:
        return self._running

    def _error_backoff(self) -> int:
        return max(self.context.config.check_interval, MIN_ERROR_BACKOFF)

    async def start(self) -> None:
        """Start the periodic check loop."""
        if self._running:
            self.logger.warning("Check scheduler is already running")
            return

        self._running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._supervise())
        self.logger.info(
            f"Started check scheduler - Interval: {self.context.config.check_interval}s"
        )

    async def stop(self, timeout: float = 30.0) -> None:
        """
        Stop the check loop.

        A cycle already in progress is allowed to finish; the loop is
        cancelled if it does not exit within ``timeout`` seconds.
        """
        self._running = False
        if self._stop_event is not None:
            self._stop_event.set()

        if self._task:
            try:
                await asyncio.wait_for(asyncio.shield(self._task), timeout=timeout)
            except asyncio.TimeoutError:
                self.logger.warning("Check loop did not stop in time, cancelling")
                self._task.cancel()
                try:
                    await self._task
                except asyncio.CancelledError:
                    pass
            self._task = None

        for task in list(self._triggered):
            task.cancel()
        if self._triggered:
            await asyncio.gather(*self._triggered, return_exceptions=True)

        self.logger.info("Check scheduler stopped")

    async def _wait(self, seconds: float) -> bool:
        """
        Sleep unless stopped.

        Returns:
            True if the scheduler was stopped during the wait
        """
        if self._stop_event is None:
            await asyncio.sleep(seconds)
            return not self._running
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
            return True
        except asyncio.TimeoutError:
            return False

    async def _supervise(self) -> None:
        """Keep the check loop alive until stopped."""
        while self._running:
            try:
                await self._check_loop()
                return
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._loop_restarts += 1
                self.logger.error(f"Check loop crashed, restarting: {e}", exc_info=True)
                if await self._wait(self._error_backoff()):
                    break

    async def _check_loop(self) -> None:
        """Main check loop."""
        while self._running:
            # Interval is re-read every iteration so remote changes apply
            if await self._wait(self.context.config.check_interval):
                break
            try:
                await self.run_check()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self._last_error = str(e)
                self.logger.error(f"Error in check loop: {e}")
                if await self._wait(self._error_backoff()):
                    break

    async def run_check(self) -> CheckCycleResult:
        """
        Run one check cycle and evaluate the restart decision.

        Returns:
            Result of the cycle
        """
        if self._cycle_lock is None:
            self._cycle_lock = asyncio.Lock()

        async with self._cycle_lock:
            result = await self.coordinator.run_cycle()
            self._last_action = self.restart_engine.evaluate(result, self._previous)
            self._previous = result
            self._cycle_count += 1
            self._last_check_time = time.time()
            self._last_error = result.error
            return result

    def trigger(self, reason: str = "manual") -> asyncio.Task:
        """
        Schedule an out-of-cycle check in the background.

        Args:
            reason: Why the check was requested, for logging

        Returns:
            The background task
        """
        self.logger.info(f"Triggering certificate check: {reason}")
        task = asyncio.create_task(self._run_triggered(reason))
        self._triggered.add(task)
        task.add_done_callback(self._triggered.discard)
        return task

    async def _run_triggered(self, reason: str) -> Optional[CheckCycleResult]:
        try:
            return await self.run_check()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._last_error = str(e)
            self.logger.error(f"Triggered check ({reason}) failed: {e}")
            return None

    def on_config_change(self, config: MonitoringConfig) -> None:
        """Configuration subscriber: re-check with the new snapshot."""
        self.trigger(f"configuration change ({len(config.domains)} domains)")

    def get_status(self) -> Dict[str, Any]:
        """Get scheduler status."""
        status: Dict[str, Any] = {
            "check_status": "running" if self._running else "stopped",
            "check_interval": self.context.config.check_interval,
            "cycle_count": self._cycle_count,
            "loop_restarts": self._loop_restarts,
            "last_check_time": self._last_check_time,
            "last_error": self._last_error,
            "pending_checks": len(self._triggered),
        }
        if self._previous is not None:
            status["last_summary"] = self._previous.summary.to_dict()
        if self._last_action is not None:
            status["last_restart_action"] = {
                "restart": self._last_action.restart,
                "reason": self._last_action.reason.value if self._last_action.reason else None,
                "dispatched": self._last_action.dispatched,
            }
        return status
