"""
Reduction-triggered restart handling for Certificate Monitor.
"""

import os
import signal
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Union

import psutil

from cert_monitor.logger import get_logger
from cert_monitor.models import CheckCycleResult, RestartAction, RestartReason


class ProcessController(Protocol):
    """Receiver of restart requests for the serving process."""

    def request_graceful_restart(self) -> bool: ...


class PidFileProcessController:
    """
    Restarts the serving process found through a pid file.

    The process is asked to restart in place by sending it a signal
    (SIGHUP by default), which the entry point handles by draining the
    HTTP server and re-executing itself.
    """

    def __init__(self, pid_file: Union[str, Path], restart_signal: str = "SIGHUP"):
        self.pid_file = Path(pid_file)
        self.restart_signal = getattr(signal, restart_signal)
        self.logger = get_logger("restart")

    def write_pid_file(self, pid: Optional[int] = None) -> bool:
        """Record the pid of the serving process."""
        try:
            self.pid_file.parent.mkdir(parents=True, exist_ok=True)
            self.pid_file.write_text(f"{pid or os.getpid()}\n", encoding="utf-8")
            self.logger.debug(f"PID file written: {self.pid_file}")
            return True
        except OSError as e:
            self.logger.warning(f"Failed to write PID file {self.pid_file}: {e}")
            return False

    def remove_pid_file(self) -> None:
        try:
            if self.read_pid() == os.getpid():
                self.pid_file.unlink()
        except OSError as e:
            self.logger.debug(f"Failed to remove PID file {self.pid_file}: {e}")

    def read_pid(self) -> Optional[int]:
        try:
            return int(self.pid_file.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return None

    def status(self) -> Dict[str, Any]:
        pid = self.read_pid()
        return {
            "pidfile": str(self.pid_file),
            "pidfile_exists": self.pid_file.exists(),
            "pid": pid,
            "process_running": pid is not None and psutil.pid_exists(pid),
        }

    def request_graceful_restart(self) -> bool:
        """
        Ask the serving process to restart.

        Returns:
            True if the restart signal was delivered
        """
        pid = self.read_pid()
        if pid is None:
            self.logger.warning(f"Cannot restart: no valid PID in {self.pid_file}")
            return False

        if not psutil.pid_exists(pid):
            self.logger.warning(f"Cannot restart: process {pid} is not running")
            return False

        try:
            os.kill(pid, self.restart_signal)
        except OSError as e:
            self.logger.error(f"Failed to signal process {pid}: {e}")
            return False

        self.logger.info(f"Sent {signal.Signals(self.restart_signal).name} to process {pid}")
        return True


class RestartDecisionEngine:
    """
    Decides whether the serving process should restart after a check cycle.

    A monitored set that shrank between two consecutive cycles (fewer
    distinct identities, or fewer certificates in total) triggers a restart
    so the serving process drops state for certificates removed upstream.
    """

    def __init__(self, controller: Optional[ProcessController] = None):
        self.controller = controller
        self.logger = get_logger("restart")

    def decide(
        self, current: CheckCycleResult, previous: Optional[CheckCycleResult]
    ) -> RestartAction:
        """
        Compare two consecutive check cycles.

        Args:
            current: Result of the cycle that just completed
            previous: Result of the cycle before it, if any

        Returns:
            Restart action (never raises)
        """
        if previous is None:
            return RestartAction.none()

        try:
            current_identities = current.identities()
            previous_identities = previous.identities()

            if len(current_identities) < len(previous_identities):
                removed = [
                    identity
                    for identity in previous_identities
                    if identity not in set(current_identities)
                ]
                self.logger.info(
                    f"Domain reduction detected. Current: {len(current_identities)}, "
                    f"Previous: {len(previous_identities)}"
                )
                self.logger.info(f"Reduced domains: {removed}")
                return RestartAction.restart_for(RestartReason.DOMAIN_REDUCTION, removed)

            current_total = current.total_certificates()
            previous_total = previous.total_certificates()
            if current_total < previous_total:
                self.logger.info(
                    f"Certificate reduction detected. Current: {current_total}, "
                    f"Previous: {previous_total}"
                )
                return RestartAction.restart_for(RestartReason.CERTIFICATE_COUNT_REDUCTION)

        except Exception as e:
            self.logger.error(f"Failed to check for restart conditions: {e}")

        return RestartAction.none()

    def evaluate(
        self, current: CheckCycleResult, previous: Optional[CheckCycleResult]
    ) -> RestartAction:
        """
        Decide and, if a restart is due, request it from the controller.

        Returns:
            The action taken, with ``dispatched`` set when the controller
            accepted the request
        """
        action = self.decide(current, previous)
        if not action.restart or self.controller is None:
            return action

        try:
            dispatched = bool(self.controller.request_graceful_restart())
        except Exception as e:
            self.logger.error(f"Restart request failed: {e}")
            dispatched = False

        reason = action.reason.value if action.reason else "unknown"
        if dispatched:
            self.logger.info(f"Graceful restart triggered due to {reason}")
        else:
            self.logger.warning(f"Graceful restart due to {reason} was not dispatched")

        return RestartAction(
            restart=True,
            reason=action.reason,
            removed_identities=action.removed_identities,
            dispatched=dispatched,
        )
