"""
Shared runtime context for Certificate Monitor.
"""

import asyncio
import inspect
import threading
from typing import Any, Callable, List, Optional, Set

from cert_monitor.config import MonitoringConfig, Settings
from cert_monitor.logger import get_logger, update_log_level

ConfigHandler = Callable[[MonitoringConfig], Any]


class MonitorContext:
    """
    Owner of the live configuration snapshot.

    Components receive the context at construction and read
    ``context.config`` once per operation to get a consistent view. Only the
    configuration watcher (or start-up loading) replaces the snapshot, via
    :meth:`replace_config`, which also re-levels the log sinks and notifies
    subscribers.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        log_level_updater: Callable[[str], Any] = update_log_level,
    ):
        self.settings = settings or Settings()
        self._config = self.settings.monitoring
        self._swap_lock = threading.Lock()
        self._subscribers: List[ConfigHandler] = []
        self._pending: Set[asyncio.Task] = set()
        self._log_level_updater = log_level_updater
        self.logger = get_logger("context")

    @property
    def config(self) -> MonitoringConfig:
        """Current configuration snapshot."""
        return self._config

    def subscribe(self, handler: ConfigHandler) -> Callable[[], None]:
        """
        Register a handler invoked with each new configuration snapshot.

        Coroutine handlers are scheduled as tasks so the caller of
        :meth:`replace_config` is never blocked by handler work.

        Args:
            handler: Callable receiving the new MonitoringConfig

        Returns:
            Function that removes the subscription
        """
        self._subscribers.append(handler)

        def unsubscribe() -> None:
            if handler in self._subscribers:
                self._subscribers.remove(handler)

        return unsubscribe

    def replace_config(self, new_config: MonitoringConfig) -> MonitoringConfig:
        """
        Atomically swap the configuration snapshot.

        Args:
            new_config: Validated replacement configuration

        Returns:
            The previous configuration
        """
        with self._swap_lock:
            old_config = self._config
            self._config = new_config

        if old_config.log_level != new_config.log_level:
            try:
                self._log_level_updater(new_config.log_level)
            except Exception as e:
                self.logger.error(f"Failed to update log level to {new_config.log_level}: {e}")

        self._log_changes(old_config, new_config)
        self._notify(new_config)
        return old_config

    def _notify(self, new_config: MonitoringConfig) -> None:
        for handler in list(self._subscribers):
            try:
                result = handler(new_config)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending.add(task)
                    task.add_done_callback(self._handler_done)
            except Exception as e:
                self.logger.error(f"Configuration change handler failed: {e}")

    def _handler_done(self, task: "asyncio.Future[Any]") -> None:
        self._pending.discard(task)  # type: ignore[arg-type]
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            self.logger.error(f"Configuration change handler failed: {error}")

    def _log_changes(self, old: MonitoringConfig, new: MonitoringConfig) -> None:
        changes = []
        added = set(new.domains) - set(old.domains)
        removed = set(old.domains) - set(new.domains)
        if added:
            changes.append(f"Added domains: {sorted(added)}")
        if removed:
            changes.append(f"Removed domains: {sorted(removed)}")

        old_values = old.model_dump(exclude={"domains"})
        for key, value in new.model_dump(exclude={"domains"}).items():
            if old_values[key] != value:
                changes.append(f"{key}: {old_values[key]} -> {value}")

        if changes:
            self.logger.info(f"Configuration updated: {'; '.join(changes)}")
        else:
            self.logger.info("Configuration reloaded (no significant changes detected)")
