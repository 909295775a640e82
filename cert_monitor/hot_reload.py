"""
Local certificate directory watching for Certificate Monitor.
"""

import asyncio
from pathlib import Path
from typing import Any, Coroutine, Optional, Union

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from cert_monitor.logger import get_logger, log_hot_reload
from cert_monitor.scheduler import CheckScheduler

WATCHED_EXTENSIONS = {".crt", ".key"}


class CertificateFileHandler(FileSystemEventHandler):
    """Handler for certificate file system events."""

    def __init__(self, watcher: "CertificateDirectoryWatcher"):
        self.watcher = watcher
        self.logger = get_logger("hot_reload.certs")

    def on_any_event(self, event: FileSystemEvent) -> None:
        """Handle meaningful file system events only."""
        if event.is_directory:
            return

        # "closed" is included to catch file copies/writes
        meaningful_events = {"created", "modified", "deleted", "moved", "closed"}
        if event.event_type not in meaningful_events:
            return

        file_path = Path(str(event.src_path))
        if file_path.suffix.lower() not in WATCHED_EXTENSIONS:
            dest_path = getattr(event, "dest_path", "")
            if not dest_path or Path(str(dest_path)).suffix.lower() not in WATCHED_EXTENSIONS:
                return

        event_type = "created" if event.event_type == "closed" else event.event_type
        self.logger.debug(f"Certificate file event: {event.event_type} -> {event_type} - {file_path}")
        self.watcher._schedule_coro(
            self.watcher._handle_certificate_change(str(file_path), event_type)
        )


class CertificateDirectoryWatcher:
    """
    Watches the local certificate directory and triggers out-of-cycle checks.

    Bursts of file events (a certificate and its key being replaced) are
    debounced into a single check.
    """

    def __init__(
        self,
        directory: Optional[Union[str, Path]],
        scheduler: CheckScheduler,
        debounce_seconds: float = 1.0,
    ):
        self.directory = Path(directory) if directory else None
        self.scheduler = scheduler
        self.debounce_seconds = debounce_seconds
        self.logger = get_logger("hot_reload")

        self._observer: Optional[Any] = None
        self._watching = False
        self._event_loop: Optional[asyncio.AbstractEventLoop] = None
        self._handler = CertificateFileHandler(self)
        self._pending_task: Optional[asyncio.Task] = None
        self._events_seen = 0

    @property
    def is_watching(self) -> bool:
        return self._watching

    def _schedule_coro(self, coro: Coroutine[Any, Any, Any]) -> None:
        """Schedule a coroutine from the observer thread."""
        if self._event_loop and not self._event_loop.is_closed():
            asyncio.run_coroutine_threadsafe(coro, self._event_loop)
        else:
            coro.close()
            self.logger.warning("Cannot schedule coroutine: event loop not available")

    async def start(self) -> None:
        """Start watching the certificate directory."""
        if self._watching:
            self.logger.warning("Certificate directory watcher already started")
            return

        if self.directory is None or not self.directory.is_dir():
            self.logger.warning(f"Certificate directory does not exist: {self.directory}")
            return

        self._event_loop = asyncio.get_running_loop()

        try:
            self._observer = Observer()
            self._observer.schedule(self._handler, str(self.directory), recursive=False)
            self._observer.start()
            self._watching = True
            self.logger.info(f"Watching certificate directory: {self.directory}")
        except Exception as e:
            self.logger.error(f"Failed to start certificate directory watcher: {e}")
            raise

    async def stop(self) -> None:
        """Stop watching."""
        if self._pending_task and not self._pending_task.done():
            self._pending_task.cancel()

        if not self._watching or self._observer is None:
            return

        try:
            self._observer.stop()
            self._observer.join(timeout=5.0)
            self.logger.info("Certificate directory watcher stopped")
        except Exception as e:
            self.logger.error(f"Error stopping certificate directory watcher: {e}")
        finally:
            self._watching = False
            self._observer = None

    async def _handle_certificate_change(self, file_path: str, event_type: str) -> None:
        """
        Restart the debounce timer for a certificate change.

        Args:
            file_path: Path to changed file
            event_type: Type of file system event
        """
        self._events_seen += 1
        if self._pending_task and not self._pending_task.done():
            self._pending_task.cancel()
        self._pending_task = asyncio.create_task(self._debounced_change(file_path, event_type))

    async def _debounced_change(self, file_path: str, event_type: str) -> None:
        try:
            await asyncio.sleep(self.debounce_seconds)
        except asyncio.CancelledError:
            self.logger.debug(f"Certificate change handling superseded for: {file_path}")
            return

        log_hot_reload(self.logger, file_path, event_type)
        self.scheduler.trigger(f"certificate {event_type}: {Path(file_path).name}")

    def get_status(self) -> dict:
        """Get watcher status information."""
        return {
            "watching": self._watching,
            "directory": str(self.directory) if self.directory else None,
            "events_seen": self._events_seen,
            "pending_check": self._pending_task is not None and not self._pending_task.done(),
        }
