#!/usr/bin/env python3
"""
Certificate Monitor - Main Application Entry Point
"""

import asyncio
import json
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import click
import uvicorn
from fastapi import FastAPI

from cert_monitor import __version__
from cert_monitor.api import create_app
from cert_monitor.config import Settings, load_config
from cert_monitor.context import MonitorContext
from cert_monitor.coordinator import CheckCoordinator
from cert_monitor.hot_reload import CertificateDirectoryWatcher
from cert_monitor.local import LocalCertScanner
from cert_monitor.logger import setup_logging
from cert_monitor.metrics import MetricsCollector
from cert_monitor.nacos import ConfigWatcher
from cert_monitor.remote import RemoteCertInspector
from cert_monitor.restart import PidFileProcessController, RestartDecisionEngine
from cert_monitor.scheduler import CheckScheduler

UVICORN_LOG_LEVELS = {"warn": "warning", "fatal": "critical"}


class CertMonitor:
    """Main application class for Certificate Monitor."""

    def __init__(self, config_path: Optional[str] = None, dry_run: bool = False):
        self.settings: Optional[Settings] = None
        self.context: Optional[MonitorContext] = None
        self.metrics: Optional[MetricsCollector] = None
        self.local: Optional[LocalCertScanner] = None
        self.coordinator: Optional[CheckCoordinator] = None
        self.controller: Optional[PidFileProcessController] = None
        self.scheduler: Optional[CheckScheduler] = None
        self.config_watcher: Optional[ConfigWatcher] = None
        self.directory_watcher: Optional[CertificateDirectoryWatcher] = None
        self.app: Optional[FastAPI] = None
        self.config_path = config_path
        self.dry_run = dry_run
        self.restart_requested = False
        self._server: Optional[uvicorn.Server] = None
        # Initialize logger early to avoid AttributeError
        self.logger = logging.getLogger("cert_monitor.main")

    async def initialize(self) -> None:
        """Initialize all application components."""
        # Configuration failures are fatal and propagate to main()
        self.settings = load_config(self.config_path)
        config = self.settings.monitoring

        setup_logging(config.log_level, self.settings.log_file)
        self.logger.info("Starting cert-monitor application...")
        self._log_configuration()

        try:
            self.context = MonitorContext(self.settings)
            self.metrics = MetricsCollector(version=__version__)

            remote = RemoteCertInspector(self.context)
            self.local = LocalCertScanner(self.context)
            self.coordinator = CheckCoordinator(self.context, remote, self.local, self.metrics)

            self.controller = PidFileProcessController(
                self.settings.pid_file, self.settings.restart_signal
            )
            if not self.dry_run:
                self.controller.write_pid_file()

            restart_engine = RestartDecisionEngine(None if self.dry_run else self.controller)
            self.scheduler = CheckScheduler(self.context, self.coordinator, restart_engine)

            if self.dry_run:
                return

            if self.settings.nacos.enabled:
                self.config_watcher = ConfigWatcher(self.context)
            else:
                self.logger.info("Nacos not configured, skipping Nacos client startup")

            if self.settings.watch_cert_directory:
                self.directory_watcher = CertificateDirectoryWatcher(
                    self.local.resolve_directory(), self.scheduler
                )

            self.app = create_app(
                context=self.context,
                scheduler=self.scheduler,
                metrics=self.metrics,
                config_watcher=self.config_watcher,
                directory_watcher=self.directory_watcher,
            )

            self.logger.info("Certificate Monitor initialized successfully")

        except Exception as e:
            self.logger.error(f"Failed to initialize application: {e}")
            raise

    def _log_configuration(self) -> None:
        assert self.settings is not None
        config = self.settings.monitoring
        self.logger.info("Current configuration:")
        for key, value in (
            ("Domains", ", ".join(config.domains)),
            ("Check interval", f"{config.check_interval}s"),
            ("Connect timeout", f"{config.connect_timeout}s"),
            ("Expire threshold days", config.threshold_days),
            ("Max concurrent checks", config.max_concurrent_checks),
            ("Metrics port", config.metrics_port),
            ("Log level", config.log_level),
        ):
            self.logger.info(f"- {key}: {value}")
        self.logger.debug(f"Nacos enabled: {self.settings.nacos.enabled}")

    async def _start_config_watcher(self) -> None:
        """Fetch the remote configuration once, then keep polling it."""
        if self.config_watcher is None:
            return

        try:
            await self.config_watcher.poll_once()
        except Exception as e:
            self.logger.error(f"Initial Nacos configuration fetch failed: {e}")
        await self.config_watcher.start()

    async def run(self) -> None:
        """Run the application server or perform a dry-run check."""
        if not self.scheduler:
            await self.initialize()

        assert self.scheduler is not None and self.context is not None
        assert self.settings is not None

        if self.dry_run:
            self.logger.info("Running in dry-run mode - checking certificates only")
            result = await self.scheduler.run_check()
            print(json.dumps(result.summary.to_dict(), indent=2))
            self.logger.info("Dry-run check completed")
            await self.shutdown()
            return

        await self._start_config_watcher()
        self.context.subscribe(self.scheduler.on_config_change)

        self.logger.info("Performing initial certificate checks...")
        await self.scheduler.run_check()
        await self.scheduler.start()

        if self.directory_watcher is not None:
            await self.directory_watcher.start()

        config = self.context.config
        log_level = UVICORN_LOG_LEVELS.get(config.log_level, config.log_level)
        self.logger.info(
            f"Starting HTTP server on {self.settings.bind_address}:{config.metrics_port}"
        )

        server = uvicorn.Server(
            uvicorn.Config(
                app=self.app,  # type: ignore[arg-type]
                host=self.settings.bind_address,
                port=config.metrics_port,
                log_level=log_level,
                access_log=False,
            )
        )
        self._server = server

        signal.signal(signal.SIGHUP, self._restart_handler)

        try:
            await server.serve()
        except KeyboardInterrupt:
            self.logger.info("Received interrupt signal")
        finally:
            await self.shutdown()

    def _restart_handler(self, signum: int, frame: Optional[object]) -> None:
        """Handle the restart signal by draining the server."""
        self.logger.info(f"Received signal {signum}, restarting after graceful shutdown")
        self.restart_requested = True
        if self._server is not None:
            self._server.should_exit = True

    async def shutdown(self) -> None:
        """Gracefully shutdown all components."""
        self.logger.info("Starting graceful shutdown")

        if self.directory_watcher:
            await self.directory_watcher.stop()

        if self.config_watcher:
            await self.config_watcher.close()

        if self.scheduler:
            await self.scheduler.stop()

        if self.local:
            self.local.close()

        if self.controller and not self.dry_run and not self.restart_requested:
            self.controller.remove_pid_file()

        self.logger.info("Graceful shutdown completed")


def restart_process() -> None:
    """Replace the current process with a fresh copy of itself."""
    logging.getLogger("cert_monitor.main").info("Re-executing process")
    os.execv(sys.executable, [sys.executable] + sys.argv)


@click.command()
@click.option(
    "--config",
    "-f",
    type=click.Path(exists=True, path_type=Path),
    help="Path to configuration file",
)
@click.option("--version", "-v", is_flag=True, help="Show version information")
@click.option("--dry-run", is_flag=True, help="Run one check, print the summary and exit")
def main(config: Optional[Path], version: bool, dry_run: bool) -> None:
    """Certificate Monitor - Monitor TLS certificates for expiration."""

    if version:
        print(f"Certificate Monitor v{__version__}")
        return

    monitor = CertMonitor(str(config) if config else None, dry_run=dry_run)
    try:
        asyncio.run(monitor.run())
    except KeyboardInterrupt:
        print("\nShutdown requested by user")
        sys.exit(0)
    except Exception as e:
        print(f"Application failed: {e}", file=sys.stderr)
        sys.exit(1)

    if monitor.restart_requested:
        restart_process()


if __name__ == "__main__":
    main()
