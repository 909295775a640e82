"""
Prometheus metrics collection for Certificate Monitor.
"""

import platform
import socket
import time
from typing import Any, Dict, Protocol

import psutil
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Gauge,
    Histogram,
    Info,
    generate_latest,
)

from cert_monitor.logger import get_logger


class MetricsSink(Protocol):
    """Receiver of per-certificate attribute updates."""

    def set_validity(self, identity: str, source: str, valid: bool) -> None: ...

    def set_expire_days(self, identity: str, source: str, days: int) -> None: ...

    def set_wildcard(self, identity: str, source: str, wildcard: bool) -> None: ...

    def set_san_count(self, identity: str, source: str, count: int) -> None: ...


class MetricsCollector:
    """Prometheus metrics collector for certificate checks and application metrics."""

    def __init__(self, version: str = "unknown") -> None:
        self.logger = get_logger("metrics")
        self.registry = CollectorRegistry()

        # Certificate metrics
        self.cert_expire_days = Gauge(
            "cert_expire_days",
            "Days until certificate expires",
            ["domain", "source"],
            registry=self.registry,
        )

        self.cert_status = Gauge(
            "cert_status",
            "Certificate check status (1: valid, 0: check failed)",
            ["domain", "source"],
            registry=self.registry,
        )

        self.cert_type = Gauge(
            "cert_type",
            "Certificate type (0: Single Domain, 1: Wildcard)",
            ["domain", "source"],
            registry=self.registry,
        )

        self.cert_san_count = Gauge(
            "cert_san_count",
            "Number of Subject Alternative Names",
            ["domain", "source"],
            registry=self.registry,
        )

        # Operational metrics
        self.cert_check_results = Gauge(
            "cert_check_results",
            "Certificates checked in the last cycle",
            ["source", "outcome"],
            registry=self.registry,
        )

        self.cert_check_duration_seconds = Histogram(
            "cert_check_duration_seconds",
            "Check cycle duration",
            registry=self.registry,
        )

        self.cert_last_check_timestamp = Gauge(
            "cert_last_check_timestamp",
            "Completion time of the last check cycle (Unix timestamp)",
            registry=self.registry,
        )

        # Application metrics
        self.app_memory_bytes = Gauge(
            "app_memory_bytes",
            "Application memory usage in bytes",
            ["type"],  # rss, vms
            registry=self.registry,
        )

        self.app_cpu_percent = Gauge(
            "app_cpu_percent", "Application CPU usage percentage", registry=self.registry
        )

        self.app_thread_count = Gauge(
            "app_thread_count", "Number of application threads", registry=self.registry
        )

        self.app_info = Info("app", "Application information", registry=self.registry)
        self.app_info.info(
            {
                "hostname": socket.gethostname(),
                "version": version,
                "python_version": platform.python_version(),
            }
        )

        self._last_system_update = 0.0
        self._system_update_interval = 30  # Update system metrics every 30 seconds

        self.logger.info("Metrics collector initialized")

    def set_validity(self, identity: str, source: str, valid: bool) -> None:
        self.cert_status.labels(domain=identity, source=source).set(1 if valid else 0)

    def set_expire_days(self, identity: str, source: str, days: int) -> None:
        self.cert_expire_days.labels(domain=identity, source=source).set(days)

    def set_wildcard(self, identity: str, source: str, wildcard: bool) -> None:
        self.cert_type.labels(domain=identity, source=source).set(1 if wildcard else 0)

    def set_san_count(self, identity: str, source: str, count: int) -> None:
        self.cert_san_count.labels(domain=identity, source=source).set(count)

    def update_cycle_metrics(
        self, duration: float, counts: Dict[str, Dict[str, int]]
    ) -> None:
        """
        Update check cycle metrics.

        Args:
            duration: Cycle duration in seconds
            counts: Per-source ``{"ok": n, "error": m}`` counts
        """
        try:
            self.cert_check_duration_seconds.observe(duration)
            self.cert_last_check_timestamp.set(int(time.time()))
            for source, outcomes in counts.items():
                for outcome, value in outcomes.items():
                    self.cert_check_results.labels(source=source, outcome=outcome).set(value)
        except Exception as e:
            self.logger.error(f"Failed to update cycle metrics: {e}")

    def update_system_metrics(self) -> None:
        """Update process metrics, at most once per update interval."""
        now = time.time()
        if now - self._last_system_update < self._system_update_interval:
            return

        try:
            process = psutil.Process()
            memory = process.memory_info()
            self.app_memory_bytes.labels(type="rss").set(memory.rss)
            self.app_memory_bytes.labels(type="vms").set(memory.vms)
            self.app_cpu_percent.set(process.cpu_percent(interval=None))
            self.app_thread_count.set(process.num_threads())
            self._last_system_update = now
        except (psutil.Error, OSError) as e:
            self.logger.warning(f"Failed to update system metrics: {e}")

    def get_metrics(self) -> str:
        """Render all metrics in the Prometheus text format."""
        self.update_system_metrics()
        return generate_latest(self.registry).decode("utf-8")

    def get_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def get_registry_status(self) -> Dict[str, Any]:
        """Get Prometheus registry status for health checks."""
        try:
            metrics_count = len(list(self.registry.collect()))
            return {"prometheus_registry": {"status": "healthy", "metrics_count": metrics_count}}
        except Exception as e:
            return {"prometheus_registry": {"status": "error", "error": str(e)}}
