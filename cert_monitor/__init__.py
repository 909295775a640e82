"""
Certificate Monitor

Watches TLS certificates served by remote domains and stored in a local
directory, and exposes their expiry state as Prometheus metrics.
"""

__version__ = "1.0.0"
__author__ = "Certificate Monitor Team"
__description__ = "TLS certificate expiry monitoring with Prometheus metrics"

from cert_monitor.config import Settings
from cert_monitor.coordinator import CheckCoordinator
from cert_monitor.metrics import MetricsCollector
from cert_monitor.scheduler import CheckScheduler

__all__ = [
    "Settings",
    "CheckCoordinator",
    "CheckScheduler",
    "MetricsCollector",
]
