"""
Check cycle orchestration for Certificate Monitor.
"""

import asyncio
import time
from datetime import datetime, timezone
from typing import List, Sequence, Tuple

from cert_monitor.context import MonitorContext
from cert_monitor.local import LocalCertScanner
from cert_monitor.logger import get_logger, log_cycle_complete
from cert_monitor.metrics import MetricsSink
from cert_monitor.models import CertificateRecord, CheckCycleResult
from cert_monitor.remote import RemoteCertInspector


class CheckCoordinator:
    """Runs one complete check cycle across remote domains and local files."""

    def __init__(
        self,
        context: MonitorContext,
        remote: RemoteCertInspector,
        local: LocalCertScanner,
        metrics: MetricsSink,
    ):
        self.context = context
        self.remote = remote
        self.local = local
        self.metrics = metrics
        self.logger = get_logger("coordinator")

    async def run_cycle(self) -> CheckCycleResult:
        """
        Check all remote domains and local certificates.

        Both sources run concurrently and are joined before the summary is
        built. A fault escaping one source does not fail the cycle: the
        other source's records are kept and the fault is reported in
        ``CheckCycleResult.error``.

        Returns:
            Result of this cycle
        """
        config = self.context.config
        check_timestamp = datetime.now(timezone.utc)
        start_time = time.monotonic()

        self.logger.debug(f"Starting check cycle for {len(config.domains)} domains")

        remote_result, local_result = await asyncio.gather(
            self.remote.check_all(config.domains, config=config),
            self.local.scan_all(config=config),
            return_exceptions=True,
        )

        errors: List[str] = []
        remote_records = self._collect("remote", remote_result, errors)
        local_records = self._collect("local", local_result, errors)

        duration = time.monotonic() - start_time
        result = CheckCycleResult.build(
            remote=remote_records,
            local=local_records,
            check_timestamp=check_timestamp,
            check_duration=duration,
            error="; ".join(errors) if errors else None,
        )

        self._publish(result.records())
        self._publish_cycle(result)
        self._warn_expiring(result.records(), config.expire_warning_days)

        summary = result.summary
        log_cycle_complete(
            self.logger,
            summary.successful_remote,
            summary.total_remote,
            summary.successful_local,
            summary.total_local,
            duration,
        )
        if result.error:
            self.logger.error(f"Check cycle had errors: {result.error}")

        return result

    def _collect(
        self, source: str, outcome: object, errors: List[str]
    ) -> Sequence[CertificateRecord]:
        if isinstance(outcome, asyncio.CancelledError):
            raise outcome
        if isinstance(outcome, BaseException):
            self.logger.error(f"{source.capitalize()} certificate check failed: {outcome}")
            errors.append(f"{source} check failed: {type(outcome).__name__}: {outcome}")
            return []
        return outcome  # type: ignore[return-value]

    def _publish(self, records: Sequence[CertificateRecord]) -> None:
        for record in records:
            source = record.source.value
            try:
                if record.is_ok:
                    self.metrics.set_validity(record.identity, source, True)
                    self.metrics.set_expire_days(
                        record.identity, source, record.expire_in_days or 0
                    )
                    self.metrics.set_wildcard(record.identity, source, record.is_wildcard)
                    self.metrics.set_san_count(record.identity, source, record.san_count)
                else:
                    self.metrics.set_validity(record.identity, source, False)
            except Exception as e:
                self.logger.error(f"Failed to update metrics for {record.identity}: {e}")

    def _publish_cycle(self, result: CheckCycleResult) -> None:
        update_cycle_metrics = getattr(self.metrics, "update_cycle_metrics", None)
        if update_cycle_metrics is None:
            return

        summary = result.summary
        update_cycle_metrics(
            summary.check_duration,
            {
                "remote": {
                    "ok": summary.successful_remote,
                    "error": summary.total_remote - summary.successful_remote,
                },
                "local": {
                    "ok": summary.successful_local,
                    "error": summary.total_local - summary.successful_local,
                },
            },
        )

    def _warn_expiring(self, records: Sequence[CertificateRecord], warning_days: int) -> None:
        expiring: List[Tuple[str, int]] = [
            (record.identity, record.expire_in_days)
            for record in records
            if record.is_ok
            and record.expire_in_days is not None
            and record.expire_in_days <= warning_days
        ]
        for identity, days in expiring:
            if days < 0:
                self.logger.warning(f"Certificate {identity} expired {-days} days ago")
            else:
                self.logger.warning(f"Certificate {identity} expires in {days} days")
