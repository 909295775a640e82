"""
Remote TLS certificate inspection for Certificate Monitor.
"""

import asyncio
import ssl
import time
from typing import List, Optional, Sequence

from cert_monitor.certificate import build_record, load_certificate
from cert_monitor.config import MonitoringConfig
from cert_monitor.context import MonitorContext
from cert_monitor.limiter import ConcurrencyLimiter
from cert_monitor.logger import get_logger, log_cert_checked, log_cert_error
from cert_monitor.models import CertificateRecord, CertSource

TLS_PORT = 443


class RemoteCertInspector:
    """
    Checks the certificates served by remote hosts.

    Each domain gets its own TLS connection with SNI set to the domain;
    the number of simultaneous connections is bounded by a limiter sized
    from ``max_concurrent_checks``.
    """

    SOURCE = CertSource.REMOTE

    def __init__(
        self,
        context: MonitorContext,
        limiter: Optional[ConcurrencyLimiter] = None,
        port: int = TLS_PORT,
        verify_certificates: Optional[bool] = None,
    ):
        self.context = context
        self.port = port
        self.limiter = limiter or ConcurrencyLimiter(
            context.config.max_concurrent_checks, name="remote cert"
        )
        if verify_certificates is None:
            verify_certificates = context.settings.verify_certificates
        self.verify_certificates = verify_certificates
        self.logger = get_logger("remote")

        self.logger.debug(
            f"Remote inspector initialized with max_concurrent_checks: {self.limiter.capacity}"
        )

    def _create_ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self.verify_certificates:
            # Expired and self-signed certificates must still report their dates
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    async def _fetch_peer_certificate(self, domain: str, timeout: float) -> bytes:
        """
        Connect to the domain and return the leaf certificate in DER form.

        Args:
            domain: Host name to connect to and present as SNI
            timeout: Seconds allowed for connect and handshake together

        Returns:
            DER-encoded peer certificate
        """
        reader, writer = await asyncio.wait_for(
            asyncio.open_connection(
                domain,
                self.port,
                ssl=self._create_ssl_context(),
                server_hostname=domain,
                ssl_handshake_timeout=timeout,
            ),
            timeout=timeout,
        )
        try:
            ssl_object = writer.get_extra_info("ssl_object")
            der = ssl_object.getpeercert(binary_form=True) if ssl_object else None
            if not der:
                raise ssl.SSLError(f"No peer certificate presented by {domain}")
            return der
        finally:
            writer.close()
            try:
                await asyncio.wait_for(writer.wait_closed(), timeout=timeout)
            except (OSError, ssl.SSLError, asyncio.TimeoutError) as e:
                self.logger.debug(f"Error closing connection to {domain}: {e}")
            self.logger.debug(f"Connections closed for {domain}")

    async def inspect(self, domain: str, timeout_seconds: float) -> CertificateRecord:
        """
        Check the certificate served by a single domain.

        Never raises: any connection, handshake or parse failure is returned
        as a record with status error.

        Args:
            domain: Domain to check on port 443
            timeout_seconds: Connect and handshake timeout

        Returns:
            Certificate record for the domain
        """
        self.logger.debug(
            f"Starting SSL check for domain: {domain} (timeout {timeout_seconds}s)"
        )
        start_time = time.monotonic()

        try:
            der = await self._fetch_peer_certificate(domain, timeout_seconds)
            cert = load_certificate(der)
            record = build_record(
                cert,
                identity=domain,
                source=self.SOURCE,
                check_duration=time.monotonic() - start_time,
            )
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError:
            duration = time.monotonic() - start_time
            error = TimeoutError(f"Connection to {domain}:{self.port} timed out")
            log_cert_error(self.logger, domain, self.SOURCE.value, error, duration)
            return CertificateRecord.failed(
                domain, self.SOURCE, str(error), check_duration=duration
            )
        except Exception as e:
            duration = time.monotonic() - start_time
            log_cert_error(self.logger, domain, self.SOURCE.value, e, duration)
            return CertificateRecord.failed(
                domain, self.SOURCE, str(e) or type(e).__name__, check_duration=duration
            )

        log_cert_checked(
            self.logger, domain, self.SOURCE.value, record.expire_in_days or 0, record.is_wildcard
        )
        if record.subject_alternative_names:
            self.logger.debug(f"SAN domains: {', '.join(record.subject_alternative_names)}")
        return record

    async def _check_with_limit(self, domain: str, timeout: float) -> CertificateRecord:
        async with self.limiter:
            return await self.inspect(domain, timeout)

    async def check_all(
        self, domains: Sequence[str], config: Optional[MonitoringConfig] = None
    ) -> List[CertificateRecord]:
        """
        Check all domains concurrently, bounded by the limiter.

        Args:
            domains: Domains to check
            config: Snapshot supplying timeout and concurrency; defaults to
                the current one

        Returns:
            One record per domain, in input order
        """
        config = config or self.context.config
        await self.limiter.resize(config.max_concurrent_checks)

        if not domains:
            self.logger.warning("No domains configured for remote checking")
            return []

        self.logger.info(
            f"Checking {len(domains)} remote certificates with max "
            f"{self.limiter.capacity} concurrent connections"
        )
        start_time = time.monotonic()

        tasks = [
            asyncio.create_task(self._check_with_limit(domain, config.connect_timeout))
            for domain in domains
        ]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        records: List[CertificateRecord] = []
        for domain, result in zip(domains, results):
            if isinstance(result, CertificateRecord):
                records.append(result)
            elif isinstance(result, asyncio.CancelledError):
                raise result
            else:
                self.logger.error(f"Error processing domain {domain}: {result}")
                records.append(CertificateRecord.failed(domain, self.SOURCE, str(result)))

        duration = time.monotonic() - start_time
        successful = sum(1 for record in records if record.is_ok)
        self.logger.info(
            f"Completed checking {successful}/{len(records)} remote certificates "
            f"in {duration:.2f}s"
        )
        return records
