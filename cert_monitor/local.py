"""
Local certificate file scanning for Certificate Monitor.
"""

import asyncio
import os
import time
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional, Sequence, Union

from cryptography import x509

from cert_monitor.certificate import build_record, get_common_name, load_certificate
from cert_monitor.config import MonitoringConfig
from cert_monitor.context import MonitorContext
from cert_monitor.limiter import ConcurrencyLimiter
from cert_monitor.logger import get_logger, log_cert_checked, log_cert_error
from cert_monitor.models import CertificateRecord, CertSource

CONTAINER_CERT_PATH = Path("/app/certs/ssl")
INSTALL_CERT_PATH = Path(__file__).resolve().parent.parent / "certs" / "ssl"


class LocalCertScanner:
    """
    Scans a directory of ``*.crt`` files.

    Files are parsed on a thread pool; the number of files processed at
    once is bounded by a limiter sized from ``max_concurrent_checks``.
    """

    SOURCE = CertSource.LOCAL
    CERT_EXTENSION = ".crt"
    KEY_EXTENSION = ".key"

    def __init__(
        self,
        context: MonitorContext,
        limiter: Optional[ConcurrencyLimiter] = None,
        directory: Optional[Union[str, Path]] = None,
        search_paths: Optional[Sequence[Path]] = None,
        max_workers: int = 4,
    ):
        self.context = context
        self.limiter = limiter or ConcurrencyLimiter(
            context.config.max_concurrent_checks, name="local cert"
        )
        if directory is None and context.settings.cert_directory:
            directory = context.settings.cert_directory
        self.directory = Path(directory) if directory else None
        self.search_paths = list(search_paths or (CONTAINER_CERT_PATH, INSTALL_CERT_PATH))
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self.logger = get_logger("local")

    def resolve_directory(self) -> Optional[Path]:
        """
        Find the certificate directory to scan.

        An explicitly configured directory wins; otherwise the container
        path is preferred over the path relative to the installation.

        Returns:
            Existing directory, or None if there is nothing to scan
        """
        if self.directory is not None:
            return self.directory if self.directory.is_dir() else None

        for candidate in self.search_paths:
            exists = candidate.is_dir()
            self.logger.debug(f"Certificate path checked: {candidate} (exists: {exists})")
            if exists:
                return candidate
        return None

    def find_certificate_files(self, directory: Path) -> List[Path]:
        """List certificate files in the directory (non-recursive)."""
        cert_files = sorted(
            path for path in directory.glob(f"*{self.CERT_EXTENSION}") if path.is_file()
        )
        if not cert_files:
            self.logger.warning(f"No {self.CERT_EXTENSION} files found in {directory}")
        return cert_files

    def extract_identity(self, path: Path, cert: Optional[x509.Certificate] = None) -> str:
        """
        Derive the monitored name of a certificate file.

        ``example.com.crt`` becomes ``example.com``. Files without the
        certificate suffix fall back to the certificate common name (without
        a leading ``*.``), and finally to the filename without extension.
        """
        if path.name.endswith(self.CERT_EXTENSION):
            return path.name[: -len(self.CERT_EXTENSION)]

        try:
            if cert is None:
                cert = load_certificate(path.read_bytes())
            common_name = get_common_name(cert)
            if common_name:
                return common_name[2:] if common_name.startswith("*.") else common_name
        except (OSError, ValueError) as e:
            self.logger.debug(f"Failed to extract domain from certificate {path}: {e}")

        return path.stem

    def private_key_path(self, path: Path) -> Path:
        if path.name.endswith(self.CERT_EXTENSION):
            return path.with_name(path.name[: -len(self.CERT_EXTENSION)] + self.KEY_EXTENSION)
        return path.with_suffix(self.KEY_EXTENSION)

    def _check_certificate_file(self, path: Path) -> CertificateRecord:
        """
        Parse one certificate file. Runs on the thread pool.

        Args:
            path: Certificate file path

        Returns:
            Certificate record for the file
        """
        start_time = time.monotonic()
        identity = path.stem

        try:
            if not os.access(path, os.R_OK):
                raise PermissionError(f"Certificate file not readable: {path}")

            data = path.read_bytes()
            self.logger.debug(f"Certificate file size: {len(data)} bytes")

            cert = load_certificate(data)
            identity = self.extract_identity(path, cert)
            key_path = self.private_key_path(path)
            has_key = key_path.exists()
            self.logger.debug(f"Private key file {key_path} exists: {has_key}")

            record = build_record(
                cert,
                identity=identity,
                source=self.SOURCE,
                has_private_key_adjacent=has_key,
                path=str(path),
                check_duration=time.monotonic() - start_time,
            )
        except Exception as e:
            duration = time.monotonic() - start_time
            if identity == path.stem:
                identity = self.extract_identity(path)
            log_cert_error(self.logger, identity, self.SOURCE.value, e, duration)
            return CertificateRecord.failed(
                identity,
                self.SOURCE,
                str(e) or type(e).__name__,
                path=str(path),
                check_duration=duration,
            )

        log_cert_checked(
            self.logger, identity, self.SOURCE.value, record.expire_in_days or 0, record.is_wildcard
        )
        return record

    async def _process_certificate_file(self, path: Path) -> CertificateRecord:
        async with self.limiter:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._executor, self._check_certificate_file, path)

    async def scan_all(
        self,
        directory: Optional[Union[str, Path]] = None,
        config: Optional[MonitoringConfig] = None,
    ) -> List[CertificateRecord]:
        """
        Scan every certificate file in the certificate directory.

        A missing directory is not an error; it yields no records.

        Args:
            directory: Directory to scan instead of the resolved one
            config: Snapshot supplying the concurrency limit; defaults to the
                current one

        Returns:
            One record per certificate file
        """
        config = config or self.context.config
        await self.limiter.resize(config.max_concurrent_checks)

        cert_dir = Path(directory) if directory else self.resolve_directory()
        if cert_dir is None or not cert_dir.is_dir():
            self.logger.warning(f"Certificate directory not found: {cert_dir or self.directory}")
            return []

        self.logger.info(f"Scanning certificates in: {cert_dir}")
        cert_files = self.find_certificate_files(cert_dir)
        if not cert_files:
            return []

        start_time = time.monotonic()
        tasks = [asyncio.create_task(self._process_certificate_file(path)) for path in cert_files]
        results = await asyncio.gather(*tasks, return_exceptions=True)

        records: List[CertificateRecord] = []
        for path, result in zip(cert_files, results):
            if isinstance(result, CertificateRecord):
                records.append(result)
            elif isinstance(result, asyncio.CancelledError):
                raise result
            else:
                self.logger.error(f"Error processing certificate file {path}: {result}")
                records.append(
                    CertificateRecord.failed(
                        self.extract_identity(path), self.SOURCE, str(result), path=str(path)
                    )
                )

        duration = time.monotonic() - start_time
        successful = sum(1 for record in records if record.is_ok)
        self.logger.info(
            f"Completed scanning {successful}/{len(records)} local certificates in {duration:.2f}s"
        )
        return records

    def close(self) -> None:
        self._executor.shutdown(wait=True)
