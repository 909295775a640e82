"""
Shared fixtures for Certificate Monitor tests.
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Tuple

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from cert_monitor.config import MonitoringConfig, Settings
from cert_monitor.context import MonitorContext


def generate_certificate(
    cn: str = "test.example.com",
    sans: Optional[List[str]] = None,
    not_after: Optional[datetime] = None,
    not_before: Optional[datetime] = None,
) -> Tuple[x509.Certificate, rsa.RSAPrivateKey]:
    """Generate a self-signed test certificate."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)

    now = datetime.now(timezone.utc)
    not_after = not_after or now + timedelta(days=365)
    not_before = not_before or min(now, not_after) - timedelta(days=1)

    subject = issuer = x509.Name(
        [
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Test Org"),
            x509.NameAttribute(NameOID.COMMON_NAME, cn),
        ]
    )

    builder = (
        x509.CertificateBuilder()
        .subject_name(subject)
        .issuer_name(issuer)
        .public_key(private_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
    )
    if sans is None:
        sans = [cn]
    if sans:
        builder = builder.add_extension(
            x509.SubjectAlternativeName([x509.DNSName(name) for name in sans]),
            critical=False,
        )

    return builder.sign(private_key, hashes.SHA256()), private_key


def write_certificate(
    directory: Path,
    filename: str,
    cert: x509.Certificate,
    key: Optional[rsa.RSAPrivateKey] = None,
) -> Path:
    """Write a certificate (and optionally its key) as PEM files."""
    cert_path = directory / filename
    cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
    if key is not None:
        key_path = cert_path.with_suffix(".key")
        key_path.write_bytes(
            key.private_bytes(
                serialization.Encoding.PEM,
                serialization.PrivateFormat.TraditionalOpenSSL,
                serialization.NoEncryption(),
            )
        )
    return cert_path


@pytest.fixture
def cert_factory():
    """Factory for self-signed test certificates."""
    return generate_certificate


@pytest.fixture
def cert_writer():
    """Helper writing certificates into a directory."""
    return write_certificate


@pytest.fixture
def context(tmp_path):
    """Monitor context with a small domain list and an empty certificate directory."""
    cert_dir = tmp_path / "certs"
    cert_dir.mkdir()
    settings = Settings(
        monitoring=MonitoringConfig(
            domains=["a.example.com", "b.example.com"],
            connect_timeout=2,
            max_concurrent_checks=5,
        ),
        cert_directory=str(cert_dir),
        pid_file=str(tmp_path / "cert-monitor.pid"),
    )
    return MonitorContext(settings, log_level_updater=lambda level: None)
