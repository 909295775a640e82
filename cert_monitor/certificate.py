"""
Certificate attribute extraction shared by the remote and local checks.
"""

import math
from datetime import datetime, timezone
from typing import Any, List, Optional

from cryptography import x509
from cryptography.x509.oid import ExtensionOID, NameOID

from cert_monitor.models import CertificateRecord, CertSource

SECONDS_PER_DAY = 86400


def load_certificate(data: bytes) -> x509.Certificate:
    """
    Parse a certificate, trying PEM first and DER second.

    Args:
        data: Raw certificate bytes

    Returns:
        Parsed certificate

    Raises:
        ValueError: If the data is neither PEM nor DER
    """
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError:
        try:
            return x509.load_der_x509_certificate(data)
        except ValueError as e:
            raise ValueError(f"Could not parse as PEM or DER: {e}") from e


def not_valid_before(cert: x509.Certificate) -> datetime:
    """Start of validity as an aware UTC datetime."""
    return cert.not_valid_before_utc


def not_valid_after(cert: x509.Certificate) -> datetime:
    """End of validity as an aware UTC datetime."""
    return cert.not_valid_after_utc


def days_until_expiry(not_after: datetime, now: Optional[datetime] = None) -> int:
    """
    Whole days between ``now`` and ``not_after``, rounded down.

    A certificate expiring exactly now yields 0, one that expired a day ago
    yields -1.
    """
    if now is None:
        now = datetime.now(timezone.utc)
    if not_after.tzinfo is None:
        not_after = not_after.replace(tzinfo=timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)

    return math.floor((not_after - now).total_seconds() / SECONDS_PER_DAY)


def get_common_name(cert: x509.Certificate) -> Optional[str]:
    """Extract the subject common name, if any."""
    cn_attrs = cert.subject.get_attributes_for_oid(NameOID.COMMON_NAME)
    if not cn_attrs:
        return None
    return str(cn_attrs[0].value)


def extract_san_domains(cert: x509.Certificate) -> List[str]:
    """Extract DNS-type Subject Alternative Names, in certificate order."""
    try:
        san_ext = cert.extensions.get_extension_for_oid(ExtensionOID.SUBJECT_ALTERNATIVE_NAME)
    except x509.ExtensionNotFound:
        return []
    return [name.strip() for name in san_ext.value.get_values_for_type(x509.DNSName)]


def is_wildcard_certificate(common_name: Optional[str], san_domains: List[str]) -> bool:
    """True if the common name or any SAN is a wildcard name."""
    if common_name and common_name.startswith("*."):
        return True
    return any(name.startswith("*.") for name in san_domains)


def build_record(
    cert: x509.Certificate,
    identity: str,
    source: CertSource,
    now: Optional[datetime] = None,
    **extra: Any,
) -> CertificateRecord:
    """
    Build a successful record with the derived certificate attributes.

    Args:
        cert: Parsed certificate
        identity: Domain or file-derived name
        source: Where the certificate was observed
        now: Evaluation time (defaults to the current UTC time)
        extra: Additional record fields (path, has_private_key_adjacent, ...)

    Returns:
        CertificateRecord with status ok
    """
    san_domains = extract_san_domains(cert)
    valid_to = not_valid_after(cert)

    return CertificateRecord.ok(
        identity=identity,
        source=source,
        expire_in_days=days_until_expiry(valid_to, now),
        is_wildcard=is_wildcard_certificate(get_common_name(cert), san_domains),
        subject_alternative_names=san_domains,
        issuer=cert.issuer.rfc4514_string(),
        subject=cert.subject.rfc4514_string(),
        valid_from=not_valid_before(cert),
        valid_to=valid_to,
        **extra,
    )
