"""
Result models for Certificate Monitor.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple


class CertSource(str, Enum):
    """Where a certificate was observed."""

    REMOTE = "remote"
    LOCAL = "local"


class CertStatus(str, Enum):
    """Outcome of a single certificate check."""

    OK = "ok"
    ERROR = "error"


@dataclass(frozen=True)
class CertificateRecord:
    """
    A single certificate observation.

    Exactly one of ``expire_in_days`` and ``error`` is set: successful
    records carry the remaining lifetime, failed records the failure message.
    """

    identity: str
    source: CertSource
    status: CertStatus
    expire_in_days: Optional[int] = None
    is_wildcard: bool = False
    subject_alternative_names: Tuple[str, ...] = ()
    issuer: str = ""
    subject: str = ""
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    has_private_key_adjacent: bool = False
    error: Optional[str] = None
    path: Optional[str] = None
    check_duration: float = 0.0

    def __post_init__(self) -> None:
        if (self.expire_in_days is None) == (self.error is None):
            raise ValueError(
                f"Certificate record for {self.identity} must carry either "
                "expire_in_days or error, not both or neither"
            )
        if self.status is CertStatus.OK and self.expire_in_days is None:
            raise ValueError(f"Successful record for {self.identity} has no expire_in_days")
        if self.status is CertStatus.ERROR and self.error is None:
            raise ValueError(f"Failed record for {self.identity} has no error message")

    @classmethod
    def ok(
        cls,
        identity: str,
        source: CertSource,
        expire_in_days: int,
        **attributes: Any,
    ) -> "CertificateRecord":
        """Build a successful record."""
        sans = attributes.pop("subject_alternative_names", ())
        return cls(
            identity=identity,
            source=source,
            status=CertStatus.OK,
            expire_in_days=expire_in_days,
            subject_alternative_names=tuple(sans),
            **attributes,
        )

    @classmethod
    def failed(
        cls,
        identity: str,
        source: CertSource,
        error: str,
        path: Optional[str] = None,
        check_duration: float = 0.0,
    ) -> "CertificateRecord":
        """Build a failed record."""
        return cls(
            identity=identity,
            source=source,
            status=CertStatus.ERROR,
            error=error or "unknown error",
            path=path,
            check_duration=check_duration,
        )

    @property
    def is_ok(self) -> bool:
        return self.status is CertStatus.OK

    @property
    def san_count(self) -> int:
        return len(self.subject_alternative_names)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        data: Dict[str, Any] = {
            "identity": self.identity,
            "source": self.source.value,
            "status": self.status.value,
        }
        if self.is_ok:
            data.update(
                {
                    "expire_in_days": self.expire_in_days,
                    "is_wildcard": self.is_wildcard,
                    "subject_alternative_names": list(self.subject_alternative_names),
                    "issuer": self.issuer,
                    "subject": self.subject,
                    "valid_from": self.valid_from.isoformat() if self.valid_from else None,
                    "valid_to": self.valid_to.isoformat() if self.valid_to else None,
                }
            )
            if self.source is CertSource.LOCAL:
                data["has_private_key_adjacent"] = self.has_private_key_adjacent
        else:
            data["error"] = self.error
        if self.path:
            data["path"] = self.path
        data["check_duration"] = round(self.check_duration, 3)
        return data


@dataclass(frozen=True)
class CycleSummary:
    """Counts and timing of one check cycle."""

    total_remote: int
    successful_remote: int
    total_local: int
    successful_local: int
    check_timestamp: datetime
    check_duration: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_remote": self.total_remote,
            "successful_remote": self.successful_remote,
            "total_local": self.total_local,
            "successful_local": self.successful_local,
            "check_timestamp": self.check_timestamp.isoformat(),
            "check_duration": round(self.check_duration, 3),
        }


@dataclass(frozen=True)
class CheckCycleResult:
    """Aggregate of one coordinator run."""

    remote: Tuple[CertificateRecord, ...]
    local: Tuple[CertificateRecord, ...]
    summary: CycleSummary
    error: Optional[str] = None

    @classmethod
    def build(
        cls,
        remote: Sequence[CertificateRecord],
        local: Sequence[CertificateRecord],
        check_timestamp: datetime,
        check_duration: float,
        error: Optional[str] = None,
    ) -> "CheckCycleResult":
        """Build a result, deriving the summary counts from the records."""
        summary = CycleSummary(
            total_remote=len(remote),
            successful_remote=sum(1 for record in remote if record.is_ok),
            total_local=len(local),
            successful_local=sum(1 for record in local if record.is_ok),
            check_timestamp=check_timestamp,
            check_duration=check_duration,
        )
        return cls(remote=tuple(remote), local=tuple(local), summary=summary, error=error)

    def records(self) -> List[CertificateRecord]:
        return [*self.remote, *self.local]

    def identities(self) -> List[str]:
        """Distinct identities across both sources, in first-seen order."""
        seen: Dict[str, None] = {}
        for record in self.records():
            seen.setdefault(record.identity, None)
        return list(seen)

    def total_certificates(self) -> int:
        return len(self.remote) + len(self.local)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remote": [record.to_dict() for record in self.remote],
            "local": [record.to_dict() for record in self.local],
            "summary": self.summary.to_dict(),
            "error": self.error,
        }


class RestartReason(str, Enum):
    DOMAIN_REDUCTION = "domain reduction"
    CERTIFICATE_COUNT_REDUCTION = "certificate count reduction"


@dataclass(frozen=True)
class RestartAction:
    """Outcome of comparing two consecutive check cycles."""

    restart: bool = False
    reason: Optional[RestartReason] = None
    removed_identities: Tuple[str, ...] = field(default_factory=tuple)
    dispatched: bool = False

    @classmethod
    def none(cls) -> "RestartAction":
        return cls()

    @classmethod
    def restart_for(
        cls, reason: RestartReason, removed_identities: Sequence[str] = ()
    ) -> "RestartAction":
        return cls(restart=True, reason=reason, removed_identities=tuple(removed_identities))
