"""
Data models for certificate issuance and secret reconciliation.
"""
import ipaddress
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union

from cryptography import x509

IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]

TLS_CERT_KEY = "tls.crt"
TLS_PRIVATE_KEY_KEY = "tls.key"


@dataclass(frozen=True)
class CertificateSpec:
    """Desired state of the managed certificate."""
    subject: str
    dns_names: Tuple[str, ...] = ()
    ip_addresses: Tuple[IPAddress, ...] = ()
    days_valid: int = 60
    labels: Dict[str, str] = field(default_factory=dict, compare=False, hash=False)

    def __post_init__(self):
        if not self.subject:
            raise ValueError("subject must be a non-empty string")
        if not isinstance(self.days_valid, int) or self.days_valid <= 0:
            raise ValueError("days_valid must be a positive integer")
        # Normalise sequences and parse IP strings so callers can pass lists.
        object.__setattr__(self, "dns_names", tuple(self.dns_names))
        object.__setattr__(self, "ip_addresses", tuple(
            ip if not isinstance(ip, str) else ipaddress.ip_address(ip.strip())
            for ip in self.ip_addresses
        ))
        object.__setattr__(self, "labels", dict(self.labels))


@dataclass
class CASigner:
    """A CA certificate together with the private key that signs for it."""
    certificate: x509.Certificate
    private_key: object

    @property
    def subject(self) -> x509.Name:
        return self.certificate.subject


@dataclass
class ParsedCertificate:
    """Attributes read back from an encoded certificate."""
    subject: str
    dns_names: List[str]
    ip_addresses: List[IPAddress]
    not_before: datetime
    not_after: datetime
    serial_number: int = 0


@dataclass
class IssuedCertificate:
    """A freshly signed leaf certificate and its new private key."""
    certificate_pem: bytes
    private_key_pem: bytes
    subject: str
    dns_names: List[str]
    ip_addresses: List[IPAddress]
    not_before: datetime
    not_after: datetime
    serial_number: int


@dataclass(frozen=True)
class SecretIdentifier:
    """Name and namespace that locate a secret within the store."""
    name: str
    namespace: str = "default"

    def __str__(self):
        return f"{self.namespace}/{self.name}"


@dataclass
class StoredArtifact:
    """A secret as held by the store: named byte blobs plus labels."""
    identifier: SecretIdentifier
    data: Dict[str, bytes] = field(default_factory=dict)
    labels: Dict[str, str] = field(default_factory=dict)
    resource_version: Optional[str] = None

    @property
    def certificate_pem(self) -> Optional[bytes]:
        return self.data.get(TLS_CERT_KEY)

    @property
    def private_key_pem(self) -> Optional[bytes]:
        return self.data.get(TLS_PRIVATE_KEY_KEY)


class DriftReason(Enum):
    """Why a stored certificate does or does not need regenerating."""
    MISSING = "missing"
    EXPIRED = "expired"
    EXPIRING = "expiring"
    SUBJECT_CHANGED = "subject changed"
    SAN_CHANGED = "SAN changed"
    IN_SYNC = "in sync"


@dataclass(frozen=True)
class DriftDecision:
    """Outcome of comparing a stored certificate against the desired spec."""
    regenerate: bool
    reason: DriftReason

    def __str__(self):
        return self.reason.value


class SyncAction(Enum):
    """Store mutation performed by a reconciliation cycle."""
    CREATED = "created"
    UPDATED = "updated"
    NONE = "none"


@dataclass
class SyncResult:
    """Result of one reconciliation cycle."""
    identifier: SecretIdentifier
    decision: DriftDecision
    action: SyncAction
    issued: Optional[IssuedCertificate] = None
    duration_seconds: Optional[float] = None

    @property
    def changed(self) -> bool:
        return self.action is not SyncAction.NONE
