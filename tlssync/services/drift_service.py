"""
Drift detection between a stored certificate and the desired certificate spec.
"""
from datetime import datetime, timedelta
from typing import Optional

from ..models.certificate import CertificateSpec, DriftDecision, DriftReason, ParsedCertificate


def needs_regeneration(spec: CertificateSpec,
                       existing: Optional[ParsedCertificate],
                       now: datetime,
                       renew_before: timedelta = timedelta(0)) -> DriftDecision:
    """
    Decide whether the stored certificate must be replaced.

    Rules are checked in order and the first match wins: missing, expired
    (or inside the renew_before window), subject changed, SAN changed.
    SANs compare as sets, so ordering and duplicates are ignored.

    Args:
        spec: Desired certificate attributes
        existing: Certificate parsed from the store, or None if absent
        now: Timezone-aware reference time
        renew_before: Regenerate this long before actual expiry (zero means
            only on expiry)

    Returns:
        DriftDecision with the regenerate flag and its reason
    """
    if existing is None:
        return DriftDecision(True, DriftReason.MISSING)

    if existing.not_after <= now:
        return DriftDecision(True, DriftReason.EXPIRED)

    if renew_before and existing.not_after - renew_before <= now:
        return DriftDecision(True, DriftReason.EXPIRING)

    if existing.subject != spec.subject:
        return DriftDecision(True, DriftReason.SUBJECT_CHANGED)

    if set(existing.dns_names) != set(spec.dns_names):
        return DriftDecision(True, DriftReason.SAN_CHANGED)

    if set(existing.ip_addresses) != set(spec.ip_addresses):
        return DriftDecision(True, DriftReason.SAN_CHANGED)

    return DriftDecision(False, DriftReason.IN_SYNC)
