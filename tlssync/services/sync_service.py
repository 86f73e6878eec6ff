"""
Certificate sync service that keeps a TLS secret matching the desired certificate.
"""
import logging
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

import schedule

from ..models.certificate import (
    CASigner, CertificateSpec, ParsedCertificate, SecretIdentifier, StoredArtifact,
    SyncAction, SyncResult, TLS_CERT_KEY, TLS_PRIVATE_KEY_KEY
)
from ..models.errors import DecodeError, ParseError
from ..security.certificate_service import CertificateService, parse_certificate
from .drift_service import needs_regeneration
from .secret_store import SecretStoreInterface


class CertificateSyncService:
    """Service for reconciling a stored TLS secret against a certificate spec."""

    def __init__(self,
                 secret_store: SecretStoreInterface,
                 identifier: SecretIdentifier,
                 spec: CertificateSpec,
                 signer_loader: Callable[[], CASigner],
                 certificate_service: Optional[CertificateService] = None,
                 renew_before: timedelta = timedelta(0),
                 clock: Optional[Callable[[], datetime]] = None):
        """
        Initialize the certificate sync service.

        Args:
            secret_store: Store holding the target secret
            identifier: Name and namespace of the target secret
            spec: Desired certificate attributes
            signer_loader: Loads the CA signer; only called when a certificate
                has to be issued
            certificate_service: Issues new certificates
            renew_before: Regenerate this long before expiry (zero disables)
            clock: Returns the current UTC time (overridable in tests)
        """
        self.secret_store = secret_store
        self.identifier = identifier
        self.spec = spec
        self.signer_loader = signer_loader
        self.certificate_service = certificate_service or CertificateService()
        self.renew_before = renew_before
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = logging.getLogger(__name__)

    def sync_once(self, now: Optional[datetime] = None) -> SyncResult:
        """
        Run one reconciliation cycle.

        Fetches the secret, decides whether its certificate drifted from the
        spec, and if so issues a new certificate and creates or updates the
        secret. Nothing is written when the secret is in sync.

        Args:
            now: Reference time for the expiry check (defaults to the clock)

        Returns:
            SyncResult describing the decision and the store action taken

        Raises:
            StoreError: If reading or writing the secret fails
            CAMaterialError: If the CA signer cannot be loaded
            GenerationError: If the certificate cannot be issued
        """
        start_time = time.monotonic()
        now = now or self.clock()

        artifact = self.secret_store.get(self.identifier)
        existing = self._parse_existing(artifact)

        decision = needs_regeneration(self.spec, existing, now, self.renew_before)
        if not decision.regenerate:
            self.logger.info(f"Certificate in secret {self.identifier} is in sync")
            return self._result(decision, SyncAction.NONE, start_time)

        self.logger.info(f"Regenerating certificate for secret {self.identifier}: {decision}")
        signer = self.signer_loader()
        issued = self.certificate_service.generate(self.spec, signer)

        if artifact is None:
            new_artifact = StoredArtifact(
                identifier=self.identifier,
                data={TLS_CERT_KEY: issued.certificate_pem, TLS_PRIVATE_KEY_KEY: issued.private_key_pem},
                labels=dict(self.spec.labels),
            )
            self.secret_store.create(new_artifact)
            action = SyncAction.CREATED
        else:
            data = dict(artifact.data)
            data[TLS_CERT_KEY] = issued.certificate_pem
            data[TLS_PRIVATE_KEY_KEY] = issued.private_key_pem
            labels = dict(artifact.labels)
            labels.update(self.spec.labels)
            new_artifact = StoredArtifact(
                identifier=self.identifier,
                data=data,
                labels=labels,
                resource_version=artifact.resource_version,
            )
            self.secret_store.update(new_artifact)
            action = SyncAction.UPDATED

        result = self._result(decision, action, start_time, issued)
        self.logger.info(
            f"Secret {self.identifier} {action.value} with certificate expiring {issued.not_after.isoformat()}",
            extra={'extra_data': {
                'secret': str(self.identifier),
                'action': action.value,
                'reason': decision.reason.value,
                'serial_number': f"{issued.serial_number:x}",
                'duration_seconds': result.duration_seconds,
            }}
        )
        return result

    def run_forever(self, interval: timedelta, stop_event: Optional[threading.Event] = None) -> int:
        """
        Reconcile immediately and then every interval until stopped.

        The next cycle starts interval after the previous one completed. An
        exception from a cycle ends the loop and propagates to the caller.

        Args:
            interval: Time between the end of one cycle and the start of the next
            stop_event: Set to stop the loop, checked before each cycle and
                during the wait

        Returns:
            Number of cycles completed
        """
        stop_event = stop_event or threading.Event()
        if interval.total_seconds() <= 0:
            raise ValueError("interval must be positive")

        cycles = 0
        if stop_event.is_set():
            return cycles

        self.sync_once()
        cycles += 1

        def cycle():
            nonlocal cycles
            if stop_event.is_set():
                return
            self.sync_once()
            cycles += 1

        scheduler = schedule.Scheduler()
        scheduler.every(interval.total_seconds()).seconds.do(cycle)
        self.logger.info(f"Monitoring secret {self.identifier} every {interval}")

        while not stop_event.is_set():
            idle = scheduler.idle_seconds
            if idle is not None and idle > 0 and stop_event.wait(idle):
                break
            scheduler.run_pending()

        self.logger.info(f"Stopped monitoring secret {self.identifier} after {cycles} cycles")
        return cycles

    def _parse_existing(self, artifact: Optional[StoredArtifact]) -> Optional[ParsedCertificate]:
        """Parse the stored certificate; an unreadable one is treated as missing."""
        if artifact is None:
            return None
        certificate_pem = artifact.certificate_pem
        if not certificate_pem:
            self.logger.warning(f"Secret {self.identifier} has no {TLS_CERT_KEY}")
            return None
        try:
            return parse_certificate(certificate_pem)
        except (DecodeError, ParseError) as e:
            self.logger.warning(f"Unable to parse certificate in secret {self.identifier}: {e}")
            return None

    def _result(self, decision, action, start_time, issued=None) -> SyncResult:
        return SyncResult(
            identifier=self.identifier,
            decision=decision,
            action=action,
            issued=issued,
            duration_seconds=time.monotonic() - start_time,
        )
