"""
Tests for the certificate sync service reconciliation cycle and polling loop.
"""
import shutil
import tempfile
import threading
import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock

from cryptography import x509
from cryptography.x509.oid import ExtensionOID

from tlssync.models.certificate import (
    CertificateSpec, DriftReason, SecretIdentifier, StoredArtifact, SyncAction
)
from tlssync.models.errors import CAMaterialError, SecretAlreadyExistsError, StoreError
from tlssync.security.ca_loader import load_signer
from tlssync.security.certificate_service import parse_certificate
from tlssync.services.secret_store import InMemorySecretStore
from tlssync.services.sync_service import CertificateSyncService
from certificate_fixtures import create_test_ca, create_test_cert, cert_to_pem, key_to_pem, write_ca_files


class TestCertificateSyncService(unittest.TestCase):
    """Test cases for CertificateSyncService.sync_once."""

    @classmethod
    def setUpClass(cls):
        cls.temp_dir = tempfile.mkdtemp()
        cls.ca_cert, cls.ca_key = create_test_ca("Sync CA")
        cls.signer = load_signer(*write_ca_files(cls.temp_dir, cls.ca_cert, cls.ca_key))

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(cls.temp_dir)

    def setUp(self):
        self.store = InMemorySecretStore()
        self.identifier = SecretIdentifier(name="svc-tls", namespace="apps")
        self.spec = CertificateSpec(subject="svc.example.com", days_valid=60, labels={"app": "svc"})
        self.signer_loader = Mock(return_value=self.signer)

    def _service(self, spec=None, **kwargs):
        return CertificateSyncService(
            secret_store=self.store,
            identifier=self.identifier,
            spec=spec or self.spec,
            signer_loader=self.signer_loader,
            **kwargs
        )

    def _seed(self, common_name, not_after, labels=None, extra_data=None):
        """Put a certificate signed by the test CA into the store."""
        now = datetime.now(timezone.utc)
        cert, key = create_test_cert(
            self.ca_cert, self.ca_key, common_name,
            not_before=now - timedelta(days=10), not_after=not_after
        )
        data = {"tls.crt": cert_to_pem(cert), "tls.key": key_to_pem(key)}
        data.update(extra_data or {})
        self.store.create(StoredArtifact(self.identifier, data=data, labels=labels or {}))
        self.store.create_count = 0
        return cert

    def test_scenario_a_creates_missing_secret(self):
        """Test an empty store gets a secret with the requested CN and validity."""
        result = self._service().sync_once()

        self.assertEqual(result.action, SyncAction.CREATED)
        self.assertEqual(result.decision.reason, DriftReason.MISSING)
        self.assertEqual(self.store.create_count, 1)
        self.assertEqual(self.store.update_count, 0)

        stored = self.store.get(self.identifier)
        parsed = parse_certificate(stored.data["tls.crt"])
        self.assertEqual(parsed.subject, "svc.example.com")
        self.assertEqual(parsed.dns_names, [])
        window = parsed.not_after - parsed.not_before
        self.assertGreaterEqual(window, timedelta(days=60))
        self.assertLessEqual(window, timedelta(days=60, minutes=5))
        self.assertIn(b"RSA PRIVATE KEY", stored.data["tls.key"])
        self.assertEqual(stored.labels, {"app": "svc"})

    def test_scenario_b_updates_changed_subject(self):
        """Test a stored certificate with the wrong CN is replaced in place."""
        self._seed("old.example.com", datetime.now(timezone.utc) + timedelta(days=30))

        result = self._service().sync_once()

        self.assertEqual(result.action, SyncAction.UPDATED)
        self.assertEqual(result.decision.reason, DriftReason.SUBJECT_CHANGED)
        self.assertEqual(self.store.update_count, 1)
        self.assertEqual(self.store.create_count, 0)
        stored = self.store.get(self.identifier)
        self.assertEqual(parse_certificate(stored.data["tls.crt"]).subject, "svc.example.com")

    def test_scenario_c_in_sync_is_noop(self):
        """Test a matching certificate valid for 30 more days is left alone."""
        self._seed("svc.example.com", datetime.now(timezone.utc) + timedelta(days=30))
        before = self.store.get(self.identifier)

        result = self._service().sync_once()

        self.assertEqual(result.action, SyncAction.NONE)
        self.assertFalse(result.changed)
        self.assertEqual(result.decision.reason, DriftReason.IN_SYNC)
        self.assertEqual(self.store.mutation_count, 0)
        self.assertEqual(self.store.get(self.identifier), before)
        self.signer_loader.assert_not_called()

    def test_scenario_d_expired_is_regenerated(self):
        """Test a matching certificate that expired a second ago is replaced."""
        now = datetime.now(timezone.utc)
        old_cert = self._seed("svc.example.com", now - timedelta(seconds=1))

        result = self._service().sync_once(now=now)

        self.assertEqual(result.action, SyncAction.UPDATED)
        self.assertEqual(result.decision.reason, DriftReason.EXPIRED)
        parsed = parse_certificate(self.store.get(self.identifier).data["tls.crt"])
        self.assertNotEqual(parsed.serial_number, old_cert.serial_number)
        self.assertGreater(parsed.not_after, now)

    def test_idempotent(self):
        """Test two cycles in a row write the store exactly once."""
        service = self._service()

        first = service.sync_once()
        second = service.sync_once()

        self.assertEqual(first.action, SyncAction.CREATED)
        self.assertEqual(second.action, SyncAction.NONE)
        self.assertEqual(self.store.mutation_count, 1)
        self.assertEqual(self.signer_loader.call_count, 1)

    def test_san_change_updates(self):
        """Test adding a DNS name triggers an update with the new SAN set."""
        self._service().sync_once()
        spec = CertificateSpec(subject="svc.example.com", dns_names=("svc.apps.svc",), days_valid=60)

        result = self._service(spec=spec).sync_once()

        self.assertEqual(result.decision.reason, DriftReason.SAN_CHANGED)
        parsed = parse_certificate(self.store.get(self.identifier).data["tls.crt"])
        self.assertEqual(parsed.dns_names, ["svc.apps.svc"])

    def test_unparsable_certificate_is_regenerated(self):
        """Test garbage in tls.crt is treated as missing and the secret is updated."""
        self.store.create(StoredArtifact(self.identifier, data={"tls.crt": b"garbage", "tls.key": b"x"}))
        self.store.create_count = 0

        with self.assertLogs('tlssync.services.sync_service', level='WARNING') as logs:
            result = self._service().sync_once()

        self.assertEqual(result.decision.reason, DriftReason.MISSING)
        self.assertEqual(result.action, SyncAction.UPDATED)
        self.assertEqual(self.store.create_count, 0)
        self.assertTrue(any("Unable to parse certificate" in line for line in logs.output))

    def test_malformed_san_extension_is_regenerated(self):
        """Test a certificate whose SAN extension cannot be decoded is treated as missing."""
        now = datetime.now(timezone.utc)
        cert, key = create_test_cert(
            self.ca_cert, self.ca_key, "svc.example.com",
            not_before=now - timedelta(days=1), not_after=now + timedelta(days=30),
            extra_extensions=[x509.UnrecognizedExtension(ExtensionOID.SUBJECT_ALTERNATIVE_NAME, b"\x01\x02")]
        )
        self.store.create(StoredArtifact(
            self.identifier, data={"tls.crt": cert_to_pem(cert), "tls.key": key_to_pem(key)}
        ))
        self.store.create_count = 0

        with self.assertLogs('tlssync.services.sync_service', level='WARNING') as logs:
            result = self._service().sync_once()

        self.assertTrue(result.changed)
        self.assertEqual(result.decision.reason, DriftReason.MISSING)
        self.assertEqual(result.action, SyncAction.UPDATED)
        self.assertTrue(any("Unable to parse certificate" in line for line in logs.output))
        parsed = parse_certificate(self.store.get(self.identifier).data["tls.crt"])
        self.assertEqual(parsed.subject, "svc.example.com")

    def test_secret_without_certificate_is_updated(self):
        """Test an existing secret lacking tls.crt is updated, not created."""
        self.store.create(StoredArtifact(self.identifier, data={}))
        self.store.create_count = 0

        result = self._service().sync_once()

        self.assertEqual(result.action, SyncAction.UPDATED)

    def test_update_preserves_unrelated_data_and_labels(self):
        """Test other keys and labels on the secret survive an update."""
        self._seed(
            "old.example.com",
            datetime.now(timezone.utc) + timedelta(days=30),
            labels={"team": "infra", "app": "old"},
            extra_data={"ca.crt": b"ca-bundle"}
        )

        self._service().sync_once()

        stored = self.store.get(self.identifier)
        self.assertEqual(stored.data["ca.crt"], b"ca-bundle")
        self.assertEqual(stored.labels, {"team": "infra", "app": "svc"})

    def test_update_carries_resource_version(self):
        """Test the update sends the resource version read from the store."""
        store = Mock()
        store.get.return_value = StoredArtifact(self.identifier, data={}, resource_version="42")
        service = CertificateSyncService(store, self.identifier, self.spec, self.signer_loader)

        service.sync_once()

        updated = store.update.call_args[0][0]
        self.assertEqual(updated.resource_version, "42")
        store.create.assert_not_called()

    def test_renewal_buffer(self):
        """Test a configured renewal window replaces a certificate close to expiry."""
        self._seed("svc.example.com", datetime.now(timezone.utc) + timedelta(days=5))

        kept = self._service().sync_once()
        renewed = self._service(renew_before=timedelta(days=7)).sync_once()

        self.assertEqual(kept.action, SyncAction.NONE)
        self.assertEqual(renewed.action, SyncAction.UPDATED)
        self.assertEqual(renewed.decision.reason, DriftReason.EXPIRING)

    def test_store_get_error_propagates(self):
        """Test a failing read aborts the cycle."""
        store = Mock()
        store.get.side_effect = StoreError("connection refused", operation="get", identifier=self.identifier)
        service = CertificateSyncService(store, self.identifier, self.spec, self.signer_loader)

        with self.assertRaises(StoreError):
            service.sync_once()
        self.signer_loader.assert_not_called()

    def test_store_create_conflict_propagates(self):
        """Test a create race surfaces the already-exists error."""
        store = Mock()
        store.get.return_value = None
        store.create.side_effect = SecretAlreadyExistsError("exists", operation="create")
        service = CertificateSyncService(store, self.identifier, self.spec, self.signer_loader)

        with self.assertRaises(SecretAlreadyExistsError):
            service.sync_once()

    def test_ca_error_propagates(self):
        """Test a CA loading failure aborts the cycle without writing."""
        self.signer_loader.side_effect = CAMaterialError("unable to read ./ca.pem")

        with self.assertRaises(CAMaterialError):
            self._service().sync_once()
        self.assertEqual(self.store.mutation_count, 0)


class CountingStore(InMemorySecretStore):
    """In-memory store that stops the loop after a number of reads."""

    def __init__(self, stop_event, stop_after, fail_on=None):
        super().__init__()
        self.stop_event = stop_event
        self.stop_after = stop_after
        self.fail_on = fail_on
        self.get_count = 0

    def get(self, identifier):
        self.get_count += 1
        if self.get_count == self.fail_on:
            raise StoreError("unauthorized", operation="get", identifier=identifier, status_code=401)
        if self.get_count >= self.stop_after:
            self.stop_event.set()
        return super().get(identifier)


class TestRunForever(unittest.TestCase):
    """Test cases for the polling loop."""

    @classmethod
    def setUpClass(cls):
        cls.temp_dir = tempfile.mkdtemp()
        ca_cert, ca_key = create_test_ca("Loop CA")
        cls.signer = load_signer(*write_ca_files(cls.temp_dir, ca_cert, ca_key))

    @classmethod
    def tearDownClass(cls):
        shutil.rmtree(cls.temp_dir)

    def setUp(self):
        self.stop_event = threading.Event()
        self.identifier = SecretIdentifier(name="svc-tls", namespace="apps")
        self.spec = CertificateSpec(subject="svc.example.com")

    def _service(self, store):
        return CertificateSyncService(store, self.identifier, self.spec, lambda: self.signer)

    def test_runs_until_stopped(self):
        """Test the loop repeats cycles and writes only once."""
        store = CountingStore(self.stop_event, stop_after=3)

        cycles = self._service(store).run_forever(timedelta(milliseconds=10), self.stop_event)

        self.assertEqual(cycles, 3)
        self.assertEqual(store.get_count, 3)
        self.assertEqual(store.mutation_count, 1)

    def test_stopped_before_start(self):
        """Test a stop requested before the first cycle runs nothing."""
        store = CountingStore(self.stop_event, stop_after=1)
        self.stop_event.set()

        self.assertEqual(self._service(store).run_forever(timedelta(seconds=1), self.stop_event), 0)
        self.assertEqual(store.get_count, 0)

    def test_cycle_error_ends_loop(self):
        """Test a failing cycle propagates out of the loop."""
        store = CountingStore(self.stop_event, stop_after=100, fail_on=2)

        with self.assertRaises(StoreError):
            self._service(store).run_forever(timedelta(milliseconds=10), self.stop_event)
        self.assertEqual(store.get_count, 2)

    def test_stop_interrupts_wait(self):
        """Test setting the stop event ends a long wait promptly."""
        store = CountingStore(self.stop_event, stop_after=100)
        timer = threading.Timer(0.2, self.stop_event.set)
        timer.start()
        self.addCleanup(timer.cancel)

        cycles = self._service(store).run_forever(timedelta(hours=1), self.stop_event)

        self.assertEqual(cycles, 1)

    def test_rejects_non_positive_interval(self):
        """Test a zero interval is rejected."""
        with self.assertRaises(ValueError):
            self._service(InMemorySecretStore()).run_forever(timedelta(0), self.stop_event)


if __name__ == '__main__':
    unittest.main()
