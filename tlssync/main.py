"""
Main application entry point for the TLS secret sync tool.
Handles configuration, service wiring, the one-shot/polling modes and graceful shutdown.
"""

import sys
import signal
import logging
import argparse
import threading
from datetime import timedelta
from typing import Optional, Dict, Any

from .models.config import Config
from .models.errors import TLSSyncError
from .security.ca_loader import load_signer
from .security.certificate_service import CertificateService
from .services.config_service import ConfigService, parse_duration, parse_labels, split_list
from .services.logging_service import LoggingService
from .services.secret_store import SecretStoreInterface, KubernetesSecretStore, resolve_namespace
from .services.sync_service import CertificateSyncService


class TLSSyncApplication:
    """Main application class for the TLS secret sync tool."""

    def __init__(self,
                 config_path: Optional[str] = None,
                 overrides: Optional[Dict[str, Any]] = None,
                 secret_store: Optional[SecretStoreInterface] = None,
                 output=None):
        """
        Initialize the application.

        Args:
            config_path: Path to configuration file (optional)
            overrides: Config field values taking precedence over the file
            secret_store: Store to use instead of the Kubernetes API
            output: Stream receiving PEM output when no secret is configured
        """
        self.config_path = config_path
        self.overrides = overrides or {}
        self.secret_store = secret_store
        self.output = output or sys.stdout
        self.logger = logging.getLogger(__name__)
        self.logging_service = None
        self.config_service = ConfigService()
        self.config: Optional[Config] = None
        self.certificate_service = None
        self.sync_service = None
        self.interval = timedelta(0)

        self._shutdown_event = threading.Event()

    def _setup_signal_handlers(self):
        """Setup signal handlers for graceful shutdown."""
        def signal_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            self.logger.info(f"Received {signal_name} signal, initiating graceful shutdown...")
            self.shutdown()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)

    def initialize(self) -> bool:
        """
        Load configuration and set up logging.

        Returns:
            True if initialization successful, False otherwise
        """
        self.logging_service = LoggingService(Config())
        try:
            self.config = self.config_service.load_config(self.config_path, self.overrides)
        except (FileNotFoundError, ValueError) as e:
            self.logger.error(f"Failed to load configuration: {e}")
            return False

        self.logging_service = LoggingService(self.config)

        self.interval = parse_duration(self.config.interval)
        self.certificate_service = CertificateService(key_size=self.config.key_size)
        return True

    def load_signer(self):
        """Load the CA signer named in the configuration."""
        return load_signer(
            self.config.ca_cert_path,
            self.config.ca_key_path,
            validate=self.config.validate_ca,
        )

    def generate_to_output(self) -> None:
        """Issue a certificate and write certificate and key PEM to the output stream."""
        self.logger.info("No secret name provided, generating cert on stdout")
        signer = self.load_signer()
        spec = self.config_service.build_certificate_spec(self.config)
        issued = self.certificate_service.generate(spec, signer)
        self.output.write(issued.certificate_pem.decode("ascii"))
        self.output.write(issued.private_key_pem.decode("ascii"))
        self.output.flush()

    def build_sync_service(self) -> CertificateSyncService:
        """Wire the sync service against the configured secret store."""
        store = self.secret_store or KubernetesSecretStore.from_config(self.config)
        namespace = resolve_namespace(self.config.secret_namespace)
        identifier = self.config_service.build_secret_identifier(self.config, namespace)

        self.sync_service = CertificateSyncService(
            secret_store=store,
            identifier=identifier,
            spec=self.config_service.build_certificate_spec(self.config),
            signer_loader=self.load_signer,
            certificate_service=self.certificate_service,
            renew_before=parse_duration(self.config.renew_before),
        )
        return self.sync_service

    def run(self) -> int:
        """
        Run the configured mode.

        Returns:
            Process exit code
        """
        if self.config is None:
            self.logger.error("Application not initialized. Call initialize() first.")
            return 1

        try:
            if not self.config.has_target:
                self.generate_to_output()
                return 0

            sync_service = self.build_sync_service()
            self.logging_service.log_with_context(
                "info",
                f"Syncing certificate for {self.config.subject} to secret "
                f"{sync_service.identifier.name} in namespace {sync_service.identifier.namespace}",
                subject=self.config.subject,
                secret=str(sync_service.identifier),
            )

            if not self.interval:
                sync_service.sync_once()
                return 0

            # Running continuously, so add timestamps to log output.
            self.logging_service.enable_timestamps()
            self._setup_signal_handlers()
            sync_service.run_forever(self.interval, self._shutdown_event)
            return 0

        except TLSSyncError as e:
            self.logger.error(f"Unable to sync certs: {e}")
            return 1
        except KeyboardInterrupt:
            self.logger.info("Received keyboard interrupt")
            return 0

    def shutdown(self):
        """Stop the polling loop after the current cycle."""
        self._shutdown_event.set()


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        description='Keep a Kubernetes TLS secret holding a valid CA-signed certificate'
    )
    parser.add_argument('--config', '-c', help='Configuration file path')
    parser.add_argument('--cacert', dest='ca_cert_path', help='Path to a CA certificate (default: ./ca.pem)')
    parser.add_argument('--cakey', dest='ca_key_path', help='Path to a CA private key (default: ./ca-key.pem)')
    parser.add_argument('--validate-ca', dest='validate_ca', action='store_true', default=None,
                        help='Reject a CA certificate that is expired or not a CA')
    parser.add_argument('--subject', help='The certificate Subject Common Name')
    parser.add_argument('--expire', dest='expire_days', type=int, help='Certificate expiration in days (default: 60)')
    parser.add_argument('--dns', help='Comma-separated list of DNS alternative names')
    parser.add_argument('--ip', help='Comma-separated list of valid IP addresses')
    parser.add_argument('--key-size', dest='key_size', type=int, help='RSA key size (default: 2048)')
    parser.add_argument('--renew-before', dest='renew_before',
                        help='Regenerate this long before expiry (ex: 720h); default only on expiry')
    parser.add_argument('--name', dest='secret_name', help='Name of the Kubernetes secret to update')
    parser.add_argument('--namespace', dest='secret_namespace', help='Namespace of the Kubernetes secret to update')
    parser.add_argument('--label', dest='labels', action='append',
                        help='Specify a label as key=value to put on the generated secret; '
                             'can appear repeatedly for multiple labels')
    parser.add_argument('--interval', help='Interval to check if cert is insync (ex: 1h, 30m)')
    parser.add_argument('--log-level', dest='log_level', help='Log level (default: INFO)')
    return parser


def overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    """Turn parsed flags into Config overrides, skipping flags that were not given."""
    overrides = {
        key: value for key, value in vars(args).items()
        if key not in ('config', 'dns', 'ip', 'labels') and value is not None
    }
    if args.dns is not None:
        overrides['dns_names'] = split_list(args.dns)
    if args.ip is not None:
        overrides['ip_addresses'] = split_list(args.ip)
    if args.labels:
        overrides['labels'] = parse_labels(args.labels)
    if 'log_level' in overrides:
        overrides['log_level'] = overrides['log_level'].upper()
    return overrides


def main(argv=None):
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        overrides = overrides_from_args(args)
    except ValueError as e:
        parser.error(str(e))

    app = TLSSyncApplication(config_path=args.config, overrides=overrides)
    if not app.initialize():
        sys.exit(1)

    sys.exit(app.run())


if __name__ == '__main__':
    main()
