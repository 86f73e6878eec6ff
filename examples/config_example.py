#!/usr/bin/env python3
"""
Example script demonstrating configuration loading and a dry-run sync.
"""
import sys
import os
import tempfile

# Add the project root to the path so we can import our modules
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from tlssync.models.config import Config
from tlssync.models.certificate import SecretIdentifier
from tlssync.security.ca_loader import load_signer
from tlssync.services.config_service import ConfigService
from tlssync.services.secret_store import InMemorySecretStore
from tlssync.services.sync_service import CertificateSyncService


def main():
    """Demonstrate configuration validation and a sync against an in-memory store."""
    config_service = ConfigService()

    print("=== TLS Secret Sync Configuration Demo ===\n")

    # Example 1: Create a default configuration file
    print("1. Creating default configuration file...")
    default_config_path = os.path.join(tempfile.mkdtemp(), "tlssync.properties")
    config_service.create_default_config_file(default_config_path)
    print(f"✓ Created default configuration at: {default_config_path}")

    # Example 2: Validate a configuration with problems
    print("\n2. Testing configuration validation...")
    test_config = Config(
        subject="",
        ip_addresses=["not-an-ip"],
        interval="often",
        labels={"app": "svc"},
    )

    validation_result = config_service.validate_config(test_config)

    if validation_result.has_errors():
        print("✗ Configuration has validation errors:")
        for error in validation_result.errors:
            print(f"    - {error}")

    if validation_result.has_warnings():
        print("⚠ Configuration has warnings:")
        for warning in validation_result.warnings:
            print(f"    - {warning}")

    # Example 3: Sync against an in-memory store, given CA files on the command line
    if len(sys.argv) != 3:
        print("\nPass CA certificate and key paths to run a dry-run sync.")
        return

    print("\n3. Running a dry-run sync...")
    config = config_service.load_config(overrides={
        "ca_cert_path": sys.argv[1],
        "ca_key_path": sys.argv[2],
        "subject": "svc.example.com",
        "dns_names": ["svc.example.com", "svc.default.svc"],
        "secret_name": "svc-tls",
    })

    store = InMemorySecretStore()
    sync_service = CertificateSyncService(
        secret_store=store,
        identifier=SecretIdentifier(config.secret_name, "default"),
        spec=config_service.build_certificate_spec(config),
        signer_loader=lambda: load_signer(config.ca_cert_path, config.ca_key_path),
    )

    for attempt in (1, 2):
        result = sync_service.sync_once()
        print(f"  - Cycle {attempt}: {result.decision} -> {result.action.value}")

    print("\n=== Demo Complete ===")


if __name__ == "__main__":
    main()
