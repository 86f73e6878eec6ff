"""
Services package for the TLS secret sync application.
"""

from .config_service import ConfigService
from .drift_service import needs_regeneration
from .secret_store import SecretStoreInterface, InMemorySecretStore, KubernetesSecretStore
from .sync_service import CertificateSyncService

__all__ = [
    'ConfigService',
    'needs_regeneration',
    'SecretStoreInterface',
    'InMemorySecretStore',
    'KubernetesSecretStore',
    'CertificateSyncService'
]
