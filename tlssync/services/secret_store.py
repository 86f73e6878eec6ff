"""
Secret store implementations backing the certificate sync service.
"""
import base64
import copy
import logging
import os
from typing import Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..models.certificate import SecretIdentifier, StoredArtifact
from ..models.errors import SecretAlreadyExistsError, SecretNotFoundError, StoreError

SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"
NAMESPACE_FILE = os.path.join(SERVICE_ACCOUNT_DIR, "namespace")
TOKEN_FILE = os.path.join(SERVICE_ACCOUNT_DIR, "token")
CA_CERT_FILE = os.path.join(SERVICE_ACCOUNT_DIR, "ca.crt")
TLS_SECRET_TYPE = "kubernetes.io/tls"

logger = logging.getLogger(__name__)


def resolve_namespace(namespace: Optional[str], namespace_file: str = NAMESPACE_FILE) -> str:
    """
    Pick the namespace for the secret.

    An explicit namespace wins; otherwise the pod's service account namespace
    is used, falling back to "default".
    """
    if namespace:
        return namespace
    try:
        with open(namespace_file, "r") as f:
            namespace = f.read().strip()
    except OSError:
        logger.info(f"Unable to read {namespace_file}, using namespace 'default'")
    return namespace or "default"


class SecretStoreInterface:
    """Interface for the secret store the sync service reads and writes."""

    def get(self, identifier: SecretIdentifier) -> Optional[StoredArtifact]:
        """Fetch a secret, returning None if it does not exist."""
        raise NotImplementedError

    def create(self, artifact: StoredArtifact) -> None:
        """Create a new secret."""
        raise NotImplementedError

    def update(self, artifact: StoredArtifact) -> None:
        """Replace an existing secret."""
        raise NotImplementedError


class InMemorySecretStore(SecretStoreInterface):
    """Dictionary-backed secret store for tests and dry runs."""

    def __init__(self):
        self._secrets: Dict[SecretIdentifier, StoredArtifact] = {}
        self._version = 0
        self.create_count = 0
        self.update_count = 0

    @property
    def mutation_count(self) -> int:
        return self.create_count + self.update_count

    def get(self, identifier: SecretIdentifier) -> Optional[StoredArtifact]:
        artifact = self._secrets.get(identifier)
        return copy.deepcopy(artifact) if artifact else None

    def create(self, artifact: StoredArtifact) -> None:
        if artifact.identifier in self._secrets:
            raise SecretAlreadyExistsError(
                f"secret {artifact.identifier} already exists",
                operation="create", identifier=artifact.identifier, status_code=409
            )
        self._put(artifact)
        self.create_count += 1

    def update(self, artifact: StoredArtifact) -> None:
        if artifact.identifier not in self._secrets:
            raise SecretNotFoundError(
                f"secret {artifact.identifier} not found",
                operation="update", identifier=artifact.identifier, status_code=404
            )
        self._put(artifact)
        self.update_count += 1

    def _put(self, artifact: StoredArtifact) -> None:
        self._version += 1
        stored = copy.deepcopy(artifact)
        stored.resource_version = str(self._version)
        self._secrets[artifact.identifier] = stored


class KubernetesSecretStore(SecretStoreInterface):
    """Secret store backed by the Kubernetes core/v1 Secrets REST API."""

    def __init__(self,
                 api_server: str,
                 token_path: Optional[str] = None,
                 ca_cert_path: Optional[str] = None,
                 verify_tls: bool = True,
                 timeout: int = 30,
                 max_retries: int = 3,
                 backoff_factor: float = 0.5):
        """
        Initialize the Kubernetes secret store.

        Args:
            api_server: Base URL of the API server, e.g. https://10.0.0.1:443
            token_path: File holding a bearer token, re-read on every request
            ca_cert_path: CA bundle used to verify the API server
            verify_tls: Verify the API server certificate at all
            timeout: Request timeout in seconds
            max_retries: Retries for GET requests on transient failures
            backoff_factor: Factor for exponential backoff between retries
        """
        self.api_server = api_server.rstrip("/")
        self.token_path = token_path
        self.ca_cert_path = ca_cert_path
        self.verify_tls = verify_tls
        self.timeout = timeout
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.logger = logging.getLogger(__name__)
        self.session = self._create_session()

    @classmethod
    def from_config(cls, config) -> "KubernetesSecretStore":
        """
        Build a store from application config, falling back to in-cluster settings.

        Raises:
            StoreError: If no API server is configured and we are not in a pod
        """
        api_server = config.kube_api_server
        token_path = config.kube_token_path
        ca_cert_path = config.kube_ca_cert_path

        if not api_server:
            host = os.environ.get("KUBERNETES_SERVICE_HOST")
            port = os.environ.get("KUBERNETES_SERVICE_PORT", "443")
            if not host:
                raise StoreError(
                    "unable to locate the Kubernetes API server: set kubernetes.api_server "
                    "or run inside a cluster",
                    operation="connect"
                )
            if ":" in host:
                host = f"[{host}]"
            api_server = f"https://{host}:{port}"
            if token_path is None and os.path.exists(TOKEN_FILE):
                token_path = TOKEN_FILE
            if ca_cert_path is None and os.path.exists(CA_CERT_FILE):
                ca_cert_path = CA_CERT_FILE

        return cls(
            api_server=api_server,
            token_path=token_path,
            ca_cert_path=ca_cert_path,
            verify_tls=config.kube_verify_tls,
            timeout=config.request_timeout_seconds,
            max_retries=config.max_retry_attempts,
        )

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry configuration."""
        session = requests.Session()

        # Writes are never retried here; a failed cycle is surfaced instead.
        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=self.backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"]
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        session.headers.update({
            'Accept': 'application/json',
            'Content-Type': 'application/json',
            'User-Agent': 'tlssync',
        })
        session.verify = self.ca_cert_path if (self.verify_tls and self.ca_cert_path) else self.verify_tls

        return session

    def get(self, identifier: SecretIdentifier) -> Optional[StoredArtifact]:
        response = self._request("get", "GET", self._secret_url(identifier), identifier)
        if response.status_code == 404:
            return None
        self._raise_for_status(response, "get", identifier)
        return self._from_manifest(identifier, response.json())

    def create(self, artifact: StoredArtifact) -> None:
        identifier = artifact.identifier
        url = f"{self.api_server}/api/v1/namespaces/{identifier.namespace}/secrets"
        response = self._request("create", "POST", url, identifier, json=self._to_manifest(artifact))
        if response.status_code == 409:
            raise SecretAlreadyExistsError(
                f"create secret {identifier}: already exists",
                operation="create", identifier=identifier, status_code=409
            )
        self._raise_for_status(response, "create", identifier)
        self.logger.debug(f"Created secret {identifier}")

    def update(self, artifact: StoredArtifact) -> None:
        identifier = artifact.identifier
        response = self._request(
            "update", "PUT", self._secret_url(identifier), identifier, json=self._to_manifest(artifact)
        )
        if response.status_code == 404:
            raise SecretNotFoundError(
                f"update secret {identifier}: not found",
                operation="update", identifier=identifier, status_code=404
            )
        self._raise_for_status(response, "update", identifier)
        self.logger.debug(f"Updated secret {identifier}")

    def _secret_url(self, identifier: SecretIdentifier) -> str:
        return f"{self.api_server}/api/v1/namespaces/{identifier.namespace}/secrets/{identifier.name}"

    def _auth_headers(self) -> Dict[str, str]:
        if not self.token_path:
            return {}
        try:
            with open(self.token_path, "r") as f:
                token = f.read().strip()
        except OSError as e:
            raise StoreError(f"unable to read token file {self.token_path}: {e}", operation="auth") from e
        return {"Authorization": f"Bearer {token}"}

    def _request(self, operation: str, method: str, url: str,
                 identifier: SecretIdentifier, **kwargs) -> requests.Response:
        headers = self._auth_headers()
        try:
            return self.session.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.exceptions.RequestException as e:
            raise StoreError(
                f"{operation} secret {identifier}: {e}", operation=operation, identifier=identifier
            ) from e

    def _raise_for_status(self, response: requests.Response, operation: str,
                          identifier: SecretIdentifier) -> None:
        if response.ok:
            return
        try:
            message = response.json().get("message", response.reason)
        except ValueError:
            message = response.text or response.reason
        raise StoreError(
            f"{operation} secret {identifier}: HTTP {response.status_code}: {message}",
            operation=operation, identifier=identifier, status_code=response.status_code
        )

    def _to_manifest(self, artifact: StoredArtifact) -> dict:
        metadata = {
            "name": artifact.identifier.name,
            "namespace": artifact.identifier.namespace,
            "labels": dict(artifact.labels),
        }
        if artifact.resource_version:
            metadata["resourceVersion"] = artifact.resource_version
        return {
            "apiVersion": "v1",
            "kind": "Secret",
            "type": TLS_SECRET_TYPE,
            "metadata": metadata,
            "data": {key: base64.b64encode(value).decode("ascii") for key, value in artifact.data.items()},
        }

    def _from_manifest(self, identifier: SecretIdentifier, manifest: dict) -> StoredArtifact:
        metadata = manifest.get("metadata") or {}
        data = {}
        for key, value in (manifest.get("data") or {}).items():
            try:
                data[key] = base64.b64decode(value)
            except ValueError:
                # Left out so the certificate reads as missing and is regenerated.
                self.logger.warning(f"Secret {identifier} key {key} is not valid base64")
        return StoredArtifact(
            identifier=identifier,
            data=data,
            labels=dict(metadata.get("labels") or {}),
            resource_version=metadata.get("resourceVersion"),
        )
