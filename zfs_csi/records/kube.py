"""Kubernetes custom resource record store.

Volume records are `ZFSVolume` objects (group `zfs.csi.k8s.io`, version
`v1`, cluster scoped) managed through the Kubernetes REST API.
"""

import base64
import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple, Union

import requests
import yaml
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from zfs_csi.exceptions import RecordConflict, RecordNotFound, RecordStoreError
from zfs_csi.models import Volume

from .base import RecordStore

LOG = logging.getLogger(__name__)

GROUP = "zfs.csi.k8s.io"
VERSION = "v1"
KIND = "ZFSVolume"
PLURAL = "zfsvolumes"
EPHEMERAL_ANNOTATION = f"{GROUP}/ephemeral"

SERVICE_ACCOUNT_DIR = "/var/run/secrets/kubernetes.io/serviceaccount"


@dataclass
class KubeConnection:
    """Connection settings for a Kubernetes API server.

    Attributes:
        server: API server URL (e.g., https://10.0.0.1:6443)
        token: Bearer token, if any
        verify: CA bundle path, or a bool for requests' `verify`
        cert: Client certificate and key paths, if any
    """

    server: str
    token: Optional[str] = None
    verify: Union[bool, str] = True
    cert: Optional[Tuple[str, str]] = None


def _materialize(data_b64: str, suffix: str) -> str:
    """Write inline base64 kubeconfig data to a private temp file."""
    fd, path = tempfile.mkstemp(prefix="zfs-csi-", suffix=suffix)
    with os.fdopen(fd, "wb") as file:
        file.write(base64.b64decode(data_b64))
    return path


def _resolve(entry: Dict[str, Any], key: str, base_dir: str, suffix: str) -> Optional[str]:
    if entry.get(f"{key}-data"):
        return _materialize(entry[f"{key}-data"], suffix)
    if entry.get(key):
        return os.path.join(base_dir, os.path.expanduser(entry[key]))
    return None


def _in_cluster_connection() -> KubeConnection:
    host = os.environ["KUBERNETES_SERVICE_HOST"]
    port = os.environ.get("KUBERNETES_SERVICE_PORT", "443")
    with open(os.path.join(SERVICE_ACCOUNT_DIR, "token"), "r", encoding="utf-8") as file:
        token = file.read().strip()
    return KubeConnection(
        server=f"https://{host}:{port}",
        token=token,
        verify=os.path.join(SERVICE_ACCOUNT_DIR, "ca.crt"),
    )


def load_kubeconfig(path: str) -> KubeConnection:
    """
    Build connection settings from a kubeconfig file.

    Uses the current context. Falls back to the in-cluster service account
    when the file does not exist and the pod environment is present.

    Args:
        path: kubeconfig path (`~` is expanded)

    Returns:
        KubeConnection

    Raises:
        RecordStoreError: If no usable configuration is found
    """
    path = os.path.expanduser(path)
    if not os.path.exists(path):
        if os.environ.get("KUBERNETES_SERVICE_HOST"):
            LOG.info("kubeconfig %s not found, using in-cluster service account", path)
            return _in_cluster_connection()
        raise RecordStoreError(f"kubeconfig not found: {path}")

    with open(path, "r", encoding="utf-8") as file:
        config = yaml.safe_load(file) or {}

    base_dir = os.path.dirname(os.path.abspath(path))

    def _named(section: str, name: str) -> Dict[str, Any]:
        for item in config.get(section) or []:
            if item.get("name") == name:
                return item.get(section.rstrip("s")) or {}
        raise RecordStoreError(f"{section.rstrip('s')} {name!r} not found in kubeconfig {path}")

    current = config.get("current-context")
    if not current:
        raise RecordStoreError(f"kubeconfig {path} has no current-context")
    context = _named("contexts", current)
    cluster = _named("clusters", context.get("cluster", ""))
    user = _named("users", context["user"]) if context.get("user") else {}

    server = cluster.get("server")
    if not server:
        raise RecordStoreError(f"cluster for context {current!r} has no server")

    verify: Union[bool, str] = True
    if cluster.get("insecure-skip-tls-verify"):
        verify = False
    else:
        ca = _resolve(cluster, "certificate-authority", base_dir, ".crt")
        if ca:
            verify = ca

    token = user.get("token")
    if not token and user.get("tokenFile"):
        with open(os.path.expanduser(user["tokenFile"]), "r", encoding="utf-8") as file:
            token = file.read().strip()

    cert = None
    client_cert = _resolve(user, "client-certificate", base_dir, ".crt")
    client_key = _resolve(user, "client-key", base_dir, ".key")
    if client_cert and client_key:
        cert = (client_cert, client_key)

    return KubeConnection(server=server.rstrip("/"), token=token, verify=verify, cert=cert)


def to_resource(volume: Volume) -> Dict[str, Any]:
    """Convert a Volume into a ZFSVolume resource body."""
    metadata: Dict[str, Any] = {
        "name": volume.name,
        "annotations": {EPHEMERAL_ANNOTATION: "true" if volume.ephemeral else "false"},
    }
    if volume.resource_version is not None:
        metadata["resourceVersion"] = volume.resource_version
    return {
        "apiVersion": f"{GROUP}/{VERSION}",
        "kind": KIND,
        "metadata": metadata,
        "spec": {
            "id": volume.id,
            "size": volume.size,
            "path": volume.path,
            "pool": volume.pool,
            "compression": volume.compression,
            "dedup": volume.dedup,
        },
    }


def from_resource(obj: Dict[str, Any]) -> Volume:
    """Convert a ZFSVolume resource body into a Volume."""
    metadata = obj.get("metadata") or {}
    spec = obj.get("spec") or {}
    annotations = metadata.get("annotations") or {}
    return Volume(
        id=spec.get("id", ""),
        name=metadata.get("name", ""),
        size=int(spec.get("size") or 0),
        path=spec.get("path", ""),
        pool=spec.get("pool", ""),
        compression=spec.get("compression", ""),
        dedup=spec.get("dedup", ""),
        ephemeral=annotations.get(EPHEMERAL_ANNOTATION) == "true",
        resource_version=metadata.get("resourceVersion"),
        created_at=metadata.get("creationTimestamp"),
    )


class KubeRecordStore(RecordStore):
    """Record store backed by ZFSVolume custom resources."""

    def __init__(self, connection: KubeConnection, timeout: int = 30, retry_count: int = 3):
        """Initialize the store.

        Args:
            connection: API server connection settings
            timeout: HTTP request timeout in seconds
            retry_count: Number of retries for failed GET requests
        """
        self.base_url = f"{connection.server}/apis/{GROUP}/{VERSION}/{PLURAL}"
        self.timeout = timeout

        self.session = requests.Session()
        self.session.verify = connection.verify
        if connection.cert:
            self.session.cert = connection.cert
        if connection.token:
            self.session.headers["Authorization"] = f"Bearer {connection.token}"

        # Only GET is retried; writes are not idempotent
        retry_strategy = Retry(
            total=retry_count,
            backoff_factor=1,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["GET"],
        )
        adapter = HTTPAdapter(max_retries=retry_strategy)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @classmethod
    def from_kubeconfig(cls, path: str, timeout: int = 30, verify_ssl: bool = True) -> "KubeRecordStore":
        connection = load_kubeconfig(path)
        if not verify_ssl:
            connection.verify = False
        return cls(connection, timeout=timeout)

    def _make_request(self, method: str, name: Optional[str] = None, body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Make an HTTP request against the ZFSVolume resource collection.

        Raises:
            RecordNotFound: HTTP 404
            RecordConflict: HTTP 409
            RecordStoreError: Any other failure
        """
        url = f"{self.base_url}/{name}" if name else self.base_url

        try:
            response = self.session.request(method=method, url=url, json=body, timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise RecordStoreError(f"Record store request timed out after {self.timeout}s: {e}")
        except requests.exceptions.ConnectionError as e:
            raise RecordStoreError(f"Failed to connect to record store: {e}")
        except requests.exceptions.RequestException as e:
            raise RecordStoreError(f"Record store request failed: {e}")

        if response.status_code >= 400:
            try:
                # Kubernetes Status object
                error_msg = response.json().get("message") or response.text
            except ValueError:
                error_msg = response.text
            if response.status_code == 404:
                raise RecordNotFound(error_msg, status_code=404)
            if response.status_code == 409:
                raise RecordConflict(error_msg, status_code=409)
            raise RecordStoreError(f"Record store request failed: {error_msg}", status_code=response.status_code)

        return response.json()

    def create(self, volume: Volume) -> Volume:
        body = to_resource(volume)
        body["metadata"].pop("resourceVersion", None)
        return from_resource(self._make_request("POST", body=body))

    def update(self, volume: Volume) -> Volume:
        body = to_resource(volume)
        if volume.resource_version is None:
            # Kubernetes requires a resourceVersion on PUT
            body["metadata"]["resourceVersion"] = self._make_request("GET", volume.name)["metadata"]["resourceVersion"]
        return from_resource(self._make_request("PUT", volume.name, body=body))

    def delete(self, name: str) -> None:
        self._make_request("DELETE", name)

    def get(self, name: str) -> Volume:
        return from_resource(self._make_request("GET", name))

    def list(self) -> List[Volume]:
        return [from_resource(item) for item in self._make_request("GET").get("items", [])]
