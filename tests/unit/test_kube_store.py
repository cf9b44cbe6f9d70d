"""
Unit tests for the Kubernetes custom resource record store.
"""

import base64
from unittest.mock import Mock, patch

import pytest
import requests
import yaml

from zfs_csi.exceptions import RecordConflict, RecordNotFound, RecordStoreError
from zfs_csi.models import Volume
from zfs_csi.records.kube import (
    KubeConnection,
    KubeRecordStore,
    from_resource,
    load_kubeconfig,
    to_resource,
)

RESOURCE = {
    "apiVersion": "zfs.csi.k8s.io/v1",
    "kind": "ZFSVolume",
    "metadata": {
        "name": "data1",
        "resourceVersion": "4711",
        "creationTimestamp": "2024-05-01T10:00:00Z",
        "annotations": {"zfs.csi.k8s.io/ephemeral": "true"},
    },
    "spec": {
        "id": "v1",
        "size": 10737418240,
        "path": "/tank/data1",
        "pool": "tank",
        "compression": "lz4",
        "dedup": "",
    },
}


def make_response(status_code, payload=None, text=""):
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload if payload is not None else {}
    response.text = text
    return response


@pytest.fixture
def store():
    return KubeRecordStore(KubeConnection(server="https://k8s.example:6443", token="abc"), timeout=5)


class TestResourceConversion:
    """Tests for to_resource and from_resource."""

    @pytest.mark.unit
    def test_from_resource(self):
        volume = from_resource(RESOURCE)

        assert volume.id == "v1"
        assert volume.name == "data1"
        assert volume.size == 10737418240
        assert volume.path == "/tank/data1"
        assert volume.compression == "lz4"
        assert volume.dedup == ""
        assert volume.ephemeral is True
        assert volume.resource_version == "4711"
        assert volume.created_at is not None

    @pytest.mark.unit
    def test_to_resource(self):
        body = to_resource(from_resource(RESOURCE))

        assert body["apiVersion"] == "zfs.csi.k8s.io/v1"
        assert body["kind"] == "ZFSVolume"
        assert body["metadata"]["name"] == "data1"
        assert body["metadata"]["resourceVersion"] == "4711"
        assert body["spec"] == RESOURCE["spec"]

    @pytest.mark.unit
    def test_to_resource_without_version(self):
        body = to_resource(Volume(id="v1", name="data1", size=1, pool="tank"))

        assert "resourceVersion" not in body["metadata"]
        assert body["metadata"]["annotations"]["zfs.csi.k8s.io/ephemeral"] == "false"


class TestLoadKubeconfig:
    """Tests for load_kubeconfig function."""

    def _write(self, temp_dir, config):
        path = temp_dir / "kubeconfig"
        path.write_text(yaml.safe_dump(config), encoding="utf-8")
        return str(path)

    @pytest.mark.unit
    def test_token_and_ca_data(self, temp_dir):
        ca_data = base64.b64encode(b"-----BEGIN CERTIFICATE-----\n").decode()
        path = self._write(
            temp_dir,
            {
                "current-context": "prod",
                "contexts": [{"name": "prod", "context": {"cluster": "c1", "user": "u1"}}],
                "clusters": [
                    {"name": "c1", "cluster": {"server": "https://10.0.0.1:6443/", "certificate-authority-data": ca_data}}
                ],
                "users": [{"name": "u1", "user": {"token": "secret"}}],
            },
        )

        conn = load_kubeconfig(path)

        assert conn.server == "https://10.0.0.1:6443"
        assert conn.token == "secret"
        with open(conn.verify, "rb") as file:
            assert file.read() == b"-----BEGIN CERTIFICATE-----\n"

    @pytest.mark.unit
    def test_client_cert_relative_paths(self, temp_dir):
        path = self._write(
            temp_dir,
            {
                "current-context": "dev",
                "contexts": [{"name": "dev", "context": {"cluster": "c1", "user": "u1"}}],
                "clusters": [{"name": "c1", "cluster": {"server": "https://dev:6443", "insecure-skip-tls-verify": True}}],
                "users": [{"name": "u1", "user": {"client-certificate": "client.crt", "client-key": "client.key"}}],
            },
        )

        conn = load_kubeconfig(path)

        assert conn.verify is False
        assert conn.token is None
        assert conn.cert == (str(temp_dir / "client.crt"), str(temp_dir / "client.key"))

    @pytest.mark.unit
    def test_missing_context(self, temp_dir):
        path = self._write(temp_dir, {"current-context": "gone", "contexts": []})

        with pytest.raises(RecordStoreError, match="not found in kubeconfig"):
            load_kubeconfig(path)

    @pytest.mark.unit
    def test_missing_file(self, temp_dir, monkeypatch):
        monkeypatch.delenv("KUBERNETES_SERVICE_HOST", raising=False)

        with pytest.raises(RecordStoreError, match="kubeconfig not found"):
            load_kubeconfig(str(temp_dir / "missing"))


class TestKubeRecordStore:
    """Tests for KubeRecordStore requests."""

    @pytest.mark.unit
    def test_session_auth(self, store):
        assert store.session.headers["Authorization"] == "Bearer abc"
        assert store.base_url == "https://k8s.example:6443/apis/zfs.csi.k8s.io/v1/zfsvolumes"

    @pytest.mark.unit
    def test_get(self, store):
        with patch.object(store.session, "request", return_value=make_response(200, RESOURCE)) as mock_request:
            volume = store.get("data1")

        assert volume.id == "v1"
        mock_request.assert_called_once_with(
            method="GET", url=f"{store.base_url}/data1", json=None, timeout=5
        )

    @pytest.mark.unit
    def test_list(self, store):
        with patch.object(store.session, "request", return_value=make_response(200, {"items": [RESOURCE]})):
            volumes = store.list()

        assert [v.name for v in volumes] == ["data1"]

    @pytest.mark.unit
    def test_create_posts_without_version(self, store):
        volume = from_resource(RESOURCE)
        with patch.object(store.session, "request", return_value=make_response(201, RESOURCE)) as mock_request:
            store.create(volume)

        kwargs = mock_request.call_args.kwargs
        assert kwargs["method"] == "POST"
        assert kwargs["url"] == store.base_url
        assert "resourceVersion" not in kwargs["json"]["metadata"]

    @pytest.mark.unit
    def test_update_fetches_version_when_missing(self, store):
        volume = from_resource(RESOURCE).model_copy(update={"resource_version": None, "size": 1})
        responses = [make_response(200, RESOURCE), make_response(200, RESOURCE)]
        with patch.object(store.session, "request", side_effect=responses) as mock_request:
            store.update(volume)

        put = mock_request.call_args_list[1].kwargs
        assert put["method"] == "PUT"
        assert put["json"]["metadata"]["resourceVersion"] == "4711"
        assert put["json"]["spec"]["size"] == 1

    @pytest.mark.unit
    def test_not_found(self, store):
        response = make_response(404, {"kind": "Status", "message": 'zfsvolumes "data1" not found'})
        with patch.object(store.session, "request", return_value=response):
            with pytest.raises(RecordNotFound, match="not found"):
                store.get("data1")

    @pytest.mark.unit
    def test_conflict(self, store):
        response = make_response(409, {"kind": "Status", "message": "the object has been modified"})
        with patch.object(store.session, "request", return_value=response):
            with pytest.raises(RecordConflict, match="has been modified"):
                store.update(from_resource(RESOURCE))

    @pytest.mark.unit
    def test_server_error(self, store):
        response = make_response(500, text="boom")
        response.json.side_effect = ValueError("no json")
        with patch.object(store.session, "request", return_value=response):
            with pytest.raises(RecordStoreError, match="boom") as exc_info:
                store.delete("data1")

        assert exc_info.value.status_code == 500

    @pytest.mark.unit
    def test_connection_error(self, store):
        with patch.object(store.session, "request", side_effect=requests.exceptions.ConnectionError("refused")):
            with pytest.raises(RecordStoreError, match="Failed to connect"):
                store.list()

    @pytest.mark.unit
    def test_timeout(self, store):
        with patch.object(store.session, "request", side_effect=requests.exceptions.Timeout("slow")):
            with pytest.raises(RecordStoreError, match="timed out"):
                store.list()
