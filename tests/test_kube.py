"""Tests for the Kubernetes cluster adapter."""

from __future__ import annotations

import base64
from types import SimpleNamespace
from typing import NoReturn, get_type_hints
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.rest import ApiException

from fastly_tls_operator.kube import (
    ClusterAPIError,
    ClusterObjectNotFoundError,
    KubernetesClusterClient,
    get_certificate_and_secret,
    load_kube_config,
)
from fastly_tls_operator.models import SyncRequest


def _b64(value: bytes) -> str:
    return base64.b64encode(value).decode()


@pytest.fixture
def apis() -> tuple[MagicMock, MagicMock]:
    return MagicMock(), MagicMock()


@pytest.fixture
def client(apis: tuple[MagicMock, MagicMock]) -> KubernetesClusterClient:
    core, custom = apis
    return KubernetesClusterClient(core_api=core, custom_api=custom)


class TestGetCertificate:
    """Tests for reading cert-manager Certificates."""

    def test_parses_certificate(
        self, apis: tuple[MagicMock, MagicMock], client: KubernetesClusterClient
    ) -> None:
        _, custom = apis
        custom.get_namespaced_custom_object.return_value = {
            "metadata": {"name": "www", "namespace": "edge"},
            "spec": {"secretName": "www-tls"},
            "status": {"conditions": [{"type": "Ready", "status": "True"}]},
        }

        certificate = client.get_certificate("www", "edge")

        custom.get_namespaced_custom_object.assert_called_once_with(
            "cert-manager.io", "v1", "edge", "certificates", "www"
        )
        assert certificate.secret_name == "www-tls"
        assert certificate.is_ready

    def test_not_found(
        self, apis: tuple[MagicMock, MagicMock], client: KubernetesClusterClient
    ) -> None:
        _, custom = apis
        custom.get_namespaced_custom_object.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(ClusterObjectNotFoundError):
            client.get_certificate("www", "edge")

    def test_other_errors(
        self, apis: tuple[MagicMock, MagicMock], client: KubernetesClusterClient
    ) -> None:
        _, custom = apis
        custom.get_namespaced_custom_object.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(ClusterAPIError) as exc_info:
            client.get_certificate("www", "edge")

        assert not isinstance(exc_info.value, ClusterObjectNotFoundError)
        assert "Forbidden" in str(exc_info.value)


class TestGetSecret:
    """Tests for reading TLS secrets."""

    def test_decodes_data(
        self, apis: tuple[MagicMock, MagicMock], client: KubernetesClusterClient
    ) -> None:
        core, _ = apis
        core.read_namespaced_secret.return_value = SimpleNamespace(
            metadata=SimpleNamespace(name="www-tls", namespace="edge"),
            data={"tls.crt": _b64(b"CERT"), "tls.key": _b64(b"KEY")},
        )

        secret = client.get_secret("www-tls", "edge")

        assert secret.data == {"tls.crt": b"CERT", "tls.key": b"KEY"}
        assert secret.key == "edge/www-tls"

    def test_empty_secret(
        self, apis: tuple[MagicMock, MagicMock], client: KubernetesClusterClient
    ) -> None:
        core, _ = apis
        core.read_namespaced_secret.return_value = SimpleNamespace(
            metadata=SimpleNamespace(name="www-tls", namespace="edge"), data=None
        )

        assert client.get_secret("www-tls", "edge").data == {}

    def test_not_found(
        self, apis: tuple[MagicMock, MagicMock], client: KubernetesClusterClient
    ) -> None:
        core, _ = apis
        core.read_namespaced_secret.side_effect = ApiException(status=404, reason="Not Found")

        with pytest.raises(ClusterObjectNotFoundError):
            client.get_secret("www-tls", "edge")

    def test_other_errors(
        self, apis: tuple[MagicMock, MagicMock], client: KubernetesClusterClient
    ) -> None:
        core, _ = apis
        core.read_namespaced_secret.side_effect = ApiException(status=403, reason="Forbidden")

        with pytest.raises(ClusterAPIError) as exc_info:
            client.get_secret("www-tls", "edge")

        assert not isinstance(exc_info.value, ClusterObjectNotFoundError)

    def test_error_helper_never_returns(self) -> None:
        hints = get_type_hints(KubernetesClusterClient._raise_api_error)

        assert hints["return"] is NoReturn


class TestSyncRequests:
    """Tests for listing sync requests and patching status."""

    def _item(self, name: str, certificate_name: str | None = "www") -> dict:
        spec = {"tlsConfigurationIds": ["c1"]}
        if certificate_name is not None:
            spec["certificateName"] = certificate_name
        return {
            "apiVersion": "platform.seatgeek.io/v1alpha1",
            "kind": "FastlyCertificateSync",
            "metadata": {"name": name, "namespace": "edge"},
            "spec": spec,
        }

    def test_list_all_namespaces(
        self, apis: tuple[MagicMock, MagicMock], client: KubernetesClusterClient
    ) -> None:
        _, custom = apis
        custom.list_cluster_custom_object.return_value = {"items": [self._item("a")]}

        requests = client.list_sync_requests()

        custom.list_cluster_custom_object.assert_called_once_with(
            "platform.seatgeek.io", "v1alpha1", "fastlycertificatesyncs"
        )
        assert [r.key for r in requests] == ["edge/a"]

    def test_list_one_namespace(
        self, apis: tuple[MagicMock, MagicMock], client: KubernetesClusterClient
    ) -> None:
        _, custom = apis
        custom.list_namespaced_custom_object.return_value = {"items": []}

        assert client.list_sync_requests("edge") == []
        custom.list_namespaced_custom_object.assert_called_once_with(
            "platform.seatgeek.io", "v1alpha1", "edge", "fastlycertificatesyncs"
        )

    def test_invalid_items_skipped(
        self, apis: tuple[MagicMock, MagicMock], client: KubernetesClusterClient
    ) -> None:
        """Test that one malformed sync request does not hide the others."""
        _, custom = apis
        custom.list_cluster_custom_object.return_value = {
            "items": [self._item("bad", certificate_name=None), self._item("good")]
        }

        assert [r.name for r in client.list_sync_requests()] == ["good"]

    def test_list_failure(
        self, apis: tuple[MagicMock, MagicMock], client: KubernetesClusterClient
    ) -> None:
        _, custom = apis
        custom.list_cluster_custom_object.side_effect = ApiException(status=500, reason="Boom")

        with pytest.raises(ClusterAPIError):
            client.list_sync_requests()

    def test_patch_status(
        self, apis: tuple[MagicMock, MagicMock], client: KubernetesClusterClient
    ) -> None:
        _, custom = apis

        client.patch_sync_request_status("a", "edge", {"ready": True})

        custom.patch_namespaced_custom_object_status.assert_called_once_with(
            "platform.seatgeek.io",
            "v1alpha1",
            "edge",
            "fastlycertificatesyncs",
            "a",
            {"status": {"ready": True}},
        )


class TestHelpers:
    def test_certificate_and_secret_namespaces(self) -> None:
        """Test that the secret is read from the certificate's namespace."""
        cluster = MagicMock()
        cluster.get_certificate.return_value = SimpleNamespace(
            secret_name="www-tls", namespace="edge"
        )
        request = SyncRequest.model_validate(
            {"metadata": {"name": "s", "namespace": "edge"}, "spec": {"certificateName": "www"}}
        )

        get_certificate_and_secret(cluster, request)

        cluster.get_certificate.assert_called_once_with("www", "edge")
        cluster.get_secret.assert_called_once_with("www-tls", "edge")

    def test_load_kube_config_falls_back(self) -> None:
        """Test that kubeconfig is used outside a cluster."""
        from kubernetes import config

        with (
            patch.object(
                config, "load_incluster_config", side_effect=config.ConfigException("no")
            ),
            patch.object(config, "load_kube_config") as load_kube,
        ):
            load_kube_config()

        load_kube.assert_called_once_with()
