"""Cluster access: cert-manager Certificates, TLS Secrets and sync requests.

``ClusterClient`` is the surface the reconciliation core and runtime depend
on. ``KubernetesClusterClient`` implements it with the official Kubernetes
Python client.
"""

from __future__ import annotations

import base64
import binascii
import logging
from typing import Any, NoReturn, Protocol

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from pydantic import ValidationError

from .config import SYNC_GROUP, SYNC_PLURAL, SYNC_VERSION
from .models import CertificateDescriptor, SyncRequest, TLSSecret

logger = logging.getLogger(__name__)

CERT_MANAGER_GROUP = "cert-manager.io"
CERT_MANAGER_VERSION = "v1"
CERTIFICATE_PLURAL = "certificates"


class ClusterAPIError(Exception):
    """Raised when the Kubernetes API returns an unexpected error."""

    pass


class ClusterObjectNotFoundError(ClusterAPIError):
    """Raised when a requested object does not exist."""

    pass


class ClusterClient(Protocol):
    """Cluster operations used by the operator."""

    def get_certificate(self, name: str, namespace: str) -> CertificateDescriptor: ...

    def get_secret(self, name: str, namespace: str) -> TLSSecret: ...

    def list_sync_requests(self, namespace: str | None = None) -> list[SyncRequest]: ...

    def patch_sync_request_status(
        self, name: str, namespace: str, status: dict[str, Any]
    ) -> None: ...


def load_kube_config() -> None:
    """Load in-cluster configuration, falling back to the local kubeconfig."""
    try:
        config.load_incluster_config()
        logger.info("Loaded in-cluster Kubernetes configuration")
    except config.ConfigException:
        config.load_kube_config()
        logger.info("Loaded Kubernetes configuration from kubeconfig")


def _decode_secret_data(data: dict[str, str] | None, key: str) -> dict[str, bytes]:
    decoded: dict[str, bytes] = {}
    for field_name, value in (data or {}).items():
        try:
            decoded[field_name] = base64.b64decode(value)
        except (binascii.Error, ValueError) as e:
            raise ClusterAPIError(f"secret {key} has undecodable field {field_name}: {e}") from e
    return decoded


def get_certificate_and_secret(
    cluster: ClusterClient, request: SyncRequest
) -> tuple[CertificateDescriptor, TLSSecret]:
    """Resolve the Certificate a sync request names, then the Secret it issues into.

    The Certificate is looked up in the request's namespace; the Secret in
    the Certificate's namespace.
    """
    certificate = cluster.get_certificate(request.spec.certificate_name, request.namespace)
    secret = cluster.get_secret(certificate.secret_name, certificate.namespace)
    return certificate, secret


class KubernetesClusterClient:
    """ClusterClient backed by the Kubernetes API."""

    def __init__(
        self,
        core_api: client.CoreV1Api | None = None,
        custom_api: client.CustomObjectsApi | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            core_api: CoreV1Api instance; built from the loaded config if omitted.
            custom_api: CustomObjectsApi instance; built if omitted.
        """
        if core_api is None or custom_api is None:
            load_kube_config()
        self._core = core_api or client.CoreV1Api()
        self._custom = custom_api or client.CustomObjectsApi()

    def get_certificate(self, name: str, namespace: str) -> CertificateDescriptor:
        try:
            obj = self._custom.get_namespaced_custom_object(
                CERT_MANAGER_GROUP,
                CERT_MANAGER_VERSION,
                namespace,
                CERTIFICATE_PLURAL,
                name,
            )
        except ApiException as e:
            self._raise_api_error(e, "certificate", name, namespace)
        return CertificateDescriptor.from_k8s_object(obj)

    def get_secret(self, name: str, namespace: str) -> TLSSecret:
        try:
            secret = self._core.read_namespaced_secret(name, namespace)
        except ApiException as e:
            self._raise_api_error(e, "secret", name, namespace)
        return TLSSecret(
            name=secret.metadata.name,
            namespace=secret.metadata.namespace or namespace,
            data=_decode_secret_data(secret.data, f"{namespace}/{name}"),
        )

    def list_sync_requests(self, namespace: str | None = None) -> list[SyncRequest]:
        try:
            if namespace:
                result = self._custom.list_namespaced_custom_object(
                    SYNC_GROUP, SYNC_VERSION, namespace, SYNC_PLURAL
                )
            else:
                result = self._custom.list_cluster_custom_object(
                    SYNC_GROUP, SYNC_VERSION, SYNC_PLURAL
                )
        except ApiException as e:
            raise ClusterAPIError(f"failed to list {SYNC_PLURAL}: {e.reason}") from e

        requests: list[SyncRequest] = []
        for item in result.get("items", []):
            try:
                requests.append(SyncRequest.model_validate(item))
            except ValidationError as e:
                # One malformed object must not block every other sync
                metadata = item.get("metadata", {})
                logger.warning(
                    "Skipping invalid sync request",
                    extra={
                        "sync_request": f"{metadata.get('namespace')}/{metadata.get('name')}",
                        "error": str(e),
                    },
                )
        return requests

    def patch_sync_request_status(
        self, name: str, namespace: str, status: dict[str, Any]
    ) -> None:
        try:
            self._custom.patch_namespaced_custom_object_status(
                SYNC_GROUP,
                SYNC_VERSION,
                namespace,
                SYNC_PLURAL,
                name,
                {"status": status},
            )
        except ApiException as e:
            self._raise_api_error(e, "sync request", name, namespace)

    @staticmethod
    def _raise_api_error(e: ApiException, kind: str, name: str, namespace: str) -> NoReturn:
        if e.status == 404:
            raise ClusterObjectNotFoundError(
                f"{kind} {namespace}/{name} not found"
            ) from e
        raise ClusterAPIError(
            f"failed to get {kind} of name {name} and namespace {namespace}: {e.reason}"
        ) from e
