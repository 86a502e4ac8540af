"""Custom certificate freshness in Fastly.

A Fastly certificate belongs to a sync request when its name equals the
cert-manager Certificate name. It is stale when its serial number differs
from the serial of the local leaf certificate.
"""

from __future__ import annotations

import logging

from .fastly import FastlyClient
from .keys import certificate_blob, certificate_serial
from .kube import ClusterClient, get_certificate_and_secret
from .models import CustomCertificate, SyncRequest
from .observation import CertificateStatus
from .pagination import list_all_pages

logger = logging.getLogger(__name__)


class CertificateNotFoundError(Exception):
    """Raised when the Fastly certificate to update no longer exists."""

    pass


class CertificateSync:
    """Observes and corrects the certificate half of a sync request."""

    def __init__(
        self,
        fastly: FastlyClient,
        cluster: ClusterClient,
        *,
        allow_untrusted_root: bool = False,
    ) -> None:
        """Initialize the certificate sync.

        Args:
            fastly: Fastly client.
            cluster: Cluster client.
            allow_untrusted_root: Local clusters only. Appends ``ca.crt`` to
                uploads and lets Fastly accept a self-signed root.
        """
        self._fastly = fastly
        self._cluster = cluster
        self._allow_untrusted_root = allow_untrusted_root

    def find_matching(self, request: SyncRequest) -> CustomCertificate | None:
        """Return the Fastly certificate named after the local Certificate.

        If several share the name the first one listed is used.
        """
        name = request.spec.certificate_name
        certificates = list_all_pages(
            lambda number, size: self._fastly.list_custom_certificates(
                page_number=number, page_size=size
            )
        )

        matches = [c for c in certificates if c.name == name]
        if not matches:
            return None
        if len(matches) > 1:
            logger.warning(
                "Multiple Fastly certificates share a name, using the first",
                extra={
                    "sync_request": request.key,
                    "certificate_name": name,
                    "certificate_ids": [c.id for c in matches],
                },
            )
        return matches[0]

    def status(self, request: SyncRequest) -> CertificateStatus:
        """Classify the Fastly copy of the certificate.

        Raises:
            KeyMaterialError: If the local certificate cannot be decoded.
        """
        matching = self.find_matching(request)
        if matching is None:
            logger.info(
                "Certificate not found in Fastly",
                extra={"sync_request": request.key},
            )
            return CertificateStatus.MISSING

        _, secret = get_certificate_and_secret(self._cluster, request)
        local_serial = certificate_serial(certificate_blob(secret, self._allow_untrusted_root))

        if local_serial != matching.serial_number:
            logger.info(
                "Fastly certificate is stale",
                extra={
                    "sync_request": request.key,
                    "certificate_id": matching.id,
                    "local_serial": local_serial,
                    "fastly_serial": matching.serial_number,
                },
            )
            return CertificateStatus.STALE
        return CertificateStatus.SYNCED

    def create(self, request: SyncRequest) -> CustomCertificate:
        _, secret = get_certificate_and_secret(self._cluster, request)
        blob = certificate_blob(secret, self._allow_untrusted_root)

        created = self._fastly.create_custom_certificate(
            cert_blob=blob.decode("utf-8"),
            name=request.spec.certificate_name,
            allow_untrusted_root=self._allow_untrusted_root,
        )
        logger.info(
            "Created certificate in Fastly",
            extra={"sync_request": request.key, "certificate_id": created.id},
        )
        return created

    def update(self, request: SyncRequest) -> CustomCertificate:
        """Replace the Fastly certificate in place with the local one.

        Raises:
            CertificateNotFoundError: If the certificate vanished since it was observed.
        """
        _, secret = get_certificate_and_secret(self._cluster, request)
        blob = certificate_blob(secret, self._allow_untrusted_root)

        matching = self.find_matching(request)
        if matching is None:
            raise CertificateNotFoundError("fastly certificate not found")

        updated = self._fastly.update_custom_certificate(
            certificate_id=matching.id,
            cert_blob=blob.decode("utf-8"),
            name=request.spec.certificate_name,
            allow_untrusted_root=self._allow_untrusted_root,
        )
        logger.info(
            "Updated certificate in Fastly",
            extra={"sync_request": request.key, "certificate_id": matching.id},
        )
        return updated
