"""Private key presence in Fastly and cleanup of keys Fastly reports unused.

Keys are matched by fingerprint only. A rotated key has a new fingerprint,
so it is uploaded as a new Fastly key and the old one is left for cleanup
once no certificate uses it.
"""

from __future__ import annotations

import logging

from .fastly import FastlyClient, FastlyError
from .keys import private_key_pem, public_key_sha1
from .kube import ClusterClient, get_certificate_and_secret
from .models import PrivateKey, SyncRequest
from .pagination import list_all_pages

logger = logging.getLogger(__name__)


class PrivateKeySync:
    """Observes and corrects the private key half of a sync request."""

    def __init__(self, fastly: FastlyClient, cluster: ClusterClient) -> None:
        self._fastly = fastly
        self._cluster = cluster

    def is_uploaded(self, request: SyncRequest) -> bool:
        """Check whether Fastly holds a key matching the local ``tls.key``.

        Raises:
            KeyMaterialError: If the secret has no usable RSA key.
            FastlyError: If listing keys fails.
            ClusterAPIError: If the Certificate or Secret cannot be read.
        """
        _, secret = get_certificate_and_secret(self._cluster, request)
        key_pem = private_key_pem(secret)

        remote_keys = list_all_pages(
            lambda number, size: self._fastly.list_private_keys(
                page_number=number, page_size=size
            )
        )

        local_sha1 = public_key_sha1(key_pem)
        logger.info(
            "Calculated public key SHA1",
            extra={"sync_request": request.key, "public_key_sha1": local_sha1},
        )

        for remote_key in remote_keys:
            if remote_key.public_key_sha1 == local_sha1:
                logger.info(
                    "Found matching private key in Fastly",
                    extra={"sync_request": request.key, "key_id": remote_key.id},
                )
                return True
        return False

    def create(self, request: SyncRequest) -> PrivateKey:
        """Upload the local private key, named after its secret."""
        _, secret = get_certificate_and_secret(self._cluster, request)
        key_pem = private_key_pem(secret)

        created = self._fastly.create_private_key(key=key_pem.decode("utf-8"), name=secret.name)
        logger.info(
            "Uploaded private key to Fastly",
            extra={"sync_request": request.key, "key_id": created.id, "key_name": secret.name},
        )
        return created

    def unused_ids(self) -> list[str]:
        """Ids of every key Fastly reports as not in use by any certificate."""
        unused = list_all_pages(
            lambda number, size: self._fastly.list_private_keys(
                page_number=number, page_size=size, filter_in_use=False
            )
        )
        return [key.id for key in unused]

    def delete_unused(self, key_ids: list[str] | tuple[str, ...]) -> int:
        """Delete the given keys, returning how many deletions succeeded.

        A key may become in-use again or be deleted elsewhere between
        observation and deletion, so failures are logged and skipped.
        """
        deleted = 0
        for key_id in key_ids:
            try:
                self._fastly.delete_private_key(key_id)
            except FastlyError as e:
                logger.warning(
                    "Failed to delete unused private key",
                    extra={"key_id": key_id, "error": str(e)},
                )
                continue
            deleted += 1
            logger.info("Deleted unused private key", extra={"key_id": key_id})
        return deleted
