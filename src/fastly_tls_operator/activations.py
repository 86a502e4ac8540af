"""TLS activation diff between the desired and actual Fastly bindings.

The desired set is every domain on the matched certificate crossed with
every TLS configuration id of the sync request. The actual set is every
activation Fastly holds for that certificate.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from .certificates import CertificateSync
from .fastly import FastlyClient, FastlyError
from .models import CustomCertificate, SyncRequest, TLSActivation, TLSConfiguration
from .observation import MissingActivation
from .pagination import list_all_pages

logger = logging.getLogger(__name__)


class ActivationSyncError(Exception):
    """One or more activation changes failed.

    Every item is attempted; ``errors`` holds each failure in order.
    """

    def __init__(self, errors: Sequence[Exception]) -> None:
        self.errors = list(errors)
        super().__init__("\n".join(str(e) for e in self.errors))


def join_errors(errors: Iterable[Exception | None]) -> ActivationSyncError | None:
    """Combine failures into one error, or None when nothing failed."""
    collected = [e for e in errors if e is not None]
    if not collected:
        return None
    return ActivationSyncError(collected)


@dataclass(frozen=True)
class ActivationDiff:
    missing: tuple[MissingActivation, ...] = ()
    extra_ids: tuple[str, ...] = ()


def _activation_key(activation: TLSActivation) -> tuple[str | None, str | None]:
    domain_id = activation.domain.id if activation.domain else None
    configuration_id = activation.configuration.id if activation.configuration else None
    return domain_id, configuration_id


def diff_activations(
    certificate: CustomCertificate | None,
    configuration_ids: Sequence[str],
    activations: Iterable[TLSActivation],
) -> ActivationDiff:
    """Partition desired and actual activations into missing and extra.

    Pairs present on both sides are kept and appear in neither result. When
    Fastly holds more than one activation for the same pair, the first is
    kept and the rest are extra.
    """
    if certificate is None:
        return ActivationDiff()

    lookup: dict[tuple[str | None, str | None], TLSActivation] = {}
    duplicates: list[str] = []
    for activation in activations:
        key = _activation_key(activation)
        if key in lookup:
            duplicates.append(activation.id)
        else:
            lookup[key] = activation

    missing: list[MissingActivation] = []
    for domain in certificate.domains:
        for configuration_id in configuration_ids:
            if lookup.pop((domain.id, configuration_id), None) is None:
                missing.append(
                    MissingActivation(
                        certificate=certificate,
                        configuration=TLSConfiguration(id=configuration_id),
                        domain=domain,
                    )
                )

    extra_ids = list(dict.fromkeys([a.id for a in lookup.values()] + duplicates))
    return ActivationDiff(missing=tuple(missing), extra_ids=tuple(extra_ids))


class ActivationSync:
    """Observes and corrects the activations of a sync request's certificate."""

    def __init__(self, fastly: FastlyClient, certificates: CertificateSync) -> None:
        self._fastly = fastly
        self._certificates = certificates

    def observe(self, request: SyncRequest) -> ActivationDiff:
        certificate = self._certificates.find_matching(request)
        if certificate is None:
            logger.info(
                "No Fastly certificate yet, skipping activation diff",
                extra={"sync_request": request.key},
            )
            return ActivationDiff()

        activations = list_all_pages(
            lambda number, size: self._fastly.list_tls_activations(
                page_number=number,
                page_size=size,
                filter_certificate_id=certificate.id,
            )
        )
        diff = diff_activations(certificate, request.spec.tls_configuration_ids, activations)
        logger.info(
            "Observed TLS activations",
            extra={
                "sync_request": request.key,
                "certificate_id": certificate.id,
                "actual": len(activations),
                "missing": len(diff.missing),
                "extra": len(diff.extra_ids),
            },
        )
        return diff

    def create_missing(self, missing: Sequence[MissingActivation]) -> None:
        """Create every missing activation.

        Raises:
            ActivationSyncError: If any creation failed; the others still ran.
        """
        errors: list[Exception] = []
        for item in missing:
            try:
                created = self._fastly.create_tls_activation(
                    certificate_id=item.certificate.id,
                    configuration_id=item.configuration.id,
                    domain_id=item.domain.id,
                )
            except FastlyError as e:
                logger.warning(
                    "Failed to create TLS activation",
                    extra={
                        "certificate_id": item.certificate.id,
                        "configuration_id": item.configuration.id,
                        "domain_id": item.domain.id,
                        "error": str(e),
                    },
                )
                errors.append(e)
                continue
            logger.info(
                "Created TLS activation",
                extra={
                    "activation_id": created.id,
                    "configuration_id": item.configuration.id,
                    "domain_id": item.domain.id,
                },
            )

        error = join_errors(errors)
        if error is not None:
            raise error

    def delete_extra(self, activation_ids: Sequence[str]) -> None:
        """Delete every extra activation.

        Raises:
            ActivationSyncError: If any deletion failed; the others still ran.
        """
        errors: list[Exception] = []
        for activation_id in activation_ids:
            try:
                self._fastly.delete_tls_activation(activation_id)
            except FastlyError as e:
                logger.warning(
                    "Failed to delete TLS activation",
                    extra={"activation_id": activation_id, "error": str(e)},
                )
                errors.append(e)
                continue
            logger.info("Deleted TLS activation", extra={"activation_id": activation_id})

        error = join_errors(errors)
        if error is not None:
            raise error
