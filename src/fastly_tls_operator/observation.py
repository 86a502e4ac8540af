"""The per-pass snapshot of drift between the cluster and Fastly.

An Observation is built from read-only queries at the start of every pass and
is the only input to both action selection and status derivation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .models import CustomCertificate, TLSConfiguration, TLSDomain


class CertificateStatus(str, Enum):
    """State of the local certificate in Fastly."""

    MISSING = "Missing"
    STALE = "Stale"
    SYNCED = "Synced"


@dataclass(frozen=True)
class MissingActivation:
    """An activation that should exist in Fastly but does not."""

    certificate: CustomCertificate
    configuration: TLSConfiguration
    domain: TLSDomain


@dataclass(frozen=True)
class Observation:
    """Immutable drift snapshot for one SyncRequest.

    The zero value means "nothing observed"; it is what a not-ready pass
    produces.
    """

    ready_for_reconciliation: bool = False
    private_key_uploaded: bool = False
    certificate_status: CertificateStatus | None = None
    missing_activations: tuple[MissingActivation, ...] = ()
    extra_activation_ids: tuple[str, ...] = ()
    unused_private_key_ids: tuple[str, ...] = ()

    @property
    def in_sync(self) -> bool:
        """True when no corrective action is needed."""
        return (
            self.private_key_uploaded
            and self.certificate_status == CertificateStatus.SYNCED
            and not self.missing_activations
            and not self.extra_activation_ids
            and not self.unused_private_key_ids
        )

    def summary(self) -> dict[str, object]:
        """Flat representation for logging and CLI output."""
        return {
            "ready_for_reconciliation": self.ready_for_reconciliation,
            "private_key_uploaded": self.private_key_uploaded,
            "certificate_status": (
                self.certificate_status.value if self.certificate_status else None
            ),
            "missing_activations": [
                {
                    "certificate_id": m.certificate.id,
                    "configuration_id": m.configuration.id,
                    "domain_id": m.domain.id,
                }
                for m in self.missing_activations
            ],
            "extra_activation_ids": list(self.extra_activation_ids),
            "unused_private_key_ids": list(self.unused_private_key_ids),
        }
