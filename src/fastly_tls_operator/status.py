"""User-facing status derived from an Observation.

``derive_status`` is pure. ``status_to_k8s`` turns the result into the
``status`` subresource body, keeping a condition's ``lastTransitionTime``
when its status did not change since the previous write.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .observation import CertificateStatus, Observation


class ConditionStatus(str, Enum):
    TRUE = "True"
    FALSE = "False"
    UNKNOWN = "Unknown"


# Condition types
PRIVATE_KEY_READY = "PrivateKeyReady"
CERTIFICATE_READY = "CertificateReady"
TLS_ACTIVATION_READY = "TLSActivationReady"
CLEANUP_REQUIRED = "CleanupRequired"
READY = "Ready"


@dataclass(frozen=True)
class Condition:
    type: str
    status: ConditionStatus
    reason: str
    message: str


@dataclass(frozen=True)
class SyncStatus:
    """Overall readiness plus one condition per sync dimension."""

    ready: bool
    conditions: tuple[Condition, ...]

    def condition(self, condition_type: str) -> Condition | None:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None


def _private_key_condition(observation: Observation) -> Condition:
    if observation.private_key_uploaded:
        return Condition(
            PRIVATE_KEY_READY,
            ConditionStatus.TRUE,
            "PrivateKeyUploaded",
            "Private key has been successfully uploaded to Fastly",
        )
    return Condition(
        PRIVATE_KEY_READY,
        ConditionStatus.FALSE,
        "PrivateKeyMissing",
        "Private key needs to be uploaded to Fastly",
    )


def _certificate_condition(observation: Observation) -> Condition:
    if observation.certificate_status == CertificateStatus.SYNCED:
        return Condition(
            CERTIFICATE_READY,
            ConditionStatus.TRUE,
            "CertificateSynced",
            "Certificate is up-to-date and synced with Fastly",
        )
    if observation.certificate_status == CertificateStatus.STALE:
        return Condition(
            CERTIFICATE_READY,
            ConditionStatus.FALSE,
            "CertificateStale",
            "Certificate exists in Fastly but is stale and needs to be updated",
        )
    if observation.certificate_status == CertificateStatus.MISSING:
        return Condition(
            CERTIFICATE_READY,
            ConditionStatus.FALSE,
            "CertificateMissing",
            "Certificate is missing from Fastly and needs to be created",
        )
    return Condition(
        CERTIFICATE_READY,
        ConditionStatus.UNKNOWN,
        "CertificateStatusUnknown",
        "Certificate status could not be determined",
    )


def _activation_condition(observation: Observation) -> Condition:
    if observation.missing_activations:
        count = len(observation.missing_activations)
        return Condition(
            TLS_ACTIVATION_READY,
            ConditionStatus.FALSE,
            "TLSActivationsMissing",
            f"Missing {count} TLS activations that need to be created",
        )
    if observation.extra_activation_ids:
        count = len(observation.extra_activation_ids)
        return Condition(
            TLS_ACTIVATION_READY,
            ConditionStatus.FALSE,
            "TLSActivationsExtra",
            f"Found {count} extra TLS activations that need to be removed",
        )
    return Condition(
        TLS_ACTIVATION_READY,
        ConditionStatus.TRUE,
        "TLSActivationsSynced",
        "All TLS activations are properly configured",
    )


def _cleanup_condition(observation: Observation) -> Condition:
    if observation.unused_private_key_ids:
        count = len(observation.unused_private_key_ids)
        return Condition(
            CLEANUP_REQUIRED,
            ConditionStatus.TRUE,
            "UnusedPrivateKeysFound",
            f"Found {count} unused private keys that should be cleaned up",
        )
    return Condition(
        CLEANUP_REQUIRED,
        ConditionStatus.FALSE,
        "NoCleanupNeeded",
        "No unused private keys found",
    )


def derive_status(observation: Observation) -> SyncStatus:
    """Map an Observation to conditions and an overall ready flag."""
    ready = (
        observation.private_key_uploaded
        and observation.certificate_status == CertificateStatus.SYNCED
        and not observation.missing_activations
        and not observation.extra_activation_ids
        and not observation.unused_private_key_ids
    )

    if ready:
        overall = Condition(
            READY,
            ConditionStatus.TRUE,
            "FastlySyncComplete",
            "FastlyCertificateSync is ready and all components are synchronized",
        )
    else:
        overall = Condition(
            READY,
            ConditionStatus.FALSE,
            "FastlySyncIncomplete",
            "FastlyCertificateSync is not ready - synchronization in progress",
        )

    return SyncStatus(
        ready=ready,
        conditions=(
            _private_key_condition(observation),
            _certificate_condition(observation),
            _activation_condition(observation),
            _cleanup_condition(observation),
            overall,
        ),
    )


def _format_time(moment: datetime) -> str:
    return moment.astimezone(UTC).strftime("%Y-%m-%dT%H:%M:%SZ")


def status_to_k8s(
    status: SyncStatus,
    previous: dict[str, Any] | None = None,
    observed_generation: int | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Build the status subresource body.

    Args:
        status: Derived status to persist.
        previous: The object's current ``status`` field, if any.
        observed_generation: ``metadata.generation`` the status was derived from.
        now: Transition time for changed conditions; defaults to the current time.
    """
    timestamp = _format_time(now or datetime.now(UTC))
    previous_conditions = {
        c.get("type"): c for c in (previous or {}).get("conditions") or [] if isinstance(c, dict)
    }

    conditions = []
    for condition in status.conditions:
        old = previous_conditions.get(condition.type)
        if old is not None and old.get("status") == condition.status.value:
            transition_time = old.get("lastTransitionTime") or timestamp
        else:
            transition_time = timestamp

        entry: dict[str, Any] = {
            "type": condition.type,
            "status": condition.status.value,
            "reason": condition.reason,
            "message": condition.message,
            "lastTransitionTime": transition_time,
        }
        if observed_generation is not None:
            entry["observedGeneration"] = observed_generation
        conditions.append(entry)

    body: dict[str, Any] = {"ready": status.ready, "conditions": conditions}
    if observed_generation is not None:
        body["observedGeneration"] = observed_generation
    return body
