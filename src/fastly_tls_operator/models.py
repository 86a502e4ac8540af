"""Pydantic models for sync requests, cluster objects and Fastly resources.

These models provide:
1. Type-safe parsing of Kubernetes objects and Fastly JSON:API documents
2. Validation at the boundary (fail fast, fail loudly)
3. Immutable values that can be compared across observation passes
"""

from __future__ import annotations

from typing import Annotated, Any

from pydantic import BaseModel, Field, field_validator

from .config import SYNC_GROUP, SYNC_KIND, SYNC_VERSION

# =============================================================================
# FastlyCertificateSync
# =============================================================================


class ObjectMeta(BaseModel):
    """Subset of Kubernetes object metadata used by the operator."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    name: Annotated[str, Field(min_length=1)]
    namespace: str = "default"
    generation: int | None = None


class SyncRequestSpec(BaseModel):
    """Desired state of a FastlyCertificateSync."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    # Reconciliation of individual resources may be suspended by setting this flag
    suspend: bool = False
    certificate_name: Annotated[str, Field(min_length=1, alias="certificateName")]
    tls_configuration_ids: list[str] = Field(default_factory=list, alias="tlsConfigurationIds")

    @field_validator("tls_configuration_ids")
    @classmethod
    def validate_configuration_ids(cls, v: list[str]) -> list[str]:
        if any(not config_id for config_id in v):
            raise ValueError("tlsConfigurationIds must not contain empty values")
        # Duplicates would be counted twice by the activation diff
        return list(dict.fromkeys(v))


class SyncRequest(BaseModel):
    """A FastlyCertificateSync custom resource.

    Read-only to the reconciliation core: only the runtime writes its status.
    """

    model_config = {"extra": "ignore", "populate_by_name": True}

    api_version: str = Field(f"{SYNC_GROUP}/{SYNC_VERSION}", alias="apiVersion")
    kind: str = SYNC_KIND
    metadata: ObjectMeta
    spec: SyncRequestSpec
    # Last persisted status, kept only to carry condition transition times forward
    status: dict[str, Any] = Field(default_factory=dict)

    @property
    def name(self) -> str:
        return self.metadata.name

    @property
    def namespace(self) -> str:
        return self.metadata.namespace

    @property
    def key(self) -> str:
        """Namespaced name used for logging and scheduling."""
        return f"{self.metadata.namespace}/{self.metadata.name}"


# =============================================================================
# cert-manager Certificate and its Secret
# =============================================================================


class CertificateCondition(BaseModel):
    """A status condition reported by cert-manager."""

    model_config = {"extra": "ignore"}

    type: str
    status: str
    reason: str | None = None
    message: str | None = None


class CertificateDescriptor(BaseModel):
    """The fields of a cert-manager Certificate the operator relies on."""

    model_config = {"extra": "ignore", "frozen": True}

    name: str
    namespace: str
    secret_name: str
    conditions: tuple[CertificateCondition, ...] = ()

    @classmethod
    def from_k8s_object(cls, obj: dict[str, Any]) -> CertificateDescriptor:
        """Build a descriptor from a raw ``cert-manager.io/v1`` Certificate."""
        metadata = obj.get("metadata", {})
        spec = obj.get("spec", {})
        status = obj.get("status") or {}
        return cls(
            name=metadata.get("name", ""),
            namespace=metadata.get("namespace", ""),
            secret_name=spec.get("secretName", ""),
            conditions=tuple(
                CertificateCondition.model_validate(c) for c in status.get("conditions") or []
            ),
        )

    @property
    def is_ready(self) -> bool:
        """True only when the Ready condition is explicitly True."""
        return any(c.type == "Ready" and c.status == "True" for c in self.conditions)


class TLSSecret(BaseModel):
    """A kubernetes.io/tls Secret with decoded data."""

    model_config = {"extra": "ignore", "frozen": True}

    name: str
    namespace: str
    data: dict[str, bytes] = Field(default_factory=dict)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"


# =============================================================================
# Fastly TLS resources
# =============================================================================


def _relationship_id(item: dict[str, Any], name: str) -> str | None:
    """Extract the id of a to-one JSON:API relationship."""
    data = ((item.get("relationships") or {}).get(name) or {}).get("data")
    if isinstance(data, dict):
        return data.get("id")
    return None


class PrivateKey(BaseModel):
    """A private key stored in Fastly. Fastly never returns the key itself."""

    model_config = {"extra": "ignore", "frozen": True}

    id: str
    name: str = ""
    public_key_sha1: str = ""

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> PrivateKey:
        attributes = item.get("attributes") or {}
        return cls(
            id=item["id"],
            name=attributes.get("name") or "",
            public_key_sha1=attributes.get("public_key_sha1") or "",
        )


class TLSDomain(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    id: str


class TLSConfiguration(BaseModel):
    model_config = {"extra": "ignore", "frozen": True}

    id: str


class CustomCertificate(BaseModel):
    """A custom TLS certificate stored in Fastly."""

    model_config = {"extra": "ignore", "frozen": True}

    id: str
    name: str = ""
    serial_number: str = ""
    domains: tuple[TLSDomain, ...] = ()

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> CustomCertificate:
        attributes = item.get("attributes") or {}
        domains = ((item.get("relationships") or {}).get("tls_domains") or {}).get("data") or []
        return cls(
            id=item["id"],
            name=attributes.get("name") or "",
            serial_number=attributes.get("serial_number") or "",
            domains=tuple(TLSDomain(id=d["id"]) for d in domains),
        )


class TLSActivation(BaseModel):
    """Binds one certificate to one domain under one TLS configuration."""

    model_config = {"extra": "ignore", "frozen": True}

    id: str
    certificate_id: str | None = None
    configuration: TLSConfiguration | None = None
    domain: TLSDomain | None = None

    @classmethod
    def from_api(cls, item: dict[str, Any]) -> TLSActivation:
        configuration_id = _relationship_id(item, "tls_configuration")
        domain_id = _relationship_id(item, "tls_domain")
        return cls(
            id=item["id"],
            certificate_id=_relationship_id(item, "tls_certificate"),
            configuration=TLSConfiguration(id=configuration_id) if configuration_id else None,
            domain=TLSDomain(id=domain_id) if domain_id else None,
        )
