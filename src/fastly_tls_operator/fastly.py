"""Fastly TLS API client.

``FastlyClient`` is the capability surface the reconciliation core depends
on. ``FastlyAPIClient`` implements it over Fastly's JSON:API endpoints; tests
substitute an in-memory implementation.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import DEFAULT_FASTLY_API_URL, DEFAULT_REQUEST_TIMEOUT_SECONDS
from .models import CustomCertificate, PrivateKey, TLSActivation

logger = logging.getLogger(__name__)

JSON_API_CONTENT_TYPE = "application/vnd.api+json"

MAX_REQUEST_ATTEMPTS = 3


class FastlyError(Exception):
    """Base exception for Fastly API errors."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        details: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


class FastlyConnectionError(FastlyError):
    """Raised when Fastly cannot be reached or the request times out."""


class FastlyAuthError(FastlyError):
    """Raised when the API token is rejected."""


class FastlyAPIError(FastlyError):
    """Raised when Fastly returns an error response."""


class FastlyNotFoundError(FastlyAPIError):
    """Raised when a resource does not exist."""


class FastlyClient(Protocol):
    """Operations the reconciliation core needs from Fastly."""

    def list_private_keys(
        self,
        page_number: int,
        page_size: int,
        filter_in_use: bool | None = None,
    ) -> list[PrivateKey]: ...

    def create_private_key(self, key: str, name: str) -> PrivateKey: ...

    def delete_private_key(self, key_id: str) -> None: ...

    def list_custom_certificates(
        self, page_number: int, page_size: int
    ) -> list[CustomCertificate]: ...

    def create_custom_certificate(
        self, cert_blob: str, name: str, allow_untrusted_root: bool
    ) -> CustomCertificate: ...

    def update_custom_certificate(
        self,
        certificate_id: str,
        cert_blob: str,
        name: str,
        allow_untrusted_root: bool,
    ) -> CustomCertificate: ...

    def list_tls_activations(
        self,
        page_number: int,
        page_size: int,
        filter_certificate_id: str | None = None,
    ) -> list[TLSActivation]: ...

    def create_tls_activation(
        self, certificate_id: str, configuration_id: str, domain_id: str
    ) -> TLSActivation: ...

    def delete_tls_activation(self, activation_id: str) -> None: ...

    def close(self) -> None: ...


def _error_message(response: httpx.Response) -> str:
    """Extract a readable message from a Fastly error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase

    if isinstance(body, dict):
        errors = body.get("errors")
        if isinstance(errors, list) and errors:
            parts = []
            for error in errors:
                if isinstance(error, dict):
                    parts.append(str(error.get("detail") or error.get("title") or error))
            if parts:
                return "; ".join(parts)
        for key in ("detail", "msg", "message"):
            if body.get(key):
                return str(body[key])
    return response.text or response.reason_phrase


class FastlyAPIClient:
    """HTTP client for the Fastly TLS management API.

    Example:
        with FastlyAPIClient(api_key) as client:
            keys = client.list_private_keys(page_number=1, page_size=20)
    """

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = DEFAULT_FASTLY_API_URL,
        timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Fastly API token, sent as the ``Fastly-Key`` header.
            base_url: API base URL.
            timeout_seconds: Per-request timeout.
            transport: Optional httpx transport, used by tests.
        """
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds),
            headers={
                "Fastly-Key": api_key,
                "Accept": JSON_API_CONTENT_TYPE,
            },
            transport=transport,
        )

    def __enter__(self) -> FastlyAPIClient:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    @retry(
        retry=retry_if_exception_type(FastlyConnectionError),
        stop=stop_after_attempt(MAX_REQUEST_ATTEMPTS),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        reraise=True,
    )
    def _request(
        self,
        method: str,
        endpoint: str,
        *,
        params: dict[str, Any] | None = None,
        body: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Make a request and return the decoded JSON body.

        Raises:
            FastlyConnectionError: On connection failure or timeout.
            FastlyAuthError: On 401/403.
            FastlyNotFoundError: On 404.
            FastlyAPIError: On any other error status.
        """
        headers = {"Content-Type": JSON_API_CONTENT_TYPE} if body is not None else None
        try:
            response = self._client.request(
                method, endpoint, params=params, json=body, headers=headers
            )
        except httpx.TimeoutException as e:
            logger.warning("Fastly request timed out", extra={"endpoint": endpoint})
            raise FastlyConnectionError("Request to Fastly API timed out", details=str(e)) from e
        except httpx.TransportError as e:
            logger.warning(
                "Fastly connection error", extra={"endpoint": endpoint, "error": str(e)}
            )
            raise FastlyConnectionError(
                f"Failed to connect to Fastly API: {e}", details=str(e)
            ) from e

        status = response.status_code
        if status in (401, 403):
            raise FastlyAuthError(
                f"Fastly rejected the API token: {_error_message(response)}",
                status_code=status,
            )
        if status == 404:
            raise FastlyNotFoundError(
                f"Fastly resource not found: {method} {endpoint}",
                status_code=status,
                details=response.text,
            )
        if status >= 400:
            raise FastlyAPIError(
                f"Fastly API error ({status}): {_error_message(response)}",
                status_code=status,
                details=response.text,
            )

        if status == 204 or not response.content:
            return {}
        return response.json()  # type: ignore[no-any-return]

    @staticmethod
    def _page_params(page_number: int, page_size: int) -> dict[str, Any]:
        return {"page[number]": page_number, "page[size]": page_size}

    # =========================================================================
    # Private keys
    # =========================================================================

    def list_private_keys(
        self,
        page_number: int,
        page_size: int,
        filter_in_use: bool | None = None,
    ) -> list[PrivateKey]:
        params = self._page_params(page_number, page_size)
        if filter_in_use is not None:
            params["filter[in_use]"] = "true" if filter_in_use else "false"
        data = self._request("GET", "/tls/private_keys", params=params)
        return [PrivateKey.from_api(item) for item in data.get("data") or []]

    def create_private_key(self, key: str, name: str) -> PrivateKey:
        body = {"data": {"type": "tls_private_key", "attributes": {"key": key, "name": name}}}
        data = self._request("POST", "/tls/private_keys", body=body)
        return PrivateKey.from_api(data["data"])

    def delete_private_key(self, key_id: str) -> None:
        self._request("DELETE", f"/tls/private_keys/{key_id}")

    # =========================================================================
    # Custom certificates
    # =========================================================================

    def list_custom_certificates(self, page_number: int, page_size: int) -> list[CustomCertificate]:
        data = self._request(
            "GET", "/tls/certificates", params=self._page_params(page_number, page_size)
        )
        return [CustomCertificate.from_api(item) for item in data.get("data") or []]

    def create_custom_certificate(
        self, cert_blob: str, name: str, allow_untrusted_root: bool
    ) -> CustomCertificate:
        body = {
            "data": {
                "type": "tls_certificate",
                "attributes": {
                    "cert_blob": cert_blob,
                    "name": name,
                    "allow_untrusted_root": allow_untrusted_root,
                },
            }
        }
        data = self._request("POST", "/tls/certificates", body=body)
        return CustomCertificate.from_api(data["data"])

    def update_custom_certificate(
        self,
        certificate_id: str,
        cert_blob: str,
        name: str,
        allow_untrusted_root: bool,
    ) -> CustomCertificate:
        body = {
            "data": {
                "type": "tls_certificate",
                "id": certificate_id,
                "attributes": {
                    "cert_blob": cert_blob,
                    "name": name,
                    "allow_untrusted_root": allow_untrusted_root,
                },
            }
        }
        data = self._request("PATCH", f"/tls/certificates/{certificate_id}", body=body)
        return CustomCertificate.from_api(data["data"])

    # =========================================================================
    # TLS activations
    # =========================================================================

    def list_tls_activations(
        self,
        page_number: int,
        page_size: int,
        filter_certificate_id: str | None = None,
    ) -> list[TLSActivation]:
        params = self._page_params(page_number, page_size)
        if filter_certificate_id:
            params["filter[tls_certificate.id]"] = filter_certificate_id
        data = self._request("GET", "/tls/activations", params=params)
        return [TLSActivation.from_api(item) for item in data.get("data") or []]

    def create_tls_activation(
        self, certificate_id: str, configuration_id: str, domain_id: str
    ) -> TLSActivation:
        body = {
            "data": {
                "type": "tls_activation",
                "relationships": {
                    "tls_certificate": {"data": {"type": "tls_certificate", "id": certificate_id}},
                    "tls_configuration": {
                        "data": {"type": "tls_configuration", "id": configuration_id}
                    },
                    "tls_domain": {"data": {"type": "tls_domain", "id": domain_id}},
                },
            }
        }
        data = self._request("POST", "/tls/activations", body=body)
        return TLSActivation.from_api(data["data"])

    def delete_tls_activation(self, activation_id: str) -> None:
        self._request("DELETE", f"/tls/activations/{activation_id}")
