"""Configuration management with validation.

All settings are read from environment variables and validated at load time
so a misconfigured operator fails before it touches Fastly or the cluster.
"""

from __future__ import annotations

import os
from dataclasses import dataclass


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


# Fastly listing endpoints are always requested with this page size; a page
# shorter than this is the last one.
FASTLY_PAGE_SIZE = 20
DEFAULT_FASTLY_API_URL = "https://api.fastly.com"

DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
MIN_REQUEST_TIMEOUT_SECONDS = 1
MAX_REQUEST_TIMEOUT_SECONDS = 300

# Requeue delays controlled by the reconciliation core
NOT_READY_REQUEUE_SECONDS = 30
ACTION_REQUEUE_SECONDS = 0

DEFAULT_SYNC_PERIOD_SECONDS = 4 * 60 * 60
MIN_SYNC_PERIOD_SECONDS = 60
MAX_SYNC_PERIOD_SECONDS = 24 * 60 * 60

DEFAULT_POLL_INTERVAL_SECONDS = 30
MIN_POLL_INTERVAL_SECONDS = 5

# Backoff applied by the runtime after a failed pass
ERROR_BACKOFF_BASE_SECONDS = 5
ERROR_BACKOFF_MAX_SECONDS = 300

MAX_MANIFEST_FILE_SIZE_BYTES = 256 * 1024

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# FastlyCertificateSync custom resource coordinates
SYNC_GROUP = "platform.seatgeek.io"
SYNC_VERSION = "v1alpha1"
SYNC_PLURAL = "fastlycertificatesyncs"
SYNC_KIND = "FastlyCertificateSync"


@dataclass(frozen=True)
class Config:
    """Operator configuration loaded from environment variables.

    All fields are validated at construction time. Invalid configurations
    raise ConfigurationError immediately rather than failing at runtime.
    """

    fastly_api_key: str
    fastly_api_url: str = DEFAULT_FASTLY_API_URL
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS

    # Empty means every namespace
    watch_namespace: str | None = None

    sync_period_seconds: int = DEFAULT_SYNC_PERIOD_SECONDS
    poll_interval_seconds: int = DEFAULT_POLL_INTERVAL_SECONDS

    # Local clusters issue from an untrusted root: send ca.crt along with the
    # leaf and ask Fastly to accept it.
    local_reconciliation: bool = False

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        errors: list[str] = []

        if not self.fastly_api_key:
            errors.append("FASTLY_API_KEY is required")

        if not self.fastly_api_url.startswith(("https://", "http://")):
            errors.append(f"FASTLY_API_URL must be an http(s) URL: {self.fastly_api_url}")

        if not (
            MIN_REQUEST_TIMEOUT_SECONDS
            <= self.request_timeout_seconds
            <= MAX_REQUEST_TIMEOUT_SECONDS
        ):
            errors.append(
                f"FASTLY_REQUEST_TIMEOUT must be between {MIN_REQUEST_TIMEOUT_SECONDS} "
                f"and {MAX_REQUEST_TIMEOUT_SECONDS} seconds"
            )

        if not (MIN_SYNC_PERIOD_SECONDS <= self.sync_period_seconds <= MAX_SYNC_PERIOD_SECONDS):
            errors.append(
                f"SYNC_PERIOD must be between {MIN_SYNC_PERIOD_SECONDS} "
                f"and {MAX_SYNC_PERIOD_SECONDS} seconds"
            )

        if not (MIN_POLL_INTERVAL_SECONDS <= self.poll_interval_seconds <= self.sync_period_seconds):
            errors.append(
                f"POLL_INTERVAL must be between {MIN_POLL_INTERVAL_SECONDS} seconds and SYNC_PERIOD"
            )

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {list(VALID_LOG_LEVELS)}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            FASTLY_API_KEY: Fastly API token (required)
            FASTLY_API_URL: Fastly API base URL (default: https://api.fastly.com)
            FASTLY_REQUEST_TIMEOUT: Per-request timeout in seconds (default: 30)
            WATCH_NAMESPACE: Only reconcile syncs in this namespace (default: all)
            SYNC_PERIOD: Seconds between passes for a synced request (default: 14400)
            POLL_INTERVAL: Seconds between scheduler wake-ups (default: 30)
            HACK_FASTLY_CERTIFICATE_SYNC_LOCAL_RECONCILIATION: If "true", append
                ca.crt to uploaded certificates and allow untrusted roots
            LOG_LEVEL: Root log level (default: INFO)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None or value == "":
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        return cls(
            fastly_api_key=os.environ.get("FASTLY_API_KEY", ""),
            fastly_api_url=os.environ.get("FASTLY_API_URL", DEFAULT_FASTLY_API_URL).rstrip("/"),
            request_timeout_seconds=get_int(
                "FASTLY_REQUEST_TIMEOUT", DEFAULT_REQUEST_TIMEOUT_SECONDS
            ),
            watch_namespace=os.environ.get("WATCH_NAMESPACE") or None,
            sync_period_seconds=get_int("SYNC_PERIOD", DEFAULT_SYNC_PERIOD_SECONDS),
            poll_interval_seconds=get_int("POLL_INTERVAL", DEFAULT_POLL_INTERVAL_SECONDS),
            local_reconciliation=get_bool(
                "HACK_FASTLY_CERTIFICATE_SYNC_LOCAL_RECONCILIATION", False
            ),
            log_level=os.environ.get("LOG_LEVEL", "INFO").upper(),
        )
