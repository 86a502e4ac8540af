"""FastlyCertificateSync manifest loading with validation.

Manifests are size-checked before reading and validated at the boundary,
so a bad file is reported with every problem at once.
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import ValidationError

from .config import MAX_MANIFEST_FILE_SIZE_BYTES, SYNC_GROUP, SYNC_KIND, SYNC_VERSION
from .models import SyncRequest

logger = logging.getLogger(__name__)

EXPECTED_API_VERSION = f"{SYNC_GROUP}/{SYNC_VERSION}"


class SpecLoadError(Exception):
    """Raised when manifest loading or validation fails."""

    pass


def load_sync_request(manifest_path: Path) -> SyncRequest:
    """Load and validate a FastlyCertificateSync manifest from YAML.

    Args:
        manifest_path: Path to the manifest file.

    Returns:
        Validated sync request.

    Raises:
        SpecLoadError: If the manifest cannot be loaded or fails validation.
    """
    if not manifest_path.exists():
        raise SpecLoadError(f"Manifest file not found: {manifest_path}")

    try:
        file_size = manifest_path.stat().st_size
    except OSError as e:
        raise SpecLoadError(f"Failed to stat manifest file {manifest_path}: {e}") from e

    if file_size > MAX_MANIFEST_FILE_SIZE_BYTES:
        raise SpecLoadError(
            f"Manifest file exceeds maximum size of {MAX_MANIFEST_FILE_SIZE_BYTES} bytes: "
            f"{manifest_path}"
        )

    try:
        content = manifest_path.read_text(encoding="utf-8")
    except OSError as e:
        raise SpecLoadError(f"Failed to read manifest file {manifest_path}: {e}") from e

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise SpecLoadError(f"Invalid YAML in {manifest_path}: {e}") from e

    if not isinstance(raw_data, dict):
        raise SpecLoadError(f"Manifest file must contain a YAML mapping: {manifest_path}")

    api_version = raw_data.get("apiVersion")
    kind = raw_data.get("kind")
    if api_version != EXPECTED_API_VERSION or kind != SYNC_KIND:
        raise SpecLoadError(
            f"Expected {EXPECTED_API_VERSION} {SYNC_KIND} in {manifest_path}, "
            f"got {api_version} {kind}"
        )

    try:
        request = SyncRequest.model_validate(raw_data)
    except ValidationError as e:
        # Format Pydantic validation errors for readability
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            errors.append(f"  - {loc}: {msg}")

        error_list = "\n".join(errors)
        raise SpecLoadError(f"Validation failed for {manifest_path}:\n{error_list}") from e

    logger.info("Loaded sync request '%s' from %s", request.key, manifest_path)
    return request
