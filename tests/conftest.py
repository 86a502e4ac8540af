"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for fastly_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from fastly_mock import MockSyncEnvironment  # noqa: E402


@pytest.fixture
def env() -> MockSyncEnvironment:
    """A fresh mock cluster and Fastly account."""
    return MockSyncEnvironment()


@pytest.fixture
def local_env() -> MockSyncEnvironment:
    """Like ``env`` but in local reconciliation mode."""
    return MockSyncEnvironment(local_reconciliation=True)
