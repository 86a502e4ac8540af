"""Fastly and cluster doubles for testing.

This package provides in-memory implementations of the ``FastlyClient`` and
``ClusterClient`` protocols so reconciliation can be tested without Fastly
or a Kubernetes API server.

Key Features:
- In-memory Fastly state deriving fingerprints, serials, domains and key usage
- Page-numbered listings that honour the requested page size
- Call tracking and error injection per client method
- Generated RSA keys and CA-signed certificates with chosen serial numbers

Usage:
    from fastly_mock import MockSyncEnvironment

    env = MockSyncEnvironment()
    request = env.add_sync(serial=222, domains=["d1"], configuration_ids=["c1"])
    observation = env.logic().observe(request)
    assert not observation.private_key_uploaded
"""

from .cluster import MockClusterClient
from .context import MockSyncEnvironment
from .fastly import MockFastlyClient, MockFastlyState
from .material import IssuedCertificate, issue

__all__ = [
    "IssuedCertificate",
    "MockClusterClient",
    "MockFastlyClient",
    "MockFastlyState",
    "MockSyncEnvironment",
    "issue",
]
