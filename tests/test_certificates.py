"""Tests for Fastly certificate matching and freshness."""

from __future__ import annotations

import logging

import pytest
from fastly_mock import MockSyncEnvironment
from fastly_mock.material import issue

from fastly_tls_operator.certificates import CertificateNotFoundError, CertificateSync
from fastly_tls_operator.keys import KeyMaterialError
from fastly_tls_operator.models import TLSSecret
from fastly_tls_operator.observation import CertificateStatus


def _sync(env: MockSyncEnvironment) -> CertificateSync:
    return CertificateSync(
        env.fastly, env.cluster, allow_untrusted_root=env.local_reconciliation
    )


class TestFindMatching:
    """Tests for CertificateSync.find_matching."""

    def test_none(self, env: MockSyncEnvironment) -> None:
        request = env.add_sync()

        assert _sync(env).find_matching(request) is None

    def test_by_name(self, env: MockSyncEnvironment) -> None:
        request = env.add_sync()
        env.state.add_certificate(issue(1, key_index=1).cert_pem, "other")
        cert_id = env.upload_current()

        matching = _sync(env).find_matching(request)

        assert matching is not None
        assert matching.id == cert_id

    def test_match_on_later_page(self, env: MockSyncEnvironment) -> None:
        request = env.add_sync()
        filler = issue(1, key_index=1).cert_pem
        for index in range(20):
            env.state.add_certificate(filler, f"other-{index}")
        cert_id = env.upload_current()

        matching = _sync(env).find_matching(request)

        assert matching is not None
        assert matching.id == cert_id

    def test_duplicate_names_use_first(
        self, env: MockSyncEnvironment, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Test that the first duplicate wins and a warning lists all ids."""
        request = env.add_sync()
        first = env.upload_current()
        second = env.state.add_certificate(env.issued["default/www-example-com"].cert_pem, "www-example-com")

        with caplog.at_level(logging.WARNING):
            matching = _sync(env).find_matching(request)

        assert matching is not None
        assert matching.id == first
        warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
        assert warnings
        assert warnings[0].certificate_ids == [first, second.id]


class TestStatus:
    """Tests for Missing / Stale / Synced classification."""

    def test_missing(self, env: MockSyncEnvironment) -> None:
        request = env.add_sync()

        assert _sync(env).status(request) == CertificateStatus.MISSING

    def test_synced(self, env: MockSyncEnvironment) -> None:
        request = env.add_sync(serial=222)
        env.upload_current()

        assert _sync(env).status(request) == CertificateStatus.SYNCED

    def test_stale(self, env: MockSyncEnvironment) -> None:
        """Test that remote serial 111 vs local serial 222 is stale."""
        request = env.add_sync(serial=222)
        env.state.add_private_key(env.issued["default/www-example-com"].key_pem)
        env.state.add_certificate(issue(111).cert_pem, "www-example-com")

        assert _sync(env).status(request) == CertificateStatus.STALE

    def test_local_mode_uses_leaf_serial(self, local_env: MockSyncEnvironment) -> None:
        """Test that the appended CA does not change the compared serial."""
        request = local_env.add_sync(serial=222)
        local_env.upload_current()

        assert _sync(local_env).status(request) == CertificateStatus.SYNCED

    def test_undecodable_local_certificate(self, env: MockSyncEnvironment) -> None:
        """Test that decode errors propagate instead of defaulting."""
        request = env.add_sync()
        env.upload_current()
        secret = env.cluster.secrets["default/www-example-com-tls"]
        env.cluster.secrets["default/www-example-com-tls"] = TLSSecret(
            name=secret.name, namespace=secret.namespace, data={**secret.data, "tls.crt": b"junk"}
        )

        with pytest.raises(KeyMaterialError):
            _sync(env).status(request)


class TestCreateAndUpdate:
    def test_create_production(self, env: MockSyncEnvironment) -> None:
        request = env.add_sync()
        env.state.add_private_key(env.issued["default/www-example-com"].key_pem)

        _sync(env).create(request)

        call = env.fastly.calls_to("create_custom_certificate")[0]
        assert call["name"] == "www-example-com"
        assert call["allow_untrusted_root"] is False
        assert call["cert_blob"] == env.issued["default/www-example-com"].cert_pem.decode()
        assert _sync(env).status(request) == CertificateStatus.SYNCED

    def test_create_local_appends_ca(self, local_env: MockSyncEnvironment) -> None:
        request = local_env.add_sync()
        issued = local_env.issued["default/www-example-com"]
        local_env.state.add_private_key(issued.key_pem)

        _sync(local_env).create(request)

        call = local_env.fastly.calls_to("create_custom_certificate")[0]
        assert call["allow_untrusted_root"] is True
        assert call["cert_blob"] == (issued.cert_pem + issued.ca_pem).decode()

    def test_update_stale(self, env: MockSyncEnvironment) -> None:
        """Test that an update replaces the certificate in place."""
        request = env.add_sync(serial=222)
        env.state.add_private_key(env.issued["default/www-example-com"].key_pem)
        stale = env.state.add_certificate(issue(111).cert_pem, "www-example-com")

        _sync(env).update(request)

        assert env.fastly.calls_to("update_custom_certificate")[0]["certificate_id"] == stale.id
        assert len(env.state.certificates) == 1
        assert _sync(env).status(request) == CertificateStatus.SYNCED

    def test_update_vanished(self, env: MockSyncEnvironment) -> None:
        request = env.add_sync()

        with pytest.raises(CertificateNotFoundError) as exc_info:
            _sync(env).update(request)

        assert str(exc_info.value) == "fastly certificate not found"
