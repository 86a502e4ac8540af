"""Tests for the command line interface."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml
from click.testing import CliRunner
from fastly_mock import MockSyncEnvironment
from fastly_mock.material import expected_fingerprint, rsa_key_pem

from fastly_tls_operator.cli import cli
from fastly_tls_operator.fastly import FastlyConnectionError

MANIFEST = """\
apiVersion: platform.seatgeek.io/v1alpha1
kind: FastlyCertificateSync
metadata:
  name: www-example-com-sync
  namespace: default
  generation: 2
spec:
  certificateName: www-example-com
  tlsConfigurationIds:
    - c1
"""


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def manifest(tmp_path: Path) -> Path:
    path = tmp_path / "sync.yaml"
    path.write_text(MANIFEST)
    return path


def _invoke_observe(runner: CliRunner, env: MockSyncEnvironment, *args: str):
    with (
        patch.dict(os.environ, {"FASTLY_API_KEY": "token"}),
        patch(
            "fastly_tls_operator.cli.build_clients",
            return_value=(env.fastly, env.cluster),
        ),
    ):
        return runner.invoke(cli, ["observe", *args])


class TestFingerprint:
    def test_prints_fingerprint(self, runner: CliRunner, tmp_path: Path) -> None:
        key_file = tmp_path / "tls.key"
        key_file.write_bytes(rsa_key_pem(0))

        result = runner.invoke(cli, ["fingerprint", str(key_file)])

        assert result.exit_code == 0
        assert result.output.strip() == expected_fingerprint(0)

    def test_bad_key(self, runner: CliRunner, tmp_path: Path) -> None:
        key_file = tmp_path / "tls.key"
        key_file.write_text("not a key")

        result = runner.invoke(cli, ["fingerprint", str(key_file)])

        assert result.exit_code == 1
        assert "failed to parse PEM block" in result.output


class TestObserve:
    """Tests for the observe command."""

    def test_reports_drift_without_changing_fastly(
        self, runner: CliRunner, env: MockSyncEnvironment, manifest: Path
    ) -> None:
        env.issue_certificate(domains=["d1"])

        result = _invoke_observe(runner, env, str(manifest))

        assert result.exit_code == 0, result.output
        output = yaml.safe_load(result.output)
        assert output["syncRequest"] == "default/www-example-com-sync"
        assert output["observation"]["private_key_uploaded"] is False
        assert output["observation"]["certificate_status"] == "Missing"
        assert output["status"]["ready"] is False
        assert output["status"]["observedGeneration"] == 2
        assert "action" not in output
        assert env.fastly.mutating_calls == []
        assert env.fastly.closed is True

    def test_apply_takes_one_action(
        self, runner: CliRunner, env: MockSyncEnvironment, manifest: Path
    ) -> None:
        env.issue_certificate(domains=["d1"])

        result = _invoke_observe(runner, env, str(manifest), "--apply")

        assert result.exit_code == 0, result.output
        output = yaml.safe_load(result.output)
        assert output["action"] == {
            "name": "create private key",
            "taken": True,
            "requeueAfter": 0,
        }
        assert env.fastly.mutating_calls == ["create_private_key"]

    def test_not_ready_has_no_status(
        self, runner: CliRunner, env: MockSyncEnvironment, manifest: Path
    ) -> None:
        env.issue_certificate(ready=False)

        result = _invoke_observe(runner, env, str(manifest), "--apply")

        assert result.exit_code == 0, result.output
        output = yaml.safe_load(result.output)
        assert output["observation"]["ready_for_reconciliation"] is False
        assert "status" not in output
        assert output["action"]["taken"] is False
        assert output["action"]["requeueAfter"] == 30

    def test_observation_failure(
        self, runner: CliRunner, env: MockSyncEnvironment, manifest: Path
    ) -> None:
        env.issue_certificate()
        env.fastly.inject_error("list_private_keys", FastlyConnectionError("unreachable"))

        result = _invoke_observe(runner, env, str(manifest))

        assert result.exit_code == 1
        assert "failed to observe Fastly private key" in result.output
        assert env.fastly.closed is True

    def test_invalid_manifest(
        self, runner: CliRunner, env: MockSyncEnvironment, tmp_path: Path
    ) -> None:
        path = tmp_path / "bad.yaml"
        path.write_text("kind: Certificate\n")

        result = _invoke_observe(runner, env, str(path))

        assert result.exit_code == 1
        assert "FastlyCertificateSync" in result.output

    def test_missing_api_key(
        self, runner: CliRunner, manifest: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.delenv("FASTLY_API_KEY", raising=False)

        result = runner.invoke(cli, ["observe", str(manifest)])

        assert result.exit_code == 1
        assert "FASTLY_API_KEY" in result.output


def test_version(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["--version"])

    assert result.exit_code == 0
    assert "0.1.0" in result.output
