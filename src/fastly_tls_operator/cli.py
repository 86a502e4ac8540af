"""Fastly TLS operator CLI.

Usage:
    fastly-tls-operator run                        # Run the operator
    fastly-tls-operator fingerprint tls.key        # Print the Fastly key fingerprint
    fastly-tls-operator observe sync.yaml          # Show drift for one manifest
    fastly-tls-operator observe sync.yaml --apply  # ...and take one corrective action
"""

from __future__ import annotations

from contextlib import closing
from pathlib import Path
from typing import Any

import click
import yaml
from kubernetes.config import ConfigException

from .config import Config, ConfigurationError
from .fastly import FastlyAPIClient, FastlyClient
from .keys import KeyMaterialError, public_key_sha1
from .kube import ClusterClient, KubernetesClusterClient
from .models import SyncRequest
from .reconciler import ActionError, ObservationError, SyncLogic
from .spec_loader import SpecLoadError, load_sync_request
from .status import status_to_k8s


def build_clients(config: Config) -> tuple[FastlyClient, ClusterClient]:
    """Create the live Fastly and cluster clients for one-shot commands."""
    try:
        cluster = KubernetesClusterClient()
    except ConfigException as e:
        raise click.ClickException(f"Failed to load Kubernetes configuration: {e}") from e

    fastly = FastlyAPIClient(
        config.fastly_api_key,
        base_url=config.fastly_api_url,
        timeout_seconds=config.request_timeout_seconds,
    )
    return fastly, cluster


@click.group()
@click.version_option(version="0.1.0", prog_name="fastly-tls-operator")
def cli() -> None:
    """Sync cert-manager certificates to Fastly.

    \b
    Quick start:
      fastly-tls-operator fingerprint tls.key
      fastly-tls-operator observe sync.yaml
    """


@cli.command()
def run() -> None:
    """Run the operator until SIGTERM or SIGINT."""
    from .main import run as run_operator

    run_operator()


@cli.command()
@click.argument("key_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def fingerprint(key_file: Path) -> None:
    """Print the public key SHA-1 Fastly reports for KEY_FILE."""
    try:
        click.echo(public_key_sha1(key_file.read_bytes()))
    except KeyMaterialError as e:
        raise click.ClickException(str(e)) from e


@cli.command()
@click.argument("manifest", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--apply", "apply_action", is_flag=True, help="Take the corrective action")
def observe(manifest: Path, apply_action: bool) -> None:
    """Run one pass for the FastlyCertificateSync in MANIFEST.

    Prints the observation and derived status as YAML. Nothing is changed
    in Fastly unless --apply is given.
    """
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        raise click.ClickException(str(e)) from e

    try:
        request = load_sync_request(manifest)
    except SpecLoadError as e:
        raise click.ClickException(str(e)) from e

    fastly, cluster = build_clients(config)
    with closing(fastly):
        logic = SyncLogic(fastly, cluster, local_reconciliation=config.local_reconciliation)
        output = _run_pass(logic, request, apply_action)

    click.echo(yaml.safe_dump(output, sort_keys=False))


def _run_pass(logic: SyncLogic, request: SyncRequest, apply_action: bool) -> dict[str, Any]:
    try:
        observation = logic.observe(request)
    except ObservationError as e:
        raise click.ClickException(str(e)) from e

    output: dict[str, Any] = {
        "syncRequest": request.key,
        "observation": observation.summary(),
    }
    if observation.ready_for_reconciliation:
        output["status"] = status_to_k8s(
            logic.derive_status(observation),
            observed_generation=request.metadata.generation,
        )

    if apply_action:
        try:
            result = logic.act(request, observation)
        except ActionError as e:
            raise click.ClickException(str(e)) from e
        output["action"] = {
            "name": result.action.value,
            "taken": result.action_taken,
            "requeueAfter": result.requeue_after,
        }
    return output


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
