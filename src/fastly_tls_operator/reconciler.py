"""Reconciliation of FastlyCertificateSync requests.

Each pass for a sync request:
1. Readiness gate: the cert-manager Certificate is Ready and its Secret is readable
2. Observe: private key, certificate, activations, unused keys (read-only)
3. Act: take at most one corrective action, by fixed priority
4. Persist status derived from the same Observation

ARCHITECTURE:
``SyncLogic`` is the synchronous core. It only talks to Fastly and the
cluster through the ``FastlyClient`` and ``ClusterClient`` protocols.

``Reconciler`` is the async runtime around it. It polls the cluster for sync
requests, keeps a due time per request, runs passes in a worker thread and
backs off after failures.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .activations import ActivationSync, ActivationSyncError
from .certificates import CertificateNotFoundError, CertificateSync
from .config import (
    ACTION_REQUEUE_SECONDS,
    ERROR_BACKOFF_BASE_SECONDS,
    ERROR_BACKOFF_MAX_SECONDS,
    NOT_READY_REQUEUE_SECONDS,
    Config,
)
from .fastly import FastlyClient, FastlyError
from .keys import KeyMaterialError
from .kube import ClusterAPIError, ClusterClient
from .models import SyncRequest
from .observation import CertificateStatus, Observation
from .private_keys import PrivateKeySync
from .status import SyncStatus, derive_status, status_to_k8s

logger = logging.getLogger(__name__)

# Failures that abort a pass while observing
_OBSERVATION_FAILURES = (FastlyError, ClusterAPIError, KeyMaterialError)

# Failures that abort a pass while acting
_ACTION_FAILURES = (
    FastlyError,
    ClusterAPIError,
    KeyMaterialError,
    CertificateNotFoundError,
    ActivationSyncError,
)


class ObservationError(Exception):
    """Raised when a read-only observation step fails."""

    pass


class ActionError(Exception):
    """Raised when a corrective action fails."""

    pass


class Action(str, Enum):
    """The single corrective action chosen for a pass."""

    CREATE_PRIVATE_KEY = "create private key"
    CREATE_CERTIFICATE = "create certificate"
    UPDATE_CERTIFICATE = "update certificate"
    CREATE_ACTIVATIONS = "create TLS activations"
    DELETE_ACTIVATIONS = "delete TLS activations"
    DELETE_UNUSED_KEYS = "delete unused private keys"
    NONE = "none"


@dataclass(frozen=True)
class ActionResult:
    """Outcome of ``SyncLogic.act``.

    ``requeue_after`` is None when the normal sync period applies.
    """

    action: Action
    action_taken: bool
    requeue_after: float | None = None


def select_action(observation: Observation) -> Action:
    """Pick the highest-priority correction an Observation calls for."""
    if not observation.ready_for_reconciliation:
        return Action.NONE
    if not observation.private_key_uploaded:
        return Action.CREATE_PRIVATE_KEY
    if observation.certificate_status == CertificateStatus.MISSING:
        return Action.CREATE_CERTIFICATE
    if observation.certificate_status == CertificateStatus.STALE:
        return Action.UPDATE_CERTIFICATE
    if observation.missing_activations:
        return Action.CREATE_ACTIVATIONS
    if observation.extra_activation_ids:
        return Action.DELETE_ACTIVATIONS
    if observation.unused_private_key_ids:
        return Action.DELETE_UNUSED_KEYS
    return Action.NONE


class SyncLogic:
    """Observe/diff/act core for a single sync request.

    Holds no per-request state: every ``observe`` call builds a fresh
    Observation and ``act`` only reads the one it is given.
    """

    def __init__(
        self,
        fastly: FastlyClient,
        cluster: ClusterClient,
        *,
        local_reconciliation: bool = False,
    ) -> None:
        """Initialize the core.

        Args:
            fastly: Fastly client.
            cluster: Cluster client.
            local_reconciliation: Upload the CA with the certificate and allow
                an untrusted root. Only for local clusters.
        """
        self._cluster = cluster
        self.private_keys = PrivateKeySync(fastly, cluster)
        self.certificates = CertificateSync(
            fastly, cluster, allow_untrusted_root=local_reconciliation
        )
        self.activations = ActivationSync(fastly, self.certificates)

    def is_ready(self, request: SyncRequest) -> bool:
        """Check that the Certificate is issued and its Secret can be read."""
        extra = {
            "sync_request": request.key,
            "certificate_name": request.spec.certificate_name,
        }
        try:
            certificate = self._cluster.get_certificate(
                request.spec.certificate_name, request.namespace
            )
        except ClusterAPIError as e:
            logger.info("Certificate not available", extra={**extra, "error": str(e)})
            return False

        if not certificate.is_ready:
            logger.info("Certificate is not ready", extra=extra)
            return False

        try:
            self._cluster.get_secret(certificate.secret_name, certificate.namespace)
        except ClusterAPIError as e:
            logger.info(
                "Certificate secret not available",
                extra={**extra, "secret_name": certificate.secret_name, "error": str(e)},
            )
            return False
        return True

    def observe(self, request: SyncRequest) -> Observation:
        """Build the Observation for one pass.

        Raises:
            ObservationError: If any observation step fails.
        """
        if not self.is_ready(request):
            return Observation()

        try:
            private_key_uploaded = self.private_keys.is_uploaded(request)
        except _OBSERVATION_FAILURES as e:
            raise ObservationError(f"failed to observe Fastly private key: {e}") from e

        try:
            certificate_status = self.certificates.status(request)
        except _OBSERVATION_FAILURES as e:
            raise ObservationError(f"failed to observe Fastly certificate status: {e}") from e

        try:
            activation_diff = self.activations.observe(request)
        except _OBSERVATION_FAILURES as e:
            raise ObservationError(f"failed to observe Fastly TLS activations: {e}") from e

        try:
            unused_private_key_ids = self.private_keys.unused_ids()
        except _OBSERVATION_FAILURES as e:
            raise ObservationError(f"failed to observe unused Fastly private keys: {e}") from e

        return Observation(
            ready_for_reconciliation=True,
            private_key_uploaded=private_key_uploaded,
            certificate_status=certificate_status,
            missing_activations=activation_diff.missing,
            extra_activation_ids=activation_diff.extra_ids,
            unused_private_key_ids=tuple(unused_private_key_ids),
        )

    def act(self, request: SyncRequest, observation: Observation) -> ActionResult:
        """Take at most one corrective action.

        Raises:
            ActionError: If the chosen action fails.
        """
        if not observation.ready_for_reconciliation:
            logger.info(
                "Not ready for reconciliation, requeueing",
                extra={"sync_request": request.key, "requeue_after": NOT_READY_REQUEUE_SECONDS},
            )
            return ActionResult(Action.NONE, False, NOT_READY_REQUEUE_SECONDS)

        action = select_action(observation)
        if action is Action.NONE:
            return ActionResult(Action.NONE, False, None)

        logger.info(
            "Taking corrective action",
            extra={"sync_request": request.key, "action": action.value},
        )

        try:
            if action is Action.CREATE_PRIVATE_KEY:
                self.private_keys.create(request)
            elif action is Action.CREATE_CERTIFICATE:
                self.certificates.create(request)
            elif action is Action.UPDATE_CERTIFICATE:
                self.certificates.update(request)
            elif action is Action.CREATE_ACTIVATIONS:
                self.activations.create_missing(observation.missing_activations)
            elif action is Action.DELETE_ACTIVATIONS:
                self.activations.delete_extra(observation.extra_activation_ids)
            else:
                self.private_keys.delete_unused(observation.unused_private_key_ids)
        except _ACTION_FAILURES as e:
            raise ActionError(f"failed to {_describe_action(action)}: {e}") from e

        return ActionResult(action, True, ACTION_REQUEUE_SECONDS)

    def derive_status(self, observation: Observation) -> SyncStatus:
        return derive_status(observation)


def _describe_action(action: Action) -> str:
    if action is Action.CREATE_PRIVATE_KEY:
        return "create Fastly private key"
    if action is Action.CREATE_CERTIFICATE:
        return "create Fastly certificate"
    if action is Action.UPDATE_CERTIFICATE:
        return "update Fastly certificate"
    if action is Action.CREATE_ACTIVATIONS:
        return "create Fastly TLS activations"
    if action is Action.DELETE_ACTIVATIONS:
        return "delete Fastly TLS activations"
    return "delete unused Fastly private keys"


# =============================================================================
# Runtime
# =============================================================================


@dataclass
class PassResult:
    """Result of one reconciliation pass for one sync request."""

    sync_request: str
    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    observation: Observation | None = None
    action: ActionResult | None = None
    status: SyncStatus | None = None
    status_persisted: bool = False
    error: Exception | None = None

    @property
    def duration_seconds(self) -> float:
        """Calculate duration in seconds."""
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def ready_for_reconciliation(self) -> bool:
        return self.observation is not None and self.observation.ready_for_reconciliation


@dataclass
class _Schedule:
    due_at: float = 0.0
    consecutive_failures: int = 0
    last_action: Action | None = None
    # Consecutive passes that took the same action again without progress
    repeated_actions: int = 0


def error_backoff_seconds(consecutive_failures: int) -> float:
    """Delay before retrying a request that failed this many times in a row."""
    exponent = max(consecutive_failures - 1, 0)
    return float(min(ERROR_BACKOFF_BASE_SECONDS * (2**exponent), ERROR_BACKOFF_MAX_SECONDS))


class Reconciler:
    """Polling control loop over every FastlyCertificateSync in scope.

    Passes run one after another in a worker thread. A request whose pass
    took an action is due again immediately, one that was not ready after
    30 seconds, one in sync after the sync period. Failed passes back off
    exponentially per request and reset on the next success. A pass that
    repeats the previous pass's action backs off the same way.
    """

    def __init__(
        self,
        config: Config,
        fastly: FastlyClient,
        cluster: ClusterClient,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize reconciler with configuration and clients.

        Args:
            config: Validated operator configuration.
            fastly: Fastly client.
            cluster: Cluster client.
            clock: Monotonic clock used for due times.
        """
        self._config = config
        self._cluster = cluster
        self._clock = clock
        self._logic = SyncLogic(
            fastly, cluster, local_reconciliation=config.local_reconciliation
        )
        self._schedule: dict[str, _Schedule] = {}
        self._shutdown_event = asyncio.Event()

    @property
    def config(self) -> Config:
        """Get the reconciler configuration."""
        return self._config

    @property
    def logic(self) -> SyncLogic:
        return self._logic

    def next_due(self, sync_request: str) -> float | None:
        """Clock time at which a request is next due, if it is tracked."""
        entry = self._schedule.get(sync_request)
        return entry.due_at if entry else None

    async def run(self) -> None:
        """Run the polling loop until shutdown.

        Sleeps until the earliest tracked request is due, but never longer
        than ``POLL_INTERVAL``, so new requests are picked up.
        """
        logger.info(
            "Starting reconciler",
            extra={
                "watch_namespace": self._config.watch_namespace or "*",
                "sync_period_seconds": self._config.sync_period_seconds,
                "poll_interval_seconds": self._config.poll_interval_seconds,
                "local_reconciliation": self._config.local_reconciliation,
            },
        )

        while not self._shutdown_event.is_set():
            try:
                await self.poll_once()
                wait = self._seconds_until_next_due()
            except ClusterAPIError as e:
                logger.error("Failed to list sync requests", extra={"error": str(e)})
                wait = float(self._config.poll_interval_seconds)

            if wait <= 0:
                continue

            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=wait)
            except TimeoutError:
                # Normal timeout, continue to next poll
                pass

        logger.info("Reconciler shutdown complete")

    def shutdown(self) -> None:
        """Signal the reconciler to stop after the current pass."""
        logger.info("Shutdown requested")
        self._shutdown_event.set()

    async def poll_once(self) -> list[PassResult]:
        """List sync requests and run a pass for each one that is due.

        Raises:
            ClusterAPIError: If sync requests cannot be listed.
        """
        loop = asyncio.get_running_loop()
        namespace = self._config.watch_namespace or None
        requests = await loop.run_in_executor(None, self._cluster.list_sync_requests, namespace)

        listed = {r.key for r in requests}
        for forgotten in set(self._schedule) - listed:
            logger.info("Sync request no longer exists", extra={"sync_request": forgotten})
            del self._schedule[forgotten]

        results: list[PassResult] = []
        for request in requests:
            if self._shutdown_event.is_set():
                break

            if request.spec.suspend:
                logger.info("Sync request is suspended", extra={"sync_request": request.key})
                self._schedule.pop(request.key, None)
                continue

            entry = self._schedule.setdefault(request.key, _Schedule())
            if entry.due_at > self._clock():
                continue

            result = await loop.run_in_executor(None, self.reconcile_request, request)
            self._log_result(result)
            self._reschedule(entry, result)
            results.append(result)
        return results

    def reconcile_request(self, request: SyncRequest) -> PassResult:
        """Run one pass: observe, act, then persist status when ready."""
        result = PassResult(sync_request=request.key)
        try:
            observation = self._logic.observe(request)
            result.observation = observation
            result.action = self._logic.act(request, observation)

            if observation.ready_for_reconciliation:
                result.status = self._logic.derive_status(observation)
                result.status_persisted = self._persist_status(request, result.status)
        except (ObservationError, ActionError, ClusterAPIError) as e:
            result.error = e
        except Exception as e:
            logger.exception("Unexpected error during reconciliation")
            result.error = e
        finally:
            result.end_time = datetime.now(UTC)
        return result

    def _persist_status(self, request: SyncRequest, status: SyncStatus) -> bool:
        """Write the status subresource, skipping the write when nothing changed."""
        body = status_to_k8s(
            status,
            previous=request.status,
            observed_generation=request.metadata.generation,
        )
        if body == request.status:
            return False

        self._cluster.patch_sync_request_status(request.name, request.namespace, body)
        return True

    def _reschedule(self, entry: _Schedule, result: PassResult) -> None:
        if result.error is not None:
            entry.consecutive_failures += 1
            entry.due_at = self._clock() + error_backoff_seconds(entry.consecutive_failures)
            return

        entry.consecutive_failures = 0
        action = result.action
        if action is not None and action.action_taken:
            if action.action is entry.last_action:
                entry.repeated_actions += 1
            else:
                entry.repeated_actions = 0
            entry.last_action = action.action
        else:
            entry.last_action = None
            entry.repeated_actions = 0

        if entry.repeated_actions:
            # The same correction again means the last one changed nothing
            delay = error_backoff_seconds(entry.repeated_actions)
            logger.warning(
                "Corrective action made no progress, backing off",
                extra={
                    "sync_request": result.sync_request,
                    "action": entry.last_action.value if entry.last_action else None,
                    "repeated_actions": entry.repeated_actions,
                    "requeue_after": delay,
                },
            )
        elif action is not None and action.requeue_after is not None:
            delay = action.requeue_after
        else:
            delay = self._config.sync_period_seconds
        entry.due_at = self._clock() + delay

    def _seconds_until_next_due(self) -> float:
        """Time to sleep before the earliest tracked request is due, capped at the poll interval."""
        wait = float(self._config.poll_interval_seconds)
        now = self._clock()
        for entry in self._schedule.values():
            wait = min(wait, max(entry.due_at - now, 0.0))
        return wait

    def _log_result(self, result: PassResult) -> None:
        """Log pass result with structured data."""
        extra: dict[str, Any] = {
            "sync_request": result.sync_request,
            "duration_seconds": result.duration_seconds,
            "ready_for_reconciliation": result.ready_for_reconciliation,
        }
        if result.action is not None:
            extra["action"] = result.action.action.value
            extra["action_taken"] = result.action.action_taken
        if result.status is not None:
            extra["ready"] = result.status.ready
            extra["status_persisted"] = result.status_persisted

        if result.error is not None:
            extra["error"] = str(result.error)
            logger.error("Reconciliation failed", extra=extra)
        else:
            logger.info("Reconciliation result", extra=extra)
