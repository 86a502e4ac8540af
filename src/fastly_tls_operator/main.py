"""Main entry point for the Fastly TLS operator."""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime

from kubernetes.config import ConfigException

from .config import Config, ConfigurationError
from .fastly import FastlyAPIClient
from .kube import KubernetesClusterClient
from .reconciler import Reconciler

# LogRecord attributes that are not user-supplied extra fields
_RESERVED_RECORD_FIELDS = frozenset(
    vars(logging.LogRecord("", logging.NOTSET, "", 0, "", None, None))
) | {"message", "taskName"}


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_FIELDS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: str = "INFO") -> None:
    """Configure structured logging with JSON output for production."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from HTTP and Kubernetes clients
    for noisy in ("httpx", "httpcore", "kubernetes", "urllib3"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


async def main() -> int:
    """Run the operator.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    try:
        config = Config.from_env()
    except ConfigurationError as e:
        setup_logging()
        logging.getLogger(__name__).error("Configuration error", extra={"error": str(e)})
        return 1

    setup_logging(config.log_level)
    logger = logging.getLogger(__name__)

    logger.info(
        "Starting Fastly TLS operator",
        extra={
            "fastly_api_url": config.fastly_api_url,
            "watch_namespace": config.watch_namespace or "*",
            "local_reconciliation": config.local_reconciliation,
        },
    )

    try:
        cluster = KubernetesClusterClient()
    except ConfigException as e:
        logger.error("Failed to load Kubernetes configuration", extra={"error": str(e)})
        return 1

    with FastlyAPIClient(
        config.fastly_api_key,
        base_url=config.fastly_api_url,
        timeout_seconds=config.request_timeout_seconds,
    ) as fastly:
        reconciler = Reconciler(config, fastly, cluster)

        # Set up signal handlers for graceful shutdown
        loop = asyncio.get_running_loop()

        def signal_handler(sig: signal.Signals) -> None:
            logger.info("Received signal", extra={"signal": sig.name})
            reconciler.shutdown()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

        try:
            await reconciler.run()
        except Exception as e:
            logger.exception("Unhandled exception", extra={"error": str(e)})
            return 1

    logger.info("Operator stopped")
    return 0


def run() -> None:
    """Entry point for the operator process."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
