from __future__ import annotations

import json
import logging
import os
import re
import signal
import sys
import threading

from configsync.src.config import ConfigError, load_config
from configsync.src.health import start_health_server
from configsync.src.lifecycle import ConfigSyncLifecycle, StartupAbortedError
from configsync.src.metrics import METRICS
from configsync.src.nexus import NexusClient

RUNTIME_VERSION = "0.3.0"
_REDACTION_RULES: tuple[tuple[re.Pattern[str], str], ...] = (
    (
        re.compile(r"(?i)(bearer\s+)([A-Za-z0-9._~+/=-]+)"),
        r"\1[REDACTED]",
    ),
    (
        re.compile(
            r"(?i)(\b(?:authorization|token|password|passwd|secret|api[_-]?key)\b\s*[:=]\s*)([^\s,;]+)"
        ),
        r"\1[REDACTED]",
    ),
    (
        re.compile(r"(?i)([?&](?:token|access_token|api_key|password)=)([^&\s]+)"),
        r"\1[REDACTED]",
    ),
)


def redact_sensitive_text(value: str) -> str:
    redacted = value
    for pattern, replacement in _REDACTION_RULES:
        redacted = pattern.sub(replacement, redacted)
    return redacted


class JSONFormatter(logging.Formatter):
    """Emit logs as single-line JSON objects for structured log aggregation."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName,
            "msg": redact_sensitive_text(record.getMessage()),
        }
        if record.exc_info and record.exc_info[0] is not None:
            log_entry["error"] = redact_sensitive_text(self.formatException(record.exc_info))
        return json.dumps(log_entry)


def configure_logging() -> None:
    """Configure structured JSON logging with a level from ``LOG_LEVEL`` env var."""
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()
    log_handler = logging.StreamHandler()
    log_handler.setFormatter(JSONFormatter())
    logging.root.handlers.clear()
    logging.root.addHandler(log_handler)
    logging.root.setLevel(getattr(logging, log_level, logging.INFO))


def main() -> int:
    """Entrypoint: configure logging, start the sync, and block until signalled."""
    configure_logging()
    logger = logging.getLogger(__name__)
    METRICS.build_info.info(
        {
            "version": os.getenv("APP_VERSION", RUNTIME_VERSION),
            "revision": os.getenv("GIT_SHA", "unknown"),
        }
    )

    try:
        config = load_config()
    except ConfigError:
        logger.exception("Invalid configuration")
        return 2

    nexus = NexusClient(
        base_url=config.nexus_url,
        username=config.nexus_api_user,
        password=config.nexus_api_password,
        timeout_seconds=config.nexus_request_timeout_seconds,
    )
    lifecycle = ConfigSyncLifecycle(reconciler=nexus, security=nexus, config=config)
    health_server = start_health_server(
        ready=lifecycle.ready,
        port=config.health_port,
        watcher_counts=lifecycle.watcher_counts,
    )

    shutdown_event = threading.Event()

    def _handle_signal(signum: int, frame: object) -> None:
        logger.info("Received signal %d, shutting down", signum)
        shutdown_event.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    try:
        lifecycle.start()
    except StartupAbortedError:
        logger.exception("Startup aborted")
        lifecycle.stop()
        health_server.shutdown()
        return 1

    shutdown_event.wait()
    lifecycle.stop()
    health_server.shutdown()
    logger.info("ConfigMap sync process stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
